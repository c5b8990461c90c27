"""Clients for services the inventory service depends on."""
