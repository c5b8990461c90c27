"""API routers for the Inventory service."""
