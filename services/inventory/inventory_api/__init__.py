"""
Inventory tracking service.

Barcode-driven stock keeping for items, locations, suppliers and stock movements.
"""
