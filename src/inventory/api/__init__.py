"""Inventory context API package."""

from inventory.api.routes import inventory_router

__all__ = ["inventory_router"]
