"""
Database models package.

This package contains all SQLAlchemy ORM models for the application.
"""

from .base import Base, BaseModel
from .material import Material
from .material_price_history import MaterialPriceHistory
from .product import Product
from .recipe_line import RecipeLine
from .inventory_consumption import InventoryConsumption
from .purchase_order import PurchaseOrder
from .purchase_order_item import PurchaseOrderItem

__all__ = [
    "Base",
    "BaseModel",
    # Catalog
    "Material",
    "MaterialPriceHistory",
    "Product",
    # Recipe graph
    "RecipeLine",
    # Sale-time audit trail
    "InventoryConsumption",
    # Purchasing
    "PurchaseOrder",
    "PurchaseOrderItem",
]
