"""
Constants and enumerations for the Cafe Cost Engine.

This module defines all system-wide constants including:
- Application metadata
- Material categories and purchase units
- Recipe line item types
- Purchase order statuses
- Expansion engine limits
"""

from decimal import Decimal
from typing import List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Cafe Cost Engine"
APP_VERSION = "0.1.0"
DATABASE_VERSION = "1.0"
DATABASE_FILENAME = "cafe_cost.db"

# ============================================================================
# Materials
# ============================================================================

MATERIAL_CATEGORY_INGREDIENT = "ingredient"
MATERIAL_CATEGORY_PACKAGING = "packaging"
MATERIAL_CATEGORY_CONSUMABLE = "consumable"

MATERIAL_CATEGORIES: List[str] = [
    MATERIAL_CATEGORY_INGREDIENT,  # Coffee beans, milk, syrups
    MATERIAL_CATEGORY_PACKAGING,  # Cups, lids, bags
    MATERIAL_CATEGORY_CONSUMABLE,  # Napkins, stirrers
]

PURCHASE_UNITS: List[str] = [
    "g",
    "kg",
    "ml",
    "l",
    "unit",
    "each",
]

# ============================================================================
# Recipe Lines
# ============================================================================

ITEM_TYPE_MATERIAL = "material"
ITEM_TYPE_PRODUCT = "product"

RECIPE_ITEM_TYPES: List[str] = [ITEM_TYPE_MATERIAL, ITEM_TYPE_PRODUCT]

# Consumption/breakdown rows for a product's own supplier cost
ITEM_TYPE_BASE = "base"

# Unit recorded for linked-product and supplier-cost rows
DEFAULT_ITEM_UNIT = "unit"

# ============================================================================
# Purchase Orders
# ============================================================================

PURCHASE_ORDER_STATUS_DRAFT = "draft"
PURCHASE_ORDER_STATUS_ORDERED = "ordered"
PURCHASE_ORDER_STATUS_RECEIVED = "received"
PURCHASE_ORDER_STATUS_CANCELLED = "cancelled"

PURCHASE_ORDER_STATUSES: List[str] = [
    PURCHASE_ORDER_STATUS_DRAFT,
    PURCHASE_ORDER_STATUS_ORDERED,
    PURCHASE_ORDER_STATUS_RECEIVED,
    PURCHASE_ORDER_STATUS_CANCELLED,
]

# ============================================================================
# Expansion Engine
# ============================================================================

# Recursion levels below the root product before a branch is abandoned
MAX_EXPANSION_DEPTH = 5

# Scope prefix for selection groups that belong to the root product
ROOT_SELECTION_SCOPE = "root"

# ============================================================================
# Money
# ============================================================================

ZERO = Decimal("0")
MONEY_PLACES = Decimal("0.01")

# Line costs are cached and recorded at the precision of Numeric(12, 4)
COST_PLACES = Decimal("0.0001")
