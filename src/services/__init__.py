"""Services package - Business logic layer for the Cafe Cost Engine.

This package contains all service modules that provide business logic
and database operations for the application.

Architecture:
- Services: Stateless functions organized by domain (material, product, recipe, consumption)
- Transactions: Managed via session_scope() context manager
- Exceptions: Consistent error handling via ServiceError hierarchy
- Validation: Input validation before database operations

Service Modules:
- material_service: Material catalog, price history and stock
- product_service: Product catalog, bundle price overrides, catalog upserts
- recipe_service: Recipe lines and cached cost maintenance
- expansion_service: Component flattening, price and COGS over the recipe graph
- consumption_service: Sale-time stock deduction and consumption audit trail
- analytics_service: Read-only rollups over recorded consumption
- purchase_order_service: Supplier purchase orders and stock receipt

Infrastructure:
- bundle_selection: Customer choices and the shared line-inclusion rule
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- logging_utils: Structured operation logging
"""

from . import (
    database,
    material_service,
    product_service,
    recipe_service,
    expansion_service,
    consumption_service,
    analytics_service,
    purchase_order_service,
)

from .bundle_selection import BundleSelection, selection_group_key, should_include

from .expansion_service import (
    BreakdownEntry,
    ChoiceTree,
    CogsResult,
    ComponentLine,
    cogs_of,
    collect_choices,
    flatten_components,
    get_cost_summary,
    price_of,
)

from .consumption_service import record_order, record_sale

from .exceptions import (
    ServiceError,
    MaterialNotFound,
    ProductNotFound,
    RecipeLineNotFound,
    SkuAlreadyExists,
    ExternalIdAlreadyExists,
    MaterialInUse,
    ProductInUse,
    CircularReferenceError,
    ValidationError,
    DatabaseError,
)

__all__ = [
    # Modules
    "database",
    "material_service",
    "product_service",
    "recipe_service",
    "expansion_service",
    "consumption_service",
    "analytics_service",
    # Selection
    "BundleSelection",
    "selection_group_key",
    "should_include",
    # Expansion engine
    "BreakdownEntry",
    "ChoiceTree",
    "CogsResult",
    "ComponentLine",
    "cogs_of",
    "collect_choices",
    "flatten_components",
    "get_cost_summary",
    "price_of",
    # Consumption
    "record_order",
    "record_sale",
    # Exceptions
    "ServiceError",
    "MaterialNotFound",
    "ProductNotFound",
    "RecipeLineNotFound",
    "SkuAlreadyExists",
    "ExternalIdAlreadyExists",
    "MaterialInUse",
    "ProductInUse",
    "CircularReferenceError",
    "ValidationError",
    "DatabaseError",
]
