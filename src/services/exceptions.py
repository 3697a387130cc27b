"""Service layer exception classes for the Cafe Cost Engine.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application.

Exception Hierarchy:
    ServiceError (base)
    ├── MaterialNotFound
    ├── ProductNotFound
    ├── RecipeLineNotFound
    ├── PurchaseOrderNotFound
    ├── SkuAlreadyExists
    ├── ExternalIdAlreadyExists
    ├── MaterialInUse
    ├── ProductInUse
    ├── CircularReferenceError
    ├── ValidationError
    └── DatabaseError

The expansion engine and the consumption recorder never raise these for
catalog gaps; they are raised by catalog and recipe write paths.
"""


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    pass


class MaterialNotFound(ServiceError):
    """Raised when a material cannot be found by ID.

    Example:
        >>> raise MaterialNotFound(12)
        MaterialNotFound: Material with ID 12 not found
    """

    def __init__(self, material_id: int):
        self.material_id = material_id
        super().__init__(f"Material with ID {material_id} not found")


class ProductNotFound(ServiceError):
    """Raised when a product cannot be found by ID or external ID.

    Example:
        >>> raise ProductNotFound(123)
        ProductNotFound: Product with ID 123 not found
        >>> raise ProductNotFound(991, id_kind="external ID")
        ProductNotFound: Product with external ID 991 not found
    """

    def __init__(self, product_id, id_kind: str = "ID"):
        self.product_id = product_id
        self.id_kind = id_kind
        super().__init__(f"Product with {id_kind} {product_id} not found")


class RecipeLineNotFound(ServiceError):
    """Raised when a recipe line cannot be found by ID."""

    def __init__(self, recipe_line_id: int):
        self.recipe_line_id = recipe_line_id
        super().__init__(f"Recipe line with ID {recipe_line_id} not found")


class PurchaseOrderNotFound(ServiceError):
    """Raised when a purchase order cannot be found by ID."""

    def __init__(self, purchase_order_id: int):
        self.purchase_order_id = purchase_order_id
        super().__init__(f"Purchase order with ID {purchase_order_id} not found")


class SkuAlreadyExists(ServiceError):
    """Raised when creating a product with a duplicate SKU.

    Example:
        >>> raise SkuAlreadyExists("LATTE-12")
        SkuAlreadyExists: Product with SKU 'LATTE-12' already exists
    """

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"Product with SKU '{sku}' already exists")


class ExternalIdAlreadyExists(ServiceError):
    """Raised when two products would share one external (WooCommerce) id."""

    def __init__(self, external_id: int):
        self.external_id = external_id
        super().__init__(f"Product with external ID {external_id} already exists")


class MaterialInUse(ServiceError):
    """Raised when deleting a material that recipe lines still reference.

    Args:
        material_id: The material being deleted
        recipe_line_count: Number of recipe lines referencing it
    """

    def __init__(self, material_id: int, recipe_line_count: int):
        self.material_id = material_id
        self.recipe_line_count = recipe_line_count
        super().__init__(
            f"Cannot delete material {material_id}: used in {recipe_line_count} recipe line(s)"
        )


class ProductInUse(ServiceError):
    """Raised when deleting a product that other recipes link to."""

    def __init__(self, product_id: int, recipe_line_count: int):
        self.product_id = product_id
        self.recipe_line_count = recipe_line_count
        super().__init__(
            f"Cannot delete product {product_id}: linked from {recipe_line_count} recipe line(s)"
        )


class CircularReferenceError(ServiceError):
    """Raised when a recipe line would make a product (indirectly) contain itself."""

    def __init__(self, product_id: int, linked_product_id: int):
        self.product_id = product_id
        self.linked_product_id = linked_product_id
        super().__init__(
            f"Linking product {linked_product_id} into product {product_id} "
            f"would create a circular recipe"
        )


class ValidationError(ServiceError):
    """Raised when data validation fails.

    Args:
        errors: List of validation messages
    """

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        error_msg = "; ".join(self.errors)
        super().__init__(f"Validation failed: {error_msg}")


class DatabaseError(ServiceError):
    """Raised when a database operation fails."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")
