"""Product Service - catalog operations for sellable products.

This module provides business logic for products: menu items made in-house
from a recipe, items bought in ready-made (supplier cost), and combos with a
fixed bundle price.

Key Features:
- Create/Read/Update/Delete products with SKU and external id uniqueness
- Lookup by internal id, external (WooCommerce) id or SKU
- upsert_product() for catalog imports: matches an existing product by id,
  then external id, then SKU, and never overwrites the cached unit_cost
- Bundle price override and supplier cost setters

All functions accept optional session parameter; when omitted they open their
own session_scope().
"""

import uuid as uuid_lib
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Product, RecipeLine
from ..utils.constants import ZERO
from .database import session_scope
from .dto_utils import to_decimal
from .exceptions import (
    ExternalIdAlreadyExists,
    ProductInUse,
    ProductNotFound,
    SkuAlreadyExists,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

MONEY_FIELDS = ("base_price", "supplier_cost", "stock_quantity")
UPDATABLE_FIELDS = ("name", "sku", "category", "base_price", "supplier_cost", "stock_quantity", "is_active", "external_id")


def _validate_product_data(data: Dict[str, Any], creating: bool) -> List[str]:
    errors = []
    if creating or "name" in data:
        if not (data.get("name") or "").strip():
            errors.append("Product name is required")
    for field_name in ("base_price", "supplier_cost"):
        if field_name in data and to_decimal(data[field_name]) < ZERO:
            errors.append(f"{field_name.replace('_', ' ').capitalize()} cannot be negative")
    return errors


def _get_product_or_raise(product_id: int, session: Session) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def _check_unique(
    session: Session, sku: Optional[str], external_id: Optional[int], exclude_id: Optional[int] = None
) -> None:
    if sku:
        query = session.query(Product).filter(Product.sku == sku)
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        if query.first():
            raise SkuAlreadyExists(sku)
    if external_id is not None:
        query = session.query(Product).filter(Product.external_id == external_id)
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        if query.first():
            raise ExternalIdAlreadyExists(external_id)


def _normalize(data: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(data)
    for key in MONEY_FIELDS:
        if key in normalized:
            normalized[key] = to_decimal(normalized[key])
    if "name" in normalized and normalized["name"] is not None:
        normalized["name"] = normalized["name"].strip()
    if "sku" in normalized and normalized["sku"] is not None:
        normalized["sku"] = normalized["sku"].strip()
    if "external_id" in normalized:
        external_id = normalized["external_id"]
        normalized["external_id"] = None if external_id in ("", None) else int(external_id)
    return normalized


def _apply_generated_sku(product: Product, session: Session) -> None:
    """Give a product without SKU the stable "product-<externalId|id>" SKU."""
    if product.sku and not product.sku.startswith("pending-"):
        return
    if product.id is None:
        product.sku = f"pending-{uuid_lib.uuid4()}"
        session.flush()
    product.sku = f"product-{product.external_id or product.id}"
    _check_unique(session, product.sku, None, exclude_id=product.id)


# =============================================================================
# CRUD
# =============================================================================


def create_product(data: Dict[str, Any], session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Create a new product.

    Args:
        data: Product fields: name (required), sku, external_id, category,
            base_price, supplier_cost, bundle_price_override, stock_quantity,
            is_active. A blank SKU becomes "product-<externalId|id>".
        session: Optional database session

    Returns:
        Dict[str, Any]: Created product

    Raises:
        ValidationError: If required fields are missing or amounts negative
        SkuAlreadyExists: If the SKU is taken
        ExternalIdAlreadyExists: If the external id is taken

    Example:
        >>> latte = create_product({"name": "Latte", "sku": "LATTE", "base_price": "12.00"})
        >>> latte["unit_cost"]
        '0'
    """
    if session is not None:
        return _create_product_impl(data, session)
    with session_scope() as session:
        return _create_product_impl(data, session)


def _create_product_impl(data: Dict[str, Any], session: Session) -> Dict[str, Any]:
    errors = _validate_product_data(data, creating=True)
    if errors:
        raise ValidationError(errors)

    data = _normalize(data)
    sku = data.get("sku") or None
    _check_unique(session, sku, data.get("external_id"))

    override = data.get("bundle_price_override")
    product = Product(
        external_id=data.get("external_id"),
        name=data["name"],
        sku=sku or f"pending-{uuid_lib.uuid4()}",
        category=data.get("category") or "uncategorized",
        base_price=data.get("base_price", ZERO),
        supplier_cost=data.get("supplier_cost", ZERO),
        unit_cost=ZERO,
        bundle_price_override=to_decimal(override) if override is not None else None,
        stock_quantity=data.get("stock_quantity", ZERO),
        is_active=data.get("is_active", True),
    )
    session.add(product)
    session.flush()

    if not sku:
        _apply_generated_sku(product, session)
        session.flush()

    log_operation(logger, "create_product", "success", product_id=product.id, sku=product.sku)
    return product.to_dict()


def get_product(product_id: int, session: Optional[Session] = None) -> Optional[Dict[str, Any]]:
    """Get product by internal ID, or None if not found."""
    if session is not None:
        return _get_product_impl(product_id, session)
    with session_scope() as session:
        return _get_product_impl(product_id, session)


def _get_product_impl(product_id: int, session: Session) -> Optional[Dict[str, Any]]:
    product = session.get(Product, product_id)
    return product.to_dict() if product else None


def get_product_by_external_id(
    external_id: int, session: Optional[Session] = None
) -> Optional[Dict[str, Any]]:
    """Get product by external (WooCommerce) ID, or None if not synced yet."""
    if session is not None:
        return _get_product_by_external_id_impl(external_id, session)
    with session_scope() as session:
        return _get_product_by_external_id_impl(external_id, session)


def _get_product_by_external_id_impl(external_id: int, session: Session) -> Optional[Dict[str, Any]]:
    product = find_by_external_id(session, external_id)
    return product.to_dict() if product else None


def find_by_external_id(session: Session, external_id) -> Optional[Product]:
    """Product ORM object by external id; non-numeric ids match nothing."""
    try:
        external_id = int(external_id)
    except (TypeError, ValueError):
        return None
    return session.query(Product).filter(Product.external_id == external_id).first()


def get_product_by_sku(sku: str, session: Optional[Session] = None) -> Optional[Dict[str, Any]]:
    """Get product by SKU, or None."""
    if session is not None:
        return _get_product_by_sku_impl(sku, session)
    with session_scope() as session:
        return _get_product_by_sku_impl(sku, session)


def _get_product_by_sku_impl(sku: str, session: Session) -> Optional[Dict[str, Any]]:
    product = session.query(Product).filter(Product.sku == sku).first()
    return product.to_dict() if product else None


def list_products(
    category: Optional[str] = None,
    active_only: bool = False,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """
    List products sorted by name.

    Args:
        category: Optional category filter
        active_only: If True, exclude inactive products
        session: Optional database session
    """
    if session is not None:
        return _list_products_impl(category, active_only, session)
    with session_scope() as session:
        return _list_products_impl(category, active_only, session)


def _list_products_impl(category: Optional[str], active_only: bool, session: Session) -> List[Dict[str, Any]]:
    query = session.query(Product)
    if category:
        query = query.filter(Product.category == category)
    if active_only:
        query = query.filter(Product.is_active == True)  # noqa: E712
    return [p.to_dict() for p in query.order_by(Product.name).all()]


def update_product(
    product_id: int, updates: Dict[str, Any], session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Update catalog fields of a product.

    unit_cost is a cache owned by the recipe service and bundle_price_override
    has its own setter; both are rejected here.

    Raises:
        ProductNotFound: If product doesn't exist
        ValidationError: If an update is invalid or not allowed
        SkuAlreadyExists / ExternalIdAlreadyExists: On uniqueness conflicts
    """
    if session is not None:
        return _update_product_impl(product_id, updates, session)
    with session_scope() as session:
        return _update_product_impl(product_id, updates, session)


def _update_product_impl(product_id: int, updates: Dict[str, Any], session: Session) -> Dict[str, Any]:
    product = _get_product_or_raise(product_id, session)

    disallowed = sorted(set(updates) - set(UPDATABLE_FIELDS))
    if disallowed:
        raise ValidationError([f"Field '{f}' cannot be updated here" for f in disallowed])

    errors = _validate_product_data(updates, creating=False)
    if errors:
        raise ValidationError(errors)

    updates = _normalize(updates)
    _check_unique(session, updates.get("sku") or None, updates.get("external_id"), exclude_id=product.id)

    product.update_from_dict(updates, UPDATABLE_FIELDS)

    if "sku" in updates and not updates["sku"]:
        _apply_generated_sku(product, session)

    session.flush()
    return product.to_dict()


def set_bundle_price_override(
    product_id: int, price, session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Set (or clear with None) a product's fixed bundle price.

    While set, price_of() returns override x quantity without looking at the
    recipe or the customer's selection. Cost is unaffected.

    Raises:
        ProductNotFound: If product doesn't exist
        ValidationError: If price is negative
    """
    if session is not None:
        return _set_bundle_price_override_impl(product_id, price, session)
    with session_scope() as session:
        return _set_bundle_price_override_impl(product_id, price, session)


def _set_bundle_price_override_impl(product_id: int, price, session: Session) -> Dict[str, Any]:
    product = _get_product_or_raise(product_id, session)
    if price is not None:
        price = to_decimal(price)
        if price < ZERO:
            raise ValidationError("Bundle price override cannot be negative")
    product.bundle_price_override = price
    session.flush()

    log_operation(
        logger,
        "set_bundle_price_override",
        "cleared" if price is None else "success",
        product_id=product.id,
        price=None if price is None else str(price),
    )
    return product.to_dict()


def set_supplier_cost(product_id: int, cost, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Set the cost of buying one ready-made unit of a product.

    Raises:
        ProductNotFound: If product doesn't exist
        ValidationError: If cost is negative
    """
    if session is not None:
        return _set_supplier_cost_impl(product_id, cost, session)
    with session_scope() as session:
        return _set_supplier_cost_impl(product_id, cost, session)


def _set_supplier_cost_impl(product_id: int, cost, session: Session) -> Dict[str, Any]:
    product = _get_product_or_raise(product_id, session)
    cost = to_decimal(cost)
    if cost < ZERO:
        raise ValidationError("Supplier cost cannot be negative")
    product.supplier_cost = cost
    session.flush()
    return product.to_dict()


def add_product_stock(product_id: int, quantity, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Add received units of a bought-in product to its stock.

    Raises:
        ProductNotFound: If product doesn't exist
        ValidationError: If quantity is not positive
    """
    if session is not None:
        return _add_product_stock_impl(product_id, quantity, session)
    with session_scope() as session:
        return _add_product_stock_impl(product_id, quantity, session)


def _add_product_stock_impl(product_id: int, quantity, session: Session) -> Dict[str, Any]:
    quantity = to_decimal(quantity)
    if quantity <= ZERO:
        raise ValidationError("Received quantity must be greater than zero")

    product = _get_product_or_raise(product_id, session)
    product.stock_quantity = to_decimal(product.stock_quantity) + quantity
    session.flush()

    log_operation(
        logger,
        "add_product_stock",
        "success",
        product_id=product.id,
        quantity=str(quantity),
        stock_quantity=str(product.stock_quantity),
    )
    return product.to_dict()


def upsert_product(data: Dict[str, Any], session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Insert or update a product from an external catalog feed.

    An existing product is matched by id, then external_id, then a non-blank
    SKU. Catalog fields are overwritten; the cached unit_cost, supplier cost
    and bundle price override are kept because they are owned locally.

    Returns:
        Dict[str, Any]: The inserted or updated product

    Raises:
        ValidationError: If name is missing or amounts negative
        SkuAlreadyExists: If the SKU belongs to a different product
    """
    if session is not None:
        return _upsert_product_impl(data, session)
    with session_scope() as session:
        return _upsert_product_impl(data, session)


def _upsert_product_impl(data: Dict[str, Any], session: Session) -> Dict[str, Any]:
    errors = _validate_product_data(data, creating=True)
    if errors:
        raise ValidationError(errors)

    data = _normalize(data)
    sku = data.get("sku") or None

    existing = None
    if data.get("id") is not None:
        existing = session.get(Product, int(data["id"]))
    if existing is None and data.get("external_id") is not None:
        existing = find_by_external_id(session, data["external_id"])
    if existing is None and sku:
        existing = session.query(Product).filter(Product.sku == sku).first()

    if existing is None:
        created = _create_product_impl(
            {key: value for key, value in data.items() if key != "id"}, session
        )
        log_operation(logger, "upsert_product", "inserted", product_id=created["id"])
        return created

    _check_unique(session, sku, data.get("external_id"), exclude_id=existing.id)

    existing.name = data["name"]
    if data.get("external_id") is not None:
        existing.external_id = data["external_id"]
    if "category" in data and data["category"]:
        existing.category = data["category"]
    for key in ("base_price", "stock_quantity"):
        if key in data:
            setattr(existing, key, data[key])
    if "is_active" in data:
        existing.is_active = data["is_active"]

    if sku:
        existing.sku = sku
    else:
        existing.sku = f"product-{existing.external_id or existing.id}"
        _check_unique(session, existing.sku, None, exclude_id=existing.id)

    session.flush()
    log_operation(logger, "upsert_product", "updated", product_id=existing.id)
    return existing.to_dict()


def delete_product(product_id: int, session: Optional[Session] = None) -> None:
    """
    Delete a product and its own recipe lines.

    Consumption history is kept (it stores snapshots, not foreign keys).

    Raises:
        ProductNotFound: If product doesn't exist
        ProductInUse: If another product's recipe links to it
    """
    if session is not None:
        return _delete_product_impl(product_id, session)
    with session_scope() as session:
        return _delete_product_impl(product_id, session)


def _delete_product_impl(product_id: int, session: Session) -> None:
    product = _get_product_or_raise(product_id, session)

    linked_count = (
        session.query(func.count(RecipeLine.id))
        .filter(RecipeLine.linked_product_id == product_id)
        .scalar()
    )
    if linked_count:
        raise ProductInUse(product_id, linked_count)

    session.delete(product)
    session.flush()
    log_operation(logger, "delete_product", "success", product_id=product_id)
