"""Material Service - catalog, pricing and stock operations for materials.

This module provides business logic for raw materials (coffee beans, milk,
cups, lids) including CRUD, purchase price changes with history, and stock
movements.

Key Features:
- Create/Read/Update/Delete materials with validation
- Price changes append MaterialPriceHistory and recost every recipe that
  uses the material, transitively up through linked products
- Stock deduction never rejects: negative stock (backorder) is a warning
- Low-stock reporting

All functions accept optional session parameter; when omitted they open their
own session_scope().

Example Usage:
    >>> from src.services.material_service import create_material, update_material_price
    >>>
    >>> beans = create_material(
    ...     name="Coffee Beans",
    ...     category="ingredient",
    ...     purchase_unit="g",
    ...     purchase_quantity=500,
    ...     purchase_cost="75.00",
    ... )
    >>> beans["cost_per_unit"]
    '0.15'
    >>> result = update_material_price(beans["id"], purchase_cost="80.00")
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Material, MaterialPriceHistory, RecipeLine
from ..utils.constants import MATERIAL_CATEGORIES, ZERO
from ..utils.datetime_utils import utc_now
from .database import session_scope
from .dto_utils import to_decimal
from .exceptions import MaterialInUse, MaterialNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation
from .recipe_service import _recalculate_recipe_costs_for_material_impl

logger = get_service_logger(__name__)

UPDATABLE_FIELDS = ("name", "category", "purchase_unit", "low_stock_threshold", "supplier", "notes")


def _validate_material_fields(
    name: Optional[str],
    category: Optional[str],
    purchase_unit: Optional[str],
    purchase_quantity: Optional[Decimal],
    purchase_cost: Optional[Decimal],
) -> List[str]:
    """Collect validation errors; None means 'not being set'."""
    errors = []
    if name is not None and not name.strip():
        errors.append("Material name is required")
    if category is not None and category not in MATERIAL_CATEGORIES:
        errors.append(f"Category must be one of: {', '.join(MATERIAL_CATEGORIES)}")
    if purchase_unit is not None and not purchase_unit.strip():
        errors.append("Purchase unit is required")
    if purchase_quantity is not None and purchase_quantity <= ZERO:
        errors.append("Purchase quantity must be greater than zero")
    if purchase_cost is not None and purchase_cost < ZERO:
        errors.append("Purchase cost cannot be negative")
    return errors


def _get_material_or_raise(material_id: int, session: Session) -> Material:
    material = session.get(Material, material_id)
    if material is None:
        raise MaterialNotFound(material_id)
    return material


# =============================================================================
# CRUD
# =============================================================================


def create_material(
    name: str,
    category: str,
    purchase_unit: str,
    purchase_quantity,
    purchase_cost,
    stock_quantity=0,
    low_stock_threshold=0,
    supplier: Optional[str] = None,
    notes: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Create a new material.

    The opening price is recorded as the first price history entry.

    Args:
        name: Display name (required)
        category: 'ingredient', 'packaging' or 'consumable'
        purchase_unit: Unit recipes measure this material in ('g', 'ml', 'unit')
        purchase_quantity: Quantity per purchase (> 0)
        purchase_cost: Price paid for purchase_quantity (>= 0)
        stock_quantity: Opening stock in purchase_unit
        low_stock_threshold: Stock level considered low
        supplier: Optional supplier name
        notes: Optional notes
        session: Optional database session

    Returns:
        Dict[str, Any]: Created material including cost_per_unit

    Raises:
        ValidationError: If any field is invalid
    """
    if session is not None:
        return _create_material_impl(
            name, category, purchase_unit, purchase_quantity, purchase_cost,
            stock_quantity, low_stock_threshold, supplier, notes, session,
        )
    with session_scope() as session:
        return _create_material_impl(
            name, category, purchase_unit, purchase_quantity, purchase_cost,
            stock_quantity, low_stock_threshold, supplier, notes, session,
        )


def _create_material_impl(
    name, category, purchase_unit, purchase_quantity, purchase_cost,
    stock_quantity, low_stock_threshold, supplier, notes, session: Session,
) -> Dict[str, Any]:
    """Implementation of create_material."""
    purchase_quantity = to_decimal(purchase_quantity)
    purchase_cost = to_decimal(purchase_cost)

    errors = _validate_material_fields(
        name or "", category, purchase_unit or "", purchase_quantity, purchase_cost
    )
    if errors:
        raise ValidationError(errors)

    now = utc_now()
    material = Material(
        name=name.strip(),
        category=category,
        purchase_unit=purchase_unit.strip(),
        purchase_quantity=purchase_quantity,
        purchase_cost=purchase_cost,
        stock_quantity=to_decimal(stock_quantity),
        low_stock_threshold=to_decimal(low_stock_threshold),
        supplier=supplier,
        notes=notes,
        last_purchase_date=now,
    )
    session.add(material)
    session.flush()

    session.add(
        MaterialPriceHistory(
            material_id=material.id,
            purchase_quantity=purchase_quantity,
            purchase_cost=purchase_cost,
            cost_per_unit=material.cost_per_unit,
            effective_date=now,
            notes="Initial price",
        )
    )
    session.flush()

    log_operation(logger, "create_material", "success", material_id=material.id, name=material.name)
    return material.to_dict()


def get_material(material_id: int, session: Optional[Session] = None) -> Optional[Dict[str, Any]]:
    """Get material by ID, or None if not found."""
    if session is not None:
        return _get_material_impl(material_id, session)
    with session_scope() as session:
        return _get_material_impl(material_id, session)


def _get_material_impl(material_id: int, session: Session) -> Optional[Dict[str, Any]]:
    material = session.get(Material, material_id)
    return material.to_dict() if material else None


def get_material_by_name(name: str, session: Optional[Session] = None) -> Optional[Dict[str, Any]]:
    """Get material by exact (case-insensitive) name, or None."""
    if session is not None:
        return _get_material_by_name_impl(name, session)
    with session_scope() as session:
        return _get_material_by_name_impl(name, session)


def _get_material_by_name_impl(name: str, session: Session) -> Optional[Dict[str, Any]]:
    material = (
        session.query(Material)
        .filter(func.lower(Material.name) == name.strip().lower())
        .first()
    )
    return material.to_dict() if material else None


def list_materials(
    category: Optional[str] = None, session: Optional[Session] = None
) -> List[Dict[str, Any]]:
    """
    List materials sorted by name.

    Args:
        category: Optional category filter
        session: Optional database session
    """
    if session is not None:
        return _list_materials_impl(category, session)
    with session_scope() as session:
        return _list_materials_impl(category, session)


def _list_materials_impl(category: Optional[str], session: Session) -> List[Dict[str, Any]]:
    query = session.query(Material)
    if category:
        query = query.filter(Material.category == category)
    return [m.to_dict() for m in query.order_by(Material.name).all()]


def update_material(
    material_id: int, updates: Dict[str, Any], session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Update non-price fields of a material.

    Price and stock have dedicated operations (update_material_price,
    add_material_stock, deduct_material_stock) and are rejected here.

    Raises:
        MaterialNotFound: If material doesn't exist
        ValidationError: If an update is invalid or not allowed
    """
    if session is not None:
        return _update_material_impl(material_id, updates, session)
    with session_scope() as session:
        return _update_material_impl(material_id, updates, session)


def _update_material_impl(material_id: int, updates: Dict[str, Any], session: Session) -> Dict[str, Any]:
    material = _get_material_or_raise(material_id, session)

    disallowed = sorted(set(updates) - set(UPDATABLE_FIELDS))
    if disallowed:
        raise ValidationError([f"Field '{f}' cannot be updated here" for f in disallowed])

    errors = _validate_material_fields(
        updates.get("name"), updates.get("category"), updates.get("purchase_unit"), None, None
    )
    if errors:
        raise ValidationError(errors)

    updates = dict(updates)
    if "low_stock_threshold" in updates:
        updates["low_stock_threshold"] = to_decimal(updates["low_stock_threshold"])
    for key in ("name", "purchase_unit"):
        if updates.get(key) is not None:
            updates[key] = updates[key].strip()
    material.update_from_dict(updates, UPDATABLE_FIELDS)

    session.flush()
    return material.to_dict()


def delete_material(material_id: int, session: Optional[Session] = None) -> None:
    """
    Delete a material and its price history.

    Raises:
        MaterialNotFound: If material doesn't exist
        MaterialInUse: If any recipe line still references it
    """
    if session is not None:
        return _delete_material_impl(material_id, session)
    with session_scope() as session:
        return _delete_material_impl(material_id, session)


def _delete_material_impl(material_id: int, session: Session) -> None:
    material = _get_material_or_raise(material_id, session)

    line_count = (
        session.query(func.count(RecipeLine.id))
        .filter(RecipeLine.material_id == material_id)
        .scalar()
    )
    if line_count:
        raise MaterialInUse(material_id, line_count)

    session.delete(material)
    session.flush()
    log_operation(logger, "delete_material", "success", material_id=material_id)


# =============================================================================
# Pricing
# =============================================================================


def update_material_price(
    material_id: int,
    purchase_cost,
    purchase_quantity=None,
    notes: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Change a material's purchase price and recost every dependent recipe.

    Appends a price history entry, then refreshes calculated_cost on every
    recipe line using the material, the unit_cost of the products owning
    those lines, and so on up through products that link to them.

    Args:
        material_id: Material ID
        purchase_cost: New price paid for purchase_quantity
        purchase_quantity: New purchase quantity (None keeps the current one)
        notes: Optional note for the history entry
        session: Optional database session

    Returns:
        Dict with "material" (updated material dict), "lines_updated" and
        "products_updated" (ids of products whose unit_cost was recomputed)

    Raises:
        MaterialNotFound: If material doesn't exist
        ValidationError: If cost or quantity is invalid
    """
    if session is not None:
        return _update_material_price_impl(material_id, purchase_cost, purchase_quantity, notes, session)
    with session_scope() as session:
        return _update_material_price_impl(material_id, purchase_cost, purchase_quantity, notes, session)


def _update_material_price_impl(
    material_id: int, purchase_cost, purchase_quantity, notes: Optional[str], session: Session
) -> Dict[str, Any]:
    material = _get_material_or_raise(material_id, session)

    purchase_cost = to_decimal(purchase_cost)
    if purchase_quantity is None:
        purchase_quantity = to_decimal(material.purchase_quantity)
    else:
        purchase_quantity = to_decimal(purchase_quantity)

    errors = _validate_material_fields(None, None, None, purchase_quantity, purchase_cost)
    if errors:
        raise ValidationError(errors)

    old_cost_per_unit = material.cost_per_unit
    now = utc_now()

    material.purchase_cost = purchase_cost
    material.purchase_quantity = purchase_quantity
    material.last_purchase_date = now
    session.add(
        MaterialPriceHistory(
            material_id=material.id,
            purchase_quantity=purchase_quantity,
            purchase_cost=purchase_cost,
            cost_per_unit=material.cost_per_unit,
            effective_date=now,
            notes=notes,
        )
    )
    session.flush()

    cascade = _recalculate_recipe_costs_for_material_impl(material.id, session)

    log_operation(
        logger,
        "update_material_price",
        "success",
        material_id=material.id,
        old_cost_per_unit=str(old_cost_per_unit),
        new_cost_per_unit=str(material.cost_per_unit),
        lines_updated=cascade["lines_updated"],
        products_updated=len(cascade["products_updated"]),
    )

    return {
        "material": material.to_dict(),
        "lines_updated": cascade["lines_updated"],
        "products_updated": cascade["products_updated"],
    }


def get_material_price_history(
    material_id: int, session: Optional[Session] = None
) -> List[Dict[str, Any]]:
    """
    Price history of a material, newest first.

    Raises:
        MaterialNotFound: If material doesn't exist
    """
    if session is not None:
        return _get_material_price_history_impl(material_id, session)
    with session_scope() as session:
        return _get_material_price_history_impl(material_id, session)


def _get_material_price_history_impl(material_id: int, session: Session) -> List[Dict[str, Any]]:
    _get_material_or_raise(material_id, session)
    entries = (
        session.query(MaterialPriceHistory)
        .filter(MaterialPriceHistory.material_id == material_id)
        .order_by(MaterialPriceHistory.effective_date.desc(), MaterialPriceHistory.id.desc())
        .all()
    )
    return [entry.to_dict() for entry in entries]


# =============================================================================
# Stock
# =============================================================================


def apply_stock_deduction(material: Material, quantity: Decimal) -> Decimal:
    """
    Deduct stock from a loaded material and log the consequences.

    Never rejects: stock may go negative (backorder).

    Returns:
        New stock quantity
    """
    previous = to_decimal(material.stock_quantity)
    threshold = to_decimal(material.low_stock_threshold)
    new_stock = previous - quantity
    material.stock_quantity = new_stock

    if new_stock < ZERO:
        logger.warning(
            f"Material '{material.name}' (id={material.id}) stock is negative: "
            f"{new_stock} {material.purchase_unit}"
        )
    elif previous > threshold >= new_stock:
        logger.warning(
            f"Material '{material.name}' (id={material.id}) is low on stock: "
            f"{new_stock} {material.purchase_unit} (threshold {threshold})"
        )
    return new_stock


def deduct_material_stock(
    material_id: int, quantity, session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Deduct consumed quantity from a material's stock.

    Args:
        material_id: Material ID
        quantity: Quantity in the material's purchase unit
        session: Optional database session

    Returns:
        Updated material dict

    Raises:
        MaterialNotFound: If material doesn't exist
        ValidationError: If quantity is negative
    """
    if session is not None:
        return _deduct_material_stock_impl(material_id, quantity, session)
    with session_scope() as session:
        return _deduct_material_stock_impl(material_id, quantity, session)


def _deduct_material_stock_impl(material_id: int, quantity, session: Session) -> Dict[str, Any]:
    quantity = to_decimal(quantity)
    if quantity < ZERO:
        raise ValidationError("Deduction quantity cannot be negative")

    material = _get_material_or_raise(material_id, session)
    apply_stock_deduction(material, quantity)
    session.flush()
    return material.to_dict()


def add_material_stock(
    material_id: int, quantity, session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Add received quantity (e.g. a purchase-order receipt) to stock.

    Raises:
        MaterialNotFound: If material doesn't exist
        ValidationError: If quantity is not positive
    """
    if session is not None:
        return _add_material_stock_impl(material_id, quantity, session)
    with session_scope() as session:
        return _add_material_stock_impl(material_id, quantity, session)


def _add_material_stock_impl(material_id: int, quantity, session: Session) -> Dict[str, Any]:
    quantity = to_decimal(quantity)
    if quantity <= ZERO:
        raise ValidationError("Received quantity must be greater than zero")

    material = _get_material_or_raise(material_id, session)
    material.stock_quantity = to_decimal(material.stock_quantity) + quantity
    session.flush()

    log_operation(
        logger,
        "add_material_stock",
        "success",
        material_id=material.id,
        quantity=str(quantity),
        stock_quantity=str(material.stock_quantity),
    )
    return material.to_dict()


def get_low_stock_materials(session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """Materials at or below their low-stock threshold, lowest stock first."""
    if session is not None:
        return _get_low_stock_materials_impl(session)
    with session_scope() as session:
        return _get_low_stock_materials_impl(session)


def _get_low_stock_materials_impl(session: Session) -> List[Dict[str, Any]]:
    materials = (
        session.query(Material)
        .filter(Material.stock_quantity <= Material.low_stock_threshold)
        .order_by(Material.stock_quantity, Material.name)
        .all()
    )
    return [m.to_dict() for m in materials]
