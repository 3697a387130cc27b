"""Purchase Order Service - supplier orders and stock receipt.

This module provides business logic for supplier purchase orders of
materials and bought-in products.

Key Features:
- Create orders with material or product lines; numbers are
  "PO-YYYY-MM-NNNN"
- Status flow draft -> ordered -> received, or cancelled before receipt
- Receiving adds every item's quantity to material or product stock in
  one unit of work; either every item is received or none is
- Only draft orders can be deleted

All functions accept optional session parameter; when omitted they open their
own session_scope().

Example Usage:
    >>> from src.services.purchase_order_service import (
    ...     create_purchase_order, receive_purchase_order
    ... )
    >>> order = create_purchase_order(
    ...     "Roastery Co",
    ...     [{"material_id": beans_id, "quantity": 5000, "unit_cost": "0.14"}],
    ... )
    >>> order["po_number"]
    'PO-2026-10-0001'
    >>> receive_purchase_order(order["id"])["status"]
    'received'
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import Material, Product, PurchaseOrder, PurchaseOrderItem
from ..utils.constants import (
    DEFAULT_ITEM_UNIT,
    ITEM_TYPE_MATERIAL,
    ITEM_TYPE_PRODUCT,
    PURCHASE_ORDER_STATUS_DRAFT,
    PURCHASE_ORDER_STATUS_ORDERED,
    PURCHASE_ORDER_STATUS_RECEIVED,
    PURCHASE_ORDER_STATUSES,
    ZERO,
)
from ..utils.datetime_utils import utc_now
from .database import session_scope
from .dto_utils import round_cost, to_decimal
from .exceptions import MaterialNotFound, ProductNotFound, PurchaseOrderNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation
from .material_service import _add_material_stock_impl
from .product_service import _add_product_stock_impl

logger = get_service_logger(__name__)

UPDATABLE_FIELDS = ("supplier", "status", "notes", "order_date", "expected_delivery_date")

# Statuses an order can still be received from
RECEIVABLE_STATUSES = (PURCHASE_ORDER_STATUS_DRAFT, PURCHASE_ORDER_STATUS_ORDERED)


def _get_order_or_raise(purchase_order_id: int, session: Session) -> PurchaseOrder:
    order = session.get(PurchaseOrder, purchase_order_id)
    if order is None:
        raise PurchaseOrderNotFound(purchase_order_id)
    return order


def _next_po_number(session: Session) -> str:
    """Next number in the current month's "PO-YYYY-MM-NNNN" sequence."""
    prefix = utc_now().strftime("PO-%Y-%m-")
    latest = (
        session.query(PurchaseOrder.po_number)
        .filter(PurchaseOrder.po_number.like(f"{prefix}%"))
        .order_by(PurchaseOrder.po_number.desc())
        .first()
    )
    sequence = int(latest[0][len(prefix):]) + 1 if latest else 1
    return f"{prefix}{sequence:04d}"


def _build_item(item: Dict[str, Any], session: Session) -> PurchaseOrderItem:
    item_type = item.get("item_type", ITEM_TYPE_MATERIAL)
    errors = []
    quantity = to_decimal(item.get("quantity"))
    unit_cost = to_decimal(item.get("unit_cost"))
    if item_type not in (ITEM_TYPE_MATERIAL, ITEM_TYPE_PRODUCT):
        errors.append(f"Item type must be '{ITEM_TYPE_MATERIAL}' or '{ITEM_TYPE_PRODUCT}'")
    if quantity <= ZERO:
        errors.append("Item quantity must be greater than zero")
    if unit_cost < ZERO:
        errors.append("Item unit cost cannot be negative")
    if errors:
        raise ValidationError(errors)

    order_item = PurchaseOrderItem(
        item_type=item_type,
        quantity=quantity,
        unit_cost=unit_cost,
        total_cost=round_cost(quantity * unit_cost),
        received_quantity=ZERO,
        notes=item.get("notes"),
    )
    if item_type == ITEM_TYPE_MATERIAL:
        material = session.get(Material, item.get("material_id"))
        if material is None:
            raise MaterialNotFound(item.get("material_id"))
        order_item.material_id = material.id
        order_item.item_name = material.name
        order_item.unit = item.get("unit") or material.purchase_unit
    else:
        product = session.get(Product, item.get("product_id"))
        if product is None:
            raise ProductNotFound(item.get("product_id"))
        order_item.product_id = product.id
        order_item.item_name = product.name
        order_item.sku = product.sku
        order_item.unit = item.get("unit") or DEFAULT_ITEM_UNIT
    return order_item


# =============================================================================
# CRUD
# =============================================================================


def create_purchase_order(
    supplier: str,
    items: List[Dict[str, Any]],
    notes: Optional[str] = None,
    order_date=None,
    expected_delivery_date=None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Create a draft purchase order.

    Args:
        supplier: Supplier name (required)
        items: Dicts with quantity, unit_cost and either material_id or
            item_type 'product' with product_id; optionally unit (defaults
            to the material's purchase unit, or 'unit') and notes
        notes: Optional notes
        order_date: Optional datetime the order was placed
        expected_delivery_date: Optional expected delivery datetime
        session: Optional database session

    Returns:
        Dict[str, Any]: Created order including its items

    Raises:
        ValidationError: If supplier is blank, there are no items, or an
            item's quantity or cost is invalid
        MaterialNotFound: If an item references an unknown material
        ProductNotFound: If an item references an unknown product
    """
    if session is not None:
        return _create_purchase_order_impl(
            supplier, items, notes, order_date, expected_delivery_date, session
        )
    with session_scope() as session:
        return _create_purchase_order_impl(
            supplier, items, notes, order_date, expected_delivery_date, session
        )


def _create_purchase_order_impl(
    supplier, items, notes, order_date, expected_delivery_date, session: Session
) -> Dict[str, Any]:
    errors = []
    if not supplier or not supplier.strip():
        errors.append("Supplier is required")
    if not items:
        errors.append("A purchase order needs at least one item")
    if errors:
        raise ValidationError(errors)

    order_items = [_build_item(item, session) for item in items]
    order = PurchaseOrder(
        po_number=_next_po_number(session),
        supplier=supplier.strip(),
        status=PURCHASE_ORDER_STATUS_DRAFT,
        total_amount=sum((item.total_cost for item in order_items), ZERO),
        order_date=order_date,
        expected_delivery_date=expected_delivery_date,
        notes=notes,
        items=order_items,
    )
    session.add(order)
    session.flush()

    log_operation(
        logger,
        "create_purchase_order",
        "success",
        purchase_order_id=order.id,
        po_number=order.po_number,
        supplier=order.supplier,
        items=len(order_items),
    )
    return order.to_dict()


def get_purchase_order(purchase_order_id: int, session: Optional[Session] = None) -> Optional[Dict[str, Any]]:
    """Purchase order with items, or None if not found."""
    if session is not None:
        return _get_purchase_order_impl(purchase_order_id, session)
    with session_scope() as session:
        return _get_purchase_order_impl(purchase_order_id, session)


def _get_purchase_order_impl(purchase_order_id: int, session: Session) -> Optional[Dict[str, Any]]:
    order = session.get(PurchaseOrder, purchase_order_id)
    return order.to_dict() if order else None


def get_purchase_order_by_number(po_number: str, session: Optional[Session] = None) -> Optional[Dict[str, Any]]:
    """Purchase order by its PO number, or None if not found."""
    if session is not None:
        return _get_purchase_order_by_number_impl(po_number, session)
    with session_scope() as session:
        return _get_purchase_order_by_number_impl(po_number, session)


def _get_purchase_order_by_number_impl(po_number: str, session: Session) -> Optional[Dict[str, Any]]:
    order = session.query(PurchaseOrder).filter(PurchaseOrder.po_number == po_number).first()
    return order.to_dict() if order else None


def list_purchase_orders(
    status: Optional[str] = None, session: Optional[Session] = None
) -> List[Dict[str, Any]]:
    """Purchase orders, newest first, optionally of one status."""
    if session is not None:
        return _list_purchase_orders_impl(status, session)
    with session_scope() as session:
        return _list_purchase_orders_impl(status, session)


def _list_purchase_orders_impl(status: Optional[str], session: Session) -> List[Dict[str, Any]]:
    query = session.query(PurchaseOrder)
    if status is not None:
        query = query.filter(PurchaseOrder.status == status)
    orders = query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).all()
    return [order.to_dict() for order in orders]


def update_purchase_order(
    purchase_order_id: int, updates: Dict[str, Any], session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Update supplier, status, notes or dates of an order not yet received.

    Status can move to 'ordered' or 'cancelled' here; receiving goes through
    receive_purchase_order() so stock is always updated with it.

    Raises:
        PurchaseOrderNotFound: If the order doesn't exist
        ValidationError: If the order is already received, or a field is invalid
    """
    if session is not None:
        return _update_purchase_order_impl(purchase_order_id, updates, session)
    with session_scope() as session:
        return _update_purchase_order_impl(purchase_order_id, updates, session)


def _update_purchase_order_impl(purchase_order_id: int, updates: Dict[str, Any], session: Session) -> Dict[str, Any]:
    order = _get_order_or_raise(purchase_order_id, session)

    errors = []
    if order.status == PURCHASE_ORDER_STATUS_RECEIVED:
        errors.append(f"Purchase order {order.po_number} is already received")
    unknown = sorted(set(updates) - set(UPDATABLE_FIELDS))
    if unknown:
        errors.append(f"Cannot update field(s): {', '.join(unknown)}")
    status = updates.get("status")
    if status is not None:
        if status not in PURCHASE_ORDER_STATUSES:
            errors.append(f"Status must be one of: {', '.join(PURCHASE_ORDER_STATUSES)}")
        elif status == PURCHASE_ORDER_STATUS_RECEIVED:
            errors.append("Use receive_purchase_order() to receive an order")
    if "supplier" in updates and not (updates["supplier"] or "").strip():
        errors.append("Supplier is required")
    if errors:
        raise ValidationError(errors)

    order.update_from_dict(updates, UPDATABLE_FIELDS)
    session.flush()

    log_operation(
        logger,
        "update_purchase_order",
        "success",
        purchase_order_id=order.id,
        fields=sorted(updates),
    )
    return order.to_dict()


def delete_purchase_order(purchase_order_id: int, session: Optional[Session] = None) -> None:
    """
    Delete a draft purchase order and its items.

    Raises:
        PurchaseOrderNotFound: If the order doesn't exist
        ValidationError: If the order is not a draft
    """
    if session is not None:
        return _delete_purchase_order_impl(purchase_order_id, session)
    with session_scope() as session:
        return _delete_purchase_order_impl(purchase_order_id, session)


def _delete_purchase_order_impl(purchase_order_id: int, session: Session) -> None:
    order = _get_order_or_raise(purchase_order_id, session)
    if order.status != PURCHASE_ORDER_STATUS_DRAFT:
        raise ValidationError("Only draft purchase orders can be deleted")

    po_number = order.po_number
    session.delete(order)
    session.flush()
    log_operation(logger, "delete_purchase_order", "success", po_number=po_number)


# =============================================================================
# Receipt
# =============================================================================


def receive_purchase_order(purchase_order_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Mark an order received and add every item's quantity to stock.

    All stock movements happen in the caller's unit of work: if any item
    fails, nothing is received.

    Args:
        purchase_order_id: Purchase order ID
        session: Optional database session

    Returns:
        Updated order dict

    Raises:
        PurchaseOrderNotFound: If the order doesn't exist
        ValidationError: If the order is already received or cancelled
        MaterialNotFound: If an item's material no longer exists
        ProductNotFound: If an item's product no longer exists
    """
    if session is not None:
        return _receive_purchase_order_impl(purchase_order_id, session)
    with session_scope() as session:
        return _receive_purchase_order_impl(purchase_order_id, session)


def _receive_purchase_order_impl(purchase_order_id: int, session: Session) -> Dict[str, Any]:
    order = _get_order_or_raise(purchase_order_id, session)
    if order.status not in RECEIVABLE_STATUSES:
        raise ValidationError(
            f"Purchase order {order.po_number} cannot be received from status '{order.status}'"
        )

    for item in order.items:
        if item.item_type == ITEM_TYPE_MATERIAL:
            _add_material_stock_impl(item.material_id, item.quantity, session)
        else:
            _add_product_stock_impl(item.product_id, item.quantity, session)
        item.received_quantity = item.quantity

    order.status = PURCHASE_ORDER_STATUS_RECEIVED
    order.received_date = utc_now()
    session.flush()

    log_operation(
        logger,
        "receive_purchase_order",
        "success",
        purchase_order_id=order.id,
        po_number=order.po_number,
        items=len(order.items),
    )
    return order.to_dict()


def get_suppliers(session: Optional[Session] = None) -> List[str]:
    """Distinct supplier names recorded on materials, alphabetical."""
    if session is not None:
        return _get_suppliers_impl(session)
    with session_scope() as session:
        return _get_suppliers_impl(session)


def _get_suppliers_impl(session: Session) -> List[str]:
    rows = (
        session.query(Material.supplier)
        .filter(Material.supplier.isnot(None))
        .distinct()
        .order_by(Material.supplier)
        .all()
    )
    return [row[0] for row in rows]
