"""Consumption Service - sale-time stock deduction and COGS audit trail.

This module records what each completed sale actually used up. It walks the
same product graph as the expansion service, with the same selection filter
(bundle_selection.should_include) and the same depth and cycle guards, and
for every contributing line writes an immutable InventoryConsumption row:

- 'base':     the product's own supplier cost (bought-in items)
- 'material': a material line; the material's stock is deducted
- 'product':  a linked product, cost forced to zero for visibility only;
              its real cost follows from the recursive rows beneath it

The customer's selection applies to the sold product's own lines only;
linked products are recorded with an empty selection.

A sale is never blocked by a catalog gap: an unknown product is logged as a
warning and produces no rows. Callers should run record_order() (or their
own session_scope()) so one order's rows and stock deductions are applied
together or not at all.

All functions accept optional session parameter; when omitted they open their
own session_scope().
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy.orm import Session

from ..models import InventoryConsumption, Product
from ..utils.constants import (
    DEFAULT_ITEM_UNIT,
    ITEM_TYPE_BASE,
    ITEM_TYPE_MATERIAL,
    ITEM_TYPE_PRODUCT,
    ZERO,
)
from ..utils.datetime_utils import utc_now
from .bundle_selection import BundleSelection, should_include
from .database import session_scope
from .dto_utils import to_decimal
from .expansion_service import (
    enter_branch,
    extend_chain,
    fetch_recipe_lines,
    material_line_cost,
    price_of,
)
from .logging_utils import get_service_logger, log_operation
from .material_service import apply_stock_deduction
from .product_service import find_by_external_id

logger = get_service_logger(__name__)


class _SaleContext:
    """Values shared by every row of one recorded sale."""

    def __init__(
        self,
        order_id: str,
        order_item_id: Optional[str],
        root_product_id: int,
        consumed_at: datetime,
        unit_sale_price: Decimal,
    ):
        self.order_id = order_id
        self.order_item_id = order_item_id
        self.root_product_id = root_product_id
        self.consumed_at = consumed_at
        self.unit_sale_price = unit_sale_price

    def row(self, product: Product, product_name: str, quantity_sold: Decimal, **fields) -> InventoryConsumption:
        return InventoryConsumption(
            order_id=self.order_id,
            order_item_id=self.order_item_id,
            root_product_id=self.root_product_id,
            product_id=product.id,
            product_name=product_name,
            product_sku=product.sku,
            quantity_sold=quantity_sold,
            consumed_at=self.consumed_at,
            unit_sale_price=self.unit_sale_price if fields.get("depth") == 0 else None,
            **fields,
        )


def _record_product_impl(
    session: Session,
    ctx: _SaleContext,
    product: Product,
    product_name: str,
    quantity_sold: Decimal,
    selection: BundleSelection,
    depth: int,
    path: FrozenSet[int],
    parent_chain: str,
) -> List[InventoryConsumption]:
    """Write the rows for one product of a sale and recurse into linked products."""
    path = enter_branch(product.id, depth, path, "record_sale")
    if path is None:
        return []

    chain = extend_chain(parent_chain, product_name)
    records: List[InventoryConsumption] = []

    supplier_cost = to_decimal(product.supplier_cost)
    if supplier_cost > ZERO:
        records.append(
            ctx.row(
                product,
                product_name,
                quantity_sold,
                item_type=ITEM_TYPE_BASE,
                material_name=f"{product_name} (Base Supplier Cost)",
                quantity_consumed=quantity_sold,
                unit=DEFAULT_ITEM_UNIT,
                cost_per_unit=supplier_cost,
                total_cost=supplier_cost * quantity_sold,
                depth=depth,
                product_chain=chain,
            )
        )

    lines = fetch_recipe_lines(session, product.id)
    if not lines:
        if supplier_cost == ZERO:
            if depth == 0:
                logger.warning(
                    f"No recipe and no supplier cost for '{product_name}' "
                    f"(product {product.id}); no COGS tracked"
                )
            else:
                logger.warning(f"Linked product '{product_name}' (product {product.id}) has no recipe")
        return records

    for line in lines:
        if not should_include(line, selection, depth, product.id):
            continue

        quantity_consumed = to_decimal(line.quantity) * quantity_sold

        if line.item_type == ITEM_TYPE_MATERIAL:
            material = line.material
            if material is None:
                logger.warning(
                    f"Material {line.material_id} of product {product.id} not found; "
                    f"line {line.id} not recorded"
                )
                continue
            cost_per_unit = material.cost_per_unit
            records.append(
                ctx.row(
                    product,
                    product_name,
                    quantity_sold,
                    item_type=ITEM_TYPE_MATERIAL,
                    material_id=material.id,
                    material_name=material.name,
                    recipe_line_id=line.id,
                    quantity_consumed=quantity_consumed,
                    unit=line.unit,
                    cost_per_unit=cost_per_unit,
                    total_cost=material_line_cost(material, quantity_consumed),
                    depth=depth,
                    product_chain=chain,
                )
            )
            apply_stock_deduction(material, quantity_consumed)

        elif line.item_type == ITEM_TYPE_PRODUCT:
            linked = line.linked_product
            if linked is None:
                logger.warning(
                    f"Linked product {line.linked_product_id} of product {product.id} "
                    f"not found; line {line.id} not recorded"
                )
                continue
            # Visibility only; real cost comes from the linked product's own rows
            records.append(
                ctx.row(
                    product,
                    product_name,
                    quantity_sold,
                    item_type=ITEM_TYPE_PRODUCT,
                    linked_product_id=linked.id,
                    linked_product_name=linked.name,
                    recipe_line_id=line.id,
                    quantity_consumed=quantity_consumed,
                    unit=DEFAULT_ITEM_UNIT,
                    cost_per_unit=ZERO,
                    total_cost=ZERO,
                    depth=depth,
                    product_chain=chain,
                )
            )
            records.extend(
                _record_product_impl(
                    session,
                    ctx,
                    linked,
                    linked.name,
                    quantity_consumed,
                    BundleSelection.empty(),
                    depth + 1,
                    path,
                    chain,
                )
            )

    return records


def _record_sale_impl(
    order_id: str,
    external_product_id,
    product_name: str,
    quantity_sold,
    order_item_id: Optional[str],
    selection: Optional[BundleSelection],
    unit_price,
    session: Session,
) -> List[InventoryConsumption]:
    product = find_by_external_id(session, external_product_id)
    if product is None:
        log_operation(
            logger,
            "record_sale",
            "product_not_found",
            level=logging.WARNING,
            order_id=str(order_id),
            external_product_id=external_product_id,
            product_name=product_name,
        )
        return []

    quantity_sold = to_decimal(quantity_sold)
    selection = selection if selection is not None else BundleSelection.empty()
    if unit_price is None:
        unit_price = price_of(product.id, selection, session=session)
    ctx = _SaleContext(
        order_id=str(order_id),
        order_item_id=None if order_item_id is None else str(order_item_id),
        root_product_id=product.id,
        consumed_at=utc_now(),
        unit_sale_price=to_decimal(unit_price),
    )
    records = _record_product_impl(
        session,
        ctx,
        product,
        product_name or product.name,
        quantity_sold,
        selection,
        0,
        frozenset(),
        "",
    )
    session.add_all(records)
    session.flush()

    log_operation(
        logger,
        "record_sale",
        "success",
        order_id=ctx.order_id,
        product_id=product.id,
        quantity_sold=str(quantity_sold),
        records=len(records),
        total_cost=str(sum((to_decimal(r.total_cost) for r in records), ZERO)),
    )
    return records


def record_sale(
    order_id: str,
    external_product_id,
    product_name: str,
    quantity_sold,
    order_item_id: Optional[str] = None,
    selection: Optional[BundleSelection] = None,
    unit_price=None,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """
    Record the consumption of one sold order line.

    Args:
        order_id: External order id
        external_product_id: External (WooCommerce) id of the sold product
        product_name: Name as it appeared on the order
        quantity_sold: Units sold
        order_item_id: External order line id
        selection: The customer's choices for the sold product
        unit_price: Price charged per unit; defaults to price_of() under
            the selection. Kept on the depth 0 rows for margin reporting.
        session: Optional database session

    Returns:
        The written consumption rows as dicts, in traversal order. Empty if
        the product isn't in the local catalog yet.
    """
    if session is not None:
        records = _record_sale_impl(
            order_id,
            external_product_id,
            product_name,
            quantity_sold,
            order_item_id,
            selection,
            unit_price,
            session,
        )
        return [record.to_dict() for record in records]
    with session_scope() as session:
        records = _record_sale_impl(
            order_id,
            external_product_id,
            product_name,
            quantity_sold,
            order_item_id,
            selection,
            unit_price,
            session,
        )
        return [record.to_dict() for record in records]


def record_order(
    order_id: str, items: List[Dict[str, Any]], session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Record every line of one order in a single unit of work.

    Args:
        order_id: External order id
        items: Order lines with external_product_id, product_name, quantity,
            and optionally order_item_id, unit_price and selection (a
            BundleSelection or its boundary dict)
        session: Optional database session

    Returns:
        Dict with order_id, records (row dicts), total_cost,
        missing_products (lines whose product isn't in the catalog) and
        unrecorded_items (lines whose product has a recipe but produced no
        rows, which an operator should look at)
    """
    if session is not None:
        return _record_order_impl(order_id, items, session)
    with session_scope() as session:
        return _record_order_impl(order_id, items, session)


def _record_order_impl(order_id: str, items: List[Dict[str, Any]], session: Session) -> Dict[str, Any]:
    all_records: List[InventoryConsumption] = []
    missing_products = []
    unrecorded_items = []

    for item in items:
        selection = item.get("selection")
        if selection is not None and not isinstance(selection, BundleSelection):
            selection = BundleSelection.from_dict(selection)

        records = _record_sale_impl(
            order_id,
            item.get("external_product_id"),
            item.get("product_name", ""),
            item.get("quantity", 1),
            item.get("order_item_id"),
            selection,
            item.get("unit_price"),
            session,
        )
        all_records.extend(records)
        if records:
            continue

        product = find_by_external_id(session, item.get("external_product_id"))
        if product is None:
            missing_products.append(item)
        elif fetch_recipe_lines(session, product.id):
            unrecorded_items.append(item)

    if unrecorded_items:
        log_operation(
            logger,
            "record_order",
            "recipe_produced_no_consumption",
            level=logging.WARNING,
            order_id=str(order_id),
            items=len(unrecorded_items),
        )

    return {
        "order_id": str(order_id),
        "records": [record.to_dict() for record in all_records],
        "total_cost": sum((to_decimal(r.total_cost) for r in all_records), ZERO),
        "missing_products": missing_products,
        "unrecorded_items": unrecorded_items,
    }


# =============================================================================
# Queries
# =============================================================================


def _date_filtered(query, start_date: Optional[datetime], end_date: Optional[datetime]):
    if start_date is not None:
        query = query.filter(InventoryConsumption.consumed_at >= start_date)
    if end_date is not None:
        query = query.filter(InventoryConsumption.consumed_at <= end_date)
    return query


def get_order_consumptions(order_id: str, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """All consumption rows of an order, in the order they were written."""
    if session is not None:
        return _get_order_consumptions_impl(order_id, session)
    with session_scope() as session:
        return _get_order_consumptions_impl(order_id, session)


def _get_order_consumptions_impl(order_id: str, session: Session) -> List[Dict[str, Any]]:
    rows = (
        session.query(InventoryConsumption)
        .filter(InventoryConsumption.order_id == str(order_id))
        .order_by(InventoryConsumption.id)
        .all()
    )
    return [row.to_dict() for row in rows]


def get_product_consumptions(
    product_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """Rows written for sales of a product (as the sold item), newest first."""
    if session is not None:
        return _get_product_consumptions_impl(product_id, start_date, end_date, session)
    with session_scope() as session:
        return _get_product_consumptions_impl(product_id, start_date, end_date, session)


def _get_product_consumptions_impl(product_id, start_date, end_date, session: Session) -> List[Dict[str, Any]]:
    query = session.query(InventoryConsumption).filter(
        InventoryConsumption.root_product_id == product_id
    )
    query = _date_filtered(query, start_date, end_date)
    rows = query.order_by(InventoryConsumption.consumed_at.desc(), InventoryConsumption.id).all()
    return [row.to_dict() for row in rows]


def get_material_consumptions(
    material_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """Rows that consumed a material, newest first."""
    if session is not None:
        return _get_material_consumptions_impl(material_id, start_date, end_date, session)
    with session_scope() as session:
        return _get_material_consumptions_impl(material_id, start_date, end_date, session)


def _get_material_consumptions_impl(material_id, start_date, end_date, session: Session) -> List[Dict[str, Any]]:
    query = session.query(InventoryConsumption).filter(
        InventoryConsumption.material_id == material_id
    )
    query = _date_filtered(query, start_date, end_date)
    rows = query.order_by(InventoryConsumption.consumed_at.desc(), InventoryConsumption.id).all()
    return [row.to_dict() for row in rows]


def get_order_cogs(order_id: str, session: Optional[Session] = None) -> Decimal:
    """Total recorded cost of goods sold for an order."""
    if session is not None:
        return _get_order_cogs_impl(order_id, session)
    with session_scope() as session:
        return _get_order_cogs_impl(order_id, session)


def _get_order_cogs_impl(order_id: str, session: Session) -> Decimal:
    rows = (
        session.query(InventoryConsumption.total_cost)
        .filter(InventoryConsumption.order_id == str(order_id))
        .all()
    )
    return sum((to_decimal(total) for (total,) in rows), ZERO)
