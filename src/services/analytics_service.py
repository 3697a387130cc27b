"""Analytics Service - read-only rollups over recorded consumption.

Every figure here is derived from InventoryConsumption rows written by the
consumption service; nothing is recomputed from the current catalog, so
reports reflect the costs that applied at the time of each sale.

A "sale" is one call of record_sale(): the rows sharing order id, order
item id, sold (root) product and timestamp. Margin figures use the unit
sale price kept on a sale's depth 0 rows; sales recorded without one are
left out of them.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from itertools import combinations
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..models import InventoryConsumption
from ..utils.constants import ITEM_TYPE_MATERIAL, ZERO
from ..utils.datetime_utils import utc_now
from .database import session_scope
from .dto_utils import margin_percent, to_decimal
from .exceptions import ValidationError

PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
}


def _query_rows(
    session: Session,
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    root_product_id: Optional[int] = None,
) -> List[InventoryConsumption]:
    query = session.query(InventoryConsumption)
    if root_product_id is not None:
        query = query.filter(InventoryConsumption.root_product_id == root_product_id)
    if start_date is not None:
        query = query.filter(InventoryConsumption.consumed_at >= start_date)
    if end_date is not None:
        query = query.filter(InventoryConsumption.consumed_at <= end_date)
    return query.order_by(InventoryConsumption.id).all()


def _group_sales(rows: List[InventoryConsumption]) -> Dict[Tuple, Dict[str, Any]]:
    """Group rows into sales keyed by (order, order item, root product, time)."""
    sales: Dict[Tuple, Dict[str, Any]] = {}
    for row in rows:
        key = (row.order_id, row.order_item_id, row.root_product_id, row.consumed_at)
        sale = sales.get(key)
        if sale is None:
            sale = {
                "order_id": row.order_id,
                "product_id": row.root_product_id,
                "product_name": None,
                "units_sold": ZERO,
                "total_cost": ZERO,
                "unit_sale_price": None,
                "consumed_at": row.consumed_at,
            }
            sales[key] = sale
        if row.depth == 0 and sale["product_name"] is None:
            sale["product_name"] = row.product_name
            sale["units_sold"] = to_decimal(row.quantity_sold)
        if row.depth == 0 and row.unit_sale_price is not None:
            sale["unit_sale_price"] = to_decimal(row.unit_sale_price)
        sale["total_cost"] += to_decimal(row.total_cost)
    return sales


def get_consumption_summary(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Totals for a period.

    Returns:
        Dict with order_count, sale_count, total_cost, products (per sold
        product: units_sold, total_cost) and materials (per material:
        quantity, unit, total_cost), each list sorted by total cost
        descending
    """
    if session is not None:
        return _get_consumption_summary_impl(start_date, end_date, session)
    with session_scope() as session:
        return _get_consumption_summary_impl(start_date, end_date, session)


def _get_consumption_summary_impl(start_date, end_date, session: Session) -> Dict[str, Any]:
    rows = _query_rows(session, start_date, end_date)
    sales = _group_sales(rows)

    products: Dict[int, Dict[str, Any]] = {}
    for sale in sales.values():
        entry = products.setdefault(
            sale["product_id"],
            {
                "product_id": sale["product_id"],
                "product_name": sale["product_name"],
                "units_sold": ZERO,
                "total_cost": ZERO,
            },
        )
        entry["units_sold"] += sale["units_sold"]
        entry["total_cost"] += sale["total_cost"]

    materials: Dict[int, Dict[str, Any]] = {}
    for row in rows:
        if row.item_type != ITEM_TYPE_MATERIAL:
            continue
        entry = materials.setdefault(
            row.material_id,
            {
                "material_id": row.material_id,
                "material_name": row.material_name,
                "unit": row.unit,
                "quantity": ZERO,
                "total_cost": ZERO,
            },
        )
        entry["quantity"] += to_decimal(row.quantity_consumed)
        entry["total_cost"] += to_decimal(row.total_cost)

    return {
        "order_count": len({row.order_id for row in rows}),
        "sale_count": len(sales),
        "total_cost": sum((to_decimal(row.total_cost) for row in rows), ZERO),
        "products": sorted(products.values(), key=lambda p: p["total_cost"], reverse=True),
        "materials": sorted(materials.values(), key=lambda m: m["total_cost"], reverse=True),
    }


def get_product_cogs_trend(
    product_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """
    Daily recorded COGS per unit for a sold product.

    Returns:
        One dict per day (oldest first) with date (ISO string), units_sold,
        total_cost and avg_cogs_per_unit
    """
    if session is not None:
        return _get_product_cogs_trend_impl(product_id, start_date, end_date, session)
    with session_scope() as session:
        return _get_product_cogs_trend_impl(product_id, start_date, end_date, session)


def _get_product_cogs_trend_impl(product_id, start_date, end_date, session: Session) -> List[Dict[str, Any]]:
    rows = _query_rows(session, start_date, end_date, root_product_id=product_id)

    days: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: {"units_sold": ZERO, "total_cost": ZERO})
    for sale in _group_sales(rows).values():
        day = days[sale["consumed_at"].date().isoformat()]
        day["units_sold"] += sale["units_sold"]
        day["total_cost"] += sale["total_cost"]

    trend = []
    for date_key in sorted(days):
        units = days[date_key]["units_sold"]
        total = days[date_key]["total_cost"]
        trend.append(
            {
                "date": date_key,
                "units_sold": units,
                "total_cost": total,
                "avg_cogs_per_unit": total / units if units else ZERO,
            }
        )
    return trend


def find_frequent_pairs(
    min_occurrences: int = 5,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """
    Pairs of products sold together in the same order.

    Args:
        min_occurrences: Minimum number of orders containing both products

    Returns:
        Dicts with product1_id, product1_name, product2_id, product2_name and
        times_bought_together, most frequent first (product1_id < product2_id)
    """
    if session is not None:
        return _find_frequent_pairs_impl(min_occurrences, start_date, end_date, session)
    with session_scope() as session:
        return _find_frequent_pairs_impl(min_occurrences, start_date, end_date, session)


def _find_frequent_pairs_impl(min_occurrences, start_date, end_date, session: Session) -> List[Dict[str, Any]]:
    rows = _query_rows(session, start_date, end_date)

    orders: Dict[str, Dict[int, str]] = defaultdict(dict)
    for sale in _group_sales(rows).values():
        orders[sale["order_id"]].setdefault(sale["product_id"], sale["product_name"])

    counts: Dict[Tuple[int, int], int] = defaultdict(int)
    names: Dict[int, str] = {}
    for products in orders.values():
        names.update(products)
        for first, second in combinations(sorted(products), 2):
            counts[(first, second)] += 1

    pairs = [
        {
            "product1_id": first,
            "product1_name": names[first],
            "product2_id": second,
            "product2_name": names[second],
            "times_bought_together": count,
        }
        for (first, second), count in counts.items()
        if count >= min_occurrences
    ]
    pairs.sort(key=lambda p: (-p["times_bought_together"], p["product1_id"], p["product2_id"]))
    return pairs


def _priced_sales(rows: List[InventoryConsumption]) -> List[Dict[str, Any]]:
    """Sales that carry a sale price, with revenue and profit filled in."""
    priced = []
    for sale in _group_sales(rows).values():
        if sale["unit_sale_price"] is None:
            continue
        sale["revenue"] = sale["unit_sale_price"] * sale["units_sold"]
        sale["profit"] = sale["revenue"] - sale["total_cost"]
        priced.append(sale)
    return priced


def _rollup(sales: List[Dict[str, Any]]) -> Dict[str, Any]:
    units = sum((s["units_sold"] for s in sales), ZERO)
    revenue = sum((s["revenue"] for s in sales), ZERO)
    total_cost = sum((s["total_cost"] for s in sales), ZERO)
    return {
        "units_sold": units,
        "revenue": revenue,
        "total_cost": total_cost,
        "profit": revenue - total_cost,
        "margin": margin_percent(revenue, total_cost),
        "avg_unit_price": revenue / units if units else ZERO,
        "avg_cogs_per_unit": total_cost / units if units else ZERO,
    }


def get_profitability_trend(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    group_by: str = "week",
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """
    Revenue, cost and margin per sold product and period.

    Args:
        start_date: Earliest sale included
        end_date: Latest sale included
        group_by: 'day', 'week' or 'month'
        session: Optional database session

    Returns:
        Dicts with product_id, product_name, period, units_sold, revenue,
        total_cost, profit, margin (percent of revenue), avg_unit_price and
        avg_cogs_per_unit; newest period first, then by revenue descending

    Raises:
        ValidationError: If group_by is not a known period
    """
    if group_by not in PERIOD_FORMATS:
        raise ValidationError([f"group_by must be one of {', '.join(PERIOD_FORMATS)}"])
    if session is not None:
        return _get_profitability_trend_impl(start_date, end_date, group_by, session)
    with session_scope() as session:
        return _get_profitability_trend_impl(start_date, end_date, group_by, session)


def _get_profitability_trend_impl(start_date, end_date, group_by: str, session: Session) -> List[Dict[str, Any]]:
    period_format = PERIOD_FORMATS[group_by]

    buckets: Dict[Tuple[int, str], List[Dict[str, Any]]] = defaultdict(list)
    names: Dict[int, str] = {}
    for sale in _priced_sales(_query_rows(session, start_date, end_date)):
        period = sale["consumed_at"].strftime(period_format)
        buckets[(sale["product_id"], period)].append(sale)
        names.setdefault(sale["product_id"], sale["product_name"])

    trend = []
    for (product_id, period), sales in buckets.items():
        entry = {"product_id": product_id, "product_name": names[product_id], "period": period}
        entry.update(_rollup(sales))
        trend.append(entry)

    trend.sort(key=lambda t: t["revenue"], reverse=True)
    trend.sort(key=lambda t: t["period"], reverse=True)
    return trend


def get_products_with_declining_margins(
    days_to_compare: int = 30,
    as_of: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """
    Products whose margin in the last period fell below the period before.

    The recent period is the days_to_compare days up to as_of (default
    now); the previous period is the same length immediately before it.
    Products with no sales in the previous period are not reported.

    Returns:
        Dicts with product_id, product_name, recent_margin, previous_margin,
        margin_change, recent_cogs, previous_cogs and cogs_change (cogs are
        average recorded cost per unit sold), largest drop first
    """
    if session is not None:
        return _get_products_with_declining_margins_impl(days_to_compare, as_of, session)
    with session_scope() as session:
        return _get_products_with_declining_margins_impl(days_to_compare, as_of, session)


def _get_products_with_declining_margins_impl(
    days_to_compare: int, as_of: Optional[datetime], session: Session
) -> List[Dict[str, Any]]:
    as_of = as_of or utc_now()
    recent_start = as_of - timedelta(days=days_to_compare)
    previous_start = recent_start - timedelta(days=days_to_compare)

    windows = {
        "recent": _query_rows(session, recent_start, as_of),
        "previous": _query_rows(session, previous_start, recent_start - timedelta(microseconds=1)),
    }

    by_product: Dict[str, Dict[int, List[Dict[str, Any]]]] = {}
    names: Dict[int, str] = {}
    for window, rows in windows.items():
        by_product[window] = defaultdict(list)
        for sale in _priced_sales(rows):
            by_product[window][sale["product_id"]].append(sale)
            names.setdefault(sale["product_id"], sale["product_name"])

    declining = []
    for product_id, recent_sales in by_product["recent"].items():
        previous_sales = by_product["previous"].get(product_id)
        if not previous_sales:
            continue
        recent = _rollup(recent_sales)
        previous = _rollup(previous_sales)
        if recent["margin"] >= previous["margin"]:
            continue
        declining.append(
            {
                "product_id": product_id,
                "product_name": names[product_id],
                "recent_margin": recent["margin"],
                "previous_margin": previous["margin"],
                "margin_change": recent["margin"] - previous["margin"],
                "recent_cogs": recent["avg_cogs_per_unit"],
                "previous_cogs": previous["avg_cogs_per_unit"],
                "cogs_change": recent["avg_cogs_per_unit"] - previous["avg_cogs_per_unit"],
            }
        )

    declining.sort(key=lambda d: d["margin_change"])
    return declining
