"""Recipe Service - recipe lines and cached cost maintenance.

This module owns the edges of the product graph: each recipe line ties an
owning product to a material or to another (linked) product.

Key Features:
- Write-time validation: the line's item type must agree with its
  reference, quantities are positive, a line cannot be both optional and in
  a selection group, referenced records must exist, and a product can never
  (directly or indirectly) contain itself
- Cached costs: calculated_cost on every line and unit_cost on every
  product are refreshed synchronously when a recipe changes or a material
  price changes, walking up through every product that links to a recosted
  product

Cost rules:
    material line:  calculated_cost = quantity x material.cost_per_unit
    product line:   calculated_cost = quantity x linked_product.unit_cost
    product:        unit_cost = sum of calculated_cost of non-optional lines

All functions accept optional session parameter; when omitted they open their
own session_scope().
"""

from collections import deque
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Material, Product, RecipeLine
from ..utils.constants import (
    DEFAULT_ITEM_UNIT,
    ITEM_TYPE_MATERIAL,
    ITEM_TYPE_PRODUCT,
    RECIPE_ITEM_TYPES,
    ZERO,
)
from .database import session_scope
from .dto_utils import to_decimal
from .expansion_service import material_line_cost
from .exceptions import (
    CircularReferenceError,
    DatabaseError,
    MaterialNotFound,
    ProductNotFound,
    RecipeLineNotFound,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

UPDATABLE_FIELDS = ("quantity", "unit", "is_optional", "selection_group", "price_adjustment", "sort_order")


# =============================================================================
# Helpers
# =============================================================================


def _get_product_or_raise(product_id: int, session: Session) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def _get_line_or_raise(line_id: int, session: Session) -> RecipeLine:
    line = session.get(RecipeLine, line_id)
    if line is None:
        raise RecipeLineNotFound(line_id)
    return line


def _ordered_lines(session: Session, product_id: int) -> List[RecipeLine]:
    return (
        session.query(RecipeLine)
        .filter(RecipeLine.product_id == product_id)
        .order_by(RecipeLine.sort_order, RecipeLine.id)
        .all()
    )


def would_create_cycle(session: Session, product_id: int, linked_product_id: int) -> bool:
    """
    Check if linking linked_product_id into product_id would create a cycle.

    Breadth-first walk down from the linked product; reaching the owning
    product means the owner would contain itself.
    """
    if product_id == linked_product_id:
        return True

    try:
        visited: Set[int] = set()
        queue = deque([linked_product_id])
        while queue:
            current_id = queue.popleft()
            if current_id in visited:
                continue
            if current_id == product_id:
                return True
            visited.add(current_id)

            children = (
                session.query(RecipeLine.linked_product_id)
                .filter(RecipeLine.product_id == current_id)
                .filter(RecipeLine.linked_product_id.isnot(None))
                .all()
            )
            queue.extend(child_id for (child_id,) in children)
        return False
    except SQLAlchemyError as e:
        logger.error(f"Database error validating circular references: {e}")
        raise DatabaseError(f"Failed to validate circular references: {e}", e)


def _validate_line(
    session: Session,
    product_id: int,
    item_type: str,
    material_id: Optional[int],
    linked_product_id: Optional[int],
    quantity: Decimal,
    is_optional: bool,
    selection_group: Optional[str],
    price_adjustment: Optional[Decimal],
    check_references: bool = True,
) -> None:
    errors = []
    if item_type not in RECIPE_ITEM_TYPES:
        errors.append(f"Item type must be one of: {', '.join(RECIPE_ITEM_TYPES)}")
    elif item_type == ITEM_TYPE_MATERIAL:
        if material_id is None:
            errors.append("Material lines require a material_id")
        if linked_product_id is not None:
            errors.append("Material lines cannot reference a linked product")
        if selection_group:
            errors.append("Selection groups are only allowed on linked product lines")
        if price_adjustment is not None:
            errors.append("Price adjustments are only allowed on linked product lines")
    else:
        if linked_product_id is None:
            errors.append("Product lines require a linked_product_id")
        if material_id is not None:
            errors.append("Product lines cannot reference a material")
    if quantity <= ZERO:
        errors.append("Quantity must be greater than zero")
    if is_optional and selection_group:
        errors.append("A line cannot be both optional and part of a selection group")
    if errors:
        raise ValidationError(errors)

    if not check_references:
        return

    if item_type == ITEM_TYPE_MATERIAL:
        if session.get(Material, material_id) is None:
            raise MaterialNotFound(material_id)
    else:
        if session.get(Product, linked_product_id) is None:
            raise ProductNotFound(linked_product_id)
        if would_create_cycle(session, product_id, linked_product_id):
            raise CircularReferenceError(product_id, linked_product_id)


def _refresh_line_cost(line: RecipeLine) -> Decimal:
    """Recompute a line's calculated_cost from its referenced record."""
    quantity = to_decimal(line.quantity)
    if line.item_type == ITEM_TYPE_MATERIAL and line.material is not None:
        line.calculated_cost = material_line_cost(line.material, quantity)
    elif line.item_type == ITEM_TYPE_PRODUCT and line.linked_product is not None:
        line.calculated_cost = quantity * to_decimal(line.linked_product.unit_cost)
    else:
        line.calculated_cost = ZERO
    return line.calculated_cost


def _required_cost(lines: Iterable[RecipeLine]) -> Decimal:
    return sum(
        (to_decimal(line.calculated_cost) for line in lines if not line.is_optional), ZERO
    )


def _ancestor_ids(session: Session, product_ids: Iterable[int]) -> Set[int]:
    """Every product that (transitively) links to one of product_ids."""
    found: Set[int] = set()
    frontier = set(product_ids)
    while frontier:
        parents = {
            parent_id
            for (parent_id,) in session.query(RecipeLine.product_id)
            .filter(RecipeLine.linked_product_id.in_(frontier))
            .distinct()
            .all()
        }
        frontier = parents - found
        found |= parents
    return found


def _recost_product(
    session: Session,
    product: Product,
    affected: Set[int],
    done: Set[int],
    path: FrozenSet[int],
) -> int:
    """
    Recompute one product's lines and unit_cost, children first.

    Returns:
        Number of lines whose calculated_cost was refreshed
    """
    if product.id in done:
        return 0
    if product.id in path:
        logger.error(f"Circular recipe detected while recosting product {product.id}")
        return 0
    path = path | {product.id}

    refreshed = 0
    lines = _ordered_lines(session, product.id)
    for line in lines:
        if line.item_type == ITEM_TYPE_PRODUCT and line.linked_product_id in affected:
            child = line.linked_product
            if child is not None:
                refreshed += _recost_product(session, child, affected, done, path)
        _refresh_line_cost(line)
        refreshed += 1

    product.unit_cost = _required_cost(lines)
    done.add(product.id)
    return refreshed


def _recost_from(session: Session, product_ids: Iterable[int]) -> Dict[str, Any]:
    """Recost the given products and everything above them."""
    start = set(product_ids)
    affected = start | _ancestor_ids(session, start)
    done: Set[int] = set()
    lines_updated = 0
    for product_id in sorted(affected):
        product = session.get(Product, product_id)
        if product is not None:
            lines_updated += _recost_product(session, product, affected, done, frozenset())
    session.flush()
    return {"lines_updated": lines_updated, "products_updated": sorted(done)}


def _parse_line_input(data: Dict[str, Any]) -> Dict[str, Any]:
    adjustment = data.get("price_adjustment")
    return {
        "item_type": data.get("item_type", ITEM_TYPE_MATERIAL),
        "material_id": data.get("material_id"),
        "linked_product_id": data.get("linked_product_id"),
        "quantity": to_decimal(data.get("quantity")),
        "unit": data.get("unit"),
        "is_optional": bool(data.get("is_optional", False)),
        "selection_group": (data.get("selection_group") or "").strip() or None,
        "price_adjustment": None if adjustment in (None, "") else to_decimal(adjustment),
        "sort_order": data.get("sort_order"),
    }


def _add_line(session: Session, product: Product, data: Dict[str, Any]) -> RecipeLine:
    """Validate and insert one line without recosting."""
    fields = _parse_line_input(data)
    _validate_line(
        session,
        product.id,
        fields["item_type"],
        fields["material_id"],
        fields["linked_product_id"],
        fields["quantity"],
        fields["is_optional"],
        fields["selection_group"],
        fields["price_adjustment"],
    )

    unit = fields["unit"]
    if not unit:
        if fields["item_type"] == ITEM_TYPE_MATERIAL:
            unit = session.get(Material, fields["material_id"]).purchase_unit
        else:
            unit = DEFAULT_ITEM_UNIT

    sort_order = fields["sort_order"]
    if sort_order is None:
        current_max = (
            session.query(func.max(RecipeLine.sort_order))
            .filter(RecipeLine.product_id == product.id)
            .scalar()
        )
        sort_order = 0 if current_max is None else current_max + 1

    line = RecipeLine(
        product_id=product.id,
        item_type=fields["item_type"],
        material_id=fields["material_id"],
        linked_product_id=fields["linked_product_id"],
        quantity=fields["quantity"],
        unit=unit,
        is_optional=fields["is_optional"],
        selection_group=fields["selection_group"],
        price_adjustment=fields["price_adjustment"],
        sort_order=sort_order,
    )
    session.add(line)
    session.flush()
    _refresh_line_cost(line)
    return line


# =============================================================================
# Queries
# =============================================================================


def get_recipe_lines(product_id: int, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """
    Recipe lines of a product, ordered by sort order then creation.

    Each dict carries item_name and cost_per_unit of the referenced record.

    Raises:
        ProductNotFound: If product doesn't exist
    """
    if session is not None:
        return _get_recipe_lines_impl(product_id, session)
    with session_scope() as session:
        return _get_recipe_lines_impl(product_id, session)


def _get_recipe_lines_impl(product_id: int, session: Session) -> List[Dict[str, Any]]:
    _get_product_or_raise(product_id, session)
    return [line.to_dict() for line in _ordered_lines(session, product_id)]


def get_recipe_line(line_id: int, session: Optional[Session] = None) -> Optional[Dict[str, Any]]:
    """Get one recipe line, or None if not found."""
    if session is not None:
        return _get_recipe_line_impl(line_id, session)
    with session_scope() as session:
        return _get_recipe_line_impl(line_id, session)


def _get_recipe_line_impl(line_id: int, session: Session) -> Optional[Dict[str, Any]]:
    line = session.get(RecipeLine, line_id)
    return line.to_dict() if line else None


def get_recipe_summary(product_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Cost overview of a product's own recipe (one level, cached costs).

    Returns:
        Dict with product_id, product_name, lines, required_cost (what
        unit_cost caches), optional_cost and total_cost

    Raises:
        ProductNotFound: If product doesn't exist
    """
    if session is not None:
        return _get_recipe_summary_impl(product_id, session)
    with session_scope() as session:
        return _get_recipe_summary_impl(product_id, session)


def _get_recipe_summary_impl(product_id: int, session: Session) -> Dict[str, Any]:
    product = _get_product_or_raise(product_id, session)
    lines = _ordered_lines(session, product_id)

    required = _required_cost(lines)
    optional = sum(
        (to_decimal(line.calculated_cost) for line in lines if line.is_optional), ZERO
    )
    return {
        "product_id": product.id,
        "product_name": product.name,
        "lines": [line.to_dict() for line in lines],
        "required_cost": required,
        "optional_cost": optional,
        "total_cost": required + optional,
    }


# =============================================================================
# Writes
# =============================================================================


def add_recipe_line(
    product_id: int, data: Dict[str, Any], session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Add a recipe line to a product and recost it.

    Args:
        product_id: Owning product
        data: item_type ('material' | 'product'), material_id or
            linked_product_id, quantity, and optionally unit (defaults to the
            material's purchase unit or 'unit'), is_optional, selection_group,
            price_adjustment (product lines only), sort_order (defaults to last)
        session: Optional database session

    Returns:
        Dict[str, Any]: The created line

    Raises:
        ProductNotFound: If the owning or linked product doesn't exist
        MaterialNotFound: If the material doesn't exist
        ValidationError: If the line is malformed
        CircularReferenceError: If the link would make a product contain itself
    """
    if session is not None:
        return _add_recipe_line_impl(product_id, data, session)
    with session_scope() as session:
        return _add_recipe_line_impl(product_id, data, session)


def _add_recipe_line_impl(product_id: int, data: Dict[str, Any], session: Session) -> Dict[str, Any]:
    product = _get_product_or_raise(product_id, session)
    line = _add_line(session, product, data)
    _recost_from(session, [product.id])

    log_operation(
        logger,
        "add_recipe_line",
        "success",
        product_id=product.id,
        recipe_line_id=line.id,
        item_type=line.item_type,
    )
    return line.to_dict()


def update_recipe_line(
    line_id: int, updates: Dict[str, Any], session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Update a recipe line and recost its product.

    The line's reference (item type, material, linked product) cannot be
    changed; delete and re-add the line instead.

    Raises:
        RecipeLineNotFound: If line doesn't exist
        ValidationError: If the result is invalid or a field isn't updatable
    """
    if session is not None:
        return _update_recipe_line_impl(line_id, updates, session)
    with session_scope() as session:
        return _update_recipe_line_impl(line_id, updates, session)


def _update_recipe_line_impl(line_id: int, updates: Dict[str, Any], session: Session) -> Dict[str, Any]:
    line = _get_line_or_raise(line_id, session)

    disallowed = sorted(set(updates) - set(UPDATABLE_FIELDS))
    if disallowed:
        raise ValidationError([f"Field '{f}' cannot be updated here" for f in disallowed])

    merged = {
        "item_type": line.item_type,
        "material_id": line.material_id,
        "linked_product_id": line.linked_product_id,
        "quantity": line.quantity,
        "unit": line.unit,
        "is_optional": line.is_optional,
        "selection_group": line.selection_group,
        "price_adjustment": line.price_adjustment,
        "sort_order": line.sort_order,
    }
    merged.update(updates)
    fields = _parse_line_input(merged)
    _validate_line(
        session,
        line.product_id,
        fields["item_type"],
        fields["material_id"],
        fields["linked_product_id"],
        fields["quantity"],
        fields["is_optional"],
        fields["selection_group"],
        fields["price_adjustment"],
        check_references=False,
    )

    line.update_from_dict({key: fields[key] for key in updates}, UPDATABLE_FIELDS)
    if not line.unit:
        line.unit = DEFAULT_ITEM_UNIT

    _refresh_line_cost(line)
    session.flush()
    _recost_from(session, [line.product_id])
    return line.to_dict()


def delete_recipe_line(line_id: int, session: Optional[Session] = None) -> None:
    """
    Delete a recipe line and recost its product.

    Raises:
        RecipeLineNotFound: If line doesn't exist
    """
    if session is not None:
        return _delete_recipe_line_impl(line_id, session)
    with session_scope() as session:
        return _delete_recipe_line_impl(line_id, session)


def _delete_recipe_line_impl(line_id: int, session: Session) -> None:
    line = _get_line_or_raise(line_id, session)
    product_id = line.product_id
    session.delete(line)
    session.flush()
    session.expire_all()
    _recost_from(session, [product_id])


def set_product_recipe(
    product_id: int, lines: List[Dict[str, Any]], session: Optional[Session] = None
) -> List[Dict[str, Any]]:
    """
    Replace a product's whole recipe.

    Lines get sort orders in list order unless they carry their own. Nothing
    is changed if any line is invalid.

    Returns:
        The new lines as dicts

    Raises:
        ProductNotFound, MaterialNotFound, ValidationError,
        CircularReferenceError: As for add_recipe_line
    """
    if session is not None:
        return _set_product_recipe_impl(product_id, lines, session)
    with session_scope() as session:
        return _set_product_recipe_impl(product_id, lines, session)


def _set_product_recipe_impl(
    product_id: int, lines: List[Dict[str, Any]], session: Session
) -> List[Dict[str, Any]]:
    product = _get_product_or_raise(product_id, session)

    # Validate everything before touching the existing recipe
    for data in lines:
        fields = _parse_line_input(data)
        _validate_line(
            session,
            product.id,
            fields["item_type"],
            fields["material_id"],
            fields["linked_product_id"],
            fields["quantity"],
            fields["is_optional"],
            fields["selection_group"],
            fields["price_adjustment"],
        )

    for existing in _ordered_lines(session, product.id):
        session.delete(existing)
    session.flush()

    created = []
    for index, data in enumerate(lines):
        data = dict(data)
        if data.get("sort_order") is None:
            data["sort_order"] = index
        created.append(_add_line(session, product, data))

    session.expire_all()
    _recost_from(session, [product.id])
    log_operation(logger, "set_product_recipe", "success", product_id=product.id, line_count=len(created))
    return [line.to_dict() for line in _ordered_lines(session, product.id)]


def clear_product_recipe(product_id: int, session: Optional[Session] = None) -> int:
    """
    Remove every line of a product's recipe.

    Returns:
        Number of lines removed

    Raises:
        ProductNotFound: If product doesn't exist
    """
    if session is not None:
        return _clear_product_recipe_impl(product_id, session)
    with session_scope() as session:
        return _clear_product_recipe_impl(product_id, session)


def _clear_product_recipe_impl(product_id: int, session: Session) -> int:
    product = _get_product_or_raise(product_id, session)
    lines = _ordered_lines(session, product.id)
    for line in lines:
        session.delete(line)
    session.flush()
    session.expire_all()
    _recost_from(session, [product.id])
    return len(lines)


# =============================================================================
# Cost maintenance
# =============================================================================


def recalculate_product_unit_cost(product_id: int, session: Optional[Session] = None) -> Decimal:
    """
    Refresh a product's line costs and unit_cost, then every product above it.

    Returns:
        The product's new unit_cost

    Raises:
        ProductNotFound: If product doesn't exist
    """
    if session is not None:
        return _recalculate_product_unit_cost_impl(product_id, session)
    with session_scope() as session:
        return _recalculate_product_unit_cost_impl(product_id, session)


def _recalculate_product_unit_cost_impl(product_id: int, session: Session) -> Decimal:
    product = _get_product_or_raise(product_id, session)
    _recost_from(session, [product.id])
    return to_decimal(product.unit_cost)


def recalculate_recipe_costs_for_material(
    material_id: int, session: Optional[Session] = None
) -> Dict[str, Any]:
    """
    Recost everything that depends on a material's price.

    Refreshes calculated_cost on every line using the material, the
    unit_cost of the products owning those lines, and then every product
    that (transitively) links to one of them.

    Returns:
        Dict with lines_updated and products_updated (sorted product ids)

    Raises:
        MaterialNotFound: If material doesn't exist
    """
    if session is not None:
        return _recalculate_recipe_costs_for_material_impl(material_id, session)
    with session_scope() as session:
        return _recalculate_recipe_costs_for_material_impl(material_id, session)


def _recalculate_recipe_costs_for_material_impl(material_id: int, session: Session) -> Dict[str, Any]:
    if session.get(Material, material_id) is None:
        raise MaterialNotFound(material_id)

    owner_ids = {
        owner_id
        for (owner_id,) in session.query(RecipeLine.product_id)
        .filter(RecipeLine.material_id == material_id)
        .distinct()
        .all()
    }
    if not owner_ids:
        return {"lines_updated": 0, "products_updated": []}

    result = _recost_from(session, owner_ids)
    log_operation(
        logger,
        "recalculate_recipe_costs_for_material",
        "success",
        material_id=material_id,
        lines_updated=result["lines_updated"],
        products_updated=len(result["products_updated"]),
    )
    return result
