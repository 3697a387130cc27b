"""Expansion Service - recursive component, price and cost evaluation.

A sellable product's recipe may reference raw materials and other products,
which may reference further products. This module walks that graph from a
root product under one customer selection and produces:

- flatten_components(): the deliverable products for receipts and kitchen
  tickets (materials never appear)
- price_of(): the sale price
- cogs_of(): the cost of goods sold, with a per-line breakdown
- collect_choices(): every XOR group and add-on reachable from the root,
  keyed the way BundleSelection expects

All traversals share bundle_selection.should_include() for optional/XOR
filtering, so the lines shown, priced and costed never disagree.

Catalog gaps never raise here: a missing product contributes nothing and is
logged as a warning. A branch deeper than MAX_EXPANSION_DEPTH, or a product
that re-enters its own ancestor path, is logged as an error and contributes
nothing further.

All functions accept optional session parameter; when omitted they open their
own session_scope().
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy.orm import Session, joinedload

from ..models import Material, Product, RecipeLine
from ..utils.constants import (
    DEFAULT_ITEM_UNIT,
    ITEM_TYPE_BASE,
    ITEM_TYPE_MATERIAL,
    ITEM_TYPE_PRODUCT,
    MAX_EXPANSION_DEPTH,
    ZERO,
)
from .bundle_selection import BundleSelection, selection_group_key, should_include
from .database import session_scope
from .dto_utils import margin_percent, round_cost, to_decimal
from .logging_utils import get_service_logger

logger = get_service_logger(__name__)

CHAIN_SEPARATOR = " → "


# =============================================================================
# Result types
# =============================================================================


@dataclass
class ComponentLine:
    """One deliverable product in a flattened order line."""

    product_id: int
    product_name: str
    quantity: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": str(self.quantity),
        }


@dataclass
class BreakdownEntry:
    """
    One contributing line of a COGS calculation.

    item_type is 'material', 'product' (zero-cost placeholder for a linked
    product, whose real cost follows as deeper entries) or 'base' (a
    product's own supplier cost).
    """

    item_type: str
    item_id: int
    item_name: str
    quantity: Decimal
    unit: str
    cost_per_unit: Decimal
    total_cost: Decimal
    depth: int
    product_chain: str
    recipe_line_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_type": self.item_type,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "quantity": str(self.quantity),
            "unit": self.unit,
            "cost_per_unit": str(self.cost_per_unit),
            "total_cost": str(self.total_cost),
            "depth": self.depth,
            "product_chain": self.product_chain,
            "recipe_line_id": self.recipe_line_id,
        }


@dataclass
class CogsResult:
    """Total cost of goods sold plus the lines it was built from."""

    total: Decimal = ZERO
    breakdown: List[BreakdownEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": str(self.total),
            "breakdown": [entry.to_dict() for entry in self.breakdown],
        }


@dataclass
class ChoiceOption:
    """A product that can be picked in a group or added as an add-on."""

    product_id: int
    name: str
    price_adjustment: Decimal = ZERO
    parent_product_id: Optional[int] = None
    parent_product_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "price_adjustment": str(self.price_adjustment),
            "parent_product_id": self.parent_product_id,
            "parent_product_name": self.parent_product_name,
        }


@dataclass
class ChoiceGroup:
    """An XOR group; key is what BundleSelection.selected_mandatory is keyed by."""

    key: str
    display_name: str
    group_name: str
    parent_product_id: Optional[int] = None
    parent_product_name: Optional[str] = None
    options: List[ChoiceOption] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "display_name": self.display_name,
            "group_name": self.group_name,
            "parent_product_id": self.parent_product_id,
            "parent_product_name": self.parent_product_name,
            "options": [option.to_dict() for option in self.options],
        }


@dataclass
class ChoiceTree:
    """All choices reachable from one root product."""

    groups: List[ChoiceGroup] = field(default_factory=list)
    optional_items: List[ChoiceOption] = field(default_factory=list)

    def extend(self, other: "ChoiceTree") -> None:
        self.groups.extend(other.groups)
        self.optional_items.extend(other.optional_items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups": [group.to_dict() for group in self.groups],
            "optional_items": [item.to_dict() for item in self.optional_items],
        }


# =============================================================================
# Shared accessors and guards
# =============================================================================


def fetch_product(session: Session, product_id: Optional[int]) -> Optional[Product]:
    """Product by internal id, or None."""
    if product_id is None:
        return None
    return session.get(Product, product_id)


def fetch_recipe_lines(session: Session, product_id: int) -> List[RecipeLine]:
    """Recipe lines of a product in sort order, with referenced records loaded."""
    return (
        session.query(RecipeLine)
        .options(joinedload(RecipeLine.material), joinedload(RecipeLine.linked_product))
        .filter(RecipeLine.product_id == product_id)
        .order_by(RecipeLine.sort_order, RecipeLine.id)
        .all()
    )


def enter_branch(
    product_id: int, depth: int, path: FrozenSet[int], operation: str
) -> Optional[FrozenSet[int]]:
    """
    Check the recursion guards before expanding a product.

    Args:
        product_id: Product about to be expanded
        depth: Its nesting depth (0 = root)
        path: Ids of the products above it on the current branch
        operation: Name used in the error log

    Returns:
        The path including product_id, or None if the branch must stop
    """
    if depth > MAX_EXPANSION_DEPTH:
        logger.error(
            f"{operation}: max expansion depth {MAX_EXPANSION_DEPTH} exceeded at "
            f"product {product_id}; branch skipped"
        )
        return None
    if product_id in path:
        logger.error(
            f"{operation}: circular recipe detected, product {product_id} "
            f"contains itself; branch skipped"
        )
        return None
    return path | {product_id}


def extend_chain(chain: str, name: str) -> str:
    """Append a product name to a "Combo → Americano" style chain."""
    return f"{chain}{CHAIN_SEPARATOR}{name}" if chain else name


def material_line_cost(material: Material, quantity) -> Decimal:
    """
    Cost of a quantity of a material at its current cost per unit.

    The one rule for material line costs: cached recipe line costs, COGS
    breakdowns and recorded consumption rows all use it, so a sale records
    exactly what cogs_of() reports.
    """
    return round_cost(to_decimal(quantity) * material.cost_per_unit)


def _selection_or_empty(selection: Optional[BundleSelection]) -> BundleSelection:
    return selection if selection is not None else BundleSelection.empty()


# =============================================================================
# Component flattening
# =============================================================================


def _variant_display_name(
    linked: Product, linked_lines: List[RecipeLine], selection: BundleSelection, depth: int
) -> str:
    """Prefix a product name with its chosen variants ("Hot" + "Americano")."""
    variants = []
    for line in linked_lines:
        if not line.selection_group:
            continue
        chosen = selection.chosen_for(line.selection_group, depth, linked.id)
        if chosen is not None and chosen == line.linked_product_id:
            variants.append(line.item_name)
    if not variants:
        return linked.name
    return f"{' '.join(variants)} {linked.name}"


def _flatten_impl(
    session: Session,
    product_id: int,
    selection: BundleSelection,
    quantity: Decimal,
    depth: int,
    path: FrozenSet[int],
) -> List[ComponentLine]:
    path = enter_branch(product_id, depth, path, "flatten_components")
    if path is None:
        return []

    product = fetch_product(session, product_id)
    if product is None:
        logger.warning(f"flatten_components: product {product_id} not found")
        return []

    components: List[ComponentLine] = []
    for line in fetch_recipe_lines(session, product_id):
        if not should_include(line, selection, depth, product_id):
            continue
        if line.item_type != ITEM_TYPE_PRODUCT:
            continue

        linked = line.linked_product
        if linked is None:
            logger.warning(
                f"flatten_components: linked product {line.linked_product_id} "
                f"of product {product_id} not found"
            )
            continue

        component_quantity = to_decimal(line.quantity) * quantity
        linked_lines = fetch_recipe_lines(session, linked.id)
        has_products = any(l.item_type == ITEM_TYPE_PRODUCT for l in linked_lines)
        has_groups = any(l.selection_group for l in linked_lines)

        if has_products and not has_groups:
            # Pass-through bundle: show what is inside it
            nested = _flatten_impl(
                session, linked.id, selection, component_quantity, depth + 1, path
            )
            if nested:
                components.extend(nested)
                continue
            components.append(ComponentLine(linked.id, linked.name, component_quantity))
            continue

        display_name = linked.name
        if has_groups:
            display_name = _variant_display_name(linked, linked_lines, selection, depth + 1)
        components.append(ComponentLine(linked.id, display_name, component_quantity))

    return components


def flatten_components(
    product_id: int,
    selection: Optional[BundleSelection] = None,
    quantity=1,
    session: Optional[Session] = None,
) -> List[ComponentLine]:
    """
    List the deliverable products of one order line, in recipe order.

    Linked products that are plain bundles of other products (no internal
    choice) are replaced by their own components. Products with internal
    choices are shown as one component named after the chosen variants,
    e.g. "Hot Americano". Material lines are never shown.

    Args:
        product_id: Root product id
        selection: Customer choices (None = nothing chosen)
        quantity: Units of the root product
        session: Optional database session

    Returns:
        List of ComponentLine (empty for an unknown product)
    """
    selection = _selection_or_empty(selection)
    quantity = to_decimal(quantity)
    if session is not None:
        return _flatten_impl(session, product_id, selection, quantity, 0, frozenset())
    with session_scope() as sess:
        return _flatten_impl(sess, product_id, selection, quantity, 0, frozenset())


# =============================================================================
# Price aggregation
# =============================================================================


def _price_impl(
    session: Session,
    product_id: int,
    selection: BundleSelection,
    quantity: Decimal,
    depth: int,
    path: FrozenSet[int],
) -> Decimal:
    path = enter_branch(product_id, depth, path, "price_of")
    if path is None:
        return ZERO

    product = fetch_product(session, product_id)
    if product is None:
        logger.warning(f"price_of: product {product_id} not found; priced at zero")
        return ZERO

    if product.bundle_price_override is not None:
        return to_decimal(product.bundle_price_override) * quantity

    total = to_decimal(product.base_price) * quantity
    for line in fetch_recipe_lines(session, product_id):
        if not should_include(line, selection, depth, product_id):
            continue
        if line.item_type != ITEM_TYPE_PRODUCT:
            continue

        total += line.effective_price_adjustment * quantity
        total += _price_impl(
            session,
            line.linked_product_id,
            BundleSelection.empty(),
            to_decimal(line.quantity) * quantity,
            depth + 1,
            path,
        )

    return total


def price_of(
    product_id: int,
    selection: Optional[BundleSelection] = None,
    quantity=1,
    session: Optional[Session] = None,
) -> Decimal:
    """
    Sale price of a product under a selection.

    A bundle price override wins outright: override x quantity, whatever
    the selection says. Otherwise the price is base price plus, for every
    selected product line, its price adjustment and the linked product's
    own price at the line's quantity. Nested products are priced with an
    empty selection. Material lines add nothing.

    Args:
        product_id: Product id
        selection: Customer choices for the product's own lines
        quantity: Units being priced
        session: Optional database session

    Returns:
        Price as Decimal (zero for an unknown product)
    """
    selection = _selection_or_empty(selection)
    quantity = to_decimal(quantity)
    if session is not None:
        return _price_impl(session, product_id, selection, quantity, 0, frozenset())
    with session_scope() as sess:
        return _price_impl(sess, product_id, selection, quantity, 0, frozenset())


# =============================================================================
# Cost aggregation
# =============================================================================


def _cogs_impl(
    session: Session,
    product_id: int,
    selection: BundleSelection,
    quantity: Decimal,
    depth: int,
    path: FrozenSet[int],
    chain: str,
) -> List[BreakdownEntry]:
    path = enter_branch(product_id, depth, path, "cogs_of")
    if path is None:
        return []

    product = fetch_product(session, product_id)
    if product is None:
        logger.warning(f"cogs_of: product {product_id} not found; costed at zero")
        return []

    chain = extend_chain(chain, product.name)
    breakdown: List[BreakdownEntry] = []

    supplier_cost = to_decimal(product.supplier_cost)
    if supplier_cost > ZERO:
        breakdown.append(
            BreakdownEntry(
                item_type=ITEM_TYPE_BASE,
                item_id=product.id,
                item_name=f"{product.name} (Base Supplier Cost)",
                quantity=quantity,
                unit=DEFAULT_ITEM_UNIT,
                cost_per_unit=supplier_cost,
                total_cost=supplier_cost * quantity,
                depth=depth,
                product_chain=chain,
            )
        )

    for line in fetch_recipe_lines(session, product_id):
        if not should_include(line, selection, depth, product_id):
            continue

        line_quantity = to_decimal(line.quantity) * quantity

        if line.item_type == ITEM_TYPE_MATERIAL:
            if line.material is None:
                logger.warning(
                    f"cogs_of: material {line.material_id} of product {product_id} not found"
                )
                continue
            breakdown.append(
                BreakdownEntry(
                    item_type=ITEM_TYPE_MATERIAL,
                    item_id=line.material_id,
                    item_name=line.material.name,
                    quantity=line_quantity,
                    unit=line.unit,
                    cost_per_unit=line.material.cost_per_unit,
                    total_cost=material_line_cost(line.material, line_quantity),
                    depth=depth,
                    product_chain=chain,
                    recipe_line_id=line.id,
                )
            )
        elif line.item_type == ITEM_TYPE_PRODUCT:
            linked = line.linked_product
            if linked is None:
                logger.warning(
                    f"cogs_of: linked product {line.linked_product_id} "
                    f"of product {product_id} not found"
                )
                continue
            # Placeholder only; the linked product's real cost follows from its own lines
            breakdown.append(
                BreakdownEntry(
                    item_type=ITEM_TYPE_PRODUCT,
                    item_id=linked.id,
                    item_name=linked.name,
                    quantity=line_quantity,
                    unit=DEFAULT_ITEM_UNIT,
                    cost_per_unit=ZERO,
                    total_cost=ZERO,
                    depth=depth,
                    product_chain=chain,
                    recipe_line_id=line.id,
                )
            )
            breakdown.extend(
                _cogs_impl(
                    session,
                    linked.id,
                    BundleSelection.empty(),
                    line_quantity,
                    depth + 1,
                    path,
                    chain,
                )
            )

    return breakdown


def cogs_of(
    product_id: int,
    selection: Optional[BundleSelection] = None,
    quantity=1,
    session: Optional[Session] = None,
) -> CogsResult:
    """
    Cost of goods sold for a product under a selection.

    Starts from the product's supplier cost, adds every selected material
    line's cost (material_line_cost), and for every selected product line recurses
    into the linked product with an empty selection. A bundle price override
    does not affect cost.

    Args:
        product_id: Product id
        selection: Customer choices for the product's own lines
        quantity: Units being costed
        session: Optional database session

    Returns:
        CogsResult with total and breakdown (empty for an unknown product)
    """
    selection = _selection_or_empty(selection)
    quantity = to_decimal(quantity)
    if session is not None:
        breakdown = _cogs_impl(session, product_id, selection, quantity, 0, frozenset(), "")
    else:
        with session_scope() as sess:
            breakdown = _cogs_impl(sess, product_id, selection, quantity, 0, frozenset(), "")

    total = sum((entry.total_cost for entry in breakdown), ZERO)
    return CogsResult(total=total, breakdown=breakdown)


# =============================================================================
# Choice discovery
# =============================================================================


def _collect_choices_impl(
    session: Session,
    product_id: int,
    depth: int,
    path: FrozenSet[int],
) -> ChoiceTree:
    tree = ChoiceTree()

    path = enter_branch(product_id, depth, path, "collect_choices")
    if path is None:
        return tree

    product = fetch_product(session, product_id)
    if product is None:
        logger.warning(f"collect_choices: product {product_id} not found")
        return tree

    lines = [
        line
        for line in fetch_recipe_lines(session, product_id)
        if line.item_type == ITEM_TYPE_PRODUCT and line.linked_product is not None
    ]
    parent_id = product.id if depth > 0 else None
    parent_name = product.name if depth > 0 else None

    groups: Dict[str, ChoiceGroup] = {}
    for line in lines:
        if line.is_optional:
            tree.optional_items.append(
                ChoiceOption(
                    product_id=line.linked_product_id,
                    name=line.linked_product.name,
                    price_adjustment=line.effective_price_adjustment,
                    parent_product_id=parent_id,
                    parent_product_name=parent_name,
                )
            )
        elif line.selection_group:
            group = groups.get(line.selection_group)
            if group is None:
                group = ChoiceGroup(
                    key=selection_group_key(line.selection_group, depth, product.id),
                    display_name=(
                        line.selection_group
                        if depth == 0
                        else f"{product.name} {line.selection_group}"
                    ),
                    group_name=line.selection_group,
                    parent_product_id=parent_id,
                    parent_product_name=parent_name,
                )
                groups[line.selection_group] = group
                tree.groups.append(group)
            group.options.append(
                ChoiceOption(
                    product_id=line.linked_product_id,
                    name=line.linked_product.name,
                    price_adjustment=line.effective_price_adjustment,
                )
            )

    # Mandatory and grouped linked products may carry choices of their own
    for line in lines:
        if line.is_optional:
            continue
        tree.extend(_collect_choices_impl(session, line.linked_product_id, depth + 1, path))

    return tree


def collect_choices(product_id: int, session: Optional[Session] = None) -> ChoiceTree:
    """
    Enumerate every XOR group and add-on reachable from a product.

    Group keys are scoped exactly as should_include() expects, so a caller
    can build a BundleSelection by picking one option per group.

    Args:
        product_id: Root product id
        session: Optional database session

    Returns:
        ChoiceTree (empty for an unknown product)
    """
    if session is not None:
        return _collect_choices_impl(session, product_id, 0, frozenset())
    with session_scope() as sess:
        return _collect_choices_impl(sess, product_id, 0, frozenset())


# =============================================================================
# Summary
# =============================================================================


def _get_cost_summary_impl(
    product_id: int, selection: BundleSelection, session: Session
) -> Optional[Dict[str, Any]]:
    product = fetch_product(session, product_id)
    if product is None:
        logger.warning(f"get_cost_summary: product {product_id} not found")
        return None

    price = price_of(product_id, selection, 1, session=session)
    cogs = cogs_of(product_id, selection, 1, session=session)
    return {
        "product_id": product.id,
        "product_name": product.name,
        "price": price,
        "cogs": cogs.total,
        "gross_profit": price - cogs.total,
        "margin_percent": margin_percent(price, cogs.total),
        "has_price_override": product.has_price_override,
    }


def get_cost_summary(
    product_id: int,
    selection: Optional[BundleSelection] = None,
    session: Optional[Session] = None,
) -> Optional[Dict[str, Any]]:
    """
    Price, COGS, gross profit and margin for one configured unit.

    Returns:
        Summary dict with Decimal values, or None for an unknown product
    """
    selection = _selection_or_empty(selection)
    if session is not None:
        return _get_cost_summary_impl(product_id, selection, session)
    with session_scope() as sess:
        return _get_cost_summary_impl(product_id, selection, sess)
