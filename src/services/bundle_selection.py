"""Bundle selection - the customer's choices for one expansion or sale.

A selection maps selection-group keys to the chosen linked product, plus a
set of selected optional add-on products. Group names are reused freely
("Temperature" inside two different drinks), so the key is scoped:

    root:<group>              for groups on the product being expanded
    <parentProductId>:<group> for groups on any product nested below it

Every traversal (flattening, pricing, costing, consumption recording) asks
should_include() whether a recipe line survives; no traversal filters
optional or grouped lines on its own.

Usage:
    from src.services.bundle_selection import BundleSelection, should_include

    selection = BundleSelection.from_dict({
        "selectedMandatory": {"root:Drink": 12, "12:Temperature": 31},
        "selectedOptional": [44],
    })
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from src.utils.constants import ROOT_SELECTION_SCOPE


def selection_group_key(group: str, depth: int, scope_id: Optional[int]) -> str:
    """
    Build the globally unique key for a selection group.

    Args:
        group: Selection group name as stored on the recipe line
        depth: Nesting depth of the product owning the line (0 = root)
        scope_id: Id of the product owning the line

    Returns:
        "root:<group>" at depth 0, "<scope_id>:<group>" below

    Example:
        >>> selection_group_key("Temperature", 0, 7)
        'root:Temperature'
        >>> selection_group_key("Temperature", 1, 7)
        '7:Temperature'
    """
    scope = ROOT_SELECTION_SCOPE if depth == 0 else str(scope_id)
    return f"{scope}:{group}"


def _to_product_id(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class BundleSelection:
    """
    Immutable set of customer choices.

    Attributes:
        selected_mandatory: Group key -> chosen linked product id
        selected_optional: Linked product ids of selected add-ons
    """

    selected_mandatory: Mapping[str, int] = field(default_factory=dict)
    selected_optional: FrozenSet[int] = frozenset()

    @classmethod
    def empty(cls) -> "BundleSelection":
        """Selection with nothing chosen; used for every nested level of price and cost."""
        return cls()

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "BundleSelection":
        """
        Parse the boundary representation.

        Accepts camelCase (selectedMandatory/selectedOptional) as sent by the
        checkout frontend and snake_case. Ids may arrive as strings.

        Raises:
            ValueError: If an id is not an integer
        """
        if not data:
            return cls.empty()

        mandatory = data.get("selectedMandatory", data.get("selected_mandatory")) or {}
        optional = data.get("selectedOptional", data.get("selected_optional")) or []

        parsed_mandatory: Dict[str, int] = {}
        for key, product_id in mandatory.items():
            parsed = _to_product_id(product_id)
            if parsed is not None:
                parsed_mandatory[str(key)] = parsed

        return cls(
            selected_mandatory=parsed_mandatory,
            selected_optional=frozenset(
                pid for pid in (_to_product_id(v) for v in optional) if pid is not None
            ),
        )

    @classmethod
    def build(
        cls,
        mandatory: Optional[Mapping[str, int]] = None,
        optional: Optional[Iterable[int]] = None,
    ) -> "BundleSelection":
        """Build a selection from already-typed values."""
        return cls(
            selected_mandatory=dict(mandatory or {}),
            selected_optional=frozenset(optional or ()),
        )

    @property
    def is_empty(self) -> bool:
        return not self.selected_mandatory and not self.selected_optional

    def chosen_for(self, group: str, depth: int, scope_id: Optional[int]) -> Optional[int]:
        """Product chosen in a group, or None when the group has no choice."""
        return self.selected_mandatory.get(selection_group_key(group, depth, scope_id))

    def to_dict(self) -> Dict[str, Any]:
        """Boundary (camelCase) representation."""
        return {
            "selectedMandatory": dict(self.selected_mandatory),
            "selectedOptional": sorted(self.selected_optional),
        }


def should_include(line, selection: Optional[BundleSelection], depth: int, scope_id: Optional[int]) -> bool:
    """
    Decide whether a recipe line survives the customer's selection.

    - Optional lines are skipped unless their linked product is in
      selected_optional. Optional material lines can never be selected.
    - Grouped lines are skipped unless their linked product is the one chosen
      for the scoped group key. A missing key excludes the whole group.
    - Every other line is included.

    Material lines are not filtered here; callers that do not show
    materials skip them themselves.

    Args:
        line: RecipeLine (or any object with is_optional, selection_group,
            linked_product_id)
        selection: Customer choices; None is treated as empty
        depth: Nesting depth of the product owning the line (0 = root)
        scope_id: Id of the product owning the line
    """
    if selection is None:
        selection = BundleSelection.empty()

    if line.is_optional:
        return (
            line.linked_product_id is not None
            and line.linked_product_id in selection.selected_optional
        )

    if line.selection_group:
        chosen = selection.chosen_for(line.selection_group, depth, scope_id)
        return chosen is not None and chosen == line.linked_product_id

    return True
