"""
RecipeLine model - the edges of the product/recipe graph.

Each line belongs to one product and references exactly one Material or one
linked Product. Lines sharing a selection_group on the same product form a
mutually exclusive (XOR) choice.
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    String,
    Integer,
    Boolean,
    Numeric,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class RecipeLine(BaseModel):
    """
    RecipeLine model.

    Attributes:
        product_id: Owning Product
        item_type: 'material' or 'product'
        material_id: Referenced Material (item_type 'material' only)
        linked_product_id: Referenced Product (item_type 'product' only)
        quantity: Amount of the referenced item per unit of the owner
        unit: Unit of quantity (material purchase unit, or 'unit' for products)
        calculated_cost: quantity x referenced cost per unit, refreshed on recost
        is_optional: Add-on line, included only when the customer selects it
        selection_group: XOR group name (mandatory lines only)
        price_adjustment: Price delta above the linked product's own price
        sort_order: Display order within the recipe

    Relationships:
        product: Many-to-One with the owning Product
        material: Many-to-One with Material
        linked_product: Many-to-One with the linked Product
    """

    __tablename__ = "recipe_lines"

    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_type = Column(String(20), nullable=False, default="material")
    material_id = Column(
        Integer,
        ForeignKey("materials.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    linked_product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    quantity = Column(Numeric(12, 4), nullable=False)
    unit = Column(String(20), nullable=False)
    calculated_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    is_optional = Column(Boolean, nullable=False, default=False)
    selection_group = Column(String(100), nullable=True)
    price_adjustment = Column(Numeric(10, 2), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    product = relationship(
        "Product",
        back_populates="recipe_lines",
        foreign_keys=[product_id],
    )
    material = relationship(
        "Material",
        back_populates="recipe_lines",
        foreign_keys=[material_id],
    )
    linked_product = relationship(
        "Product",
        foreign_keys=[linked_product_id],
    )

    __table_args__ = (
        Index("idx_recipe_line_product_order", "product_id", "sort_order"),
        CheckConstraint(
            "item_type IN ('material', 'product')",
            name="ck_recipe_line_item_type",
        ),
        CheckConstraint(
            "(item_type = 'material' AND material_id IS NOT NULL AND linked_product_id IS NULL) OR "
            "(item_type = 'product' AND linked_product_id IS NOT NULL AND material_id IS NULL)",
            name="ck_recipe_line_single_reference",
        ),
        CheckConstraint("quantity > 0", name="ck_recipe_line_quantity_positive"),
        CheckConstraint(
            "NOT (is_optional = 1 AND selection_group IS NOT NULL)",
            name="ck_recipe_line_optional_not_grouped",
        ),
    )

    def __repr__(self) -> str:
        ref = f"material_id={self.material_id}" if self.is_material else (
            f"linked_product_id={self.linked_product_id}"
        )
        return f"RecipeLine(id={self.id}, product_id={self.product_id}, {ref})"

    @property
    def is_material(self) -> bool:
        return self.item_type == "material"

    @property
    def is_product(self) -> bool:
        return self.item_type == "product"

    @property
    def item_name(self) -> str:
        """Name of the referenced material or linked product."""
        if self.is_material and self.material is not None:
            return self.material.name
        if self.is_product and self.linked_product is not None:
            return self.linked_product.name
        return ""

    @property
    def effective_price_adjustment(self) -> Decimal:
        """Price adjustment with NULL treated as zero."""
        if self.price_adjustment is None:
            return Decimal("0")
        return Decimal(str(self.price_adjustment))

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(False)
        result["item_name"] = self.item_name
        if self.is_material and self.material is not None:
            result["cost_per_unit"] = str(self.material.cost_per_unit)
        elif self.is_product and self.linked_product is not None:
            result["cost_per_unit"] = str(self.linked_product.unit_cost)
        return result
