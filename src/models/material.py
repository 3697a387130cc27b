"""
Material model for raw ingredients, packaging and consumables.

A Material is what recipes consume: coffee beans, milk, cups, lids.
Its cost per unit is always derived from the last purchase price.
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    String,
    Text,
    DateTime,
    Numeric,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class Material(BaseModel):
    """
    Material model representing purchasable raw inputs.

    Attributes:
        name: Material display name (e.g., "Coffee Beans")
        category: 'ingredient', 'packaging' or 'consumable'
        purchase_unit: Unit stock and recipes are measured in ('g', 'ml', 'unit')
        purchase_quantity: Quantity bought per purchase (e.g., 500 for a 500 g bag)
        purchase_cost: Price paid for purchase_quantity
        stock_quantity: Current stock in purchase_unit (may go negative)
        low_stock_threshold: Stock level at or below which the material is "low"
        supplier: Optional supplier name
        last_purchase_date: When the purchase price was last changed

    Derived:
        cost_per_unit: purchase_cost / purchase_quantity, never stored

    Relationships:
        recipe_lines: One-to-Many with RecipeLine
        price_history: One-to-Many with MaterialPriceHistory (cascade delete)
    """

    __tablename__ = "materials"

    name = Column(String(200), nullable=False)
    category = Column(String(20), nullable=False)
    purchase_unit = Column(String(20), nullable=False)
    purchase_quantity = Column(Numeric(12, 4), nullable=False)
    purchase_cost = Column(Numeric(12, 4), nullable=False)
    stock_quantity = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    low_stock_threshold = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    supplier = Column(String(200), nullable=True)
    last_purchase_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    recipe_lines = relationship(
        "RecipeLine",
        back_populates="material",
        lazy="select",
    )
    price_history = relationship(
        "MaterialPriceHistory",
        back_populates="material",
        cascade="all, delete-orphan",
        order_by="MaterialPriceHistory.effective_date.desc()",
        lazy="select",
    )

    __table_args__ = (
        Index("idx_material_category", "category"),
        Index("idx_material_name", "name"),
        CheckConstraint(
            "category IN ('ingredient', 'packaging', 'consumable')",
            name="ck_material_category",
        ),
        CheckConstraint("purchase_quantity > 0", name="ck_material_purchase_quantity_positive"),
        CheckConstraint("purchase_cost >= 0", name="ck_material_purchase_cost_non_negative"),
    )

    def __repr__(self) -> str:
        return f"Material(id={self.id}, name='{self.name}')"

    @property
    def cost_per_unit(self) -> Decimal:
        """Cost of one purchase_unit at the current purchase price."""
        if not self.purchase_quantity:
            return Decimal("0")
        return Decimal(str(self.purchase_cost)) / Decimal(str(self.purchase_quantity))

    @property
    def is_low_stock(self) -> bool:
        """True when stock is at or below the low-stock threshold."""
        return Decimal(str(self.stock_quantity or 0)) <= Decimal(str(self.low_stock_threshold or 0))

    def to_dict(self, include_relationships: bool = False) -> dict:
        """
        Convert material to dictionary.

        Args:
            include_relationships: If True, include price history

        Returns:
            Dictionary representation including the derived cost_per_unit
        """
        result = super().to_dict(False)
        result["cost_per_unit"] = str(self.cost_per_unit)
        result["is_low_stock"] = self.is_low_stock

        if include_relationships:
            result["price_history"] = [h.to_dict() for h in self.price_history]

        return result
