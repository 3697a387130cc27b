"""
MaterialPriceHistory model for material purchase price changes.

One row is appended every time a material's purchase price changes.
"""

from sqlalchemy import Column, Integer, Numeric, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship

from src.utils.datetime_utils import utc_now

from .base import BaseModel


class MaterialPriceHistory(BaseModel):
    """
    Price history entry for a Material.

    This model is IMMUTABLE after creation - no updated_at field.

    Attributes:
        material_id: Foreign key to Material
        purchase_quantity: Quantity the price was quoted for
        purchase_cost: Price paid for purchase_quantity
        cost_per_unit: Derived cost per unit at the time of the change
        effective_date: When the price took effect
        notes: Optional note (e.g., supplier invoice number)
    """

    __tablename__ = "material_price_history"

    updated_at = None

    material_id = Column(
        Integer,
        ForeignKey("materials.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    purchase_quantity = Column(Numeric(12, 4), nullable=False)
    purchase_cost = Column(Numeric(12, 4), nullable=False)
    cost_per_unit = Column(Numeric(14, 6), nullable=False)
    effective_date = Column(DateTime, nullable=False, default=utc_now)
    notes = Column(Text, nullable=True)

    material = relationship("Material", back_populates="price_history")

    __table_args__ = (
        Index("idx_price_history_material_date", "material_id", "effective_date"),
    )

    def __repr__(self) -> str:
        return (
            f"MaterialPriceHistory(id={self.id}, material_id={self.material_id}, "
            f"cost_per_unit={self.cost_per_unit})"
        )
