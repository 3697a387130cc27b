"""
Product model for sellable café items.

A Product is anything on the menu: a Latte, a Muffin bought in from a
supplier, or a combo bundling other products.
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    String,
    Integer,
    Boolean,
    Numeric,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class Product(BaseModel):
    """
    Product model representing sellable items.

    Attributes:
        external_id: WooCommerce product id (nullable until synced)
        name: Display name (e.g., "Latte")
        sku: Unique stock keeping unit
        category: Menu category slug
        base_price: Regular sale price
        supplier_cost: Cost to acquire one ready-made unit (0 for made-to-order)
        unit_cost: Cached sum of non-optional recipe line costs
        bundle_price_override: Fixed total price that replaces recipe-based pricing
        stock_quantity: Units on hand for bought-in products
        is_active: False hides the product from the menu

    Relationships:
        recipe_lines: Ordered One-to-Many with RecipeLine (cascade delete)
    """

    __tablename__ = "products"

    external_id = Column(Integer, nullable=True, unique=True)
    name = Column(String(200), nullable=False)
    sku = Column(String(100), nullable=False, unique=True)
    category = Column(String(100), nullable=False, default="uncategorized")
    base_price = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    supplier_cost = Column(Numeric(10, 4), nullable=False, default=Decimal("0"))
    unit_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    bundle_price_override = Column(Numeric(10, 2), nullable=True)
    stock_quantity = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    is_active = Column(Boolean, nullable=False, default=True)

    recipe_lines = relationship(
        "RecipeLine",
        back_populates="product",
        foreign_keys="RecipeLine.product_id",
        cascade="all, delete-orphan",
        order_by="RecipeLine.sort_order",
        lazy="select",
    )

    __table_args__ = (
        Index("idx_product_external_id", "external_id"),
        Index("idx_product_sku", "sku"),
        Index("idx_product_category", "category"),
        CheckConstraint("base_price >= 0", name="ck_product_base_price_non_negative"),
        CheckConstraint("supplier_cost >= 0", name="ck_product_supplier_cost_non_negative"),
        CheckConstraint(
            "bundle_price_override IS NULL OR bundle_price_override >= 0",
            name="ck_product_bundle_price_non_negative",
        ),
    )

    def __repr__(self) -> str:
        return f"Product(id={self.id}, name='{self.name}', sku='{self.sku}')"

    @property
    def has_price_override(self) -> bool:
        return self.bundle_price_override is not None

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(False)
        result["has_price_override"] = self.has_price_override

        if include_relationships:
            result["recipe_lines"] = [line.to_dict() for line in self.recipe_lines]

        return result
