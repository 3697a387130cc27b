"""
InventoryConsumption model for sale-time consumption records.

One row is written per sale per contributing recipe line, with a
denormalized snapshot of names and costs for historical accuracy.
"""

from sqlalchemy import (
    Column,
    String,
    Integer,
    Numeric,
    DateTime,
    Index,
    CheckConstraint,
)

from src.utils.datetime_utils import utc_now, isoformat_or_none

from .base import BaseModel


class InventoryConsumption(BaseModel):
    """
    InventoryConsumption model representing what one sale used up.

    Row kinds (item_type):
        'material': a material line; stock was deducted
        'product': a linked product, visibility only (cost forced to zero)
        'base': the product's own supplier cost

    This model is IMMUTABLE after creation - no updated_at field. Product
    and material ids are plain integers, not foreign keys, so the audit trail
    survives catalog deletes.

    Attributes:
        order_id: External order identifier
        order_item_id: External order line identifier (nullable)
        root_product_id: Product that was actually sold
        product_id: Product whose recipe produced this row
        product_name / product_sku: Snapshot of that product
        quantity_sold: Units of product_id in this branch of the sale
        item_type: 'material', 'product' or 'base'
        material_id / material_name: Consumed material (material rows)
        linked_product_id / linked_product_name: Linked product (product rows)
        recipe_line_id: Recipe line that produced this row (nullable for base rows)
        quantity_consumed: quantity_sold x recipe quantity
        unit: Unit of quantity_consumed
        cost_per_unit / total_cost: Cost snapshot at consumption time
        unit_sale_price: Price of one unit of the sold product (depth 0 rows only)
        depth: Nesting level below the sold product
        product_chain: "Combo -> Americano" style path for tracing
        consumed_at: Timestamp of the sale
    """

    __tablename__ = "inventory_consumptions"

    updated_at = None

    order_id = Column(String(100), nullable=False, index=True)
    order_item_id = Column(String(100), nullable=True)
    root_product_id = Column(Integer, nullable=True, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    product_name = Column(String(200), nullable=False)
    product_sku = Column(String(100), nullable=True)
    quantity_sold = Column(Numeric(12, 4), nullable=False)
    item_type = Column(String(20), nullable=False)
    material_id = Column(Integer, nullable=True, index=True)
    material_name = Column(String(200), nullable=True)
    linked_product_id = Column(Integer, nullable=True)
    linked_product_name = Column(String(200), nullable=True)
    recipe_line_id = Column(Integer, nullable=True)
    quantity_consumed = Column(Numeric(12, 4), nullable=False)
    unit = Column(String(20), nullable=False)
    cost_per_unit = Column(Numeric(14, 6), nullable=False)
    total_cost = Column(Numeric(12, 4), nullable=False)
    unit_sale_price = Column(Numeric(12, 4), nullable=True)
    depth = Column(Integer, nullable=False, default=0)
    product_chain = Column(String(500), nullable=True)
    consumed_at = Column(DateTime, nullable=False, default=utc_now, index=True)

    __table_args__ = (
        Index("idx_consumption_order_item", "order_id", "order_item_id"),
        CheckConstraint(
            "item_type IN ('material', 'product', 'base')",
            name="ck_consumption_item_type",
        ),
        CheckConstraint("total_cost >= 0", name="ck_consumption_cost_non_negative"),
    )

    def __repr__(self) -> str:
        name = self.material_name or self.linked_product_name or self.product_name
        return (
            f"InventoryConsumption(id={self.id}, order_id='{self.order_id}', "
            f"item_type='{self.item_type}', name='{name}', "
            f"quantity={self.quantity_consumed})"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        """Convert consumption record to dictionary with string-formatted amounts."""
        return {
            "id": self.id,
            "uuid": self.uuid,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "root_product_id": self.root_product_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity_sold": str(self.quantity_sold) if self.quantity_sold is not None else None,
            "item_type": self.item_type,
            "material_id": self.material_id,
            "material_name": self.material_name,
            "linked_product_id": self.linked_product_id,
            "linked_product_name": self.linked_product_name,
            "recipe_line_id": self.recipe_line_id,
            "quantity_consumed": (
                str(self.quantity_consumed) if self.quantity_consumed is not None else None
            ),
            "unit": self.unit,
            "cost_per_unit": str(self.cost_per_unit) if self.cost_per_unit is not None else None,
            "total_cost": str(self.total_cost) if self.total_cost is not None else None,
            "unit_sale_price": (
                str(self.unit_sale_price) if self.unit_sale_price is not None else None
            ),
            "depth": self.depth,
            "product_chain": self.product_chain,
            "consumed_at": isoformat_or_none(self.consumed_at),
        }
