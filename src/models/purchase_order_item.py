"""
PurchaseOrderItem model for the lines of a purchase order.

A line orders either a material (beans, cups) or a bought-in product
(a muffin bought from a bakery), never both.
"""

from sqlalchemy import Column, String, Text, Integer, Numeric, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from .base import BaseModel


class PurchaseOrderItem(BaseModel):
    """
    One material or product ordered on a PurchaseOrder.

    Attributes:
        purchase_order_id: Foreign key to PurchaseOrder
        item_type: 'material' or 'product'
        material_id: Foreign key to Material (material lines)
        product_id: Foreign key to Product (product lines)
        item_name: Snapshot of the material or product name when ordered
        sku: Snapshot of the product SKU (product lines)
        quantity: Quantity ordered
        unit: Unit of quantity
        unit_cost: Agreed cost per unit
        total_cost: quantity x unit_cost
        received_quantity: Quantity added to stock on receipt
        notes: Optional notes
    """

    __tablename__ = "purchase_order_items"

    purchase_order_id = Column(
        Integer,
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    item_type = Column(String(20), nullable=False)
    material_id = Column(Integer, ForeignKey("materials.id", ondelete="RESTRICT"), nullable=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=True)
    item_name = Column(String(200), nullable=False)
    sku = Column(String(100), nullable=True)
    quantity = Column(Numeric(12, 4), nullable=False)
    unit = Column(String(20), nullable=False)
    unit_cost = Column(Numeric(14, 6), nullable=False)
    total_cost = Column(Numeric(12, 4), nullable=False)
    received_quantity = Column(Numeric(12, 4), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    purchase_order = relationship("PurchaseOrder", back_populates="items")
    material = relationship("Material")
    product = relationship("Product")

    __table_args__ = (
        Index("idx_purchase_order_item_po", "purchase_order_id"),
        Index("idx_purchase_order_item_material", "material_id"),
        Index("idx_purchase_order_item_product", "product_id"),
        CheckConstraint(
            "(item_type = 'material' AND material_id IS NOT NULL AND product_id IS NULL) OR "
            "(item_type = 'product' AND product_id IS NOT NULL AND material_id IS NULL)",
            name="ck_purchase_order_item_one_reference",
        ),
        CheckConstraint("quantity > 0", name="ck_purchase_order_item_quantity_positive"),
        CheckConstraint("unit_cost >= 0", name="ck_purchase_order_item_cost_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"PurchaseOrderItem(id={self.id}, purchase_order_id={self.purchase_order_id}, "
            f"{self.item_type}='{self.item_name}', quantity={self.quantity})"
        )
