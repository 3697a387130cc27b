"""
PurchaseOrder model for supplier orders of materials and products.

A purchase order moves draft -> ordered -> received (or cancelled).
Receiving it adds every item's quantity to material or product stock.
"""

from sqlalchemy import Column, String, Text, Numeric, DateTime, Index, CheckConstraint
from sqlalchemy.orm import relationship

from .base import BaseModel


class PurchaseOrder(BaseModel):
    """
    PurchaseOrder model representing one order placed with a supplier.

    Attributes:
        po_number: Human-facing number, "PO-YYYY-MM-NNNN"
        supplier: Supplier name
        status: 'draft', 'ordered', 'received' or 'cancelled'
        total_amount: Sum of item total costs
        order_date: When the order was placed
        expected_delivery_date: When delivery is expected
        received_date: When the order was received
        notes: Optional notes

    Relationships:
        items: One-to-Many with PurchaseOrderItem (cascade delete)
    """

    __tablename__ = "purchase_orders"

    po_number = Column(String(20), nullable=False, unique=True)
    supplier = Column(String(200), nullable=False)
    status = Column(String(20), nullable=False, default="draft")
    total_amount = Column(Numeric(12, 4), nullable=False, default=0)
    order_date = Column(DateTime, nullable=True)
    expected_delivery_date = Column(DateTime, nullable=True)
    received_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    items = relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
        lazy="select",
    )

    __table_args__ = (
        Index("idx_purchase_order_supplier", "supplier"),
        Index("idx_purchase_order_status", "status"),
        CheckConstraint(
            "status IN ('draft', 'ordered', 'received', 'cancelled')",
            name="ck_purchase_order_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"PurchaseOrder(id={self.id}, po_number='{self.po_number}', "
            f"supplier='{self.supplier}', status='{self.status}')"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        """Convert purchase order to dictionary; items are always included."""
        result = super().to_dict(include_relationships=False)
        result["items"] = [item.to_dict() for item in self.items]
        return result
