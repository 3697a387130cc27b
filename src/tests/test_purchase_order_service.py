"""Tests for supplier purchase orders and stock receipt."""

import logging
import pytest
from decimal import Decimal

from src.services import material_service, product_service, purchase_order_service
from src.services.dto_utils import to_decimal
from src.services.exceptions import (
    MaterialNotFound,
    ProductNotFound,
    PurchaseOrderNotFound,
    ValidationError,
)
from src.utils.datetime_utils import utc_now


def stock_of(material_id):
    return to_decimal(material_service.get_material(material_id)["stock_quantity"])


@pytest.fixture
def beans_and_cups_order(latte_catalog):
    """A draft order for 5000 g of beans and 100 cups."""
    order = purchase_order_service.create_purchase_order(
        "Roastery Co",
        [
            {"material_id": latte_catalog.beans, "quantity": 5000, "unit_cost": "0.14"},
            {"material_id": latte_catalog.cup, "quantity": 100, "unit_cost": "0.45"},
        ],
        notes="Weekly restock",
    )
    return order


class TestCreatePurchaseOrder:
    """Tests for create_purchase_order()."""

    def test_creates_draft_with_totals(self, beans_and_cups_order):
        order = beans_and_cups_order

        assert order["status"] == "draft"
        assert order["supplier"] == "Roastery Co"
        assert to_decimal(order["total_amount"]) == Decimal("745.00")
        assert [i["item_name"] for i in order["items"]] == ["Coffee Beans", "Cup"]
        assert order["items"][0]["unit"] == "g"
        assert to_decimal(order["items"][0]["received_quantity"]) == Decimal("0")

    def test_numbers_follow_monthly_sequence(self, latte_catalog):
        items = [{"material_id": latte_catalog.lid, "quantity": 50, "unit_cost": "0.30"}]
        prefix = utc_now().strftime("PO-%Y-%m-")

        first = purchase_order_service.create_purchase_order("Cup Supply", items)
        second = purchase_order_service.create_purchase_order("Cup Supply", items)

        assert first["po_number"] == f"{prefix}0001"
        assert second["po_number"] == f"{prefix}0002"

    def test_validates_order(self, latte_catalog):
        with pytest.raises(ValidationError) as exc_info:
            purchase_order_service.create_purchase_order(" ", [])

        assert "Supplier is required" in exc_info.value.errors
        assert "A purchase order needs at least one item" in exc_info.value.errors

    def test_validates_items(self, latte_catalog):
        with pytest.raises(ValidationError):
            purchase_order_service.create_purchase_order(
                "Roastery Co", [{"material_id": latte_catalog.beans, "quantity": 0, "unit_cost": "1"}]
            )

    def test_unknown_material_rejected(self, latte_catalog):
        with pytest.raises(MaterialNotFound):
            purchase_order_service.create_purchase_order(
                "Roastery Co", [{"material_id": 999, "quantity": 1, "unit_cost": "1"}]
            )

    def test_unknown_product_rejected(self, latte_catalog):
        with pytest.raises(ProductNotFound):
            purchase_order_service.create_purchase_order(
                "Bakery", [{"item_type": "product", "product_id": 999, "quantity": 1, "unit_cost": "1"}]
            )

    def test_product_line_snapshots_sku(self, cafe_catalog):
        order = purchase_order_service.create_purchase_order(
            "Bakery",
            [{"item_type": "product", "product_id": cafe_catalog.muffin, "quantity": 24, "unit_cost": "2.50"}],
        )

        item = order["items"][0]
        assert item["item_type"] == "product"
        assert item["item_name"] == "Muffin"
        assert item["sku"] == "MUFFIN"
        assert item["unit"] == "unit"
        assert item["material_id"] is None
        assert to_decimal(order["total_amount"]) == Decimal("60.00")


class TestPurchaseOrderQueries:
    """Tests for purchase order lookups and updates."""

    def test_get_by_id_and_number(self, beans_and_cups_order):
        order = beans_and_cups_order

        assert purchase_order_service.get_purchase_order(order["id"])["po_number"] == order["po_number"]
        assert purchase_order_service.get_purchase_order_by_number(order["po_number"])["id"] == order["id"]
        assert purchase_order_service.get_purchase_order(999) is None

    def test_list_by_status(self, beans_and_cups_order):
        purchase_order_service.update_purchase_order(beans_and_cups_order["id"], {"status": "ordered"})

        assert [o["id"] for o in purchase_order_service.list_purchase_orders(status="ordered")] == [
            beans_and_cups_order["id"]
        ]
        assert purchase_order_service.list_purchase_orders(status="draft") == []

    def test_update_cannot_mark_received(self, beans_and_cups_order):
        with pytest.raises(ValidationError):
            purchase_order_service.update_purchase_order(beans_and_cups_order["id"], {"status": "received"})

    def test_update_rejects_unknown_fields(self, beans_and_cups_order):
        with pytest.raises(ValidationError):
            purchase_order_service.update_purchase_order(beans_and_cups_order["id"], {"total_amount": 1})

    def test_suppliers_come_from_materials(self, latte_catalog):
        material_service.update_material(latte_catalog.milk, {"supplier": "Dairy Farm"})
        material_service.update_material(latte_catalog.beans, {"supplier": "Roastery Co"})
        material_service.update_material(latte_catalog.syrup, {"supplier": "Dairy Farm"})

        assert purchase_order_service.get_suppliers() == ["Dairy Farm", "Roastery Co"]


class TestReceivePurchaseOrder:
    """Tests for receive_purchase_order()."""

    def test_receipt_adds_stock(self, latte_catalog, beans_and_cups_order):
        received = purchase_order_service.receive_purchase_order(beans_and_cups_order["id"])

        assert received["status"] == "received"
        assert received["received_date"] is not None
        assert [to_decimal(i["received_quantity"]) for i in received["items"]] == [
            Decimal("5000"),
            Decimal("100"),
        ]
        assert stock_of(latte_catalog.beans) == Decimal("10000")
        assert stock_of(latte_catalog.cup) == Decimal("400")

    def test_receipt_adds_product_stock(self, cafe_catalog):
        order = purchase_order_service.create_purchase_order(
            "Bakery",
            [
                {"item_type": "product", "product_id": cafe_catalog.muffin, "quantity": 24, "unit_cost": "2.50"},
                {"material_id": cafe_catalog.lid, "quantity": 200, "unit_cost": "0.30"},
            ],
        )

        purchase_order_service.receive_purchase_order(order["id"])

        muffin = product_service.get_product(cafe_catalog.muffin)
        assert to_decimal(muffin["stock_quantity"]) == Decimal("24")
        assert stock_of(cafe_catalog.lid) == Decimal("500")

    def test_ordered_order_can_be_received(self, latte_catalog, beans_and_cups_order):
        purchase_order_service.update_purchase_order(beans_and_cups_order["id"], {"status": "ordered"})

        purchase_order_service.receive_purchase_order(beans_and_cups_order["id"])

        assert stock_of(latte_catalog.beans) == Decimal("10000")

    def test_cannot_receive_twice(self, latte_catalog, beans_and_cups_order):
        purchase_order_service.receive_purchase_order(beans_and_cups_order["id"])

        with pytest.raises(ValidationError):
            purchase_order_service.receive_purchase_order(beans_and_cups_order["id"])
        assert stock_of(latte_catalog.beans) == Decimal("10000")

    def test_cancelled_order_not_received(self, latte_catalog, beans_and_cups_order):
        purchase_order_service.update_purchase_order(beans_and_cups_order["id"], {"status": "cancelled"})

        with pytest.raises(ValidationError):
            purchase_order_service.receive_purchase_order(beans_and_cups_order["id"])
        assert stock_of(latte_catalog.beans) == Decimal("5000")

    def test_unknown_order(self, test_db):
        with pytest.raises(PurchaseOrderNotFound):
            purchase_order_service.receive_purchase_order(999)

    def test_receipt_is_logged(self, beans_and_cups_order, caplog):
        with caplog.at_level(logging.INFO, logger="cafe_cost.services"):
            purchase_order_service.receive_purchase_order(beans_and_cups_order["id"])

        messages = [r.getMessage() for r in caplog.records]
        assert messages.count("add_material_stock: success") == 2
        assert "receive_purchase_order: success" in messages

    def test_received_order_cannot_be_updated(self, beans_and_cups_order):
        purchase_order_service.receive_purchase_order(beans_and_cups_order["id"])

        with pytest.raises(ValidationError):
            purchase_order_service.update_purchase_order(beans_and_cups_order["id"], {"notes": "late"})


class TestDeletePurchaseOrder:
    """Tests for delete_purchase_order()."""

    def test_draft_deleted_with_items(self, beans_and_cups_order):
        purchase_order_service.delete_purchase_order(beans_and_cups_order["id"])

        assert purchase_order_service.get_purchase_order(beans_and_cups_order["id"]) is None

    def test_only_drafts_deleted(self, beans_and_cups_order):
        purchase_order_service.update_purchase_order(beans_and_cups_order["id"], {"status": "ordered"})

        with pytest.raises(ValidationError):
            purchase_order_service.delete_purchase_order(beans_and_cups_order["id"])
