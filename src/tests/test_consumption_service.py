"""Tests for sale-time consumption recording and stock deduction."""

import logging
from datetime import timedelta
from decimal import Decimal

from src.services import (
    consumption_service,
    expansion_service,
    material_service,
    product_service,
    recipe_service,
)
from src.services.bundle_selection import BundleSelection
from src.services.dto_utils import to_decimal
from src.utils.datetime_utils import utc_now


def total_of(records):
    return sum((to_decimal(r["total_cost"]) for r in records), Decimal("0"))


def stock_of(material_id):
    return to_decimal(material_service.get_material(material_id)["stock_quantity"])


class TestRecordSale:
    """Tests for record_sale()."""

    def test_latte_sale_writes_material_rows(self, latte_catalog):
        """Selling 2 Lattes records each material at twice the recipe quantity."""
        records = consumption_service.record_sale("1042", 101, "Latte", 2)

        assert [r["item_type"] for r in records] == ["material"] * 4
        assert [r["material_name"] for r in records] == ["Coffee Beans", "Milk", "Cup", "Lid"]
        assert to_decimal(records[0]["quantity_consumed"]) == Decimal("24")
        assert total_of(records) == Decimal("8.45")

    def test_sale_rows_carry_order_context(self, latte_catalog):
        records = consumption_service.record_sale("1042", "101", "Latte", 1, order_item_id=77)

        for record in records:
            assert record["order_id"] == "1042"
            assert record["order_item_id"] == "77"
            assert record["root_product_id"] == latte_catalog.latte
            assert record["product_sku"] == "LATTE"
            assert record["depth"] == 0
            assert record["product_chain"] == "Latte"

    def test_stock_is_deducted(self, latte_catalog):
        consumption_service.record_sale("1042", 101, "Latte", 2)

        assert stock_of(latte_catalog.beans) == Decimal("4976")
        assert stock_of(latte_catalog.milk) == Decimal("19500")
        assert stock_of(latte_catalog.cup) == Decimal("298")
        # Optional add-on not selected, so syrup is untouched
        assert stock_of(latte_catalog.syrup) == Decimal("1500")

    def test_selected_add_on_is_recorded_beneath_placeholder(self, latte_catalog):
        selection = BundleSelection.build(optional=[latte_catalog.vanilla])

        records = consumption_service.record_sale("1043", 101, "Latte", 2, selection=selection)

        placeholder = [r for r in records if r["item_type"] == "product"]
        assert len(placeholder) == 1
        assert placeholder[0]["linked_product_name"] == "Vanilla Shot"
        assert to_decimal(placeholder[0]["total_cost"]) == Decimal("0")

        syrup = [r for r in records if r["material_name"] == "Vanilla Syrup"][0]
        assert syrup["depth"] == 1
        assert syrup["product_chain"] == "Latte → Vanilla Shot"
        assert to_decimal(syrup["quantity_consumed"]) == Decimal("60")
        assert stock_of(latte_catalog.syrup) == Decimal("1440")

    def test_xor_choice_records_only_chosen_option(self, cafe_catalog):
        c = cafe_catalog
        selection = BundleSelection.build({"root:Temperature": c.iced})

        records = consumption_service.record_sale("2001", 201, "Americano", 1, selection=selection)

        linked = [r["linked_product_id"] for r in records if r["item_type"] == "product"]
        assert linked == [c.iced]
        assert total_of(records) == Decimal("3.50")

    def test_recorded_cost_matches_cogs(self, cafe_catalog):
        """Recorded total equals the engine's COGS for the same selection."""
        c = cafe_catalog
        records = consumption_service.record_sale("2002", 203, "Morning Combo", 1)

        assert total_of(records) == expansion_service.cogs_of(c.combo).total
        assert total_of(records) == Decimal("5.20")

    def test_recorded_cost_matches_cogs_for_inexact_unit_cost(self, test_db):
        """A cost per unit that does not divide evenly is rounded once, the same way."""
        spice = material_service.create_material("Saffron", "ingredient", "g", 3, "10.00")
        tea = product_service.create_product(
            {"name": "Saffron Tea", "sku": "TEA-SAFFRON", "external_id": 600, "base_price": "30.00"}
        )
        recipe_service.add_recipe_line(
            tea["id"], {"item_type": "material", "material_id": spice["id"], "quantity": 7}
        )

        records = consumption_service.record_sale("2010", 600, "Saffron Tea", 3)
        cogs = expansion_service.cogs_of(tea["id"], quantity=3)

        assert total_of(records) == cogs.total
        assert cogs.total == Decimal("70.00")
        assert [entry.total_cost for entry in cogs.breakdown] == [
            to_decimal(r["total_cost"]) for r in records
        ]

    def test_sale_price_kept_on_root_rows(self, cafe_catalog):
        """The selection-priced unit price is kept on depth 0 rows only."""
        c = cafe_catalog
        selection = BundleSelection.build({"root:Temperature": c.iced})

        records = consumption_service.record_sale("2011", 201, "Americano", 2, selection=selection)

        root_rows = [r for r in records if r["depth"] == 0]
        nested_rows = [r for r in records if r["depth"] > 0]
        assert root_rows and nested_rows
        assert {to_decimal(r["unit_sale_price"]) for r in root_rows} == {Decimal("9.00")}
        assert {r["unit_sale_price"] for r in nested_rows} == {None}

    def test_charged_price_overrides_catalog_price(self, latte_catalog):
        records = consumption_service.record_sale("2012", 101, "Latte", 1, unit_price="10.50")

        assert {to_decimal(r["unit_sale_price"]) for r in records} == {Decimal("10.50")}

    def test_supplier_cost_recorded_as_base_row(self, cafe_catalog):
        records = consumption_service.record_sale("2003", 202, "Muffin", 3)

        assert len(records) == 1
        assert records[0]["item_type"] == "base"
        assert records[0]["material_name"] == "Muffin (Base Supplier Cost)"
        assert to_decimal(records[0]["total_cost"]) == Decimal("7.50")

    def test_nested_selection_not_applied_below_root(self, cafe_catalog):
        """A nested group choice is ignored when recording; only the root's lines use it."""
        c = cafe_catalog
        selection = BundleSelection.build({f"{c.americano}:Temperature": c.hot})

        records = consumption_service.record_sale("2004", 203, "Morning Combo", 1, selection=selection)

        assert total_of(records) == Decimal("5.20")

    def test_unknown_product_records_nothing(self, latte_catalog, caplog):
        with caplog.at_level(logging.WARNING):
            records = consumption_service.record_sale("1044", 999, "Mystery Drink", 1)

        assert records == []
        assert "record_sale: product_not_found" in caplog.text
        assert consumption_service.get_order_consumptions("1044") == []

    def test_product_without_recipe_or_cost_warns(self, test_db, caplog):
        product_service.create_product({"name": "Gift Card", "sku": "GIFT", "external_id": 500})

        with caplog.at_level(logging.WARNING):
            records = consumption_service.record_sale("1045", 500, "Gift Card", 1)

        assert records == []
        assert "no COGS tracked" in caplog.text

    def test_negative_stock_is_allowed_and_logged(self, latte_catalog, caplog):
        with caplog.at_level(logging.WARNING):
            consumption_service.record_sale("1046", 101, "Latte", 400)

        assert stock_of(latte_catalog.cup) == Decimal("-100")
        assert "stock is negative" in caplog.text

    def test_success_is_logged(self, latte_catalog, caplog):
        with caplog.at_level(logging.INFO):
            consumption_service.record_sale("1047", 101, "Latte", 1)

        records = [r for r in caplog.records if r.getMessage() == "record_sale: success"]
        assert len(records) == 1
        assert records[0].order_id == "1047"
        assert records[0].records == 4


class TestRecordOrder:
    """Tests for record_order()."""

    def test_records_every_line(self, cafe_catalog):
        result = consumption_service.record_order(
            "3001",
            [
                {"external_product_id": 101, "product_name": "Latte", "quantity": 1, "order_item_id": 1},
                {
                    "external_product_id": 201,
                    "product_name": "Americano",
                    "quantity": 1,
                    "order_item_id": 2,
                    "selection": {"selectedMandatory": {"root:Temperature": cafe_catalog.hot}},
                },
            ],
        )

        assert result["order_id"] == "3001"
        assert result["total_cost"] == Decimal("4.225") + Decimal("3.20")
        assert result["missing_products"] == []
        assert consumption_service.get_order_cogs("3001") == result["total_cost"]

    def test_missing_product_reported(self, latte_catalog):
        missing = {"external_product_id": 999, "product_name": "Mystery", "quantity": 1}

        result = consumption_service.record_order(
            "3002",
            [{"external_product_id": 101, "product_name": "Latte", "quantity": 1}, missing],
        )

        assert result["missing_products"] == [missing]
        assert len(result["records"]) == 4

    def test_recipe_with_no_consumption_reported(self, latte_catalog, caplog):
        """A product whose recipe is all unselected add-ons is flagged for review."""
        shell = product_service.create_product({"name": "Add-on Only", "sku": "ADDON", "external_id": 600})
        recipe_service.add_recipe_line(
            shell["id"],
            {
                "item_type": "product",
                "linked_product_id": latte_catalog.vanilla,
                "quantity": 1,
                "is_optional": True,
            },
        )
        item = {"external_product_id": 600, "product_name": "Add-on Only", "quantity": 1}

        with caplog.at_level(logging.WARNING):
            result = consumption_service.record_order("3003", [item])

        assert result["unrecorded_items"] == [item]
        assert "recipe_produced_no_consumption" in caplog.text


class TestConsumptionQueries:
    """Tests for the consumption query functions."""

    def test_order_consumptions_in_write_order(self, latte_catalog):
        consumption_service.record_sale("4001", 101, "Latte", 1)

        rows = consumption_service.get_order_consumptions("4001")

        assert [r["material_name"] for r in rows] == ["Coffee Beans", "Milk", "Cup", "Lid"]

    def test_product_consumptions_by_sold_product(self, cafe_catalog):
        c = cafe_catalog
        consumption_service.record_sale("4002", 204, "Breakfast Set", 1)
        consumption_service.record_sale("4003", 101, "Latte", 1)

        set_rows = consumption_service.get_product_consumptions(c.breakfast_set)
        latte_rows = consumption_service.get_product_consumptions(c.latte)

        assert {r["order_id"] for r in set_rows} == {"4002"}
        assert {r["order_id"] for r in latte_rows} == {"4003"}

    def test_material_consumptions_with_date_filter(self, latte_catalog):
        consumption_service.record_sale("4004", 101, "Latte", 1)
        now = utc_now()

        in_range = consumption_service.get_material_consumptions(
            latte_catalog.beans, start_date=now - timedelta(hours=1)
        )
        future = consumption_service.get_material_consumptions(
            latte_catalog.beans, start_date=now + timedelta(hours=1)
        )

        assert len(in_range) == 1
        assert to_decimal(in_range[0]["quantity_consumed"]) == Decimal("12")
        assert future == []

    def test_order_cogs_of_unknown_order_is_zero(self, test_db):
        assert consumption_service.get_order_cogs("nope") == Decimal("0")
