"""Tests for consumption analytics."""

import pytest
from datetime import timedelta
from decimal import Decimal

from src.models import InventoryConsumption
from src.services import analytics_service, consumption_service, material_service
from src.services.exceptions import ValidationError
from src.utils.datetime_utils import utc_now


@pytest.fixture
def two_orders(cafe_catalog):
    """Two orders that each contain a Latte and Muffins."""
    consumption_service.record_order(
        "5001",
        [
            {"external_product_id": 101, "product_name": "Latte", "quantity": 1, "order_item_id": 1},
            {"external_product_id": 202, "product_name": "Muffin", "quantity": 2, "order_item_id": 2},
        ],
    )
    consumption_service.record_order(
        "5002",
        [
            {"external_product_id": 101, "product_name": "Latte", "quantity": 1, "order_item_id": 1},
            {"external_product_id": 202, "product_name": "Muffin", "quantity": 1, "order_item_id": 2},
        ],
    )
    return cafe_catalog


class TestConsumptionSummary:
    """Tests for get_consumption_summary()."""

    def test_totals(self, two_orders):
        summary = analytics_service.get_consumption_summary()

        assert summary["order_count"] == 2
        assert summary["sale_count"] == 4
        # 2 Lattes at 4.225 plus 3 Muffins at 2.50
        assert summary["total_cost"] == Decimal("15.95")

    def test_products_sorted_by_cost(self, two_orders):
        c = two_orders
        products = analytics_service.get_consumption_summary()["products"]

        assert [p["product_id"] for p in products] == [c.latte, c.muffin]
        assert products[0]["units_sold"] == Decimal("2")
        assert products[0]["total_cost"] == Decimal("8.45")
        assert products[1]["units_sold"] == Decimal("3")
        assert products[1]["total_cost"] == Decimal("7.50")

    def test_materials_aggregated(self, two_orders):
        materials = analytics_service.get_consumption_summary()["materials"]

        beans = [m for m in materials if m["material_name"] == "Coffee Beans"][0]
        assert beans["quantity"] == Decimal("24")
        assert beans["unit"] == "g"
        assert beans["total_cost"] == Decimal("3.60")

    def test_date_range_excludes_rows(self, two_orders):
        summary = analytics_service.get_consumption_summary(start_date=utc_now() + timedelta(days=1))

        assert summary["sale_count"] == 0
        assert summary["total_cost"] == Decimal("0")
        assert summary["products"] == []


class TestProductCogsTrend:
    """Tests for get_product_cogs_trend()."""

    def test_daily_average(self, two_orders):
        trend = analytics_service.get_product_cogs_trend(two_orders.latte)

        assert len(trend) == 1
        assert trend[0]["units_sold"] == Decimal("2")
        assert trend[0]["avg_cogs_per_unit"] == Decimal("4.225")

    def test_unsold_product_has_empty_trend(self, two_orders):
        assert analytics_service.get_product_cogs_trend(two_orders.combo) == []


class TestFrequentPairs:
    """Tests for find_frequent_pairs()."""

    def test_pair_found(self, two_orders):
        c = two_orders
        pairs = analytics_service.find_frequent_pairs(min_occurrences=2)

        assert pairs == [
            {
                "product1_id": c.latte,
                "product1_name": "Latte",
                "product2_id": c.muffin,
                "product2_name": "Muffin",
                "times_bought_together": 2,
            }
        ]

    def test_threshold_filters_pairs(self, two_orders):
        assert analytics_service.find_frequent_pairs(min_occurrences=3) == []


def backdate_order(session, order_id, days):
    """Move every row of an order into the past."""
    session.query(InventoryConsumption).filter(InventoryConsumption.order_id == order_id).update(
        {"consumed_at": utc_now() - timedelta(days=days)}, synchronize_session=False
    )
    session.commit()
    session.expire_all()


class TestProfitabilityTrend:
    """Tests for get_profitability_trend()."""

    def test_daily_revenue_and_margin(self, two_orders):
        c = two_orders
        trend = analytics_service.get_profitability_trend(group_by="day")

        assert [t["product_id"] for t in trend] == [c.latte, c.muffin]
        latte, muffin = trend
        assert latte["period"] == utc_now().strftime("%Y-%m-%d")
        assert latte["units_sold"] == Decimal("2")
        assert latte["revenue"] == Decimal("24.00")
        assert latte["total_cost"] == Decimal("8.45")
        assert latte["profit"] == Decimal("15.55")
        assert latte["margin"] == Decimal("64.79")
        assert latte["avg_unit_price"] == Decimal("12.00")
        assert muffin["revenue"] == Decimal("18.00")
        assert muffin["margin"] == Decimal("58.33")

    def test_monthly_period_label(self, two_orders):
        trend = analytics_service.get_profitability_trend(group_by="month")

        assert {t["period"] for t in trend} == {utc_now().strftime("%Y-%m")}

    def test_unknown_period_rejected(self, test_db):
        with pytest.raises(ValidationError):
            analytics_service.get_profitability_trend(group_by="quarter")


class TestDecliningMargins:
    """Tests for get_products_with_declining_margins()."""

    def test_cost_increase_reported(self, latte_catalog, test_db):
        consumption_service.record_sale("6001", 101, "Latte", 1)
        backdate_order(test_db(), "6001", 40)
        material_service.update_material_price(latte_catalog.beans, "80.00")
        consumption_service.record_sale("6002", 101, "Latte", 1)

        declining = analytics_service.get_products_with_declining_margins(30)

        assert len(declining) == 1
        entry = declining[0]
        assert entry["product_id"] == latte_catalog.latte
        assert entry["previous_margin"] == Decimal("64.79")
        assert entry["recent_margin"] == Decimal("63.79")
        assert entry["margin_change"] == Decimal("-1.00")
        assert entry["previous_cogs"] == Decimal("4.225")
        assert entry["recent_cogs"] == Decimal("4.345")
        assert entry["cogs_change"] == Decimal("0.12")

    def test_steady_margin_not_reported(self, latte_catalog, test_db):
        consumption_service.record_sale("6003", 101, "Latte", 1)
        backdate_order(test_db(), "6003", 40)
        consumption_service.record_sale("6004", 101, "Latte", 1)

        assert analytics_service.get_products_with_declining_margins(30) == []

    def test_no_previous_sales_not_reported(self, latte_catalog):
        consumption_service.record_sale("6005", 101, "Latte", 1)

        assert analytics_service.get_products_with_declining_margins(30) == []
