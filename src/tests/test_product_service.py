"""Tests for the product catalog service."""

import pytest
from decimal import Decimal

from src.services import product_service, recipe_service
from src.services.dto_utils import to_decimal
from src.services.exceptions import (
    ExternalIdAlreadyExists,
    ProductInUse,
    ProductNotFound,
    SkuAlreadyExists,
    ValidationError,
)


class TestCreateProduct:
    """Tests for create_product()."""

    def test_create_with_defaults(self, test_db):
        product = product_service.create_product({"name": "  Espresso ", "sku": "ESPRESSO"})

        assert product["name"] == "Espresso"
        assert product["category"] == "uncategorized"
        assert to_decimal(product["base_price"]) == Decimal("0")
        assert to_decimal(product["unit_cost"]) == Decimal("0")
        assert product["is_active"] is True
        assert product["has_price_override"] is False

    def test_blank_sku_uses_external_id(self, test_db):
        product = product_service.create_product({"name": "Mocha", "external_id": 310})
        assert product["sku"] == "product-310"

    def test_blank_sku_without_external_id_uses_id(self, test_db):
        product = product_service.create_product({"name": "Cortado", "sku": ""})
        assert product["sku"] == f"product-{product['id']}"

    def test_duplicate_sku_rejected(self, test_db):
        product_service.create_product({"name": "Latte", "sku": "LATTE"})
        with pytest.raises(SkuAlreadyExists):
            product_service.create_product({"name": "Other Latte", "sku": "LATTE"})

    def test_duplicate_external_id_rejected(self, test_db):
        product_service.create_product({"name": "Latte", "sku": "LATTE", "external_id": 101})
        with pytest.raises(ExternalIdAlreadyExists):
            product_service.create_product({"name": "Other", "sku": "OTHER", "external_id": "101"})

    def test_name_required_and_amounts_non_negative(self, test_db):
        with pytest.raises(ValidationError) as exc_info:
            product_service.create_product({"name": " ", "base_price": "-1"})

        assert "Product name is required" in exc_info.value.errors
        assert "Base price cannot be negative" in exc_info.value.errors


class TestProductLookup:
    """Tests for product queries."""

    def test_lookup_by_external_id_and_sku(self, latte_catalog):
        assert product_service.get_product_by_external_id(101)["id"] == latte_catalog.latte
        assert product_service.get_product_by_external_id("101")["id"] == latte_catalog.latte
        assert product_service.get_product_by_sku("ADD-VANILLA")["id"] == latte_catalog.vanilla

    def test_unknown_lookups_return_none(self, latte_catalog):
        assert product_service.get_product(9999) is None
        assert product_service.get_product_by_external_id(9999) is None
        assert product_service.get_product_by_external_id("not-a-number") is None
        assert product_service.get_product_by_sku("NOPE") is None

    def test_list_active_products(self, latte_catalog):
        product_service.update_product(latte_catalog.vanilla, {"is_active": False})

        names = [p["name"] for p in product_service.list_products(active_only=True)]

        assert names == ["Latte"]


class TestUpdateProduct:
    """Tests for update and the dedicated setters."""

    def test_update_keeps_external_id_when_not_given(self, latte_catalog):
        updated = product_service.update_product(latte_catalog.latte, {"base_price": "12.50"})

        assert updated["external_id"] == 101
        assert to_decimal(updated["base_price"]) == Decimal("12.50")

    def test_unit_cost_cannot_be_updated_directly(self, latte_catalog):
        with pytest.raises(ValidationError):
            product_service.update_product(latte_catalog.latte, {"unit_cost": "1.00"})

    def test_clearing_sku_regenerates_it(self, latte_catalog):
        updated = product_service.update_product(latte_catalog.latte, {"sku": ""})
        assert updated["sku"] == "product-101"

    def test_set_and_clear_bundle_price_override(self, latte_catalog):
        product = product_service.set_bundle_price_override(latte_catalog.latte, "10.00")
        assert product["has_price_override"] is True

        product = product_service.set_bundle_price_override(latte_catalog.latte, None)
        assert product["bundle_price_override"] is None

    def test_negative_override_rejected(self, latte_catalog):
        with pytest.raises(ValidationError):
            product_service.set_bundle_price_override(latte_catalog.latte, "-1")

    def test_set_supplier_cost(self, latte_catalog):
        product = product_service.set_supplier_cost(latte_catalog.vanilla, "0.40")
        assert to_decimal(product["supplier_cost"]) == Decimal("0.40")

    def test_missing_product_raises(self, test_db):
        with pytest.raises(ProductNotFound):
            product_service.update_product(9999, {"name": "Ghost"})


class TestUpsertProduct:
    """Tests for upsert_product() catalog imports."""

    def test_inserts_new_product(self, test_db):
        product = product_service.upsert_product({"name": "Chai", "external_id": 400, "base_price": "9.00"})
        assert product["sku"] == "product-400"

    def test_matches_by_external_id_and_keeps_local_costs(self, latte_catalog):
        """Catalog fields are overwritten, locally owned cost fields survive."""
        product_service.set_bundle_price_override(latte_catalog.latte, "11.00")
        before = product_service.get_product(latte_catalog.latte)

        product = product_service.upsert_product(
            {"name": "Caffe Latte", "external_id": 101, "sku": "LATTE", "base_price": "12.50"}
        )

        assert product["id"] == latte_catalog.latte
        assert product["name"] == "Caffe Latte"
        assert to_decimal(product["base_price"]) == Decimal("12.50")
        assert product["unit_cost"] == before["unit_cost"]
        assert to_decimal(product["bundle_price_override"]) == Decimal("11.00")

    def test_matches_by_sku(self, latte_catalog):
        product = product_service.upsert_product({"name": "Vanilla", "sku": "ADD-VANILLA"})
        assert product["id"] == latte_catalog.vanilla
        assert product["external_id"] == 102


class TestDeleteProduct:
    """Tests for delete_product()."""

    def test_linked_product_cannot_be_deleted(self, latte_catalog):
        with pytest.raises(ProductInUse):
            product_service.delete_product(latte_catalog.vanilla)

    def test_delete_removes_own_recipe(self, latte_catalog):
        product_service.delete_product(latte_catalog.latte)

        assert product_service.get_product(latte_catalog.latte) is None
        # Vanilla Shot is no longer linked from anywhere
        product_service.delete_product(latte_catalog.vanilla)
        assert product_service.get_product(latte_catalog.vanilla) is None

    def test_delete_keeps_materials_usable(self, latte_catalog):
        product_service.delete_product(latte_catalog.latte)
        shot = recipe_service.get_recipe_lines(latte_catalog.vanilla)
        assert len(shot) == 1
