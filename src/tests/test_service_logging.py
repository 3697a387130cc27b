"""Tests for service layer structured logging.

These tests verify that catalog, pricing and consumption operations emit
structured log entries with appropriate context information.
"""

import logging

from src.services import expansion_service, material_service, product_service
from src.services.logging_utils import get_service_logger, log_operation


class TestLoggingUtilities:
    """Tests for logging utility functions."""

    def test_get_service_logger_returns_logger(self):
        """get_service_logger returns a configured Logger instance."""
        logger = get_service_logger("test_module")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "cafe_cost.services.test_module"

    def test_get_service_logger_extracts_module_name(self):
        """get_service_logger extracts module name from full path."""
        logger = get_service_logger("src.services.consumption_service")
        assert logger.name == "cafe_cost.services.consumption_service"

    def test_log_operation_logs_at_info_level(self, caplog):
        """log_operation logs at INFO level by default."""
        logger = get_service_logger("test")

        with caplog.at_level(logging.INFO):
            log_operation(logger, operation="test_op", outcome="success", entity_id=123)

        assert "test_op: success" in caplog.text
        assert caplog.records[0].levelno == logging.INFO

    def test_log_operation_logs_at_custom_level(self, caplog):
        """log_operation respects custom log level."""
        logger = get_service_logger("test")

        with caplog.at_level(logging.WARNING):
            log_operation(logger, operation="info_op", outcome="hidden")
            log_operation(logger, operation="warn_op", outcome="shown", level=logging.WARNING)

        assert "info_op" not in caplog.text
        assert "warn_op: shown" in caplog.text

    def test_log_operation_includes_extra_context(self, caplog):
        """log_operation includes extra context in log records."""
        logger = get_service_logger("test")

        with caplog.at_level(logging.INFO):
            log_operation(
                logger,
                operation="context_test",
                outcome="success",
                order_id="1042",
                records=7,
            )

        assert len(caplog.records) == 1
        record = caplog.records[0]
        assert record.operation == "context_test"
        assert record.outcome == "success"
        assert record.order_id == "1042"
        assert record.records == 7


class TestCatalogLogging:
    """Tests for catalog service logging."""

    def test_create_product_logs_success(self, test_db, caplog):
        with caplog.at_level(logging.INFO, logger="cafe_cost.services"):
            product = product_service.create_product({"name": "Flat White", "sku": "FLAT-WHITE"})

        records = [r for r in caplog.records if r.getMessage() == "create_product: success"]
        assert len(records) == 1
        assert records[0].product_id == product["id"]
        assert records[0].sku == "FLAT-WHITE"

    def test_price_change_logs_cascade_counts(self, latte_catalog, caplog):
        """Changing a material price logs how many lines and products were recosted.

        Every line of a recosted product is refreshed, so all five Latte lines count.
        """
        with caplog.at_level(logging.INFO, logger="cafe_cost.services"):
            material_service.update_material_price(latte_catalog.beans, "80.00")

        records = [r for r in caplog.records if r.getMessage().startswith("update_material_price:")]
        assert len(records) == 1
        assert records[0].material_id == latte_catalog.beans
        assert records[0].lines_updated == 5
        assert records[0].products_updated == 1


class TestExpansionLogging:
    """Tests for expansion engine logging."""

    def test_unknown_product_logged_under_service_prefix(self, test_db, caplog):
        with caplog.at_level(logging.WARNING, logger="cafe_cost.services"):
            expansion_service.price_of(999)

        records = [r for r in caplog.records if "product 999 not found" in r.getMessage()]
        assert len(records) == 1
        assert records[0].name == "cafe_cost.services.expansion_service"
