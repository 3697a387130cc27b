"""Tests for the costing command-line utility."""

import json
import pytest

from src.services import purchase_order_service
from src.utils import costing_cli


@pytest.fixture
def run_cli(monkeypatch, capsys):
    """Run the CLI against the test database and return (exit code, stdout)."""
    monkeypatch.setattr(costing_cli, "initialize_app_database", lambda: None)

    def run(*args):
        monkeypatch.setattr("sys.argv", ["cafe-cost", *[str(a) for a in args]])
        code = costing_cli.main()
        return code, capsys.readouterr().out

    return run


class TestCostingCli:
    """Tests for costing_cli.main()."""

    def test_price_with_selection(self, cafe_catalog, run_cli):
        selection = json.dumps({"selectedMandatory": {"root:Temperature": cafe_catalog.iced}})

        code, out = run_cli("price", cafe_catalog.americano, "--selection", selection)

        assert code == 0
        assert "Price: 9.00" in out

    def test_cogs_breakdown(self, latte_catalog, run_cli):
        code, out = run_cli("cogs", latte_catalog.latte, "--breakdown")

        assert code == 0
        assert "[material] Coffee Beans" in out
        assert "COGS: 4.23" in out

    def test_summary(self, latte_catalog, run_cli):
        code, out = run_cli("summary", latte_catalog.latte)

        assert code == 0
        assert "Margin:       64.79%" in out

    def test_flatten(self, cafe_catalog, run_cli):
        code, out = run_cli("flatten", cafe_catalog.family_pack)

        assert code == 0
        assert "Latte" in out
        assert "Americano" in out

    def test_record_sale_unknown_product(self, latte_catalog, run_cli):
        code, out = run_cli("record-sale", "1042", "999", "--name", "Mystery")

        assert code == 1
        assert "Nothing recorded" in out

    def test_receive_po(self, latte_catalog, run_cli):
        order = purchase_order_service.create_purchase_order(
            "Roastery Co", [{"material_id": latte_catalog.beans, "quantity": 5000, "unit_cost": "0.14"}]
        )

        code, out = run_cli("receive-po", order["po_number"])

        assert code == 0
        assert "Coffee Beans" in out
        assert f"Received {order['po_number']} from Roastery Co" in out

    def test_receive_po_twice_is_an_error(self, latte_catalog, run_cli):
        order = purchase_order_service.create_purchase_order(
            "Roastery Co", [{"material_id": latte_catalog.beans, "quantity": 5000, "unit_cost": "0.14"}]
        )
        run_cli("receive-po", order["po_number"])

        code, out = run_cli("receive-po", order["po_number"])

        assert code == 1
        assert out.startswith("ERROR:")

    def test_receive_unknown_po(self, test_db, run_cli):
        code, out = run_cli("receive-po", "PO-1999-01-0001")

        assert code == 1
        assert "not found" in out

    def test_invalid_selection_json(self, latte_catalog, run_cli):
        code, out = run_cli("price", latte_catalog.latte, "--selection", "{not json")

        assert code == 1
        assert out.startswith("ERROR: Selection is not valid JSON")

    def test_no_command_prints_help(self, run_cli):
        code, out = run_cli()

        assert code == 1
        assert "usage:" in out
