"""
Costing CLI Utility

Command-line interface for the expansion engine and the consumption
recorder. No UI required - designed for back-office scripting and testing.

Selections are passed as JSON in the checkout format:
    '{"selectedMandatory": {"root:Drink": 12}, "selectedOptional": [44]}'

Usage Examples:
    # Create the database tables
    cafe-cost init-db

    # Price and cost one configured unit
    cafe-cost price 3 --selection '{"selectedMandatory": {"root:Temperature": 7}}'
    cafe-cost cogs 3 --breakdown

    # What goes on the kitchen ticket
    cafe-cost flatten 9 --quantity 2

    # Every choice a customer has to make for a product
    cafe-cost choices 9

    # Record a completed sale (external product id from the web shop)
    cafe-cost record-sale 1042 991 --name "Latte" --quantity 2

    # Materials at or below their low-stock threshold
    cafe-cost low-stock

    # Receive a supplier purchase order into stock
    cafe-cost receive-po PO-2026-10-0001
"""

import argparse
import json
import logging
import sys

from src.services import (
    consumption_service,
    expansion_service,
    material_service,
    purchase_order_service,
)
from src.services.bundle_selection import BundleSelection
from src.services.database import initialize_app_database
from src.services.dto_utils import cost_to_string, to_decimal
from src.services.exceptions import ServiceError


def _parse_selection(raw):
    """Parse a --selection JSON string into a BundleSelection."""
    if not raw:
        return BundleSelection.empty()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Selection is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Selection must be a JSON object")
    return BundleSelection.from_dict(data)


def init_db():
    """Create database tables."""
    initialize_app_database()
    print("Database initialized")
    return 0


def show_price(product_id: int, selection: BundleSelection, quantity: str):
    """Print the sale price of a product."""
    price = expansion_service.price_of(product_id, selection, quantity)
    print(f"Price: {cost_to_string(price)}")
    return 0


def show_cogs(product_id: int, selection: BundleSelection, quantity: str, breakdown: bool):
    """Print COGS, optionally with the contributing lines."""
    result = expansion_service.cogs_of(product_id, selection, quantity)
    if breakdown:
        for entry in result.breakdown:
            indent = "  " * entry.depth
            print(
                f"{indent}[{entry.item_type}] {entry.item_name}: "
                f"{entry.quantity} {entry.unit} = {cost_to_string(entry.total_cost)}"
                f"  ({entry.product_chain})"
            )
    print(f"COGS: {cost_to_string(result.total)}")
    return 0


def show_summary(product_id: int, selection: BundleSelection):
    """Print price, COGS and margin of one configured unit."""
    summary = expansion_service.get_cost_summary(product_id, selection)
    if summary is None:
        print(f"ERROR: Product {product_id} not found")
        return 1
    print(f"{summary['product_name']}")
    print(f"  Price:        {cost_to_string(summary['price'])}")
    print(f"  COGS:         {cost_to_string(summary['cogs'])}")
    print(f"  Gross profit: {cost_to_string(summary['gross_profit'])}")
    print(f"  Margin:       {summary['margin_percent']}%")
    return 0


def show_components(product_id: int, selection: BundleSelection, quantity: str):
    """Print the deliverable components of an order line."""
    components = expansion_service.flatten_components(product_id, selection, quantity)
    if not components:
        print("No components")
        return 0
    for component in components:
        print(f"{component.quantity} x {component.product_name}")
    return 0


def show_choices(product_id: int):
    """Print every XOR group and add-on reachable from a product."""
    tree = expansion_service.collect_choices(product_id)
    print(json.dumps(tree.to_dict(), indent=2))
    return 0


def record_sale(order_id: str, external_product_id: str, name: str, quantity: str,
                order_item_id, selection: BundleSelection):
    """Record one sold order line."""
    records = consumption_service.record_sale(
        order_id,
        external_product_id,
        name,
        quantity,
        order_item_id=order_item_id,
        selection=selection,
    )
    if not records:
        print(f"WARNING: Nothing recorded for external product {external_product_id}")
        return 1
    total = sum((to_decimal(r["total_cost"]) for r in records), to_decimal(0))
    print(f"Recorded {len(records)} consumption row(s), COGS {cost_to_string(total)}")
    return 0


def low_stock():
    """List materials at or below their low-stock threshold."""
    materials = material_service.get_low_stock_materials()
    if not materials:
        print("No materials are low on stock")
        return 0
    for material in materials:
        print(
            f"{material['name']}: {material['stock_quantity']} {material['purchase_unit']} "
            f"(threshold {material['low_stock_threshold']})"
        )
    return 0


def receive_po(po_number: str):
    """Receive a purchase order by its PO number."""
    order = purchase_order_service.get_purchase_order_by_number(po_number)
    if order is None:
        print(f"ERROR: Purchase order {po_number} not found")
        return 1
    received = purchase_order_service.receive_purchase_order(order["id"])
    for item in received["items"]:
        print(f"+{item['received_quantity']} {item['unit']} {item['item_name']}")
    print(f"Received {received['po_number']} from {received['supplier']}")
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Cost and price utility for the Cafe Cost Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log service operations")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init-db", help="Create database tables")

    for name, help_text in (
        ("price", "Sale price of a product"),
        ("cogs", "Cost of goods sold of a product"),
        ("flatten", "Deliverable components of a product"),
    ):
        command_parser = subparsers.add_parser(name, help=help_text)
        command_parser.add_argument("product_id", type=int, help="Product ID")
        command_parser.add_argument("--selection", help="Selection JSON")
        command_parser.add_argument("--quantity", default="1", help="Units (default: 1)")
        if name == "cogs":
            command_parser.add_argument(
                "--breakdown", action="store_true", help="Show every contributing line"
            )

    summary_parser = subparsers.add_parser("summary", help="Price, COGS and margin of a product")
    summary_parser.add_argument("product_id", type=int, help="Product ID")
    summary_parser.add_argument("--selection", help="Selection JSON")

    choices_parser = subparsers.add_parser("choices", help="Choices a customer can make")
    choices_parser.add_argument("product_id", type=int, help="Product ID")

    sale_parser = subparsers.add_parser("record-sale", help="Record a completed sale")
    sale_parser.add_argument("order_id", help="External order ID")
    sale_parser.add_argument("external_product_id", help="External product ID")
    sale_parser.add_argument("--name", default="", help="Product name as on the order")
    sale_parser.add_argument("--quantity", default="1", help="Units sold (default: 1)")
    sale_parser.add_argument("--order-item-id", dest="order_item_id", help="External order line ID")
    sale_parser.add_argument("--selection", help="Selection JSON")

    subparsers.add_parser("low-stock", help="Materials at or below their threshold")

    po_parser = subparsers.add_parser("receive-po", help="Receive a purchase order into stock")
    po_parser.add_argument("po_number", help="Purchase order number, e.g. PO-2026-10-0001")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "init-db":
            return init_db()

        initialize_app_database()

        if args.command == "price":
            return show_price(args.product_id, _parse_selection(args.selection), args.quantity)
        elif args.command == "cogs":
            return show_cogs(
                args.product_id, _parse_selection(args.selection), args.quantity, args.breakdown
            )
        elif args.command == "flatten":
            return show_components(args.product_id, _parse_selection(args.selection), args.quantity)
        elif args.command == "summary":
            return show_summary(args.product_id, _parse_selection(args.selection))
        elif args.command == "choices":
            return show_choices(args.product_id)
        elif args.command == "record-sale":
            return record_sale(
                args.order_id,
                args.external_product_id,
                args.name,
                args.quantity,
                args.order_item_id,
                _parse_selection(args.selection),
            )
        elif args.command == "low-stock":
            return low_stock()
        elif args.command == "receive-po":
            return receive_po(args.po_number)
    except (ServiceError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
