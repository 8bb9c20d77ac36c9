"""Command-line interface for storefront."""

import argparse
import json
import logging
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any

from . import __version__
from .config import Settings
from .errors import StorefrontError
from .lifecycle import OrderLifecycleManager
from .models import AddressSnapshot, Identity, LineItem, Order, to_decimal
from .order_store import OrderStore
from .utils import format_order, parse_status


def get_store(args: argparse.Namespace) -> OrderStore:
    """Get the OrderStore for --data-dir or the configured data directory."""
    data_dir = Path(args.data_dir) if args.data_dir else Settings.from_env().data_dir
    return OrderStore(data_dir)


def get_manager(args: argparse.Namespace) -> OrderLifecycleManager:
    """Get a lifecycle manager without a payment provider."""
    return OrderLifecycleManager(get_store(args))


def _order_from_seed(entry: dict[str, Any], owner: str | None) -> Order:
    """Build a PENDING order from one seed-file entry."""
    items = [
        LineItem.create(
            product_id=str(i["product_id"]),
            product_name=i["product_name"],
            unit_price=to_decimal(i["unit_price"], "unit_price"),
            quantity=int(i.get("quantity", 1)),
            variant_name=i.get("variant_name"),
        )
        for i in entry.get("items", [])
    ]
    shipping_address = AddressSnapshot.from_dict(entry["shipping_address"])
    billing = entry.get("billing_address")
    return Order.create(
        owner_id=entry.get("owner_id", owner),
        items=items,
        shipping_address=shipping_address,
        billing_address=AddressSnapshot.from_dict(billing) if billing else None,
        tax=to_decimal(entry.get("tax", "0"), "tax"),
        shipping=to_decimal(entry.get("shipping", "0"), "shipping"),
        currency=entry.get("currency", "USD"),
    )


def cmd_seed(args: argparse.Namespace) -> int:
    """Create pending orders from a JSON seed file."""
    try:
        with open(args.file, "r", encoding="utf-8") as f:
            data = json.load(f, parse_float=Decimal)
    except (OSError, ValueError) as e:
        print(f"Error: cannot read {args.file}: {e}", file=sys.stderr)
        return 1

    if isinstance(data, list):
        entries = data
    elif isinstance(data, dict):
        entries = data.get("orders", [])
    else:
        print(f"Error: {args.file} must hold a list of orders or {{\"orders\": [...]}}", file=sys.stderr)
        return 1

    # Build every order first so a bad entry leaves the store untouched.
    try:
        orders = [_order_from_seed(entry, args.owner) for entry in entries]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        print(f"Error: malformed seed entry ({e})", file=sys.stderr)
        return 1
    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        store = get_store(args)
        for order in orders:
            store.add_order(order)
            print(f"Created order {order.id[:8]} ({order.order_number}) total {order.total}")
        print(f"Seeded {len(orders)} order(s)")
        return 0

    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_list(args: argparse.Namespace) -> int:
    """List a customer's orders."""
    try:
        manager = get_manager(args)
        orders, pagination = manager.list_orders(
            Identity(id=args.owner),
            page=args.page,
            limit=args.limit,
            status=parse_status(args.status),
        )

        if args.json:
            print(json.dumps([o.to_dict() for o in orders], indent=2))
            return 0

        if not orders:
            print("No orders found.")
            return 0

        print(f"Orders ({pagination.total}, page {pagination.page}/{pagination.total_pages}):")
        for order in orders:
            print(format_order(order, verbose=args.verbose))
        return 0

    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_show(args: argparse.Namespace) -> int:
    """Show one order."""
    try:
        order = get_manager(args).get_order(Identity(id=args.owner), args.order_id)
        if args.json:
            print(json.dumps(order.to_dict(), indent=2))
        else:
            print(format_order(order, verbose=True))
        return 0

    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_cancel(args: argparse.Namespace) -> int:
    """Cancel a pending order on behalf of its owner."""
    try:
        order = get_manager(args).cancel_order(Identity(id=args.owner), args.order_id)
        print(f"Cancelled order: {order.id[:8]} ({order.order_number})")
        return 0

    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        settings = Settings.from_env()
        if not settings.paypal_client_id:
            print("Warning: PAYPAL_CLIENT_ID not set; payment endpoints will fail.", file=sys.stderr)

        print("Starting storefront API server...")
        print(f"Data directory: {settings.data_dir}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "storefront.api:app" if args.reload else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=settings.log_level.lower(),
        )
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="storefront",
        description="Order lifecycle and payment reconciliation service",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--data-dir", help="Data directory (default: STOREFRONT_DATA_DIR)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output and debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # seed
    seed_parser = subparsers.add_parser("seed", help="Create pending orders from a JSON file")
    seed_parser.add_argument("file", help="Seed file (list of orders, or {\"orders\": [...]})")
    seed_parser.add_argument("--owner", help="Owner ID for entries without owner_id")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    # orders
    orders_parser = subparsers.add_parser("orders", help="Inspect and cancel orders")
    orders_subparsers = orders_parser.add_subparsers(dest="orders_command", help="Orders command")

    list_parser = orders_subparsers.add_parser("list", help="List a customer's orders")
    list_parser.add_argument("--owner", required=True, help="Customer ID")
    list_parser.add_argument("--status", help="Filter by status")
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--limit", type=int, default=10)
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    show_parser = orders_subparsers.add_parser("show", help="Show an order")
    show_parser.add_argument("order_id", help="Order ID")
    show_parser.add_argument("--owner", required=True, help="Customer ID")
    show_parser.add_argument("--json", action="store_true", help="Output as JSON")

    cancel_parser = orders_subparsers.add_parser("cancel", help="Cancel a pending order")
    cancel_parser.add_argument("order_id", help="Order ID")
    cancel_parser.add_argument("--owner", required=True, help="Customer ID")

    return parser


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    level = "DEBUG" if args.verbose else Settings.from_env().log_level
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if not args.command:
        parser.print_help()
        return 0

    # Handle orders subcommands
    if args.command == "orders":
        if not getattr(args, "orders_command", None):
            parser.parse_args(["orders", "--help"])
            return 0
        orders_commands = {
            "list": cmd_orders_list,
            "show": cmd_orders_show,
            "cancel": cmd_orders_cancel,
        }
        return orders_commands[args.orders_command](args)

    commands = {
        "seed": cmd_seed,
        "serve": cmd_serve,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
