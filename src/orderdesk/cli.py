"""Command-line interface for orderdesk."""

import argparse
import json
import logging
import sys
from pathlib import Path

from . import __version__, settings
from .errors import AlreadyInStateError, OrderdeskError
from .order_store import JsonOrderStore
from .service import OrderService
from .utils import format_money, format_order, truncate_id

EXPIRED_REJECTION_NOTE = "Verification deadline expired"


def get_service(args: argparse.Namespace) -> OrderService:
    """Get an OrderService for the configured data directory."""
    data_dir = Path(args.data_dir) if getattr(args, "data_dir", None) else None
    return OrderService(JsonOrderStore(data_dir))


def _print_order(order, as_json: bool, verbose: bool = False) -> None:
    if as_json:
        print(json.dumps(order.to_dict(), indent=2))
    else:
        print(format_order(order, verbose=verbose))


def cmd_create(args: argparse.Namespace) -> int:
    """Create an order from a JSON checkout document."""
    try:
        with open(args.order_file, "r", encoding="utf-8") as f:
            payload = json.load(f)

        service = get_service(args)
        order = service.create_order(
            user_id=payload.get("user_id", ""),
            items=payload.get("items", []),
            shipping_address=payload.get("shipping_address"),
            billing_address=payload.get("billing_address"),
            payment_method=payload.get("payment_method"),
            transaction_proof=payload.get("transaction_proof", ""),
            pricing=payload.get("pricing"),
            notes=payload.get("notes", ""),
        )

        print(f"Created order: {order.order_number} ({truncate_id(order.id)})")
        print(f"  Total: {format_money(order.pricing.total)}")
        print(f"  Verify by: {order.to_dict()['verification_deadline']}")
        return 0

    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except FileNotFoundError:
        print(f"Error: Order file not found: {args.order_file}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in order file: {e}", file=sys.stderr)
        return 1


def cmd_list(args: argparse.Namespace) -> int:
    """List orders."""
    try:
        service = get_service(args)
        orders, total = service.list_orders(
            user_id=args.user,
            status=args.status,
            include_archived=args.all,
            page=args.page,
            limit=args.limit,
        )

        if not orders:
            print("No orders found.")
            return 0

        if args.json:
            print(json.dumps([o.to_dict() for o in orders], indent=2))
        else:
            print(f"Orders ({len(orders)} of {total}):")
            print()
            for order in orders:
                print(format_order(order, verbose=args.verbose))

        return 0

    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_show(args: argparse.Namespace) -> int:
    """Show one order."""
    try:
        order = get_service(args).get_order(args.order_id)
        _print_order(order, args.json, verbose=True)
        return 0

    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_verify(args: argparse.Namespace) -> int:
    """Approve or reject an order's payment proof."""
    try:
        service = get_service(args)
        order = service.verify_payment(
            args.order_id, args.approve, args.notes or "", actor=args.actor
        )
        action = "Approved" if args.approve else "Rejected"
        print(f"{action} payment for order {order.order_number}")
        print(f"  Status: {order.status.value}")
        return 0

    except AlreadyInStateError as e:
        print(f"Nothing to do: {e}")
        return 0
    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Move an order along the fulfillment path."""
    try:
        shipping_info = {
            k: v
            for k, v in {
                "carrier": args.carrier,
                "tracking_number": args.tracking,
                "method": args.method,
                "estimated_delivery": args.estimated_delivery,
            }.items()
            if v is not None
        }
        service = get_service(args)
        order = service.update_status(
            args.order_id,
            args.status,
            shipping_info=shipping_info or None,
            actor=args.actor,
            note=args.note,
        )
        print(f"Order {order.order_number} is now {order.status.value}")
        if order.timeline:
            print(f"  {order.timeline[-1].note}")
        return 0

    except AlreadyInStateError as e:
        print(f"Nothing to do: {e}")
        return 0
    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_refund_request(args: argparse.Namespace) -> int:
    try:
        order = get_service(args).request_refund(args.order_id, args.reason)
        print(f"Refund requested for order {order.order_number}")
        return 0

    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_refund_resolve(args: argparse.Namespace) -> int:
    try:
        order = get_service(args).resolve_refund(
            args.order_id, args.decision, actor=args.actor
        )
        print(f"Refund {order.refund.status.value} for order {order.order_number}")
        return 0

    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_refund_process(args: argparse.Namespace) -> int:
    try:
        order = get_service(args).process_refund(
            args.order_id, args.amount, actor=args.actor
        )
        print(
            f"Refunded {format_money(order.refund.amount)} for order {order.order_number}"
        )
        return 0

    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_archive(args: argparse.Namespace) -> int:
    try:
        order = get_service(args).archive_order(args.order_id)
        print(f"Archived order {order.order_number}")
        return 0

    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_stats(args: argparse.Namespace) -> int:
    """Show order statistics."""
    try:
        stats = get_service(args).get_order_stats(args.user)

        if args.json:
            print(json.dumps(stats, indent=2))
        else:
            scope = f" for user {args.user}" if args.user else ""
            print(f"Order statistics{scope}:")
            print(f"  Orders:     {stats['total_orders']}")
            print(f"  Revenue:    {format_money(stats['total_revenue'])}")
            print(f"  Average:    {format_money(stats['average_order_value'])}")
            print(f"  Pending:    {stats['pending_orders']}")
            print(f"  Verified:   {stats['verified_orders']}")
            print(f"  Shipped:    {stats['shipped_orders']}")
            print(f"  Delivered:  {stats['delivered_orders']}")
            print(f"  Cancelled:  {stats['cancelled_orders']}")
        return 0

    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_expired(args: argparse.Namespace) -> int:
    """List (and optionally reject) orders past their verification deadline."""
    try:
        service = get_service(args)
        orders = service.list_expired_pending()

        if not orders:
            print("No expired orders.")
            return 0

        if args.json and not args.reject:
            print(json.dumps([o.to_dict() for o in orders], indent=2))
            return 0

        print(f"Expired orders ({len(orders)}):")
        failures = 0
        for order in orders:
            if not args.reject:
                print(format_order(order))
                continue
            try:
                service.verify_payment(
                    order.id, False, EXPIRED_REJECTION_NOTE, actor=args.actor
                )
                print(f"  Rejected {order.order_number}")
            except AlreadyInStateError:
                print(f"  Skipped {order.order_number} (already resolved)")
            except OrderdeskError as e:
                failures += 1
                print(f"  Failed {order.order_number}: {e}", file=sys.stderr)

        return 1 if failures else 0

    except OrderdeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    import uvicorn

    print("Starting orderdesk API server...")
    print(f"Data directory: {args.data_dir or settings.DATA_DIR}")
    print(f"API docs: http://{args.host}:{args.port}/docs")
    print()

    # When reload is enabled, uvicorn requires the app as an import string
    app_target = "orderdesk.api:app" if args.reload else None
    if app_target is None:
        from .api import app
        app_target = app

    uvicorn.run(
        app_target,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="orderdesk",
        description="Verify payments, fulfill and refund orders.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--data-dir", help="Order data directory (default: $ORDERDESK_DATA_DIR)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # create
    create_parser_ = subparsers.add_parser("create", help="Create an order from a JSON file")
    create_parser_.add_argument("order_file", help="Path to checkout JSON document")

    # list
    list_parser = subparsers.add_parser("list", help="List orders")
    list_parser.add_argument("--user", "-u", help="Only this user's orders")
    list_parser.add_argument("--status", "-s", help="Only orders with this status")
    list_parser.add_argument(
        "--all", "-a", action="store_true", help="Include archived orders"
    )
    list_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    list_parser.add_argument("--limit", type=int, default=10, help="Page size (default: 10)")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show items and timeline"
    )

    # show
    show_parser = subparsers.add_parser("show", help="Show an order")
    show_parser.add_argument("order_id", help="Order ID or order number")
    show_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # verify
    verify_parser = subparsers.add_parser("verify", help="Approve or reject a payment proof")
    verify_parser.add_argument("order_id", help="Order ID or order number")
    decision = verify_parser.add_mutually_exclusive_group(required=True)
    decision.add_argument("--approve", dest="approve", action="store_true")
    decision.add_argument("--reject", dest="approve", action="store_false")
    verify_parser.add_argument("--notes", "-n", help="Verification notes")
    verify_parser.add_argument("--actor", help="Admin performing the action")

    # status
    status_parser = subparsers.add_parser("status", help="Update fulfillment status")
    status_parser.add_argument("order_id", help="Order ID or order number")
    status_parser.add_argument(
        "status", choices=["processing", "shipped", "delivered", "cancelled"]
    )
    status_parser.add_argument("--carrier", help="Carrier (required for shipped)")
    status_parser.add_argument("--tracking", help="Tracking number (required for shipped)")
    status_parser.add_argument("--method", choices=["standard", "express", "pickup"])
    status_parser.add_argument("--estimated-delivery", help="ISO 8601 date")
    status_parser.add_argument("--note", help="Timeline note")
    status_parser.add_argument("--actor", help="Admin performing the action")

    # refund-request
    refund_request_parser = subparsers.add_parser("refund-request", help="Request a refund")
    refund_request_parser.add_argument("order_id", help="Order ID or order number")
    refund_request_parser.add_argument("reason", help="Reason for the refund")

    # refund-resolve
    refund_resolve_parser = subparsers.add_parser(
        "refund-resolve", help="Approve or reject a refund request"
    )
    refund_resolve_parser.add_argument("order_id", help="Order ID or order number")
    refund_resolve_parser.add_argument("decision", choices=["approved", "rejected"])
    refund_resolve_parser.add_argument("--actor", help="Admin performing the action")

    # refund-process
    refund_process_parser = subparsers.add_parser(
        "refund-process", help="Pay out an approved refund"
    )
    refund_process_parser.add_argument("order_id", help="Order ID or order number")
    refund_process_parser.add_argument(
        "--amount", type=float, help="Refund amount (default: order total)"
    )
    refund_process_parser.add_argument("--actor", help="Admin performing the action")

    # archive
    archive_parser = subparsers.add_parser("archive", help="Archive a finished order")
    archive_parser.add_argument("order_id", help="Order ID or order number")

    # stats
    stats_parser = subparsers.add_parser("stats", help="Show order statistics")
    stats_parser.add_argument("--user", "-u", help="Only this user's orders")
    stats_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # expired
    expired_parser = subparsers.add_parser(
        "expired", help="List orders past their verification deadline"
    )
    expired_parser.add_argument(
        "--reject", action="store_true", help="Reject the payment of each expired order"
    )
    expired_parser.add_argument("--actor", help="Admin performing the sweep")
    expired_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "create": cmd_create,
        "list": cmd_list,
        "show": cmd_show,
        "verify": cmd_verify,
        "status": cmd_status,
        "refund-request": cmd_refund_request,
        "refund-resolve": cmd_refund_resolve,
        "refund-process": cmd_refund_process,
        "archive": cmd_archive,
        "stats": cmd_stats,
        "expired": cmd_expired,
        "serve": cmd_serve,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
