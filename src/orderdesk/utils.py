"""Display helpers for orderdesk."""

from datetime import datetime

from .expiry import days_until_deadline, is_expired
from .models import Order, OrderStatus, format_timestamp, total_items


def truncate_id(order_id: str) -> str:
    """Truncate an order ID for display."""
    return order_id[:8]


def format_money(amount: float | None) -> str:
    """Format an amount with two decimals, or '-' if unknown."""
    if amount is None:
        return "-"
    return f"{amount:,.2f}"


def format_order(order: Order, verbose: bool = False, now: datetime | None = None) -> str:
    """Format an order for display."""
    archived = " [archived]" if order.archived else ""
    result = (
        f"{truncate_id(order.id)}  {order.order_number}  {order.status.value}"
        f" / payment {order.payment_status.value}"
        f"  total {format_money(order.pricing.total)}{archived}"
    )

    if order.status == OrderStatus.PENDING_VERIFICATION:
        if is_expired(order, now):
            result += "  (verification overdue)"
        else:
            days = days_until_deadline(order, now)
            if days is not None:
                result += f"  ({days} day(s) to verify)"

    if verbose:
        result += f"\n         User: {order.user_id}"
        result += f"\n         Items ({total_items(order)}):"
        for item in order.items:
            result += (
                f"\n           {item.quantity} x {item.title} ({item.type})"
                f" @ {format_money(item.price)} = {format_money(item.subtotal)}"
            )
        result += f"\n         Proof: {order.transaction_proof}"
        if order.shipping_info.tracking_number:
            result += (
                f"\n         Tracking: {order.shipping_info.carrier}"
                f" {order.shipping_info.tracking_number}"
            )
        if order.refund.requested:
            result += (
                f"\n         Refund: {order.refund.status.value}"
                f" ({order.refund.reason})"
            )
        if order.tags:
            result += f"\n         Tags: {', '.join(order.tags)}"
        result += "\n         Timeline:"
        for entry in order.timeline:
            by = f" by {entry.updated_by}" if entry.updated_by else ""
            result += f"\n           {format_timestamp(entry.timestamp)}  {entry.status}{by}: {entry.note}"

    return result
