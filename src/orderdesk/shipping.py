"""Fulfillment steps: processing, shipping, delivery and admin cancellation."""

from datetime import datetime
from typing import Any

from .errors import AlreadyInStateError, InvalidTransitionError
from .models import Order, OrderStatus, ShippingInfo, _utc_now, parse_timestamp
from .transitions import transition

# Fields a caller may set when shipping; shipped_at and actual_delivery are ours.
SHIPPING_INPUT_FIELDS = ("method", "carrier", "tracking_number", "estimated_delivery")


def _require_status(order: Order, required: OrderStatus, target: OrderStatus) -> None:
    if order.status == target:
        raise AlreadyInStateError(order.id, target.value)
    if order.status != required:
        raise InvalidTransitionError(
            order.status.value, target.value, f"order must be {required.value}"
        )


def mark_processing(order: Order, actor: str | None = None, now: datetime | None = None) -> Order:
    """Move a verified order to processing."""
    _require_status(order, OrderStatus.VERIFIED, OrderStatus.PROCESSING)
    transition(order, OrderStatus.PROCESSING, "Order is being processed", actor, now)
    return order


def merge_shipping_info(current: ShippingInfo, updates: dict[str, Any]) -> ShippingInfo:
    """Return current shipping info overlaid with the provided fields."""
    merged = ShippingInfo.from_dict(current.to_dict())
    for name in SHIPPING_INPUT_FIELDS:
        value = updates.get(name)
        if value is None:
            continue
        if name == "estimated_delivery":
            value = parse_timestamp(value)
        setattr(merged, name, value)
    return merged


def ship(
    order: Order,
    shipping_info: dict[str, Any] | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Record shipment of a processing order.

    Args:
        shipping_info: Optional carrier, tracking_number, method and
            estimated_delivery; merged over the current shipping info.
    """
    _require_status(order, OrderStatus.PROCESSING, OrderStatus.SHIPPED)
    shipping_info = shipping_info or {}
    now = now or _utc_now()

    merged = merge_shipping_info(order.shipping_info, shipping_info)
    merged.shipped_at = now

    tracking = shipping_info.get("tracking_number")
    note = f"Order shipped with tracking number: {tracking}" if tracking else "Order shipped"

    transition(order, OrderStatus.SHIPPED, note, actor, now)
    order.shipping_info = merged
    return order


def deliver(order: Order, actor: str | None = None, now: datetime | None = None) -> Order:
    """Mark a shipped order as delivered."""
    _require_status(order, OrderStatus.SHIPPED, OrderStatus.DELIVERED)
    now = now or _utc_now()
    transition(order, OrderStatus.DELIVERED, "Order delivered successfully", actor, now)
    order.shipping_info.actual_delivery = now
    return order


def cancel_order(
    order: Order,
    actor: str | None = None,
    note: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Cancel an order on admin request.

    Orders still awaiting payment verification are cancelled by rejecting
    the payment instead, so this only covers verified and processing orders.
    """
    if order.status == OrderStatus.CANCELLED:
        raise AlreadyInStateError(order.id, OrderStatus.CANCELLED.value)
    if order.status not in (OrderStatus.VERIFIED, OrderStatus.PROCESSING):
        reason = None
        if order.status == OrderStatus.PENDING_VERIFICATION:
            reason = "reject the payment to cancel an unverified order"
        raise InvalidTransitionError(order.status.value, OrderStatus.CANCELLED.value, reason)
    transition(order, OrderStatus.CANCELLED, note or "Order cancelled by admin", actor, now)
    return order
