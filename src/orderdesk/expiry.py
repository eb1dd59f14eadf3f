"""Verification deadline policy. Read-only: never changes an order."""

import math
from datetime import datetime
from typing import Iterable

from .models import Order, OrderStatus, PaymentStatus, _utc_now


def is_expired(order: Order, now: datetime | None = None) -> bool:
    """True if the order has a verification deadline and now is past it."""
    now = now or _utc_now()
    return order.verification_deadline is not None and now > order.verification_deadline


def days_until_deadline(order: Order, now: datetime | None = None) -> int | None:
    """Days left before the verification deadline, rounded up. Negative once passed."""
    if order.verification_deadline is None:
        return None
    now = now or _utc_now()
    return math.ceil((order.verification_deadline - now).total_seconds() / 86400)


def find_expired_pending(orders: Iterable[Order], now: datetime | None = None) -> list[Order]:
    """
    Orders still awaiting verification whose deadline has passed.

    Whether to reject them is up to the caller (a scheduled sweep).
    """
    now = now or _utc_now()
    return [
        o
        for o in orders
        if o.status == OrderStatus.PENDING_VERIFICATION
        and o.payment_status == PaymentStatus.PENDING
        and is_expired(o, now)
    ]
