"""Order statistics rollups."""

import math
from numbers import Real
from typing import Any, Iterable

from .models import Order, OrderStatus

# Stats key -> status counted under it
STATUS_COUNTERS: dict[str, OrderStatus] = {
    "pending_orders": OrderStatus.PENDING_VERIFICATION,
    "verified_orders": OrderStatus.VERIFIED,
    "shipped_orders": OrderStatus.SHIPPED,
    "delivered_orders": OrderStatus.DELIVERED,
    "cancelled_orders": OrderStatus.CANCELLED,
}


def _safe_total(order: Order) -> float:
    """Order total as a float, or 0 if missing or malformed."""
    pricing = getattr(order, "pricing", None)
    total = getattr(pricing, "total", None)
    if not isinstance(total, Real) or isinstance(total, bool):
        return 0.0
    if math.isnan(total) or math.isinf(total):
        return 0.0
    return float(total)


def empty_stats() -> dict[str, Any]:
    stats: dict[str, Any] = {"total_orders": 0, "total_revenue": 0.0}
    stats.update({key: 0 for key in STATUS_COUNTERS})
    stats["average_order_value"] = 0.0
    return stats


def get_order_stats(orders: Iterable[Order], user_id: str | None = None) -> dict[str, Any]:
    """
    Count orders per status and sum their totals.

    Args:
        orders: A snapshot of orders.
        user_id: Only count this user's orders if given.

    Returns:
        Dict with total_orders, total_revenue, pending_orders,
        verified_orders, shipped_orders, delivered_orders,
        cancelled_orders and average_order_value. All zero for no orders.
    """
    stats = empty_stats()
    revenue = 0.0

    for order in orders:
        if user_id is not None and order.user_id != user_id:
            continue
        stats["total_orders"] += 1
        revenue += _safe_total(order)
        for key, status in STATUS_COUNTERS.items():
            if order.status == status:
                stats[key] += 1

    stats["total_revenue"] = round(revenue, 2)
    if stats["total_orders"]:
        stats["average_order_value"] = round(revenue / stats["total_orders"], 2)
    return stats
