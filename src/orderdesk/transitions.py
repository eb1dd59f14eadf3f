"""Order status transition engine."""

from datetime import datetime

from .errors import InvalidTransitionError
from .models import Order, OrderStatus
from .timeline import append_entry

# Current status -> statuses it may move to. Self-loops are never edges.
VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_VERIFICATION: frozenset({OrderStatus.VERIFIED, OrderStatus.CANCELLED}),
    OrderStatus.VERIFIED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# Edges that keep status and payment_status in step. Only the owning
# workflow may take them; generic status updates are refused.
WORKFLOW_ONLY_EDGES: dict[tuple[OrderStatus, OrderStatus], str] = {
    (OrderStatus.PENDING_VERIFICATION, OrderStatus.VERIFIED): "payment verification",
    (OrderStatus.PENDING_VERIFICATION, OrderStatus.CANCELLED): "payment verification",
    (OrderStatus.DELIVERED, OrderStatus.REFUNDED): "refund processing",
}


def allowed_transitions(current: OrderStatus) -> list[str]:
    """Sorted list of statuses reachable from current in one step."""
    return sorted(s.value for s in VALID_TRANSITIONS[OrderStatus(current)])


def is_valid_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """True if target is reachable from current in one step."""
    return OrderStatus(target) in VALID_TRANSITIONS[OrderStatus(current)]


def ensure_direct_transition_allowed(current: OrderStatus, target: OrderStatus) -> None:
    """
    Refuse workflow-only edges for generic status updates.

    Raises:
        InvalidTransitionError: If the edge belongs to a dedicated workflow.
    """
    owner = WORKFLOW_ONLY_EDGES.get((OrderStatus(current), OrderStatus(target)))
    if owner:
        raise InvalidTransitionError(
            OrderStatus(current).value,
            OrderStatus(target).value,
            f"only allowed through {owner}",
        )


def transition(
    order: Order,
    new_status: OrderStatus,
    note: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Move an order to a new status and record it on the timeline.

    Re-applying the current status is a no-op and records nothing.

    Args:
        order: The order to change.
        new_status: Target status.
        note: Timeline note (defaults to "Status changed to <status>").
        actor: Who made the change.
        now: Timestamp for the timeline entry (server clock if None).

    Returns:
        True if the status changed, False if it was already new_status.

    Raises:
        InvalidTransitionError: If the edge is not in the transition graph.
    """
    new_status = OrderStatus(new_status)
    current = order.status

    if new_status == current:
        return False

    if not is_valid_transition(current, new_status):
        allowed = allowed_transitions(current)
        reason = f"allowed: {', '.join(allowed)}" if allowed else f"{current.value} is terminal"
        raise InvalidTransitionError(current.value, new_status.value, reason)

    append_entry(
        order,
        new_status.value,
        note if note is not None else f"Status changed to {new_status.value}",
        updated_by=actor,
        timestamp=now,
    )
    order.status = new_status
    return True
