"""Refund request, resolution and processing."""

from datetime import datetime

from .errors import (
    AlreadyInStateError,
    InvalidTransitionError,
    RefundNotApprovedError,
    RefundNotRequestedError,
    ValidationError,
)
from .models import Order, OrderStatus, PaymentStatus, Refund, RefundStatus, _utc_now
from .timeline import REFUND_APPROVED, REFUND_REJECTED, REFUND_REQUESTED, append_entry
from .transitions import transition

RESOLUTION_EVENTS = {
    RefundStatus.APPROVED: REFUND_APPROVED,
    RefundStatus.REJECTED: REFUND_REJECTED,
}


def request_refund(order: Order, reason: str, now: datetime | None = None) -> Order:
    """
    Open a refund request. Does not change the order status.

    Only delivered orders can be refunded. A rejected request may be
    followed by a new one; an open or finished refund may not.

    Raises:
        AlreadyInStateError: If a refund is already pending, approved or processed.
        InvalidTransitionError: If the order is not delivered.
    """
    if order.refund.requested and order.refund.status != RefundStatus.REJECTED:
        raise AlreadyInStateError(
            order.id,
            f"refund {order.refund.status.value}",
            f"Refund for order {order.id} is already {order.refund.status.value}",
        )
    if order.status != OrderStatus.DELIVERED:
        raise InvalidTransitionError(
            order.status.value,
            REFUND_REQUESTED,
            "refunds can only be requested for delivered orders",
        )

    now = now or _utc_now()
    reason = reason or ""
    append_entry(order, REFUND_REQUESTED, f"Refund requested: {reason}", timestamp=now)
    order.refund = Refund(
        requested=True,
        requested_at=now,
        reason=reason,
        status=RefundStatus.PENDING,
    )
    return order


def resolve_refund(
    order: Order,
    decision: RefundStatus,
    actor: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Approve or reject a pending refund request.

    An approved refund is finalized separately with process_refund.

    Raises:
        ValidationError: If decision is neither approved nor rejected.
        RefundNotRequestedError: If no refund was requested.
        AlreadyInStateError: If the same decision was already made.
        InvalidTransitionError: If the refund was already resolved differently.
    """
    decision = RefundStatus(decision)
    if decision not in RESOLUTION_EVENTS:
        raise ValidationError("must be approved or rejected", "decision")

    refund = order.refund
    if not refund.requested:
        raise RefundNotRequestedError(order.id)
    if refund.status == decision:
        raise AlreadyInStateError(order.id, f"refund {decision.value}")
    if refund.status != RefundStatus.PENDING:
        raise InvalidTransitionError(
            f"refund {refund.status.value}",
            f"refund {decision.value}",
            "refund is already resolved",
        )

    append_entry(
        order,
        RESOLUTION_EVENTS[decision],
        f"Refund {decision.value}",
        updated_by=actor,
        timestamp=now,
    )
    refund.status = decision
    return order


def process_refund(
    order: Order,
    amount: float | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Pay out an approved refund and move the order to refunded.

    Args:
        amount: Refund amount; defaults to the order total. Must lie in
            [0, pricing.total].

    Raises:
        AlreadyInStateError: If the refund was already processed.
        RefundNotApprovedError: If the refund is not approved.
        ValidationError: If amount is out of range.
        InvalidTransitionError: If the order status cannot move to refunded.
    """
    refund = order.refund
    if refund.status == RefundStatus.PROCESSED:
        raise AlreadyInStateError(order.id, f"refund {RefundStatus.PROCESSED.value}")
    if refund.status != RefundStatus.APPROVED:
        raise RefundNotApprovedError(
            order.id, refund.status.value if refund.status else None
        )

    if amount is None:
        amount = order.pricing.total
    if amount < 0:
        raise ValidationError("cannot be negative", "refund.amount")
    if round(amount * 100) > round(order.pricing.total * 100):
        raise ValidationError(
            f"cannot exceed order total {order.pricing.total}", "refund.amount"
        )

    now = now or _utc_now()
    transition(
        order,
        OrderStatus.REFUNDED,
        f"Refund of {amount:.2f} processed",
        actor,
        now,
    )
    refund.status = RefundStatus.PROCESSED
    refund.amount = amount
    refund.processed_at = now
    refund.processed_by = actor
    order.payment_status = PaymentStatus.REFUNDED
    return order
