"""Manual payment verification against an uploaded transfer proof."""

from datetime import datetime

from .errors import AlreadyVerifiedError
from .models import Order, OrderStatus, PaymentStatus
from .transitions import transition

APPROVED_NOTE = "Payment verified and approved"


def verify_payment(
    order: Order,
    is_approved: bool,
    notes: str = "",
    actor: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Approve or reject the payment proof of a pending order.

    This is the only path out of pending_verification, so payment_status
    and status always move together.

    Raises:
        AlreadyVerifiedError: If the payment was already approved or rejected.
        InvalidTransitionError: If the order status no longer allows it.
    """
    if order.payment_status != PaymentStatus.PENDING:
        raise AlreadyVerifiedError(order.id, order.payment_status.value)

    notes = notes or ""
    if is_approved:
        transition(order, OrderStatus.VERIFIED, APPROVED_NOTE, actor, now)
        order.payment_status = PaymentStatus.VERIFIED
    else:
        transition(order, OrderStatus.CANCELLED, f"Payment rejected: {notes}", actor, now)
        order.payment_status = PaymentStatus.REJECTED

    order.verification_notes = notes
    return order
