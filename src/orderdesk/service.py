"""Order lifecycle operations exposed to checkout and admin collaborators."""

import logging
from datetime import datetime
from typing import Any, Callable

from . import settings
from .errors import (
    AlreadyInStateError,
    InvalidTransitionError,
    OrderdeskError,
    OrderNotFoundError,
    OrderNumberCollisionError,
    ValidationError,
)
from .expiry import days_until_deadline, find_expired_pending, is_expired
from .models import (
    TERMINAL_STATUSES,
    Address,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    Pricing,
    RefundStatus,
    _utc_now,
    generate_order_number,
)
from .order_store import OrderRepository
from .refunds import process_refund, request_refund, resolve_refund
from .shipping import cancel_order, deliver, mark_processing, ship
from .stats import get_order_stats
from .timeline import latest_entry
from .transitions import (
    allowed_transitions,
    ensure_direct_transition_allowed,
    is_valid_transition,
)
from .validation import validate_and_normalize, validate_new_order
from .verification import verify_payment

logger = logging.getLogger(__name__)

ITEM_FIELDS = ("product_id", "type", "title", "price", "quantity")
REQUIRED_SHIPPING_FIELDS = ("carrier", "tracking_number")


def _parse_enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"must be one of {choices}", field_name) from None


def _build_items(items: list[Any]) -> list[OrderItem]:
    if not isinstance(items, list):
        raise ValidationError("must be a list", "items")
    built = []
    for i, raw in enumerate(items):
        if isinstance(raw, OrderItem):
            built.append(raw)
            continue
        if not isinstance(raw, dict):
            raise ValidationError("must be an object", f"items[{i}]")
        for name in ITEM_FIELDS:
            if raw.get(name) is None:
                raise ValidationError("is required", f"items[{i}].{name}")
        # subtotal is derived; whatever the caller sent is ignored
        built.append(
            OrderItem(
                product_id=str(raw["product_id"]),
                type=raw["type"],
                title=raw["title"],
                price=raw["price"],
                quantity=raw["quantity"],
            )
        )
    return built


def _build(model_cls, value: Any, field_name: str):
    if value is None:
        raise ValidationError("is required", field_name)
    if isinstance(value, model_cls):
        return value
    if not isinstance(value, dict):
        raise ValidationError("must be an object", field_name)
    return model_cls.from_dict(value)


class OrderService:
    """Runs workflows against stored orders.

    Every mutation loads the order, applies a workflow, validates the
    result and writes it back with a compare-and-set on the order version.
    A caller that loses the race gets ConcurrentModificationError and
    should retry with fresh state.
    """

    def __init__(
        self,
        store: OrderRepository,
        clock: Callable[[], datetime] | None = None,
        verification_timeout_hours: int | None = None,
        number_generator: Callable[[], str] | None = None,
    ):
        """
        Initialize OrderService.

        Args:
            store: Order repository.
            clock: Returns the current UTC time (for testing).
            verification_timeout_hours: Hours until the verification deadline.
            number_generator: Produces candidate order numbers (for testing).
        """
        self.store = store
        self._clock = clock or _utc_now
        hours = verification_timeout_hours or settings.VERIFICATION_TIMEOUT_HOURS
        self.verification_timeout_hours = settings.clamp_verification_timeout(hours)
        self._number_generator = number_generator or generate_order_number

    def now(self) -> datetime:
        return self._clock()

    def _mutate(
        self,
        order_id: str,
        action: str,
        apply: Callable[[Order, datetime], Any],
        actor: str | None = None,
    ) -> Order:
        order = self.get_order(order_id)
        before = order.status
        now = self.now()
        latest = latest_entry(order)
        if latest is not None and now < latest.timestamp:
            # server clock behind the latest entry; clamp so timestamps never go backwards
            now = latest.timestamp
        try:
            apply(order, now)
            validate_and_normalize(order)
            self.store.save(order)
        except AlreadyInStateError as e:
            logger.info("%s on order %s already applied: %s", action, order.order_number, e)
            raise
        except OrderdeskError as e:
            logger.warning("%s rejected for order %s: %s", action, order.order_number, e)
            raise

        if order.status != before:
            logger.info(
                "Order %s %s -> %s (%s by %s)",
                order.order_number,
                before.value,
                order.status.value,
                action,
                actor or "system",
            )
        else:
            logger.info("Order %s updated (%s by %s)", order.order_number, action, actor or "system")
        return order

    # --- Checkout ---

    def create_order(
        self,
        user_id: str,
        items: list[Any],
        shipping_address: Address | dict[str, Any],
        payment_method: PaymentMethod | dict[str, Any],
        transaction_proof: str,
        pricing: Pricing | dict[str, Any],
        billing_address: Address | dict[str, Any] | None = None,
        notes: str = "",
    ) -> Order:
        """
        Create an order awaiting payment verification.

        Raises:
            ValidationError: If input is malformed or pricing doesn't add up.
            OrderNumberCollisionError: If no unique order number was found.
        """
        order = Order.create(
            user_id=user_id,
            items=_build_items(items),
            shipping_address=_build(Address, shipping_address, "shipping_address"),
            billing_address=(
                _build(Address, billing_address, "billing_address")
                if billing_address is not None
                else None
            ),
            payment_method=_build(PaymentMethod, payment_method, "payment_method"),
            transaction_proof=transaction_proof,
            pricing=_build(Pricing, pricing, "pricing"),
            notes=notes,
            verification_timeout_hours=self.verification_timeout_hours,
            now=self.now(),
        )
        validate_new_order(order)

        for attempt in range(1, settings.ORDER_NUMBER_ATTEMPTS + 1):
            order.order_number = self._number_generator()
            try:
                self.store.add(order)
                break
            except OrderNumberCollisionError:
                logger.warning(
                    "Order number %s taken (attempt %d/%d)",
                    order.order_number,
                    attempt,
                    settings.ORDER_NUMBER_ATTEMPTS,
                )
        else:
            raise OrderNumberCollisionError(
                order.order_number, attempts=settings.ORDER_NUMBER_ATTEMPTS
            )

        logger.info(
            "Created order %s for user %s (total %s)",
            order.order_number,
            order.user_id,
            order.pricing.total,
        )
        return order

    # --- Queries ---

    def get_order(self, order_id: str) -> Order:
        """
        Get an order by ID or order number.

        Raises:
            OrderNotFoundError: If neither matches.
        """
        try:
            return self.store.get(order_id)
        except OrderNotFoundError:
            return self.store.get_by_number(order_id)

    def list_orders(
        self,
        user_id: str | None = None,
        status: str | None = None,
        include_archived: bool = False,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Order], int]:
        """
        List orders newest first.

        Returns:
            Tuple of (orders on the requested page, total matching orders).
        """
        orders = self.store.list_orders()
        if user_id is not None:
            orders = [o for o in orders if o.user_id == user_id]
        if status and status != "all":
            wanted = _parse_enum(OrderStatus, status, "status")
            orders = [o for o in orders if o.status == wanted]
        if not include_archived:
            orders = [o for o in orders if not o.archived]

        orders.sort(key=lambda o: o.created_at, reverse=True)
        page = max(page, 1)
        start = (page - 1) * limit
        return orders[start:start + limit], len(orders)

    def get_order_stats(self, user_id: str | None = None) -> dict[str, Any]:
        """Status counts and revenue over all orders (or one user's)."""
        return get_order_stats(self.store.list_orders(), user_id)

    def is_expired(self, order_id: str) -> bool:
        """True if the order's verification deadline has passed."""
        return is_expired(self.get_order(order_id), self.now())

    def days_until_deadline(self, order_id: str) -> int | None:
        return days_until_deadline(self.get_order(order_id), self.now())

    def list_expired_pending(self) -> list[Order]:
        """Unverified orders past their deadline, for an external sweep to reject."""
        return find_expired_pending(self.store.list_orders(), self.now())

    # --- Admin workflows ---

    def verify_payment(
        self,
        order_id: str,
        is_approved: bool,
        notes: str = "",
        actor: str | None = None,
    ) -> Order:
        """
        Approve or reject the order's payment proof.

        Raises:
            AlreadyVerifiedError: If the payment was already resolved.
            OrderNotFoundError: If the order doesn't exist.
            ConcurrentModificationError: If the order changed meanwhile.
        """
        action = "payment approval" if is_approved else "payment rejection"
        return self._mutate(
            order_id,
            action,
            lambda order, now: verify_payment(order, is_approved, notes, actor, now),
            actor,
        )

    def update_status(
        self,
        order_id: str,
        target_status: OrderStatus | str,
        shipping_info: dict[str, Any] | None = None,
        actor: str | None = None,
        note: str | None = None,
    ) -> Order:
        """
        Move an order along the fulfillment path.

        Verification and refund edges are refused here; use verify_payment
        and process_refund for those.

        Raises:
            ValidationError: If the status is unknown or shipping info is incomplete.
            InvalidTransitionError: If the move is not allowed.
            AlreadyInStateError: If the order already has that status.
            OrderNotFoundError: If the order doesn't exist.
            ConcurrentModificationError: If the order changed meanwhile.
        """
        target = _parse_enum(OrderStatus, target_status, "status")

        def apply(order: Order, now: datetime) -> None:
            if order.status == target:
                raise AlreadyInStateError(order.id, target.value)
            ensure_direct_transition_allowed(order.status, target)
            if not is_valid_transition(order.status, target):
                allowed = allowed_transitions(order.status)
                reason = f"allowed: {', '.join(allowed)}" if allowed else f"{order.status.value} is terminal"
                raise InvalidTransitionError(order.status.value, target.value, reason)

            if target == OrderStatus.PROCESSING:
                mark_processing(order, actor, now)
            elif target == OrderStatus.SHIPPED:
                info = shipping_info or {}
                for name in REQUIRED_SHIPPING_FIELDS:
                    if not info.get(name):
                        raise ValidationError("is required for shipping", f"shipping_info.{name}")
                ship(order, info, actor, now)
            elif target == OrderStatus.DELIVERED:
                deliver(order, actor, now)
            elif target == OrderStatus.CANCELLED:
                cancel_order(order, actor, note, now)

        return self._mutate(order_id, f"status update to {target.value}", apply, actor)

    def request_refund(self, order_id: str, reason: str) -> Order:
        """Open a refund request for the order."""
        return self._mutate(
            order_id,
            "refund request",
            lambda order, now: request_refund(order, reason, now),
        )

    def resolve_refund(
        self,
        order_id: str,
        decision: RefundStatus | str,
        actor: str | None = None,
    ) -> Order:
        """
        Approve or reject a pending refund.

        Raises:
            RefundNotRequestedError: If no refund was requested.
        """
        decision = _parse_enum(RefundStatus, decision, "decision")
        return self._mutate(
            order_id,
            f"refund {decision.value}",
            lambda order, now: resolve_refund(order, decision, actor, now),
            actor,
        )

    def process_refund(
        self,
        order_id: str,
        amount: float | None = None,
        actor: str | None = None,
    ) -> Order:
        """
        Pay out an approved refund.

        Raises:
            RefundNotApprovedError: If the refund is not approved yet.
        """
        return self._mutate(
            order_id,
            "refund processing",
            lambda order, now: process_refund(order, amount, actor, now),
            actor,
        )

    # --- Operational metadata ---

    def update_metadata(
        self,
        order_id: str,
        priority: str | None = None,
        tags: list[str] | None = None,
        admin_notes: str | None = None,
        notes: str | None = None,
    ) -> Order:
        """Change priority, tags or notes. Never touches status."""

        def apply(order: Order, now: datetime) -> None:
            if priority is not None:
                order.priority = priority
            if tags is not None:
                order.tags = [t.strip() for t in tags if t and t.strip()]
            if admin_notes is not None:
                order.admin_notes = admin_notes
            if notes is not None:
                order.notes = notes
            order.updated_at = now

        return self._mutate(order_id, "metadata update", apply)

    def archive_order(self, order_id: str) -> Order:
        """
        Archive a finished order. Orders are never deleted.

        Raises:
            InvalidTransitionError: If the order is not delivered, cancelled or refunded.
            AlreadyInStateError: If the order is already archived.
        """

        def apply(order: Order, now: datetime) -> None:
            if order.archived:
                raise AlreadyInStateError(order.id, "archived")
            if order.status not in TERMINAL_STATUSES:
                raise InvalidTransitionError(
                    order.status.value,
                    "archived",
                    "only delivered, cancelled or refunded orders can be archived",
                )
            order.archived = True
            order.archived_at = now
            order.updated_at = now

        return self._mutate(order_id, "archive", apply)
