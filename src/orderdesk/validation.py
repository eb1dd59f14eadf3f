"""Order invariants, checked before every save."""

from numbers import Real

from .errors import ValidationError
from .models import Address, ItemType, Order, PaymentType, Priority, ShippingMethod

ADDRESS_FIELDS = ("full_name", "address", "city", "state", "postal_code", "country")
PAYMENT_METHOD_FIELDS = ("type", "name", "account_number", "account_name", "bank_name")


def _is_number(value: object) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _cents(value: float) -> int:
    return round(value * 100)


def _validate_address(address: Address, prefix: str, require_phone: bool) -> None:
    for name in ADDRESS_FIELDS:
        value = getattr(address, name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("is required", f"{prefix}.{name}")
    if require_phone and (not address.phone or not address.phone.strip()):
        raise ValidationError("is required", f"{prefix}.phone")


def _normalize_address(address: Address) -> None:
    for name in ADDRESS_FIELDS + ("phone",):
        value = getattr(address, name)
        if isinstance(value, str):
            setattr(address, name, value.strip())


def validate_pricing(order: Order) -> None:
    """Check pricing components are non-negative and total matches its parts.

    A mismatched total is rejected, never silently corrected.
    """
    pricing = order.pricing
    for name in ("subtotal", "tax", "shipping", "total"):
        value = getattr(pricing, name)
        if not _is_number(value):
            raise ValidationError("must be a number", f"pricing.{name}")
        if value < 0:
            raise ValidationError("cannot be negative", f"pricing.{name}")

    expected = _cents(pricing.subtotal) + _cents(pricing.tax) + _cents(pricing.shipping)
    if _cents(pricing.total) != expected:
        raise ValidationError(
            f"total {pricing.total} does not equal subtotal + tax + shipping "
            f"({expected / 100:.2f})",
            "pricing.total",
        )


def validate_new_order(order: Order) -> None:
    """
    Validate a freshly created order before its first save.

    Raises:
        ValidationError: If a required field is missing or a value is invalid.
    """
    if not order.user_id:
        raise ValidationError("is required", "user_id")
    if not order.items:
        raise ValidationError("at least one item is required", "items")

    for i, item in enumerate(order.items):
        if not item.product_id:
            raise ValidationError("is required", f"items[{i}].product_id")
        if not item.title:
            raise ValidationError("is required", f"items[{i}].title")
        if item.type not in {t.value for t in ItemType}:
            raise ValidationError(
                f"must be one of {', '.join(t.value for t in ItemType)}", f"items[{i}].type"
            )

    _validate_address(order.shipping_address, "shipping_address", require_phone=True)
    _validate_address(order.billing_address, "billing_address", require_phone=False)

    for name in PAYMENT_METHOD_FIELDS:
        value = getattr(order.payment_method, name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("is required", f"payment_method.{name}")
    if order.payment_method.type not in {t.value for t in PaymentType}:
        raise ValidationError(
            f"must be one of {', '.join(t.value for t in PaymentType)}", "payment_method.type"
        )

    if not order.transaction_proof or not order.transaction_proof.strip():
        raise ValidationError("is required", "transaction_proof")

    validate_and_normalize(order)


def validate_and_normalize(order: Order) -> None:
    """
    Normalize derived data and enforce invariants. Runs before every save.

    Item subtotals are always recomputed from price * quantity; whatever a
    caller supplied is discarded.

    Raises:
        ValidationError: If an invariant does not hold.
    """
    for i, item in enumerate(order.items):
        if not _is_number(item.price) or item.price < 0:
            raise ValidationError("must be a non-negative number", f"items[{i}].price")
        if not isinstance(item.quantity, int) or isinstance(item.quantity, bool) or item.quantity < 1:
            raise ValidationError("must be an integer >= 1", f"items[{i}].quantity")
        item.subtotal = item.price * item.quantity

    validate_pricing(order)

    refund_amount = order.refund.amount
    if refund_amount is not None:
        if not _is_number(refund_amount) or refund_amount < 0:
            raise ValidationError("cannot be negative", "refund.amount")
        if _cents(refund_amount) > _cents(order.pricing.total):
            raise ValidationError(
                f"cannot exceed order total {order.pricing.total}", "refund.amount"
            )

    if order.priority not in {p.value for p in Priority}:
        raise ValidationError(
            f"must be one of {', '.join(p.value for p in Priority)}", "priority"
        )
    if order.shipping_info.method not in {m.value for m in ShippingMethod}:
        raise ValidationError(
            f"must be one of {', '.join(m.value for m in ShippingMethod)}",
            "shipping_info.method",
        )

    _normalize_address(order.shipping_address)
    _normalize_address(order.billing_address)
