"""Data models for orderdesk."""

import math
import random
import string
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


def _utc_now() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


def _generate_id() -> str:
    """Generate a new order ID."""
    return str(uuid.uuid4())


def format_timestamp(value: datetime | None) -> str | None:
    """Format a datetime as an ISO 8601 UTC string with a Z suffix."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO 8601 string (or pass through a datetime) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def generate_order_number() -> str:
    """Generate a human-readable order number like TLS-123456-AB12."""
    millis = str(int(time.time() * 1000))[-6:]
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"TLS-{millis}-{suffix}"


class OrderStatus(str, Enum):
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"


class ItemType(str, Enum):
    BOOK = "Book"
    EBOOK = "Ebook"
    POSTER = "Poster"


class PaymentType(str, Enum):
    EPAY = "epay"
    FBX = "fbx"


class ShippingMethod(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    PICKUP = "pickup"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


TERMINAL_STATUSES = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
)

DEFAULT_COUNTRY = "Malaysia"


@dataclass
class OrderItem:
    """A purchased line item. Title and price are snapshots at purchase time."""

    product_id: str
    type: str
    title: str
    price: float
    quantity: int
    subtotal: float = 0.0  # always recomputed from price * quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "type": self.type,
            "title": self.title,
            "price": self.price,
            "quantity": self.quantity,
            "subtotal": self.subtotal,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderItem":
        return cls(
            product_id=data["product_id"],
            type=data["type"],
            title=data["title"],
            price=data["price"],
            quantity=data["quantity"],
            subtotal=data.get("subtotal", 0.0),
        )


@dataclass
class Address:
    """Shipping or billing address. Phone is only required when shipping."""

    full_name: str
    address: str
    city: str
    state: str
    postal_code: str
    country: str = DEFAULT_COUNTRY
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "full_name": self.full_name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
        }
        if self.phone is not None:
            result["phone"] = self.phone
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Address":
        return cls(
            full_name=data.get("full_name", ""),
            address=data.get("address", ""),
            city=data.get("city", ""),
            state=data.get("state", ""),
            postal_code=data.get("postal_code", ""),
            country=data.get("country") or DEFAULT_COUNTRY,
            phone=data.get("phone"),
        )


@dataclass(frozen=True)
class PaymentMethod:
    """Bank transfer details shown to the buyer. Immutable once set."""

    type: str
    name: str
    account_number: str
    account_name: str
    bank_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "account_number": self.account_number,
            "account_name": self.account_name,
            "bank_name": self.bank_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaymentMethod":
        return cls(
            type=data.get("type", ""),
            name=data.get("name", ""),
            account_number=data.get("account_number", ""),
            account_name=data.get("account_name", ""),
            bank_name=data.get("bank_name", ""),
        )


@dataclass
class Pricing:
    """Flat price breakdown. total must equal subtotal + tax + shipping."""

    subtotal: float
    tax: float = 0.0
    shipping: float = 0.0
    total: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "tax": self.tax,
            "shipping": self.shipping,
            "total": self.total,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Pricing":
        # total is kept as stored so aggregations can skip malformed values
        return cls(
            subtotal=data.get("subtotal", 0.0),
            tax=data.get("tax", 0.0),
            shipping=data.get("shipping", 0.0),
            total=data.get("total"),
        )


@dataclass
class ShippingInfo:
    method: str = ShippingMethod.STANDARD.value
    carrier: str = ""
    tracking_number: str = ""
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None
    shipped_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "estimated_delivery": format_timestamp(self.estimated_delivery),
            "actual_delivery": format_timestamp(self.actual_delivery),
            "shipped_at": format_timestamp(self.shipped_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShippingInfo":
        return cls(
            method=data.get("method") or ShippingMethod.STANDARD.value,
            carrier=data.get("carrier", ""),
            tracking_number=data.get("tracking_number", ""),
            estimated_delivery=parse_timestamp(data.get("estimated_delivery")),
            actual_delivery=parse_timestamp(data.get("actual_delivery")),
            shipped_at=parse_timestamp(data.get("shipped_at")),
        )


@dataclass(frozen=True)
class TimelineEntry:
    """An immutable audit log entry."""

    status: str  # an OrderStatus value or a refund event name
    timestamp: datetime
    note: str = ""
    updated_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": format_timestamp(self.timestamp),
            "note": self.note,
            "updated_by": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimelineEntry":
        return cls(
            status=data["status"],
            timestamp=parse_timestamp(data["timestamp"]),
            note=data.get("note", ""),
            updated_by=data.get("updated_by"),
        )


@dataclass
class Refund:
    requested: bool = False
    requested_at: datetime | None = None
    reason: str = ""
    status: RefundStatus | None = None
    amount: float | None = None
    processed_at: datetime | None = None
    processed_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "requested": self.requested,
            "requested_at": format_timestamp(self.requested_at),
            "reason": self.reason,
            "status": self.status.value if self.status else None,
            "amount": self.amount,
            "processed_at": format_timestamp(self.processed_at),
            "processed_by": self.processed_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Refund":
        status = data.get("status")
        return cls(
            requested=data.get("requested", False),
            requested_at=parse_timestamp(data.get("requested_at")),
            reason=data.get("reason", ""),
            status=RefundStatus(status) if status else None,
            amount=data.get("amount"),
            processed_at=parse_timestamp(data.get("processed_at")),
            processed_by=data.get("processed_by"),
        )


@dataclass
class Order:
    """The order aggregate root.

    status and payment_status must only be changed through the workflow
    functions (verification, shipping, refunds), which go through the
    transition engine and record timeline entries.
    """

    id: str
    order_number: str
    user_id: str
    items: list[OrderItem]
    shipping_address: Address
    billing_address: Address
    payment_method: PaymentMethod
    transaction_proof: str
    pricing: Pricing
    verification_deadline: datetime | None
    status: OrderStatus = OrderStatus.PENDING_VERIFICATION
    payment_status: PaymentStatus = PaymentStatus.PENDING
    verification_notes: str = ""
    admin_notes: str = ""
    notes: str = ""
    shipping_info: ShippingInfo = field(default_factory=ShippingInfo)
    timeline: list[TimelineEntry] = field(default_factory=list)
    refund: Refund = field(default_factory=Refund)
    priority: str = Priority.NORMAL.value
    tags: list[str] = field(default_factory=list)
    archived: bool = False
    archived_at: datetime | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    version: int = 0  # bumped by the store on every successful save

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "items": [i.to_dict() for i in self.items],
            "shipping_address": self.shipping_address.to_dict(),
            "billing_address": self.billing_address.to_dict(),
            "payment_method": self.payment_method.to_dict(),
            "transaction_proof": self.transaction_proof,
            "pricing": self.pricing.to_dict(),
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "verification_deadline": format_timestamp(self.verification_deadline),
            "verification_notes": self.verification_notes,
            "admin_notes": self.admin_notes,
            "notes": self.notes,
            "shipping_info": self.shipping_info.to_dict(),
            "timeline": [e.to_dict() for e in self.timeline],
            "refund": self.refund.to_dict(),
            "priority": self.priority,
            "tags": list(self.tags),
            "archived": self.archived,
            "archived_at": format_timestamp(self.archived_at),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        return cls(
            id=data["id"],
            order_number=data["order_number"],
            user_id=data["user_id"],
            items=[OrderItem.from_dict(i) for i in data.get("items", [])],
            shipping_address=Address.from_dict(data.get("shipping_address", {})),
            billing_address=Address.from_dict(data.get("billing_address", {})),
            payment_method=PaymentMethod.from_dict(data.get("payment_method", {})),
            transaction_proof=data.get("transaction_proof", ""),
            pricing=Pricing.from_dict(data.get("pricing", {})),
            verification_deadline=parse_timestamp(data.get("verification_deadline")),
            status=OrderStatus(data.get("status", OrderStatus.PENDING_VERIFICATION.value)),
            payment_status=PaymentStatus(data.get("payment_status", PaymentStatus.PENDING.value)),
            verification_notes=data.get("verification_notes", ""),
            admin_notes=data.get("admin_notes", ""),
            notes=data.get("notes", ""),
            shipping_info=ShippingInfo.from_dict(data.get("shipping_info", {})),
            timeline=[TimelineEntry.from_dict(e) for e in data.get("timeline", [])],
            refund=Refund.from_dict(data.get("refund", {})),
            priority=data.get("priority", Priority.NORMAL.value),
            tags=list(data.get("tags", [])),
            archived=data.get("archived", False),
            archived_at=parse_timestamp(data.get("archived_at")),
            created_at=parse_timestamp(data.get("created_at")) or _utc_now(),
            updated_at=parse_timestamp(data.get("updated_at")) or _utc_now(),
            version=data.get("version", 0),
        )

    @classmethod
    def create(
        cls,
        user_id: str,
        items: list[OrderItem],
        shipping_address: Address,
        payment_method: PaymentMethod,
        transaction_proof: str,
        pricing: Pricing,
        billing_address: Address | None = None,
        notes: str = "",
        order_number: str | None = None,
        verification_timeout_hours: int = 24,
        now: datetime | None = None,
    ) -> "Order":
        """Create a new order awaiting payment verification."""
        now = now or _utc_now()
        if billing_address is None:
            # billing copies shipping but never carries the phone number
            billing_address = Address.from_dict(shipping_address.to_dict())
            billing_address.phone = None
        return cls(
            id=_generate_id(),
            order_number=order_number or generate_order_number(),
            user_id=user_id,
            items=items,
            shipping_address=shipping_address,
            billing_address=billing_address,
            payment_method=payment_method,
            transaction_proof=transaction_proof,
            pricing=pricing,
            verification_deadline=now + timedelta(hours=verification_timeout_hours),
            notes=notes or "",
            created_at=now,
            updated_at=now,
        )


# Derived fields, computed on read and never stored


def order_age(order: Order, now: datetime | None = None) -> int:
    """Whole days since the order was created."""
    now = now or _utc_now()
    return math.floor((now - order.created_at).total_seconds() / 86400)


def total_items(order: Order) -> int:
    """Sum of item quantities."""
    return sum(item.quantity for item in order.items)
