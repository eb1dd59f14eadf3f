"""Append-only audit timeline for orders."""

from datetime import datetime

from .errors import TimelineOrderError
from .models import Order, TimelineEntry, _utc_now, format_timestamp

REFUND_REQUESTED = "refund_requested"
REFUND_APPROVED = "refund_approved"
REFUND_REJECTED = "refund_rejected"


def latest_entry(order: Order) -> TimelineEntry | None:
    """Return the most recent timeline entry, if any."""
    return order.timeline[-1] if order.timeline else None


def append_entry(
    order: Order,
    status: str,
    note: str = "",
    updated_by: str | None = None,
    timestamp: datetime | None = None,
) -> TimelineEntry:
    """
    Append an entry to the order's timeline.

    Prior entries are never changed or removed. Timestamps are normally
    assigned here; an explicit timestamp must not precede the latest entry.
    A server clock that stepped backwards is clamped to the latest entry.

    Raises:
        TimelineOrderError: If an explicit timestamp is out of order.
    """
    latest = latest_entry(order)

    if timestamp is not None:
        if latest is not None and timestamp < latest.timestamp:
            raise TimelineOrderError(
                format_timestamp(timestamp), format_timestamp(latest.timestamp)
            )
    else:
        timestamp = _utc_now()
        if latest is not None and timestamp < latest.timestamp:
            timestamp = latest.timestamp

    entry = TimelineEntry(
        status=str(getattr(status, "value", status)),
        timestamp=timestamp,
        note=note,
        updated_by=updated_by,
    )
    order.timeline.append(entry)
    order.updated_at = timestamp
    return entry
