"""Pytest fixtures for orderdesk tests."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from orderdesk.models import Address, Order, OrderItem, PaymentMethod, Pricing
from orderdesk.order_store import JsonOrderStore, MemoryOrderStore
from orderdesk.service import OrderService

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def sample_payload(**overrides) -> dict:
    """Checkout payload for a two-item order totalling 120.00."""
    payload = {
        "user_id": "user-1",
        "items": [
            {
                "product_id": "book-1",
                "type": "Book",
                "title": "Tafsir Al-Quran",
                "price": 40.0,
                "quantity": 2,
            },
            {
                "product_id": "poster-1",
                "type": "Poster",
                "title": "Calligraphy Poster",
                "price": 20.0,
                "quantity": 1,
            },
        ],
        "shipping_address": {
            "full_name": "Aisyah Rahman",
            "address": "12 Jalan Ampang",
            "city": "Kuala Lumpur",
            "state": "Wilayah Persekutuan",
            "postal_code": "50450",
            "country": "Malaysia",
            "phone": "+60123456789",
        },
        "payment_method": {
            "type": "epay",
            "name": "DuitNow",
            "account_number": "1234567890",
            "account_name": "Penerbit Sdn Bhd",
            "bank_name": "Maybank",
        },
        "transaction_proof": "proofs/txn-001.jpg",
        "pricing": {"subtotal": 100.0, "tax": 8.0, "shipping": 12.0, "total": 120.0},
    }
    payload.update(overrides)
    return payload


def make_order(now: datetime = START, **overrides) -> Order:
    """Build an unsaved pending order directly from the models."""
    payload = sample_payload(**overrides)
    return Order.create(
        user_id=payload["user_id"],
        items=[OrderItem(**item) for item in payload["items"]],
        shipping_address=Address.from_dict(payload["shipping_address"]),
        payment_method=PaymentMethod.from_dict(payload["payment_method"]),
        transaction_proof=payload["transaction_proof"],
        pricing=Pricing.from_dict(payload["pricing"]),
        order_number="TLS-000001-TEST",
        now=now,
    )


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def order(clock):
    """A pending order that hasn't been stored."""
    return make_order(clock.now)


@pytest.fixture
def memory_store():
    return MemoryOrderStore()


@pytest.fixture
def json_store(temp_dir):
    return JsonOrderStore(temp_dir)


@pytest.fixture
def service(memory_store, clock):
    """OrderService over an in-memory store with a fixed clock."""
    return OrderService(memory_store, clock=clock)


@pytest.fixture
def json_service(json_store, clock):
    """OrderService over a JSON file store with a fixed clock."""
    return OrderService(json_store, clock=clock)


@pytest.fixture
def pending_order(service):
    """A stored order awaiting payment verification."""
    return service.create_order(**sample_payload())


@pytest.fixture
def delivered_order(service, pending_order):
    """A stored order that went all the way to delivered."""
    service.verify_payment(pending_order.id, True, "ok", actor="admin")
    service.update_status(pending_order.id, "processing", actor="admin")
    service.update_status(
        pending_order.id,
        "shipped",
        shipping_info={"carrier": "PosLaju", "tracking_number": "PL123"},
        actor="admin",
    )
    return service.update_status(pending_order.id, "delivered", actor="admin")
