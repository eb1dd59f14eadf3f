"""Tests for OrderService workflows against a store."""

import threading
from datetime import timedelta

import pytest

from conftest import START, sample_payload

from orderdesk.errors import (
    AlreadyInStateError,
    AlreadyVerifiedError,
    ConcurrentModificationError,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderNumberCollisionError,
    RefundNotApprovedError,
    ValidationError,
)
from orderdesk.models import OrderStatus, PaymentStatus, RefundStatus
from orderdesk.order_store import JsonOrderStore, MemoryOrderStore
from orderdesk.service import OrderService


class BarrierGet:
    """Makes every get() wait until two callers have loaded the order."""

    barrier = None

    def get(self, order_id):
        order = super().get(order_id)
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        return order


class BarrierStore(BarrierGet, MemoryOrderStore):
    pass


class JsonBarrierStore(BarrierGet, JsonOrderStore):
    pass


def run_pair(first, second):
    """Run two callables in threads. Returns sorted outcomes: "ok" or "conflict"."""
    results = []

    def run(action):
        try:
            action()
            results.append("ok")
        except ConcurrentModificationError:
            results.append("conflict")

    threads = [threading.Thread(target=run, args=(a,)) for a in (first, second)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return sorted(results)


class TestCreateOrder:
    def test_create(self, service, clock):
        order = service.create_order(**sample_payload())

        assert order.status == OrderStatus.PENDING_VERIFICATION
        assert order.payment_status == PaymentStatus.PENDING
        assert order.verification_deadline == clock.now + timedelta(hours=24)
        assert order.timeline == []
        assert order.items[0].subtotal == 80.0
        assert order.version == 1
        assert service.get_order(order.id).order_number == order.order_number

    def test_client_subtotal_ignored(self, service):
        payload = sample_payload()
        payload["items"][0]["subtotal"] = 1.0

        order = service.create_order(**payload)
        assert order.items[0].subtotal == 80.0

    def test_subtotal_survives_save_unrounded(self, service):
        payload = sample_payload(
            items=[
                {
                    "product_id": "ebook-1",
                    "type": "Ebook",
                    "title": "Hikayat",
                    "price": 0.1,
                    "quantity": 3,
                }
            ],
            pricing={"subtotal": 0.3, "tax": 0.0, "shipping": 0.0, "total": 0.3},
        )

        order = service.create_order(**payload)
        stored = service.get_order(order.id)

        for item in (order.items[0], stored.items[0]):
            assert item.subtotal == item.price * item.quantity

    def test_mismatched_total_rejected(self, service, memory_store):
        payload = sample_payload(
            pricing={"subtotal": 100.0, "tax": 8.0, "shipping": 12.0, "total": 119.0}
        )

        with pytest.raises(ValidationError):
            service.create_order(**payload)
        assert memory_store.list_orders() == []

    def test_missing_item_field(self, service):
        payload = sample_payload()
        del payload["items"][0]["price"]

        with pytest.raises(ValidationError, match=r"items\[0\].price"):
            service.create_order(**payload)

    def test_missing_shipping_address(self, service):
        with pytest.raises(ValidationError, match="shipping_address"):
            service.create_order(**sample_payload(shipping_address=None))

    def test_timeout_is_clamped(self, memory_store, clock):
        service = OrderService(memory_store, clock=clock, verification_timeout_hours=1000)
        order = service.create_order(**sample_payload())
        assert order.verification_deadline == clock.now + timedelta(hours=168)

    def test_order_number_retried_on_collision(self, memory_store, clock):
        numbers = iter(["TLS-111111-AAAA", "TLS-111111-AAAA", "TLS-222222-BBBB"])
        service = OrderService(memory_store, clock=clock, number_generator=lambda: next(numbers))

        first = service.create_order(**sample_payload())
        second = service.create_order(**sample_payload())

        assert first.order_number == "TLS-111111-AAAA"
        assert second.order_number == "TLS-222222-BBBB"

    def test_order_number_attempts_exhausted(self, memory_store, clock):
        service = OrderService(memory_store, clock=clock, number_generator=lambda: "TLS-111111-AAAA")
        service.create_order(**sample_payload())

        with pytest.raises(OrderNumberCollisionError) as exc_info:
            service.create_order(**sample_payload())
        assert exc_info.value.attempts == 5
        assert len(memory_store.list_orders()) == 1


class TestQueries:
    def test_get_by_order_number(self, service, pending_order):
        assert service.get_order(pending_order.order_number).id == pending_order.id

    def test_get_missing(self, service):
        with pytest.raises(OrderNotFoundError):
            service.get_order("missing")

    def test_list_newest_first_and_paginated(self, service, clock):
        ids = []
        for _ in range(3):
            ids.append(service.create_order(**sample_payload()).id)
            clock.advance(minutes=1)

        orders, total = service.list_orders(page=1, limit=2)
        assert total == 3
        assert [o.id for o in orders] == [ids[2], ids[1]]

        orders, _ = service.list_orders(page=2, limit=2)
        assert [o.id for o in orders] == [ids[0]]

    def test_list_filters(self, service, pending_order):
        service.create_order(**sample_payload(user_id="user-2"))

        orders, total = service.list_orders(user_id="user-2")
        assert total == 1
        assert orders[0].user_id == "user-2"

        orders, total = service.list_orders(status="verified")
        assert total == 0

        orders, total = service.list_orders(status="all")
        assert total == 2

    def test_list_unknown_status(self, service):
        with pytest.raises(ValidationError):
            service.list_orders(status="lost")

    def test_expiry_queries(self, service, pending_order, clock):
        assert service.is_expired(pending_order.id) is False
        assert service.days_until_deadline(pending_order.id) == 1

        clock.advance(hours=25)
        assert service.is_expired(pending_order.id) is True
        assert [o.id for o in service.list_expired_pending()] == [pending_order.id]

        # reading never changes the order
        assert service.get_order(pending_order.id).status == OrderStatus.PENDING_VERIFICATION

    def test_stats(self, service, pending_order):
        stats = service.get_order_stats()
        assert stats["total_orders"] == 1
        assert stats["pending_orders"] == 1
        assert stats["total_revenue"] == 120.0


class TestVerifyPayment:
    def test_approve(self, service, pending_order):
        order = service.verify_payment(pending_order.id, True, "ok", actor="admin")

        assert order.status == OrderStatus.VERIFIED
        assert order.payment_status == PaymentStatus.VERIFIED
        stored = service.get_order(pending_order.id)
        assert stored.status == OrderStatus.VERIFIED
        assert len(stored.timeline) == 1

    def test_reject_then_approve(self, service, pending_order):
        service.verify_payment(pending_order.id, False, "blurry proof", actor="admin")

        with pytest.raises(AlreadyVerifiedError):
            service.verify_payment(pending_order.id, True, "ok", actor="admin")

        stored = service.get_order(pending_order.id)
        assert stored.status == OrderStatus.CANCELLED
        assert stored.payment_status == PaymentStatus.REJECTED
        assert len(stored.timeline) == 1

    def test_expired_order_can_still_be_verified(self, service, pending_order, clock):
        clock.advance(days=3)
        order = service.verify_payment(pending_order.id, True, "late but fine")
        assert order.status == OrderStatus.VERIFIED

    def test_concurrent_verification(self, clock):
        store = BarrierStore()
        service = OrderService(store, clock=clock)
        order = service.create_order(**sample_payload())
        store.barrier = threading.Barrier(2)

        results = run_pair(
            lambda: service.verify_payment(order.id, True, "race"),
            lambda: service.verify_payment(order.id, False, "race"),
        )
        assert results == ["conflict", "ok"]

        store.barrier = None
        stored = service.get_order(order.id)
        assert len(stored.timeline) == 1
        assert stored.version == 2
        if stored.status == OrderStatus.VERIFIED:
            assert stored.payment_status == PaymentStatus.VERIFIED
        else:
            assert stored.status == OrderStatus.CANCELLED
            assert stored.payment_status == PaymentStatus.REJECTED


class TestUpdateStatus:
    def test_fulfillment_path(self, service, delivered_order):
        stored = service.get_order(delivered_order.id)

        assert stored.status == OrderStatus.DELIVERED
        assert stored.shipping_info.carrier == "PosLaju"
        assert stored.shipping_info.tracking_number == "PL123"
        assert [e.status for e in stored.timeline] == [
            "verified",
            "processing",
            "shipped",
            "delivered",
        ]

    def test_ship_requires_tracking(self, service, pending_order):
        service.verify_payment(pending_order.id, True)
        service.update_status(pending_order.id, "processing")

        with pytest.raises(ValidationError, match="tracking_number"):
            service.update_status(pending_order.id, "shipped", shipping_info={"carrier": "PosLaju"})
        assert service.get_order(pending_order.id).status == OrderStatus.PROCESSING

    def test_deliver_before_ship(self, service, pending_order):
        service.verify_payment(pending_order.id, True)
        service.update_status(pending_order.id, "processing")

        with pytest.raises(InvalidTransitionError):
            service.update_status(pending_order.id, "delivered")

        stored = service.get_order(pending_order.id)
        assert stored.status == OrderStatus.PROCESSING
        assert len(stored.timeline) == 2

    def test_same_status_is_already_in_state(self, service, pending_order):
        service.verify_payment(pending_order.id, True)
        service.update_status(pending_order.id, "processing")

        with pytest.raises(AlreadyInStateError):
            service.update_status(pending_order.id, "processing")
        assert len(service.get_order(pending_order.id).timeline) == 2

    @pytest.mark.parametrize("target", ["verified", "cancelled"])
    def test_pending_edges_refused(self, service, pending_order, target):
        with pytest.raises(InvalidTransitionError, match="payment verification"):
            service.update_status(pending_order.id, target)

        stored = service.get_order(pending_order.id)
        assert stored.status == OrderStatus.PENDING_VERIFICATION
        assert stored.payment_status == PaymentStatus.PENDING

    def test_refunded_edge_refused(self, service, delivered_order):
        with pytest.raises(InvalidTransitionError, match="refund processing"):
            service.update_status(delivered_order.id, "refunded")

    def test_unknown_status(self, service, pending_order):
        with pytest.raises(ValidationError):
            service.update_status(pending_order.id, "lost")

    def test_cancel_verified(self, service, pending_order):
        service.verify_payment(pending_order.id, True)
        order = service.update_status(pending_order.id, "cancelled", note="Out of stock")

        assert order.status == OrderStatus.CANCELLED
        assert order.timeline[-1].note == "Out of stock"

    def test_clock_stepping_back_is_clamped(self, service, pending_order, clock):
        service.verify_payment(pending_order.id, True)
        clock.advance(seconds=-2)

        order = service.update_status(pending_order.id, "processing")

        assert order.status == OrderStatus.PROCESSING
        assert order.timeline[1].timestamp == order.timeline[0].timestamp
        stored = service.get_order(pending_order.id)
        assert [e.status for e in stored.timeline] == ["verified", "processing"]

    @pytest.mark.parametrize("backend", ["memory", "json"])
    def test_concurrent_processing_and_cancel(self, backend, clock, temp_dir):
        store = BarrierStore() if backend == "memory" else JsonBarrierStore(temp_dir)
        service = OrderService(store, clock=clock)
        order = service.create_order(**sample_payload())
        service.verify_payment(order.id, True)
        store.barrier = threading.Barrier(2)

        results = run_pair(
            lambda: service.update_status(order.id, "processing"),
            lambda: service.update_status(order.id, "cancelled", note="Out of stock"),
        )
        assert results == ["conflict", "ok"]

        store.barrier = None
        stored = service.get_order(order.id)
        assert stored.version == 3
        assert len(stored.timeline) == 2
        assert stored.status in (OrderStatus.PROCESSING, OrderStatus.CANCELLED)
        assert stored.timeline[-1].status == stored.status.value


class TestRefunds:
    def test_full_refund_flow(self, service, delivered_order):
        service.request_refund(delivered_order.id, "damaged")
        service.resolve_refund(delivered_order.id, "approved", actor="admin")
        order = service.process_refund(delivered_order.id, actor="admin")

        assert order.status == OrderStatus.REFUNDED
        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.refund.status == RefundStatus.PROCESSED
        assert order.refund.amount == 120.0

        statuses = [e.status for e in service.get_order(delivered_order.id).timeline]
        assert statuses.index("refund_requested") < statuses.index("refund_approved")
        assert statuses.index("refund_approved") < statuses.index("refunded")

    def test_process_before_approval(self, service, delivered_order):
        service.request_refund(delivered_order.id, "damaged")

        with pytest.raises(RefundNotApprovedError):
            service.process_refund(delivered_order.id)
        assert service.get_order(delivered_order.id).status == OrderStatus.DELIVERED

    def test_invalid_decision(self, service, delivered_order):
        service.request_refund(delivered_order.id, "damaged")

        with pytest.raises(ValidationError):
            service.resolve_refund(delivered_order.id, "maybe")


class TestMetadata:
    def test_update_metadata(self, service, pending_order):
        order = service.update_metadata(
            pending_order.id, priority="high", tags=[" gift ", ""], admin_notes="VIP"
        )

        assert order.priority == "high"
        assert order.tags == ["gift"]
        assert order.admin_notes == "VIP"
        assert order.status == OrderStatus.PENDING_VERIFICATION
        assert order.timeline == []

    def test_invalid_priority(self, service, pending_order):
        with pytest.raises(ValidationError):
            service.update_metadata(pending_order.id, priority="asap")
        assert service.get_order(pending_order.id).priority == "normal"

    def test_archive_terminal_order(self, service, delivered_order):
        order = service.archive_order(delivered_order.id)
        assert order.archived is True

        orders, total = service.list_orders()
        assert total == 0
        orders, total = service.list_orders(include_archived=True)
        assert total == 1

        with pytest.raises(AlreadyInStateError):
            service.archive_order(delivered_order.id)

    def test_archive_active_order_refused(self, service, pending_order):
        with pytest.raises(InvalidTransitionError):
            service.archive_order(pending_order.id)


class TestJsonBackedService:
    def test_lifecycle_survives_reload(self, json_service, json_store, clock):
        order = json_service.create_order(**sample_payload())
        json_service.verify_payment(order.id, True, "ok")

        reloaded = OrderService(json_store, clock=clock).get_order(order.id)
        assert reloaded.status == OrderStatus.VERIFIED
        assert reloaded.version == 2
        assert reloaded.timeline[0].timestamp == START
