"""
End-to-end order/payment flows through the services, the event bus and a real database.
"""

import threading
from unittest.mock import Mock

import pytest

from freshmarket.core.database import DatabaseManager
from freshmarket.core.event_bus import EventBus
from freshmarket.core.events import EventType
from freshmarket.core.exceptions import StaleStateError
from freshmarket.core.lifecycle_engine import LifecycleEngine
from freshmarket.core.shared_enums import OrderStatus, PaymentStatus
from freshmarket.services.order_event_reliability_service import OrderEventReliabilityService
from freshmarket.services.payment_service import PaymentCallback, PaymentService
from freshmarket.services.state_service import StateService


@pytest.fixture
def reliability_service(state_service, lifecycle_config):
    return OrderEventReliabilityService(state_service, config=lifecycle_config, sleep=Mock())


class TestOrderPaymentFlow:

    def test_checkout_to_delivery(self, state_service, payment_service, reliability_service,
                                  event_bus, sample_order):
        seen = []
        event_bus.subscribe_all(lambda event: seen.append(event.event_type))

        payment = payment_service.create_payment(sample_order.id, "29.99", "alipay")
        result = payment_service.handle_payment_callback(PaymentCallback(
            payment_number=payment.payment_number, status="success",
            transaction_id="2024010122001234567890", sign="abc123def456"))

        assert result == "success"
        assert state_service.get_order_status(sample_order.id) is OrderStatus.PAID

        state_service.update_order_status(sample_order.id, OrderStatus.SHIPPING, source="warehouse")
        state_service.update_order_status(sample_order.id, OrderStatus.DELIVERED, source="courier")

        assert state_service.get_order_status(sample_order.id) is OrderStatus.DELIVERED
        # Type subscribers run before global ones, so the PAID change is seen first
        assert seen == [
            EventType.PAYMENT_STATUS_CHANGED,
            EventType.ORDER_STATUS_CHANGED,
            EventType.PAYMENT_SUCCEEDED,
            EventType.ORDER_STATUS_CHANGED,
            EventType.ORDER_STATUS_CHANGED,
        ]

    def test_failed_payment_then_retry(self, state_service, payment_service, reliability_service,
                                       sample_order, clock):
        first = payment_service.create_payment(sample_order.id, "29.99", "wechat")
        payment_service.handle_payment_callback(PaymentCallback(
            payment_number=first.payment_number, status="failed", sign="sig",
            failure_reason="Card declined"))

        assert first.status is PaymentStatus.FAILED
        assert state_service.get_order_status(sample_order.id) is OrderStatus.PENDING

        clock.advance(seconds=30)
        second = payment_service.create_payment(sample_order.id, "29.99", "unionpay")
        payment_service.handle_payment_callback(PaymentCallback(
            payment_number=second.payment_number, status="success", sign="sig"))

        assert state_service.get_order_status(sample_order.id) is OrderStatus.PAID
        assert first.status is PaymentStatus.FAILED

    def test_expired_payment_then_cancelled_order(self, state_service, payment_service, reliability_service,
                                                  sample_order, sample_payment, clock):
        clock.advance(minutes=45)
        assert payment_service.process_expired_payments() == 1

        # A late gateway success after expiry is refused
        late = PaymentCallback(payment_number=sample_payment.payment_number, status="success", sign="sig")
        assert payment_service.handle_payment_callback(late) == "fail"

        state_service.cancel_order(sample_order.id, source="timeout")
        assert state_service.get_order_status(sample_order.id) is OrderStatus.CANCELLED
        assert sample_payment.status is PaymentStatus.CANCELLED

    def test_refund_after_cancelling_paid_order(self, state_service, payment_service, reliability_service,
                                                sample_order, sample_payment):
        payment_service.handle_payment_callback(PaymentCallback(
            payment_number=sample_payment.payment_number, status="success", sign="sig"))
        state_service.cancel_order(sample_order.id, source="support")

        payment_service.refund_payment(sample_payment.id)

        assert sample_payment.status is PaymentStatus.REFUNDED
        assert state_service.get_order_status(sample_order.id) is OrderStatus.CANCELLED


class TestConcurrentServices:

    def test_ship_and_cancel_race_on_separate_sessions(self, tmp_path, lifecycle_config):
        """Two workers with their own sessions share one engine and database."""
        manager = DatabaseManager(str(tmp_path / "race.db"))
        manager.init_db()
        engine = LifecycleEngine()
        bus = EventBus(lifecycle_config['event_system'])

        setup_session = manager.Session.session_factory()
        setup_state = StateService(setup_session, event_bus=bus, engine=engine, config=lifecycle_config)
        setup_payment = PaymentService(setup_session, event_bus=bus, engine=engine, config=lifecycle_config)
        order = setup_state.persistence_service.create_order(
            1, "1 Road", "555", [{'product_id': 1, 'unit_price': '5.00', 'quantity': 1}])
        payment = setup_payment.create_payment(order.id, "5.00", "mock")
        setup_payment.handle_payment_callback(PaymentCallback(
            payment_number=payment.payment_number, status="success", sign="sig"))
        setup_state.update_order_status(order.id, OrderStatus.PAID, source="setup")
        order_id = order.id
        setup_session.close()

        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def worker(target):
            session = manager.Session.session_factory()
            service = StateService(session, event_bus=bus, engine=engine, config=lifecycle_config)
            barrier.wait()
            try:
                service.update_order_status(order_id, target, source="worker",
                                            expected_status=OrderStatus.PAID)
                outcome = "ok"
            except StaleStateError:
                outcome = "stale"
            finally:
                session.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker, args=(t,))
                   for t in (OrderStatus.SHIPPING, OrderStatus.CANCELLED)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok", "stale"]
        manager.close()
