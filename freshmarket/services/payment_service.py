"""
Payment lifecycle operations: creation, gateway callbacks, cancellation, refunds,
the expiry sweep and mock-gateway settlement.

Every status change goes through the lifecycle engine while the order aggregate lock is held.
Events are published after the lock is released and only for committed changes.
"""

import datetime
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from config.lifecycle_config import get_config
from freshmarket.core.database import get_db_session
from freshmarket.core.event_bus import EventBus
from freshmarket.core.events import LifecycleEvent, PaymentStatusEvent
from freshmarket.core.exceptions import (
    BusinessError,
    IllegalTransitionError,
    PaymentProcessingError,
    ResourceNotFoundError,
)
from freshmarket.core.gateway_registry import from_code, is_mock
from freshmarket.core.lifecycle_engine import LifecycleEngine
from freshmarket.core.lifecycle_rules import is_cancellable
from freshmarket.core.models import PaymentDB
from freshmarket.core.shared_enums import (
    PAYMENT_STATUS_DESCRIPTIONS,
    OrderStatus,
    PaymentGateway,
    PaymentStatus,
)
from freshmarket.services.order_persistence_service import OrderPersistenceService, to_money

# Context-aware logging import - Begin
from freshmarket.core.context_aware_logger import get_context_logger, LifecycleEventType
# Context-aware logging import - End

CALLBACK_SUCCESS = "success"
CALLBACK_FAIL = "fail"


@dataclass
class PaymentCallback:
    """Asynchronous settlement notification sent by a gateway."""
    payment_number: str
    status: str
    transaction_id: Optional[str] = None
    amount: Optional[str] = None
    sign: Optional[str] = None
    raw_data: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_time: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return (self.status or "").strip().lower() == CALLBACK_SUCCESS


@dataclass
class PaymentStatusView:
    """Read-only snapshot of a payment for status queries."""
    payment_id: int
    order_id: int
    payment_number: str
    status: PaymentStatus
    gateway: PaymentGateway
    amount: Decimal
    transaction_id: Optional[str]
    failure_reason: Optional[str]
    paid_at: Optional[datetime.datetime]
    expires_at: Optional[datetime.datetime]
    status_description: str = ""

    @classmethod
    def from_payment(cls, payment: PaymentDB) -> "PaymentStatusView":
        return cls(
            payment_id=payment.id,
            order_id=payment.order_id,
            payment_number=payment.payment_number,
            status=payment.status,
            gateway=payment.gateway,
            amount=payment.amount,
            transaction_id=payment.transaction_id,
            failure_reason=payment.failure_reason,
            paid_at=payment.paid_at,
            expires_at=payment.expires_at,
            status_description=PAYMENT_STATUS_DESCRIPTIONS[payment.status]
        )


class PaymentService:
    """Creates payments and drives them through their lifecycle."""

    def __init__(self, db_session=None, event_bus: Optional[EventBus] = None,
                 engine: Optional[LifecycleEngine] = None, config: Optional[dict] = None,
                 random_source: Optional[Callable[[], float]] = None):
        # Context-aware logging initialization - Begin
        self.context_logger = get_context_logger()
        # Context-aware logging initialization - End

        self.config = config or get_config()
        self.payment_config = self.config.get('payments', {})
        self.db_session = db_session or get_db_session()
        self.engine = engine or LifecycleEngine()
        self.persistence_service = OrderPersistenceService(self.db_session, clock=self.engine.now)
        self.event_bus = event_bus or EventBus(self.config.get('event_system', {}))
        self._random = random_source or random.random

        self.expiry_minutes = self.payment_config.get('expiry_minutes', 30)
        self.allow_mock_gateway = self.payment_config.get('allow_mock_gateway', True)
        self.require_signature = self.payment_config.get('require_callback_signature', True)
        self.mock_success_probability = Decimal(
            str(self.payment_config.get('mock_success_probability', Decimal('0.3'))))
        self.mock_batch_size = self.payment_config.get('mock_batch_size', 10)

    # ---------------------------------------------------------------- creation

    def create_payment(self, order_id: int, amount, payment_method: str) -> PaymentDB:
        """
        Create a PENDING payment for a PENDING order.

        Any still-cancellable earlier payment of the order is cancelled so that
        the new record is the only active one.

        Raises:
            ResourceNotFoundError: order does not exist.
            UnknownGatewayError: payment_method is not a known gateway code.
            PaymentProcessingError: mock gateway disabled in this environment.
            BusinessError: order not payable, already paid or amount mismatch.
        """
        events: List[LifecycleEvent] = []
        with self.engine.locks.hold(order_id):
            order = self.persistence_service.get_order(order_id)

            if self.persistence_service.has_successful_payment(order_id):
                raise BusinessError("ORDER_ALREADY_PAID",
                                    f"Order {order_id} already has successful payment")
            if order.status is not OrderStatus.PENDING:
                raise BusinessError("ORDER_NOT_PAYABLE",
                                    f"Order {order_id} is {order.status.name}, only PENDING orders can be paid")

            gateway = from_code(payment_method)
            if is_mock(gateway) and not self.allow_mock_gateway:
                raise PaymentProcessingError(gateway.code, "Mock payment gateway is disabled")

            if to_money(amount) != to_money(order.total_amount):
                raise BusinessError.bad_request("Payment amount does not match order amount")

            previous = self.persistence_service.get_latest_payment(order_id)
            if previous is not None and is_cancellable(previous.status):
                events.append(self.engine.transition_payment(
                    previous, PaymentStatus.CANCELLED, order=order,
                    failure_reason="Superseded by new payment", source="PaymentService"))

            payment = self.persistence_service.create_payment_record(
                order, amount, gateway, expiry_minutes=self.expiry_minutes)

        self._publish_events(events)
        return payment

    # --------------------------------------------------------------- callbacks

    def verify_callback_signature(self, callback: PaymentCallback) -> bool:
        """A callback is trusted when it carries a non-blank signature."""
        if not self.require_signature:
            return True
        return bool(callback.sign and callback.sign.strip())

    def handle_payment_callback(self, callback: PaymentCallback) -> str:
        """
        Apply a gateway callback. Returns "success" when the result was recorded,
        "fail" otherwise; business errors never escape.
        """
        payment = self.persistence_service.get_payment_by_number(callback.payment_number)
        if payment is None:
            self._log_callback(None, callback, "Payment not found for callback")
            return CALLBACK_FAIL

        if not self.verify_callback_signature(callback):
            self._log_callback(payment.order_id, callback, "Invalid callback signature")
            return CALLBACK_FAIL

        with self.engine.locks.hold(payment.order_id):
            try:
                self.persistence_service.reload(payment)
                order = self.persistence_service.find_order(payment.order_id)
                events = self.engine.settle_payment(
                    payment,
                    succeeded=callback.is_success,
                    order=order,
                    transaction_id=callback.transaction_id,
                    failure_reason=None if callback.is_success else (callback.failure_reason or "Payment failed"),
                    gateway_response=callback.raw_data,
                    source="PaymentCallback"
                )
                self.persistence_service.commit()
            except BusinessError as e:
                self.persistence_service.rollback()
                self._log_callback(payment.order_id, callback, f"Callback rejected: {e.message}")
                return CALLBACK_FAIL
            except SQLAlchemyError as e:
                self.persistence_service.rollback()
                self._log_callback(payment.order_id, callback, f"Callback not persisted: {e}")
                return CALLBACK_FAIL

        self._publish_events(events)
        self._log_callback(payment.order_id, callback, f"Payment status updated to {payment.status.name}")
        return CALLBACK_SUCCESS

    # ------------------------------------------------------ user-driven changes

    def cancel_payment(self, payment_id: int, reason: str = "Cancelled by user") -> PaymentStatusEvent:
        """Cancel a PENDING or PROCESSING payment."""
        payment = self.persistence_service.get_payment(payment_id)
        with self.engine.locks.hold(payment.order_id):
            self.persistence_service.reload(payment)
            if not is_cancellable(payment.status):
                raise IllegalTransitionError(
                    "payment", payment.payment_number, payment.status, PaymentStatus.CANCELLED,
                    message=f"Payment cannot be cancelled, current status: {payment.status.name}")
            order = self.persistence_service.find_order(payment.order_id)
            event = self.engine.transition_payment(
                payment, PaymentStatus.CANCELLED, order=order,
                failure_reason=reason, source="PaymentService")
            self.persistence_service.commit()

        self._publish_events([event])
        return event

    def refund_payment(self, payment_id: int) -> PaymentStatusEvent:
        """Refund a successful payment."""
        payment = self.persistence_service.get_payment(payment_id)
        with self.engine.locks.hold(payment.order_id):
            self.persistence_service.reload(payment)
            order = self.persistence_service.find_order(payment.order_id)
            event = self.engine.transition_payment(
                payment, PaymentStatus.REFUNDED, order=order, source="PaymentService")
            self.persistence_service.commit()

        self._publish_events([event])
        return event

    # ------------------------------------------------------------- batch sweeps

    def process_expired_payments(self, now: Optional[datetime.datetime] = None) -> int:
        """Cancel PENDING payments past their expiry. Returns the number cancelled."""
        now = now or self.engine.now()
        processed = 0
        for payment in self.persistence_service.find_expired_payments(now):
            events = []
            with self.engine.locks.hold(payment.order_id):
                try:
                    self.persistence_service.reload(payment)
                    order = self.persistence_service.find_order(payment.order_id)
                    events.append(self.engine.transition_payment(
                        payment, PaymentStatus.CANCELLED, order=order,
                        expected_status=PaymentStatus.PENDING,
                        failure_reason="Payment expired", source="ExpirySweep"))
                    self.persistence_service.commit()
                except BusinessError as e:
                    # Settled or cancelled concurrently
                    self.persistence_service.rollback()
                    self._log_sweep(payment, "Expired payment skipped", e.message)
                    continue
            self._publish_events(events)
            processed += 1

        if processed:
            self._log_sweep(None, "Expired payments cancelled", f"{processed} payments")
        return processed

    def simulate_mock_settlements(self) -> int:
        """
        Settle pending MOCK payments to SUCCESS with the configured probability.
        Returns the number settled. Does nothing when the mock gateway is disabled.
        """
        if not self.allow_mock_gateway or self.mock_success_probability <= 0:
            return 0

        settled = 0
        for payment in self.persistence_service.find_pending_mock_payments(self.mock_batch_size):
            if Decimal(str(self._random())) >= self.mock_success_probability:
                continue

            callback = PaymentCallback(
                payment_number=payment.payment_number,
                status=CALLBACK_SUCCESS,
                transaction_id=f"MOCK{int(self.engine.now().timestamp() * 1000)}{payment.id}",
                sign="mock-signature",
                raw_data='{"gateway": "mock", "result": "success"}'
            )
            if self.handle_payment_callback(callback) == CALLBACK_SUCCESS:
                settled += 1
        return settled

    # ------------------------------------------------------------------ queries

    def get_payment_status_by_order(self, order_id: int) -> PaymentStatusView:
        payment = self.persistence_service.get_latest_payment(order_id)
        if payment is None:
            raise ResourceNotFoundError(f"No payment found for order: {order_id}")
        return PaymentStatusView.from_payment(payment)

    def get_payment_status_by_number(self, payment_number: str) -> PaymentStatusView:
        payment = self.persistence_service.get_payment_by_number(payment_number)
        if payment is None:
            raise ResourceNotFoundError(f"Payment not found: {payment_number}")
        return PaymentStatusView.from_payment(payment)

    def get_payment_history(self, order_id: int) -> List[PaymentStatusView]:
        return [PaymentStatusView.from_payment(p)
                for p in self.persistence_service.get_payment_history(order_id)]

    # ------------------------------------------------------------------ helpers

    def _publish_events(self, events: List[LifecycleEvent]) -> None:
        for event in events:
            self.event_bus.publish(event)

    def _log_callback(self, order_id, callback: PaymentCallback, message: str) -> None:
        self.context_logger.log_event(
            event_type=LifecycleEventType.GATEWAY_CALLBACK,
            message=message,
            order_id=order_id,
            context_provider={
                'payment_number': lambda: callback.payment_number,
                'callback_status': lambda: callback.status,
                'transaction_id': lambda: callback.transaction_id
            },
            decision_reason="Gateway callback handling"
        )

    def _log_sweep(self, payment: Optional[PaymentDB], message: str, detail: str) -> None:
        self.context_logger.log_event(
            event_type=LifecycleEventType.PAYMENT_TRANSITION,
            message=message,
            order_id=payment.order_id if payment else None,
            context_provider={
                'payment_number': lambda: payment.payment_number if payment else None,
                'detail': lambda: detail
            },
            decision_reason="Expiry sweep"
        )
