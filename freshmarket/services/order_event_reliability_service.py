"""
Eventual consistency between payment success and order status.
Applies PAYMENT_SUCCEEDED events to their orders with bounded exponential backoff on
database failures, dead-letters events that still fail, and repairs orders left PENDING
behind a settled payment.
"""

import datetime
import time
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from freshmarket.core.events import EventType, PaymentStatusEvent
from freshmarket.core.exceptions import BusinessError
from freshmarket.core.shared_enums import OrderStatus, PaymentStatus
from freshmarket.services.state_service import StateService

# Context-aware logging import - Begin
from freshmarket.core.context_aware_logger import get_context_logger, LifecycleEventType
# Context-aware logging import - End


class OrderEventReliabilityService:
    """Moves orders to PAID when their payment succeeds, retrying on storage failures."""

    SOURCE = "OrderEventReliabilityService"

    def __init__(self, state_service: StateService, config: Optional[dict] = None,
                 sleep: Optional[Callable[[float], None]] = None, subscribe: bool = True):
        self.context_logger = get_context_logger()
        self.state_service = state_service
        self.persistence_service = state_service.persistence_service
        self.config = config or state_service.config
        self._sleep = sleep or time.sleep

        reliability = self.config.get('reliability', {})
        self.max_attempts = reliability.get('max_attempts', 5)
        self.initial_delay = reliability.get('initial_delay_seconds', 1.0)
        self.backoff_multiplier = reliability.get('backoff_multiplier', 2)
        self.max_delay = reliability.get('max_delay_seconds', 30.0)
        self.inconsistency_cutoff = datetime.timedelta(
            seconds=reliability.get('inconsistency_cutoff_seconds', 300))

        if subscribe:
            state_service.subscribe(EventType.PAYMENT_SUCCEEDED, self.process_payment_success_reliably)

    def process_payment_success_reliably(self, event: PaymentStatusEvent) -> bool:
        """
        Apply a payment success to its order.

        Returns True when the order was moved to PAID. Orders that are missing or no longer
        PENDING are skipped. Database errors are retried with exponential backoff; once the
        attempts are used up the event is recorded as a failed payment event.
        """
        delay = self.initial_delay
        last_error: Optional[SQLAlchemyError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._apply_payment_success(event)
            except SQLAlchemyError as e:
                last_error = e
                self.context_logger.log_event(
                    event_type=LifecycleEventType.RELIABILITY,
                    message="Payment success processing failed",
                    order_id=event.order_id,
                    context_provider={
                        'attempt': lambda: attempt,
                        'max_attempts': lambda: self.max_attempts,
                        'next_delay_seconds': lambda: delay,
                        'error': lambda: str(e)
                    },
                    decision_reason="Database error during order update"
                )
                if attempt < self.max_attempts:
                    self._sleep(delay)
                    delay = min(delay * self.backoff_multiplier, self.max_delay)

        self._recover(event, last_error)
        return False

    def _apply_payment_success(self, event: PaymentStatusEvent) -> bool:
        status = self.state_service.get_order_status(event.order_id)
        if status is None:
            self._log_skip(event, "Order not found for payment success")
            return False
        if status is not OrderStatus.PENDING:
            self._log_skip(event, f"Order already {status.name}, skipping update")
            return False

        try:
            self.state_service.update_order_status(
                event.order_id, OrderStatus.PAID,
                source=self.SOURCE,
                expected_status=OrderStatus.PENDING,
                details={'payment_number': event.payment_number,
                         'transaction_id': event.transaction_id}
            )
        except BusinessError as e:
            # Lost a race against another writer; nothing to retry
            self._log_skip(event, f"Order update rejected: {e.message}")
            return False
        return True

    def _recover(self, event: PaymentStatusEvent, error: Optional[SQLAlchemyError]) -> None:
        self.context_logger.log_event(
            event_type=LifecycleEventType.RELIABILITY,
            message="All retry attempts failed for payment success event",
            order_id=event.order_id,
            context_provider={
                'payment_number': lambda: event.payment_number,
                'attempts': lambda: self.max_attempts,
                'error': lambda: str(error)
            },
            decision_reason="Manual intervention may be required"
        )
        self.persistence_service.record_failed_payment_event(
            order_id=event.order_id,
            payment_number=event.payment_number,
            transaction_id=event.transaction_id,
            error_message=str(error),
            attempts=self.max_attempts
        )

    def check_and_fix_order_status_inconsistency(self, now: Optional[datetime.datetime] = None) -> int:
        """
        Advance orders still PENDING past the cutoff whose latest payment is SUCCESS.
        Returns the number of orders fixed.
        """
        now = now or self.state_service.engine.now()
        cutoff = now - self.inconsistency_cutoff
        fixed = 0

        for order in self.persistence_service.find_paid_but_pending_orders(cutoff):
            try:
                self.state_service.update_order_status(
                    order.id, OrderStatus.PAID,
                    source="InconsistencyRepair",
                    expected_status=OrderStatus.PENDING
                )
                fixed += 1
            except BusinessError as e:
                self._log_skip(None, f"Inconsistent order {order.id} not repaired: {e.message}")

        self.context_logger.log_event(
            event_type=LifecycleEventType.RELIABILITY,
            message="Order status inconsistency check completed",
            context_provider={
                'cutoff': lambda: cutoff.isoformat(),
                'fixed': lambda: fixed
            },
            decision_reason="Scheduled consistency repair"
        )
        return fixed

    def replay_failed_events(self) -> int:
        """
        Re-apply unresolved dead-lettered events. An event is resolved once its order
        is no longer PENDING or its payment is no longer SUCCESS. Returns the number resolved.
        """
        resolved = 0
        for record in self.persistence_service.get_unresolved_failed_events():
            order_status = self.state_service.get_order_status(record.order_id)
            payment = self.persistence_service.get_latest_payment(record.order_id)

            if (order_status is OrderStatus.PENDING and payment is not None
                    and payment.status is PaymentStatus.SUCCESS):
                try:
                    self.state_service.update_order_status(
                        record.order_id, OrderStatus.PAID,
                        source="FailedEventReplay",
                        expected_status=OrderStatus.PENDING
                    )
                except (BusinessError, SQLAlchemyError) as e:
                    self._log_skip(None, f"Replay of order {record.order_id} failed: {e}")
                    continue

            record.resolved = True
            self.persistence_service.commit()
            resolved += 1
        return resolved

    def _log_skip(self, event: Optional[PaymentStatusEvent], message: str) -> None:
        self.context_logger.log_event(
            event_type=LifecycleEventType.RELIABILITY,
            message=message,
            order_id=event.order_id if event else None,
            context_provider={
                'payment_number': lambda: event.payment_number if event else None
            },
            decision_reason="Payment success handling skipped"
        )
