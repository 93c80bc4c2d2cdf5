"""
The single authority for applying order and payment status changes.
Validates every write against the transition tables and the cross-entity consistency rule,
stamps timestamps explicitly and returns the event describing the applied change.

The engine performs no persistence. It mutates the objects it is handed (ORM rows or any
object exposing the same attributes) while holding the order aggregate lock; callers that
persist do so inside the same lock via `locks.hold(order_id)`.
"""

from datetime import datetime
from typing import Callable, List, Optional

from freshmarket.core.aggregate_locks import AggregateLockRegistry, default_lock_registry
from freshmarket.core.events import OrderStatusEvent, PaymentStatusEvent
from freshmarket.core.exceptions import (
    BusinessError,
    IllegalTransitionError,
    InvalidStateTransitionError,
    StaleStateError,
)
from freshmarket.core.lifecycle_rules import (
    IntendedChange,
    can_payment_transition_to,
    can_transition_to,
    is_final_state,
    is_refund,
    validate_order_payment_consistency,
)
from freshmarket.core.shared_enums import OrderStatus, PaymentStatus

# Context-aware logging import - Begin
from freshmarket.core.context_aware_logger import get_context_logger, LifecycleEventType
# Context-aware logging import - End

MAX_FAILURE_REASON_LENGTH = 500
MAX_TRANSACTION_ID_LENGTH = 64


class LifecycleEngine:
    """Applies validated status transitions to orders and payments."""

    def __init__(self, lock_registry: Optional[AggregateLockRegistry] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.context_logger = get_context_logger()
        self.locks = lock_registry if lock_registry is not None else default_lock_registry
        self._clock = clock or datetime.now

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------ checks

    def check_order_transition(self, order_id, current: OrderStatus, target: OrderStatus,
                               payment_status: Optional[PaymentStatus]) -> None:
        """Table legality first, then the payment coupling."""
        if not can_transition_to(current, target):
            raise IllegalTransitionError("order", order_id, current, target)
        validate_order_payment_consistency(current, payment_status, IntendedChange.order(target))

    def check_payment_transition(self, payment_id, current: PaymentStatus, target: PaymentStatus,
                                 order_status: Optional[OrderStatus]) -> None:
        """Final-state guard, then the order coupling, then table legality."""
        if is_final_state(current) and not is_refund(current, target):
            raise InvalidStateTransitionError(payment_id, current, target)
        validate_order_payment_consistency(order_status, current, IntendedChange.payment(target))
        if not can_payment_transition_to(current, target):
            raise IllegalTransitionError("payment", payment_id, current, target)

    # ----------------------------------------------------------------- orders

    def transition_order(self, order, target: OrderStatus, payment=None,
                         expected_status: Optional[OrderStatus] = None,
                         source: str = "LifecycleEngine",
                         details: Optional[dict] = None) -> OrderStatusEvent:
        """
        Move an order to target.

        Args:
            order: object with id, status and updated_at.
            target: requested status.
            payment: the order's active payment, consulted for the PAID coupling.
            expected_status: status the caller observed; a mismatch raises StaleStateError.

        Raises:
            StaleStateError, IllegalTransitionError, ConsistencyViolationError
        """
        with self.locks.hold(order.id):
            current = order.status
            try:
                if expected_status is not None and current is not expected_status:
                    raise StaleStateError("order", order.id, expected_status, current, target)
                payment_status = payment.status if payment is not None else None
                self.check_order_transition(order.id, current, target, payment_status)
            except BusinessError as e:
                self._log_rejection(LifecycleEventType.ORDER_TRANSITION, order.id, current, target, e)
                raise

            order.status = target
            order.updated_at = self._clock()

        self.context_logger.log_event(
            event_type=LifecycleEventType.ORDER_TRANSITION,
            message="Order status transition applied",
            order_id=order.id,
            context_provider={
                'old_status': lambda: current.name,
                'new_status': lambda: target.name,
                'source': lambda: source
            },
            decision_reason="Transition allowed by order table"
        )

        return OrderStatusEvent(
            order_id=order.id,
            old_status=current,
            new_status=target,
            timestamp=order.updated_at,
            source=source,
            details=details
        )

    # --------------------------------------------------------------- payments

    def transition_payment(self, payment, target: PaymentStatus, order=None,
                           expected_status: Optional[PaymentStatus] = None,
                           transaction_id: Optional[str] = None,
                           failure_reason: Optional[str] = None,
                           gateway_response: Optional[str] = None,
                           source: str = "LifecycleEngine") -> PaymentStatusEvent:
        """
        Move a payment to target, under the lock of the order it belongs to.

        Raises:
            StaleStateError, InvalidStateTransitionError, IllegalTransitionError,
            ConsistencyViolationError
        """
        payment_ref = _payment_ref(payment)
        with self.locks.hold(payment.order_id):
            current = payment.status
            try:
                if expected_status is not None and current is not expected_status:
                    raise StaleStateError("payment", payment_ref, expected_status, current, target)
                order_status = order.status if order is not None else None
                self.check_payment_transition(payment_ref, current, target, order_status)
            except BusinessError as e:
                self._log_rejection(LifecycleEventType.PAYMENT_TRANSITION, payment.order_id,
                                    current, target, e)
                raise

            self._apply_payment_status(payment, target, transaction_id, failure_reason, gateway_response)

        self.context_logger.log_event(
            event_type=LifecycleEventType.PAYMENT_TRANSITION,
            message="Payment status transition applied",
            order_id=payment.order_id,
            context_provider={
                'payment_number': lambda: payment_ref,
                'old_status': lambda: current.name,
                'new_status': lambda: target.name,
                'source': lambda: source
            },
            decision_reason="Transition allowed by payment table"
        )

        return PaymentStatusEvent(
            order_id=payment.order_id,
            payment_number=getattr(payment, 'payment_number', None),
            old_status=current,
            new_status=target,
            transaction_id=payment.transaction_id,
            failure_reason=getattr(payment, 'failure_reason', None),
            timestamp=payment.updated_at,
            source=source
        )

    def settle_payment(self, payment, succeeded: bool, order=None,
                       transaction_id: Optional[str] = None,
                       failure_reason: Optional[str] = None,
                       gateway_response: Optional[str] = None,
                       source: str = "LifecycleEngine") -> List[PaymentStatusEvent]:
        """
        Apply a gateway settlement result, passing through PROCESSING when the
        payment is still PENDING. Both steps run under one lock hold and the
        final step is validated before the first is applied.
        """
        target = PaymentStatus.SUCCESS if succeeded else PaymentStatus.FAILED
        events = []
        with self.locks.hold(payment.order_id):
            if payment.status is PaymentStatus.PENDING:
                order_status = order.status if order is not None else None
                try:
                    validate_order_payment_consistency(
                        order_status, payment.status, IntendedChange.payment(target))
                except BusinessError as e:
                    self._log_rejection(LifecycleEventType.CONSISTENCY_CHECK, payment.order_id,
                                        payment.status, target, e)
                    raise
                events.append(self.transition_payment(
                    payment, PaymentStatus.PROCESSING, order=order,
                    transaction_id=transaction_id, source=source))

            events.append(self.transition_payment(
                payment, target, order=order,
                transaction_id=transaction_id,
                failure_reason=failure_reason,
                gateway_response=gateway_response,
                source=source))
        return events

    def _apply_payment_status(self, payment, target: PaymentStatus, transaction_id: Optional[str],
                              failure_reason: Optional[str], gateway_response: Optional[str]) -> None:
        now = self._clock()
        payment.status = target
        if transaction_id:
            payment.transaction_id = transaction_id[:MAX_TRANSACTION_ID_LENGTH]
        if gateway_response is not None:
            payment.gateway_response = gateway_response
        if target is PaymentStatus.SUCCESS:
            payment.paid_at = now
        if failure_reason is not None and target in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            payment.failure_reason = failure_reason[:MAX_FAILURE_REASON_LENGTH]
        payment.updated_at = now

    def _log_rejection(self, event_type: LifecycleEventType, order_id, current, target,
                       error: BusinessError) -> None:
        self.context_logger.log_event(
            event_type=event_type,
            message="Status transition rejected",
            order_id=order_id,
            context_provider={
                'old_status': lambda: current,
                'new_status': lambda: target,
                'error_code': lambda: error.code,
                'error': lambda: error.message
            },
            decision_reason=type(error).__name__
        )


def _payment_ref(payment):
    return getattr(payment, 'payment_number', None) or getattr(payment, 'id', None)
