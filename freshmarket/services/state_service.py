"""
The single entry point for order status changes.
Loads the order aggregate, delegates validation to the lifecycle engine, persists the result
and publishes the resulting event once the aggregate lock has been released.
"""

from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from config.lifecycle_config import get_config
from freshmarket.core.database import get_db_session
from freshmarket.core.event_bus import EventBus
from freshmarket.core.events import EventType, LifecycleEvent, OrderStatusEvent
from freshmarket.core.lifecycle_engine import LifecycleEngine
from freshmarket.core.lifecycle_rules import is_cancellable
from freshmarket.core.models import OrderDB
from freshmarket.core.shared_enums import OrderStatus, PaymentStatus
from freshmarket.services.order_persistence_service import OrderPersistenceService

# Context-aware logging import - Begin
from freshmarket.core.context_aware_logger import get_context_logger, LifecycleEventType
# Context-aware logging import - End


class StateService:
    """Manages the lifecycle and state of all orders."""

    def __init__(self, db_session=None, event_bus: Optional[EventBus] = None,
                 engine: Optional[LifecycleEngine] = None, config: Optional[dict] = None):
        """Initialize the service with a database session and event system."""
        # Context-aware logging initialization - Begin
        self.context_logger = get_context_logger()
        # Context-aware logging initialization - End

        self.config = config or get_config()
        self.db_session = db_session or get_db_session()
        self.engine = engine or LifecycleEngine()
        self.persistence_service = OrderPersistenceService(self.db_session, clock=self.engine.now)
        self.event_bus = event_bus or EventBus(self.config.get('event_system', {}))

        self.context_logger.log_event(
            event_type=LifecycleEventType.SYSTEM_HEALTH,
            message="StateService initialized",
            context_provider={
                'has_db_session': lambda: db_session is not None,
                'shared_event_bus': lambda: event_bus is not None
            },
            decision_reason="Service startup"
        )

    def subscribe(self, event_type: EventType, callback: Callable[[LifecycleEvent], None]) -> bool:
        """Subscribe a callback function to a lifecycle event type."""
        return self.event_bus.subscribe(event_type, callback)

    def unsubscribe(self, event_type: EventType, callback: Callable[[LifecycleEvent], None]) -> bool:
        """Unsubscribe a callback function from a lifecycle event type."""
        return self.event_bus.unsubscribe(event_type, callback)

    def get_order_status(self, order_id: int) -> Optional[OrderStatus]:
        """Get the current status of an order, or None when it does not exist."""
        order = self.persistence_service.find_order(order_id)
        return order.status if order else None

    def get_order_by_number(self, order_number: str, user_id: Optional[int] = None) -> OrderDB:
        """Look up an order by its public number, optionally restricted to its owner."""
        return self.persistence_service.get_order_by_number(order_number, user_id=user_id)

    def update_order_status(self, order_id: int, new_status: OrderStatus, source: str,
                            expected_status: Optional[OrderStatus] = None,
                            details: Optional[dict] = None,
                            user_id: Optional[int] = None) -> OrderStatusEvent:
        """
        Validate and apply an order status change, commit it and publish the event.

        Raises:
            ResourceNotFoundError: the order does not exist, or user_id is given and does not own it.
            StaleStateError, IllegalTransitionError, ConsistencyViolationError:
                the change was rejected; nothing was written.
            SQLAlchemyError: the commit failed and was rolled back.
        """
        with self.engine.locks.hold(order_id):
            order = self.persistence_service.get_order(order_id, user_id=user_id)
            payment = self.persistence_service.get_latest_payment(order_id)
            event = self.engine.transition_order(
                order, new_status,
                payment=payment,
                expected_status=expected_status,
                source=source,
                details=details
            )
            self._commit(order_id, new_status)

        self._publish_events([event])
        return event

    def cancel_order(self, order_id: int, source: str, reason: str = "Order cancelled",
                     user_id: Optional[int] = None) -> List[LifecycleEvent]:
        """
        Cancel an order and its active payment when that payment is still cancellable.
        Both changes are committed together.
        """
        with self.engine.locks.hold(order_id):
            order = self.persistence_service.get_order(order_id, user_id=user_id)
            payment = self.persistence_service.get_latest_payment(order_id)
            events: List[LifecycleEvent] = [
                self.engine.transition_order(order, OrderStatus.CANCELLED, payment=payment,
                                             source=source, details={'reason': reason})
            ]
            if payment is not None and is_cancellable(payment.status):
                events.append(self.engine.transition_payment(
                    payment, PaymentStatus.CANCELLED, order=order,
                    failure_reason=reason, source=source))
            self._commit(order_id, OrderStatus.CANCELLED)

        self._publish_events(events)
        return events

    def _commit(self, order_id: int, new_status: OrderStatus) -> None:
        try:
            self.persistence_service.commit()
        except SQLAlchemyError as e:
            self.context_logger.log_event(
                event_type=LifecycleEventType.PERSISTENCE,
                message="Database commit failed during status update",
                order_id=order_id,
                context_provider={
                    'new_status': lambda: new_status.name,
                    'error_type': lambda: type(e).__name__,
                    'error_message': lambda: str(e)
                },
                decision_reason="Database transaction failure"
            )
            raise

    def _publish_events(self, events: List[LifecycleEvent]) -> None:
        for event in events:
            self.event_bus.publish(event)
