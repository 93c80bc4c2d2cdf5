"""
Event system for the order/payment lifecycle.
Provides event type definitions and the event classes published after every applied status change.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from freshmarket.core.shared_enums import OrderStatus, PaymentStatus


class EventType(Enum):
    """All event types in the lifecycle system."""
    ORDER_STATUS_CHANGED = "order_status_changed"
    PAYMENT_STATUS_CHANGED = "payment_status_changed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELLED = "payment_cancelled"
    PAYMENT_REFUNDED = "payment_refunded"
    SYSTEM_HEALTH = "system_health"


PAYMENT_EVENT_TYPES = {
    PaymentStatus.SUCCESS: EventType.PAYMENT_SUCCEEDED,
    PaymentStatus.FAILED: EventType.PAYMENT_FAILED,
    PaymentStatus.CANCELLED: EventType.PAYMENT_CANCELLED,
    PaymentStatus.REFUNDED: EventType.PAYMENT_REFUNDED,
}


@dataclass
class LifecycleEvent:
    """Base event class for all lifecycle events."""
    event_type: EventType
    timestamp: datetime = field(default_factory=datetime.now)
    source: str = "unknown"
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            'event_type': self.event_type.value,
            'timestamp': self.timestamp.isoformat(),
            'source': self.source,
            'data': self.data
        }


@dataclass
class OrderStatusEvent(LifecycleEvent):
    """An order moved from old_status to new_status."""
    event_type: EventType = field(default=EventType.ORDER_STATUS_CHANGED, init=False)
    order_id: Optional[int] = None
    old_status: Optional[OrderStatus] = None
    new_status: Optional[OrderStatus] = None
    details: Optional[dict] = None

    def __post_init__(self):
        self.data.update({
            'order_id': self.order_id,
            'old_status': self.old_status.value if self.old_status else None,
            'new_status': self.new_status.value if self.new_status else None,
        })
        if self.details:
            self.data['details'] = self.details


@dataclass
class PaymentStatusEvent(LifecycleEvent):
    """A payment moved from old_status to new_status. Final states get a dedicated event type."""
    event_type: EventType = field(default=EventType.PAYMENT_STATUS_CHANGED, init=False)
    order_id: Optional[int] = None
    payment_number: Optional[str] = None
    old_status: Optional[PaymentStatus] = None
    new_status: Optional[PaymentStatus] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None

    def __post_init__(self):
        self.event_type = PAYMENT_EVENT_TYPES.get(self.new_status, EventType.PAYMENT_STATUS_CHANGED)
        self.data.update({
            'order_id': self.order_id,
            'payment_number': self.payment_number,
            'old_status': self.old_status.value if self.old_status else None,
            'new_status': self.new_status.value if self.new_status else None,
            'transaction_id': self.transaction_id,
            'failure_reason': self.failure_reason,
        })
