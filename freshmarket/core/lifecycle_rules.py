"""
Order and payment transition tables and the pure rules evaluated against them.

Every function here is total and side-effect free: it takes status values and
returns a boolean or raises a business error. Mutation, locking and
persistence live in the engine and services.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Optional

from freshmarket.core.exceptions import ConsistencyViolationError
from freshmarket.core.shared_enums import OrderStatus, PaymentStatus


ORDER_TRANSITIONS = MappingProxyType({
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPING, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPING: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
})

ORDER_TERMINAL_STATES = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if not targets
)

PAYMENT_TRANSITIONS = MappingProxyType({
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSING, PaymentStatus.CANCELLED}),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.SUCCESS, PaymentStatus.FAILED,
                                         PaymentStatus.CANCELLED}),
    PaymentStatus.SUCCESS: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
})

PAYMENT_FINAL_STATES = frozenset({
    PaymentStatus.SUCCESS,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
})

# The only edge allowed to leave a final payment state.
PAYMENT_REFUND_EDGE = (PaymentStatus.SUCCESS, PaymentStatus.REFUNDED)


def can_transition_to(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True if an order may move from current to target."""
    return target in ORDER_TRANSITIONS.get(current, frozenset())


def is_terminal(status: OrderStatus) -> bool:
    return status in ORDER_TERMINAL_STATES


def allowed_order_targets(current: OrderStatus) -> frozenset:
    return ORDER_TRANSITIONS.get(current, frozenset())


def is_final_state(status: PaymentStatus) -> bool:
    """Final payment states accept no further writes (refund excepted)."""
    return status in PAYMENT_FINAL_STATES


def is_successful(status: Optional[PaymentStatus]) -> bool:
    return status is PaymentStatus.SUCCESS


def is_cancellable(status: PaymentStatus) -> bool:
    return status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


def can_payment_transition_to(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Return True if a payment may move from current to target."""
    return target in PAYMENT_TRANSITIONS.get(current, frozenset())


def is_refund(current: PaymentStatus, target: PaymentStatus) -> bool:
    return (current, target) == PAYMENT_REFUND_EDGE


class ChangeTarget(Enum):
    """Which side of the order/payment pair a change is aimed at."""
    ORDER = "order"
    PAYMENT = "payment"


@dataclass(frozen=True)
class IntendedChange:
    """Description of a status write a collaborator wants to apply."""
    target: ChangeTarget
    new_status: Enum

    @classmethod
    def order(cls, new_status: OrderStatus) -> "IntendedChange":
        return cls(ChangeTarget.ORDER, new_status)

    @classmethod
    def payment(cls, new_status: PaymentStatus) -> "IntendedChange":
        return cls(ChangeTarget.PAYMENT, new_status)


def validate_order_payment_consistency(order_status: Optional[OrderStatus],
                                       payment_status: Optional[PaymentStatus],
                                       intended_change: IntendedChange) -> None:
    """
    Reject order/payment combinations the domain forbids.

    Raises:
        ConsistencyViolationError: an order would become PAID without a
            successful payment, or a payment would succeed against a
            cancelled order.
    """
    if intended_change.target is ChangeTarget.ORDER:
        if intended_change.new_status is OrderStatus.PAID and not is_successful(payment_status):
            raise ConsistencyViolationError(
                order_status, payment_status, intended_change,
                f"Order cannot become PAID while payment is "
                f"{payment_status.name if payment_status else 'missing'}"
            )
        return

    if intended_change.new_status is PaymentStatus.SUCCESS and order_status is OrderStatus.CANCELLED:
        raise ConsistencyViolationError(
            order_status, payment_status, intended_change,
            "Payment cannot succeed for a CANCELLED order"
        )
