"""
Shared enumerations for the order/payment lifecycle.
Provides single source of truth for status values used across database and application layers.
"""

from enum import Enum


class OrderStatus(Enum):
    """Represents the status of a customer order."""
    PENDING = "PENDING"        # Created at checkout, waiting for payment
    PAID = "PAID"              # Payment settled
    SHIPPING = "SHIPPING"      # Handed to delivery
    DELIVERED = "DELIVERED"    # Completed
    CANCELLED = "CANCELLED"    # Cancelled by customer or system


class PaymentStatus(Enum):
    """Represents the status of a payment record."""
    PENDING = "PENDING"          # Record created, waiting for the customer to pay
    PROCESSING = "PROCESSING"    # Submitted to the gateway
    SUCCESS = "SUCCESS"          # Settled
    FAILED = "FAILED"            # Rejected or failed at the gateway
    CANCELLED = "CANCELLED"      # Cancelled before settlement (user, system or expiry)
    REFUNDED = "REFUNDED"        # Refunded after success


class PaymentGateway(Enum):
    """Settlement providers. The value is the stable lowercase lookup code."""
    MOCK = "mock"              # Development and test environments
    ALIPAY = "alipay"
    WECHAT_PAY = "wechat"
    UNIONPAY = "unionpay"

    @property
    def code(self) -> str:
        return self.value


ORDER_STATUS_DESCRIPTIONS = {
    OrderStatus.PENDING: "Awaiting payment",
    OrderStatus.PAID: "Paid",
    OrderStatus.SHIPPING: "Out for delivery",
    OrderStatus.DELIVERED: "Completed",
    OrderStatus.CANCELLED: "Cancelled",
}

PAYMENT_STATUS_DESCRIPTIONS = {
    PaymentStatus.PENDING: "Awaiting payment",
    PaymentStatus.PROCESSING: "Processing",
    PaymentStatus.SUCCESS: "Payment succeeded",
    PaymentStatus.FAILED: "Payment failed",
    PaymentStatus.CANCELLED: "Cancelled",
    PaymentStatus.REFUNDED: "Refunded",
}
