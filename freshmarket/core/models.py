"""
SQLAlchemy ORM models defining the database schema for the order/payment lifecycle.
Contains tables for orders, their line items, payments and dead-lettered payment-success events.

Timestamps are plain columns written by the services and the lifecycle engine; no column
defaults or onupdate hooks touch them.
"""

import datetime
import random
import time

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Enum, Numeric
from sqlalchemy.orm import declarative_base, relationship

from freshmarket.core.shared_enums import OrderStatus, PaymentStatus, PaymentGateway

Base = declarative_base()

DEFAULT_PAYMENT_EXPIRY_MINUTES = 30


def generate_order_number() -> str:
    """'ORD' + epoch millis + 4 random digits."""
    return f"ORD{int(time.time() * 1000)}{random.randint(0, 9999):04d}"


def generate_payment_number() -> str:
    """'PAY' + epoch millis + 4 random digits."""
    return f"PAY{int(time.time() * 1000)}{random.randint(0, 9999):04d}"


class OrderDB(Base):
    """Customer order with its lifecycle status."""
    __tablename__ = 'orders'

    id = Column(Integer, primary_key=True)
    order_number = Column(String(32), unique=True, nullable=False)
    user_id = Column(Integer, nullable=False, index=True)

    status = Column(Enum(OrderStatus, name='order_status_enum', native_enum=False),
                    nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    shipping_address = Column(String(500), nullable=False)
    phone = Column(String(20), nullable=False)
    notes = Column(String(500), nullable=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    # Incremented on every UPDATE; a write from a stale copy raises StaleDataError
    version_id = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_id}

    items = relationship("OrderItemDB", back_populates="order", cascade="all, delete-orphan")
    payments = relationship("PaymentDB", back_populates="order", order_by="PaymentDB.id")

    def __init__(self, **kwargs):
        now = kwargs.pop('created_at', None) or datetime.datetime.now()
        kwargs.setdefault('status', OrderStatus.PENDING)
        kwargs.setdefault('order_number', generate_order_number())
        super().__init__(created_at=now, updated_at=kwargs.pop('updated_at', now), **kwargs)

    def __repr__(self):
        return f"<OrderDB(id={self.id}, number='{self.order_number}', status='{self.status}')>"


class OrderItemDB(Base):
    """One product line of an order. subtotal is unit_price times quantity."""
    __tablename__ = 'order_items'

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False)
    product_id = Column(Integer, nullable=False)
    product_name = Column(String(200), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime, nullable=False)

    order = relationship("OrderDB", back_populates="items")

    def __repr__(self):
        return f"<OrderItemDB(id={self.id}, product='{self.product_name}', quantity={self.quantity})>"


class PaymentDB(Base):
    """A settlement attempt for an order through one gateway."""
    __tablename__ = 'payments'

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    payment_number = Column(String(32), unique=True, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)

    status = Column(Enum(PaymentStatus, name='payment_status_enum', native_enum=False),
                    nullable=False)
    gateway = Column(Enum(PaymentGateway, name='payment_gateway_enum', native_enum=False),
                     nullable=False)

    transaction_id = Column(String(64), nullable=True)
    gateway_response = Column(Text, nullable=True)
    failure_reason = Column(String(500), nullable=True)

    paid_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    version_id = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_id}

    order = relationship("OrderDB", back_populates="payments")

    def __init__(self, expiry_minutes: int = DEFAULT_PAYMENT_EXPIRY_MINUTES, **kwargs):
        now = kwargs.pop('created_at', None) or datetime.datetime.now()
        kwargs.setdefault('status', PaymentStatus.PENDING)
        kwargs.setdefault('payment_number', generate_payment_number())
        kwargs.setdefault('expires_at', now + datetime.timedelta(minutes=expiry_minutes))
        super().__init__(created_at=now, updated_at=kwargs.pop('updated_at', now), **kwargs)

    def is_expired(self, now: datetime.datetime = None) -> bool:
        now = now or datetime.datetime.now()
        return self.expires_at is not None and now > self.expires_at

    def __repr__(self):
        return f"<PaymentDB(id={self.id}, number='{self.payment_number}', status='{self.status}')>"


class FailedPaymentEventDB(Base):
    """Dead-letter record for a payment success that could not be applied to its order."""
    __tablename__ = 'failed_payment_events'

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, nullable=False, index=True)
    payment_number = Column(String(32), nullable=True)
    transaction_id = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    recorded_at = Column(DateTime, nullable=False)
    resolved = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<FailedPaymentEventDB(id={self.id}, order_id={self.order_id}, resolved={self.resolved})>"
