"""
Service for order and payment persistence operations.
Creates orders and payment records and answers the lookups the lifecycle services need.
Status mutation is left to the lifecycle engine; this service only reads and inserts.
"""

import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from freshmarket.core.database import get_db_session
from freshmarket.core.exceptions import BusinessError, ResourceNotFoundError
from freshmarket.core.models import (
    DEFAULT_PAYMENT_EXPIRY_MINUTES,
    FailedPaymentEventDB,
    OrderDB,
    OrderItemDB,
    PaymentDB,
)
from freshmarket.core.shared_enums import OrderStatus, PaymentGateway, PaymentStatus

# Context-aware logging import - Begin
from freshmarket.core.context_aware_logger import get_context_logger, LifecycleEventType
# Context-aware logging import - End

CENT = Decimal('0.01')


def to_money(value) -> Decimal:
    """Normalise an amount to a two-decimal Decimal."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class OrderPersistenceService:
    """
    Service for handling order-related database persistence operations.
    Writes are committed immediately; failures roll back and propagate.
    """

    def __init__(self, db_session: Optional[Session] = None, clock=None):
        """Initialize with optional database session"""
        self.context_logger = get_context_logger()
        self.db_session = db_session or get_db_session()
        self._clock = clock or datetime.datetime.now

    # ------------------------------------------------------------------ orders

    def create_order(self, user_id: int, shipping_address: str, phone: str,
                     items: Iterable[dict], notes: Optional[str] = None,
                     max_notes_length: int = 500,
                     max_shipping_address_length: int = 200) -> OrderDB:
        """
        Create a PENDING order with its line items.

        Each item is a dict with product_id, product_name, unit_price and quantity.
        The order total is the sum of the item subtotals.
        """
        items = list(items or [])
        if not items:
            raise BusinessError.bad_request("Order must contain at least one item")
        if not shipping_address or not shipping_address.strip():
            raise BusinessError.bad_request("Shipping address is required")
        if len(shipping_address) > max_shipping_address_length:
            raise BusinessError.bad_request(
                f"Shipping address exceeds {max_shipping_address_length} characters")
        if not phone or not phone.strip():
            raise BusinessError.bad_request("Phone is required")
        if notes is not None and len(notes) > max_notes_length:
            raise BusinessError.bad_request(f"Notes exceed {max_notes_length} characters")

        now = self._clock()
        order_items = []
        total = Decimal('0.00')
        for item in items:
            quantity = item.get('quantity')
            if not isinstance(quantity, int) or quantity <= 0:
                raise BusinessError.bad_request(
                    f"Quantity must be a positive integer for product {item.get('product_id')}")
            unit_price = to_money(item.get('unit_price', 0))
            if unit_price < 0:
                raise BusinessError.bad_request(
                    f"Price cannot be negative for product {item.get('product_id')}")

            subtotal = (unit_price * quantity).quantize(CENT)
            total += subtotal
            order_items.append(OrderItemDB(
                product_id=item['product_id'],
                product_name=item.get('product_name') or f"Product {item['product_id']}",
                unit_price=unit_price,
                quantity=quantity,
                subtotal=subtotal,
                created_at=now
            ))

        order = OrderDB(
            user_id=user_id,
            status=OrderStatus.PENDING,
            total_amount=total,
            shipping_address=shipping_address.strip(),
            phone=phone.strip(),
            notes=notes,
            created_at=now,
            items=order_items
        )
        self._add_and_commit(order)

        self.context_logger.log_event(
            event_type=LifecycleEventType.PERSISTENCE,
            message="Order created",
            order_id=order.id,
            context_provider={
                'order_number': lambda: order.order_number,
                'user_id': lambda: user_id,
                'item_count': lambda: len(order_items),
                'total_amount': lambda: str(total)
            },
            decision_reason="Checkout"
        )
        return order

    def get_order(self, order_id: int, user_id: Optional[int] = None) -> OrderDB:
        """
        Load an order with its current database state.

        When user_id is given, an order owned by someone else is reported as not found.
        """
        order = self.find_order(order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise ResourceNotFoundError(f"Order not found: {order_id}")
        return order

    def find_order(self, order_id: int) -> Optional[OrderDB]:
        # populate_existing overwrites identity-map copies that another session made stale
        return (self.db_session.query(OrderDB)
                .populate_existing()
                .filter_by(id=order_id)
                .first())

    def get_order_by_number(self, order_number: str, user_id: Optional[int] = None) -> OrderDB:
        order = (self.db_session.query(OrderDB)
                 .populate_existing()
                 .filter_by(order_number=order_number)
                 .first())
        if order is None or (user_id is not None and order.user_id != user_id):
            raise ResourceNotFoundError(f"Order not found: {order_number}")
        return order

    def get_orders_for_user(self, user_id: int) -> List[OrderDB]:
        return (self.db_session.query(OrderDB)
                .filter_by(user_id=user_id)
                .order_by(OrderDB.created_at.desc(), OrderDB.id.desc())
                .all())

    def find_paid_but_pending_orders(self, cutoff: datetime.datetime) -> List[OrderDB]:
        """
        Orders still PENDING, last touched before cutoff, whose latest payment is SUCCESS.
        """
        candidates = (self.db_session.query(OrderDB)
                      .filter(OrderDB.status == OrderStatus.PENDING)
                      .filter(OrderDB.updated_at < cutoff)
                      .all())
        result = []
        for order in candidates:
            payment = self.get_latest_payment(order.id)
            if payment is not None and payment.status is PaymentStatus.SUCCESS:
                result.append(order)
        return result

    # ---------------------------------------------------------------- payments

    def create_payment_record(self, order: OrderDB, amount, gateway: PaymentGateway,
                              expiry_minutes: int = DEFAULT_PAYMENT_EXPIRY_MINUTES) -> PaymentDB:
        payment = PaymentDB(
            expiry_minutes=expiry_minutes,
            order_id=order.id,
            amount=to_money(amount),
            gateway=gateway,
            status=PaymentStatus.PENDING,
            created_at=self._clock()
        )
        self._add_and_commit(payment)

        self.context_logger.log_event(
            event_type=LifecycleEventType.PERSISTENCE,
            message="Payment record created",
            order_id=order.id,
            context_provider={
                'payment_number': lambda: payment.payment_number,
                'gateway': lambda: gateway.code,
                'amount': lambda: str(payment.amount),
                'expires_at': lambda: payment.expires_at.isoformat()
            },
            decision_reason="Payment initiation"
        )
        return payment

    def get_latest_payment(self, order_id: int) -> Optional[PaymentDB]:
        """The active payment of an order: the most recently created one."""
        return (self.db_session.query(PaymentDB)
                .populate_existing()
                .filter_by(order_id=order_id)
                .order_by(PaymentDB.created_at.desc(), PaymentDB.id.desc())
                .first())

    def get_payment(self, payment_id: int) -> PaymentDB:
        payment = (self.db_session.query(PaymentDB)
                   .populate_existing()
                   .filter_by(id=payment_id)
                   .first())
        if payment is None:
            raise ResourceNotFoundError(f"Payment not found: {payment_id}")
        return payment

    def get_payment_by_number(self, payment_number: str) -> Optional[PaymentDB]:
        return (self.db_session.query(PaymentDB)
                .populate_existing()
                .filter_by(payment_number=payment_number)
                .first())

    def get_payment_history(self, order_id: int) -> List[PaymentDB]:
        """All payments of an order, newest first."""
        return (self.db_session.query(PaymentDB)
                .filter_by(order_id=order_id)
                .order_by(PaymentDB.created_at.desc(), PaymentDB.id.desc())
                .all())

    def has_successful_payment(self, order_id: int) -> bool:
        return (self.db_session.query(PaymentDB)
                .filter_by(order_id=order_id, status=PaymentStatus.SUCCESS)
                .first()) is not None

    def find_expired_payments(self, now: datetime.datetime) -> List[PaymentDB]:
        """PENDING payments whose expires_at lies before now."""
        return (self.db_session.query(PaymentDB)
                .filter(PaymentDB.status == PaymentStatus.PENDING)
                .filter(PaymentDB.expires_at.is_not(None))
                .filter(PaymentDB.expires_at < now)
                .order_by(PaymentDB.id)
                .all())

    def find_pending_mock_payments(self, limit: int = 10) -> List[PaymentDB]:
        return (self.db_session.query(PaymentDB)
                .filter(PaymentDB.status == PaymentStatus.PENDING)
                .filter(PaymentDB.gateway == PaymentGateway.MOCK)
                .order_by(PaymentDB.created_at, PaymentDB.id)
                .limit(limit)
                .all())

    def get_all_payments(self) -> List[PaymentDB]:
        return self.db_session.query(PaymentDB).order_by(PaymentDB.id).all()

    # ------------------------------------------------------------- dead letters

    def record_failed_payment_event(self, order_id: int, payment_number: Optional[str],
                                    transaction_id: Optional[str], error_message: str,
                                    attempts: int) -> FailedPaymentEventDB:
        record = FailedPaymentEventDB(
            order_id=order_id,
            payment_number=payment_number,
            transaction_id=transaction_id,
            error_message=error_message,
            attempts=attempts,
            recorded_at=self._clock(),
            resolved=False
        )
        self._add_and_commit(record)

        self.context_logger.log_event(
            event_type=LifecycleEventType.RELIABILITY,
            message="Payment success event dead-lettered",
            order_id=order_id,
            context_provider={
                'payment_number': lambda: payment_number,
                'attempts': lambda: attempts,
                'error': lambda: error_message
            },
            decision_reason="Retries exhausted"
        )
        return record

    def get_unresolved_failed_events(self) -> List[FailedPaymentEventDB]:
        return (self.db_session.query(FailedPaymentEventDB)
                .filter_by(resolved=False)
                .order_by(FailedPaymentEventDB.id)
                .all())

    # ------------------------------------------------------------------ helpers

    def commit(self) -> None:
        """Commit pending changes, rolling back on failure."""
        try:
            self.db_session.commit()
        except SQLAlchemyError:
            self.db_session.rollback()
            raise

    def reload(self, instance) -> None:
        """Re-read an instance from the database, discarding what the session holds."""
        self.db_session.refresh(instance)

    def rollback(self) -> None:
        self.db_session.rollback()

    def _add_and_commit(self, instance) -> None:
        self.db_session.add(instance)
        self.commit()
