"""
Read-only reporting over orders and payments, built on pandas DataFrames.
"""

from decimal import Decimal
from typing import Dict, Optional

import pandas as pd

from freshmarket.core.shared_enums import OrderStatus
from freshmarket.services.order_persistence_service import OrderPersistenceService

# Context-aware logging import - Begin
from freshmarket.core.context_aware_logger import get_context_logger, LifecycleEventType
# Context-aware logging import - End

GATEWAY_SUMMARY_COLUMNS = ['gateway', 'status', 'count', 'total_amount']


class OrderReportingService:
    """Aggregates order and payment records for statistics and dashboards."""

    def __init__(self, persistence_service: Optional[OrderPersistenceService] = None, db_session=None):
        self.context_logger = get_context_logger()
        self.persistence_service = persistence_service or OrderPersistenceService(db_session)

    def get_user_order_statistics(self, user_id: int) -> Dict[OrderStatus, int]:
        """Count a user's orders per status. Every status is present, zero when unused."""
        orders = self.persistence_service.get_orders_for_user(user_id)
        statistics = {status: 0 for status in OrderStatus}
        if orders:
            df = pd.DataFrame({'status': [order.status for order in orders]})
            for status, count in df['status'].value_counts().items():
                statistics[status] = int(count)

        self.context_logger.log_event(
            event_type=LifecycleEventType.PERSISTENCE,
            message="User order statistics computed",
            context_provider={
                'user_id': lambda: user_id,
                'order_count': lambda: len(orders)
            },
            decision_reason="Reporting query"
        )
        return statistics

    def get_payment_gateway_summary(self) -> pd.DataFrame:
        """Payment count and total amount per gateway code and status name."""
        payments = self.persistence_service.get_all_payments()
        if not payments:
            return pd.DataFrame(columns=GATEWAY_SUMMARY_COLUMNS)

        df = pd.DataFrame([{
            'gateway': payment.gateway.code,
            'status': payment.status.name,
            'amount': Decimal(payment.amount)
        } for payment in payments])

        summary = (df.groupby(['gateway', 'status'])
                   .agg(count=('amount', 'size'), total_amount=('amount', 'sum'))
                   .reset_index())
        return summary[GATEWAY_SUMMARY_COLUMNS]
