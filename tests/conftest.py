import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import Mock

# Database Testing - Begin
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from freshmarket.core.database import DatabaseManager, db_manager
from freshmarket.core.models import Base
# Database Testing - End

from config.lifecycle_config import get_config
from freshmarket.core.aggregate_locks import AggregateLockRegistry
from freshmarket.core.event_bus import EventBus
from freshmarket.core.lifecycle_engine import LifecycleEngine
from freshmarket.core.shared_enums import OrderStatus, PaymentGateway, PaymentStatus
from freshmarket.services.payment_service import PaymentService
from freshmarket.services.state_service import StateService


# Global database manager for tests
_test_db_manager = None


@pytest.fixture(scope="session", autouse=True)
def initialize_test_database():
    """Point the global database manager at an in-memory database once per test session"""
    global _test_db_manager

    _test_db_manager = DatabaseManager(":memory:")
    _test_db_manager.init_db()

    db_manager.engine = _test_db_manager.engine
    db_manager.Session = _test_db_manager.Session

    yield

    _test_db_manager.close()


class FakeClock:
    """Deterministic clock: returns the same instant until advanced."""

    def __init__(self, start=datetime(2024, 1, 1, 10, 0, 0)):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def lifecycle_config():
    """Default configuration with instant retries."""
    config = get_config('default')
    config['reliability']['initial_delay_seconds'] = 0.0
    config['reliability']['max_delay_seconds'] = 0.0
    config['event_system']['event_bus']['enable_logging'] = False
    return config


@pytest.fixture
def event_bus(lifecycle_config):
    return EventBus(lifecycle_config['event_system'])


@pytest.fixture
def engine(clock):
    return LifecycleEngine(lock_registry=AggregateLockRegistry(), clock=clock)


@pytest.fixture
def state_service(db_session, event_bus, engine, lifecycle_config):
    return StateService(db_session, event_bus=event_bus, engine=engine, config=lifecycle_config)


@pytest.fixture
def payment_service(db_session, event_bus, engine, lifecycle_config):
    return PaymentService(db_session, event_bus=event_bus, engine=engine,
                          config=lifecycle_config, random_source=Mock(return_value=0.0))


@pytest.fixture
def persistence_service(state_service):
    return state_service.persistence_service


SAMPLE_ITEMS = [
    {'product_id': 101, 'product_name': 'Organic Apples', 'unit_price': '12.50', 'quantity': 2},
    {'product_id': 202, 'product_name': 'Fresh Milk', 'unit_price': '4.99', 'quantity': 1},
]


@pytest.fixture
def sample_order(persistence_service):
    """A PENDING order totalling 29.99"""
    return persistence_service.create_order(
        user_id=1,
        shipping_address="12 Market Street, Springfield",
        phone="13800138000",
        items=SAMPLE_ITEMS,
        notes="Leave at the door"
    )


@pytest.fixture
def sample_payment(payment_service, sample_order):
    """A PENDING mock payment covering sample_order"""
    return payment_service.create_payment(sample_order.id, "29.99", "mock")


def make_order(order_id=1, status=OrderStatus.PENDING):
    """Lightweight order stand-in for engine tests."""
    return SimpleNamespace(id=order_id, status=status, updated_at=None)


def make_payment(order_id=1, status=PaymentStatus.PENDING, payment_number="PAY00000000000010001"):
    """Lightweight payment stand-in for engine tests."""
    return SimpleNamespace(
        id=10,
        order_id=order_id,
        payment_number=payment_number,
        status=status,
        gateway=PaymentGateway.MOCK,
        transaction_id=None,
        gateway_response=None,
        failure_reason=None,
        paid_at=None,
        updated_at=None,
    )


@pytest.fixture
def order_factory():
    return make_order


@pytest.fixture
def payment_factory():
    return make_payment
