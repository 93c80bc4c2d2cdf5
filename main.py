import sys
import argparse
import datetime

from config.lifecycle_config import get_config, validate_config
from freshmarket.core.database import init_database, get_db_session, db_manager
# <Event Bus Integration - Begin>
from freshmarket.core.event_bus import EventBus
# <Event Bus Integration - End>
from freshmarket.core.lifecycle_engine import LifecycleEngine
from freshmarket.core.shared_enums import ORDER_STATUS_DESCRIPTIONS
from freshmarket.services.state_service import StateService
from freshmarket.services.payment_service import PaymentService
from freshmarket.services.order_event_reliability_service import OrderEventReliabilityService
from freshmarket.services.order_reporting_service import OrderReportingService
# <Context-Aware Logger Integration - Begin>
from freshmarket.core.context_aware_logger import (
    configure_context_logger,
    start_service_session,
    end_service_session,
    LifecycleEventType,
)
# <Context-Aware Logger Integration - End>

TASKS = ["sweep-expired", "reconcile", "simulate-mock", "stats"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fresh Market order/payment lifecycle tasks")
    parser.add_argument(
        "--env",
        choices=["development", "production", "default"],
        default="default",
        help="Configuration environment",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="SQLite database file (defaults to the environment's configured path)",
    )
    parser.add_argument(
        "--task",
        choices=TASKS,
        required=True,
        help="sweep-expired: cancel expired payments; reconcile: repair PENDING orders with settled "
             "payments; simulate-mock: settle pending mock payments; stats: print payment summary",
    )
    parser.add_argument(
        "--user-id",
        type=int,
        default=None,
        help="With --task stats, also print order counts for this user",
    )
    return parser


def run_task(task: str, config: dict, user_id=None) -> int:
    """Wire the services around one session and run a single maintenance task."""
    db_session = get_db_session()
    event_bus = EventBus(config['event_system'])
    engine = LifecycleEngine()
    state_service = StateService(db_session, event_bus=event_bus, engine=engine, config=config)
    payment_service = PaymentService(db_session, event_bus=event_bus, engine=engine, config=config)
    reliability_service = OrderEventReliabilityService(state_service, config=config)

    if task == "sweep-expired":
        count = payment_service.process_expired_payments()
        print(f"Cancelled {count} expired payments")
    elif task == "reconcile":
        fixed = reliability_service.check_and_fix_order_status_inconsistency()
        replayed = reliability_service.replay_failed_events()
        print(f"Repaired {fixed} orders, resolved {replayed} failed payment events")
    elif task == "simulate-mock":
        settled = payment_service.simulate_mock_settlements()
        print(f"Settled {settled} mock payments")
    elif task == "stats":
        reporting_service = OrderReportingService(state_service.persistence_service)
        summary = reporting_service.get_payment_gateway_summary()
        print(summary.to_string(index=False) if not summary.empty else "No payments recorded")
        if user_id is not None:
            for status, count in reporting_service.get_user_order_statistics(user_id).items():
                print(f"{status.name:<10} {count:>5}  {ORDER_STATUS_DESCRIPTIONS[status]}")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    config = get_config(args.env)
    is_valid, message = validate_config(config)
    if not is_valid:
        print(f"❌ Invalid configuration: {message}")
        return 2

    # <Context-Aware Logger Initialization - Begin>
    context_logger = configure_context_logger(config['logging'])
    session_file = start_service_session()
    # <Context-Aware Logger Initialization - End>

    try:
        context_logger.log_event(
            LifecycleEventType.SYSTEM_HEALTH,
            "Lifecycle task starting",
            context_provider={
                "task": lambda: args.task,
                "environment": lambda: args.env,
                "start_time": lambda: datetime.datetime.now().isoformat(),
                "session_file": lambda: session_file
            }
        )

        init_database(args.db_path or config['database']['db_path'],
                      echo=config['database'].get('echo', False))

        return run_task(args.task, config, user_id=args.user_id)

    except KeyboardInterrupt:
        print("\n🛑 Interrupted")
        return 130
    finally:
        db_manager.close()
        end_service_session()


if __name__ == "__main__":
    sys.exit(main())
