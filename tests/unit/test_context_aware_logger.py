"""
Unit tests for ContextAwareLogger safety features and event logging.
Tests importance filtering, circuit breakers, recursion protection and safe context evaluation.
"""

import threading
import time
from unittest.mock import patch

from freshmarket.core.context_aware_logger import (
    ContextAwareLogger,
    LifecycleEventType,
    LogImportance,
    SafeContext,
    SessionLogger,
    configure_context_logger,
    get_context_logger,
    in_test_mode,
)
from freshmarket.core.shared_enums import OrderStatus


class TestContextAwareLogger:
    """Test suite for ContextAwareLogger safety features and functionality."""

    def test_basic_event_logging(self):
        logger = ContextAwareLogger(max_events_per_second=100, max_recursion_depth=5)

        success = logger.log_event(
            event_type=LifecycleEventType.ORDER_TRANSITION,
            message="Order status transition applied",
            order_id=42,
            context_provider={'old_status': OrderStatus.PENDING, 'new_status': lambda: 'PAID'},
            decision_reason="Transition allowed by order table"
        )

        assert success is True
        stats = logger.get_stats()
        assert stats['total_events'] == 1
        assert stats['dropped_events'] == 0

    def test_low_importance_events_are_filtered(self):
        logger = ContextAwareLogger(min_importance=LogImportance.MEDIUM)

        success = logger.log_event(LifecycleEventType.SYSTEM_HEALTH, "Service initialized")

        assert success is False
        assert logger.get_stats()['importance_filtered'] == 1

    def test_critical_messages_escalate_importance(self):
        logger = ContextAwareLogger(min_importance=LogImportance.HIGH)

        assert logger.log_event(LifecycleEventType.PERSISTENCE, "Commit failed") is True
        assert logger.log_event(LifecycleEventType.PERSISTENCE, "Order created") is False

    def test_importance_from_decision_reason(self):
        logger = ContextAwareLogger()
        importance = logger._determine_importance(
            LifecycleEventType.SYSTEM_HEALTH, "Status update", "ConsistencyViolationError")
        assert importance is LogImportance.HIGH

    def test_circuit_breaker_blocks_excessive_events(self):
        logger = ContextAwareLogger(max_events_per_second=5)

        successful_logs = sum(
            logger.log_event(LifecycleEventType.PAYMENT_TRANSITION, f"Payment transition {i}")
            for i in range(10)
        )

        assert logger.get_stats()['circuit_breaker_blocks'] > 0
        assert successful_logs <= 5

    def test_circuit_breaker_resets_after_time_window(self):
        logger = ContextAwareLogger(max_events_per_second=2)
        for i in range(5):
            logger.log_event(LifecycleEventType.RELIABILITY, f"Retry {i}")
        assert logger.get_stats()['circuit_breaker_blocks'] > 0

        with patch('freshmarket.core.context_aware_logger.time.time', return_value=time.time() + 2):
            success = logger.log_event(LifecycleEventType.RELIABILITY, "Retry after reset")

        assert success is True

    def test_recursion_protection_blocks_nested_calls(self):
        logger = ContextAwareLogger(max_events_per_second=100, max_recursion_depth=1,
                                    min_importance=LogImportance.LOW)

        def recursive_context_provider():
            logger.log_event(LifecycleEventType.SYSTEM_HEALTH, "Nested call from context")
            return "recursive_value"

        success = logger.log_event(
            LifecycleEventType.SYSTEM_HEALTH,
            "Outer call",
            context_provider={'recursive_field': recursive_context_provider}
        )

        assert success is True
        assert logger.get_stats()['recursion_blocks'] >= 1

    def test_thread_safety_concurrent_access(self):
        logger = ContextAwareLogger(max_events_per_second=1000)

        def worker(n):
            for i in range(10):
                logger.log_event(LifecycleEventType.ORDER_TRANSITION, f"Order transition {n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = logger.get_stats()
        assert stats['total_events'] == 50
        assert stats['dropped_events'] == 0

    def test_statistics_reset(self):
        logger = ContextAwareLogger()
        logger.log_event(LifecycleEventType.ORDER_TRANSITION, "Order transition")

        logger.reset_stats()

        assert logger.get_stats()['total_events'] == 0


class TestSafeContext:

    def test_lazy_evaluation_happens_once(self):
        calls = []

        def provider():
            calls.append(1)
            return "value"

        context = SafeContext(field=provider)
        assert calls == []

        assert context.to_safe_dict() == {'field': 'value'}
        context.to_safe_dict()
        assert calls == [1]

    def test_provider_errors_are_contained(self):
        def broken():
            raise RuntimeError("boom")

        result = SafeContext(field=broken).to_safe_dict()

        assert result['field'].startswith("CTX_ERR:")

    def test_complex_values_are_sanitized(self):
        result = SafeContext(
            status=OrderStatus.PAID,
            items=list(range(10)),
            nested={'a': OrderStatus.PENDING},
            obj=object(),
            long_text='x' * 100
        ).to_safe_dict()

        assert result['status'] == 'PAID'
        assert result['items'] == [0, 1, 2, '+7']
        assert result['nested'] == {'a': 'PENDING'}
        assert isinstance(result['obj'], str)
        assert result['long_text'].endswith('...')


class TestSessionLogging:

    def test_in_test_mode_under_pytest(self):
        assert in_test_mode() is True

    def test_global_logger_singleton(self):
        assert get_context_logger() is get_context_logger()

    def test_configure_context_logger_applies_settings(self, tmp_path):
        original_dir = SessionLogger.log_dir
        try:
            logger = configure_context_logger({
                'log_dir': str(tmp_path),
                'session_prefix': 'test_session',
                'max_events_per_second': 7,
                'max_recursion_depth': 2,
                'min_importance': 'LOW'
            })

            assert logger is get_context_logger()
            assert logger.max_events_per_second == 7
            assert logger.min_importance is LogImportance.LOW
            assert SessionLogger.log_dir == str(tmp_path)
            assert SessionLogger.start_new_session().endswith('.log')
        finally:
            SessionLogger.end_current_session()
            configure_context_logger({'log_dir': original_dir})

    def test_each_logger_gets_its_own_handlers(self):
        first = ContextAwareLogger()
        second = ContextAwareLogger()

        assert first._file_logger.handlers
        assert second._file_logger.handlers
