"""
Context-aware logging for the order/payment lifecycle.
Provides structured event logging with lazy context evaluation, importance filtering,
a per-second circuit breaker and recursion protection.
Designed to answer debugging questions about rejected transitions, gateway callbacks and retries.
"""

import datetime
import inspect
import json
import logging
import os
import sys
import threading
import time
import uuid
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Any, Optional


def in_test_mode() -> bool:
    """Check if we're running in pytest"""
    return 'pytest' in sys.modules or any('pytest' in arg for arg in sys.argv)


# <Session Management - Begin>
class SessionLogger:
    """Manages session-based logging with single file per service session."""

    log_dir: str = 'logs'
    session_prefix: str = 'lifecycle_session'
    _current_session_file: Optional[str] = None
    _session_start_time: Optional[datetime.datetime] = None
    _configured_loggers: set = set()

    @classmethod
    def configure(cls, log_dir: str = 'logs', session_prefix: str = 'lifecycle_session') -> None:
        """Set where session files are written. Takes effect for the next session."""
        cls.log_dir = log_dir
        cls.session_prefix = session_prefix

    @classmethod
    def start_new_session(cls) -> str:
        """Start a new logging session and return the session file path."""
        if not os.path.exists(cls.log_dir):
            os.makedirs(cls.log_dir)

        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        session_file = os.path.join(cls.log_dir, f"{cls.session_prefix}_{timestamp}.log")

        cls._current_session_file = session_file
        cls._session_start_time = datetime.datetime.now()
        cls._configured_loggers = set()
        return session_file

    @classmethod
    def get_current_session_file(cls) -> Optional[str]:
        """Get the current session log file path."""
        return cls._current_session_file

    @classmethod
    def end_current_session(cls) -> None:
        """End the current logging session."""
        cls._current_session_file = None
        cls._session_start_time = None
        cls._configured_loggers = set()

    @classmethod
    def ensure_session_started(cls) -> str:
        """Ensure a session is started and return the session file."""
        if not cls._current_session_file:
            return cls.start_new_session()
        return cls._current_session_file

    @classmethod
    def configure_session_handlers(cls, logger: logging.Logger) -> None:
        """Attach the session file handler and a console handler to the logger."""
        if logger.name in cls._configured_loggers:
            return

        for handler in logger.handlers[:]:
            logger.removeHandler(handler)

        detailed_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        simple_formatter = logging.Formatter('%(levelname)s - %(name)s - %(message)s')

        # No session files under pytest
        if not in_test_mode():
            session_file = cls.ensure_session_started()
            file_handler = logging.FileHandler(session_file, mode='a', encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(detailed_formatter)
            logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(simple_formatter)
        logger.addHandler(console_handler)

        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        cls._configured_loggers.add(logger.name)
# <Session Management - End>


class LogImportance(Enum):
    """3-level importance system for log filtering."""
    HIGH = 1      # Rejections, consistency violations, settlement results
    MEDIUM = 2    # Successful transitions, retries
    LOW = 3       # System health, routine lookups


class LifecycleEventType(Enum):
    """Categories of lifecycle events for structured logging."""
    ORDER_TRANSITION = "order_transition"
    PAYMENT_TRANSITION = "payment_transition"
    CONSISTENCY_CHECK = "consistency_check"
    GATEWAY_CALLBACK = "gateway_callback"
    RELIABILITY = "reliability"
    PERSISTENCE = "persistence"
    SYSTEM_HEALTH = "system_health"


EVENT_TYPE_CODES = {
    LifecycleEventType.ORDER_TRANSITION: 1,
    LifecycleEventType.PAYMENT_TRANSITION: 2,
    LifecycleEventType.CONSISTENCY_CHECK: 3,
    LifecycleEventType.GATEWAY_CALLBACK: 4,
    LifecycleEventType.RELIABILITY: 5,
    LifecycleEventType.PERSISTENCE: 6,
    LifecycleEventType.SYSTEM_HEALTH: 7,
}

# Message fragments that raise importance regardless of event type
INSIGHT_PATTERNS = {
    'critical_actions': ['reject', 'violation', 'fail', 'error', 'exhaust', 'dead-letter'],
    'important_changes': ['transition', 'settle', 'refund', 'cancel', 'expire', 'retry'],
    'routine_checks': ['initialized', 'lookup', 'subscribe', 'starting'],
}

DEFAULT_EVENT_IMPORTANCE = {
    LifecycleEventType.ORDER_TRANSITION: LogImportance.MEDIUM,
    LifecycleEventType.PAYMENT_TRANSITION: LogImportance.MEDIUM,
    LifecycleEventType.CONSISTENCY_CHECK: LogImportance.HIGH,
    LifecycleEventType.GATEWAY_CALLBACK: LogImportance.MEDIUM,
    LifecycleEventType.RELIABILITY: LogImportance.MEDIUM,
    LifecycleEventType.PERSISTENCE: LogImportance.LOW,
    LifecycleEventType.SYSTEM_HEALTH: LogImportance.LOW,
}


@dataclass
class LifecycleLogEvent:
    """Structured event data with safety guarantees."""
    event_id: str
    event_type: str
    timestamp: str
    session_id: str
    order_id: Optional[Any]
    message: str
    context: Dict[str, Any]
    decision_reason: Optional[str]
    call_stack_depth: int


class SafeContext:
    """
    Lazy evaluation wrapper: providers are only called when an event is actually written.
    """

    def __init__(self, **lazy_fields):
        self._lazy_fields = lazy_fields
        self._evaluated = False
        self._safe_dict = {}

    def to_safe_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, evaluating lazy fields only when accessed."""
        if not self._evaluated:
            self._evaluate_lazy_fields()
            self._evaluated = True
        return self._safe_dict

    def _evaluate_lazy_fields(self):
        for key, provider in self._lazy_fields.items():
            try:
                value = provider() if callable(provider) else provider
                self._safe_dict[key] = self._make_safe(value)
            except Exception as e:
                self._safe_dict[key] = f"CTX_ERR:{str(e)[:20]}"

    def _make_safe(self, value: Any) -> Any:
        """Convert value to safe, primitive types only."""
        if value is None:
            return None
        elif isinstance(value, (str, int, float, bool)):
            return value
        elif isinstance(value, Enum):
            return value.name
        elif isinstance(value, (list, tuple, set, frozenset)):
            items = list(value)
            if len(items) > 5:
                return [self._make_safe(item) for item in items[:3]] + [f"+{len(items) - 3}"]
            return [self._make_safe(item) for item in items]
        elif isinstance(value, dict):
            return {str(k): self._make_safe(v) for k, v in value.items()}
        else:
            str_repr = str(value)
            return str_repr[:50] + "..." if len(str_repr) > 50 else str_repr


class ContextAwareLogger:
    """
    Structured lifecycle logger with dead-loop protection.
    """

    def __init__(self, max_events_per_second: int = 50, max_recursion_depth: int = 3,
                 min_importance: LogImportance = LogImportance.MEDIUM):
        self.session_id = str(uuid.uuid4())[:8]
        self._active_threads: Dict[int, int] = {}
        self._event_counts: Dict[str, int] = {}
        self._last_reset = time.time()
        self._lock = threading.Lock()

        self.max_events_per_second = max_events_per_second
        self.max_recursion_depth = max_recursion_depth
        self.min_importance = min_importance

        self._stats = self._empty_stats()

        self._file_logger = logging.getLogger(f"freshmarket.lifecycle.{self.session_id}")
        SessionLogger.configure_session_handlers(self._file_logger)
        self._file_logger.info(f"ContextAwareLogger initialized (session: {self.session_id})")

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            'total_events': 0,
            'dropped_events': 0,
            'recursion_blocks': 0,
            'circuit_breaker_blocks': 0,
            'importance_filtered': 0
        }

    def log_event(self,
                  event_type: LifecycleEventType,
                  message: str,
                  order_id: Optional[Any] = None,
                  context_provider: Optional[Dict[str, Any]] = None,
                  decision_reason: Optional[str] = None) -> bool:
        """
        Log a lifecycle event. Returns True if the event was written.
        """
        thread_id = threading.get_ident()

        importance = self._determine_importance(event_type, message, decision_reason)
        if importance.value > self.min_importance.value:
            with self._lock:
                self._stats['importance_filtered'] += 1
            return False

        if not self._check_circuit_breaker(event_type, time.time()):
            with self._lock:
                self._stats['circuit_breaker_blocks'] += 1
            return False

        recursion_depth = self._check_recursion(thread_id)
        try:
            if recursion_depth > self.max_recursion_depth:
                with self._lock:
                    self._stats['recursion_blocks'] += 1
                return False

            event = LifecycleLogEvent(
                event_id=str(uuid.uuid4())[:8],
                event_type=event_type.value,
                timestamp=datetime.datetime.now().isoformat(),
                session_id=self.session_id,
                order_id=order_id,
                message=message,
                context=SafeContext(**(context_provider or {})).to_safe_dict(),
                decision_reason=decision_reason,
                call_stack_depth=recursion_depth
            )
            self._write_log(asdict(event), event_type, importance)

            with self._lock:
                self._stats['total_events'] += 1
            return True
        except Exception as e:
            with self._lock:
                self._stats['dropped_events'] += 1
            print(f"ContextAwareLogger error: {e}")
            return False
        finally:
            self._cleanup_thread(thread_id)

    def _determine_importance(self, event_type: LifecycleEventType, message: str,
                              decision_reason: Optional[str]) -> LogImportance:
        """Message patterns first, then the decision reason, then the event type default."""
        for text in (message, decision_reason or ""):
            text_lower = text.lower()
            if any(pattern in text_lower for pattern in INSIGHT_PATTERNS['critical_actions']):
                return LogImportance.HIGH
            if any(pattern in text_lower for pattern in INSIGHT_PATTERNS['important_changes']):
                return LogImportance.MEDIUM

        if any(pattern in message.lower() for pattern in INSIGHT_PATTERNS['routine_checks']):
            return LogImportance.LOW

        return DEFAULT_EVENT_IMPORTANCE.get(event_type, LogImportance.MEDIUM)

    def _write_log(self, event_dict: Dict[str, Any], event_type: LifecycleEventType,
                   importance: LogImportance) -> None:
        """Write a compact JSON line to the session file and echo important events."""
        core_info = {
            'ts': round(time.time(), 3),
            'et': EVENT_TYPE_CODES.get(event_type, 0),
            'i': importance.value,
            'm': event_dict['message'][:80],
        }
        if event_dict['order_id'] is not None:
            core_info['oid'] = event_dict['order_id']
        if event_dict['decision_reason']:
            core_info['r'] = event_dict['decision_reason'][:60]
        if event_dict['context']:
            core_info['c'] = event_dict['context']

        compact_json = json.dumps(core_info, separators=(',', ':'), default=str)

        if importance == LogImportance.HIGH:
            self._file_logger.warning(f"E:{compact_json}")
        else:
            self._file_logger.info(f"E:{compact_json}")

    def _check_circuit_breaker(self, event_type: LifecycleEventType, current_time: float) -> bool:
        """Circuit breaker to prevent event storms."""
        with self._lock:
            if current_time - self._last_reset > 1.0:
                self._event_counts.clear()
                self._last_reset = current_time

            key = event_type.value
            self._event_counts[key] = self._event_counts.get(key, 0) + 1
            return sum(self._event_counts.values()) <= self.max_events_per_second

    def _check_recursion(self, thread_id: int) -> int:
        """Track how deeply log_event is nested on the current thread."""
        frame = inspect.currentframe()
        nested = 0
        while frame:
            if frame.f_code is self.log_event.__func__.__code__:
                nested += 1
            frame = frame.f_back

        with self._lock:
            self._active_threads[thread_id] = self._active_threads.get(thread_id, 0) + 1
            return max(nested, self._active_threads[thread_id])

    def _cleanup_thread(self, thread_id: int):
        with self._lock:
            if thread_id in self._active_threads:
                if self._active_threads[thread_id] <= 1:
                    del self._active_threads[thread_id]
                else:
                    self._active_threads[thread_id] -= 1

    def get_stats(self) -> Dict[str, Any]:
        """Get logging statistics for monitoring."""
        with self._lock:
            return self._stats.copy()

    def reset_stats(self):
        with self._lock:
            self._stats = self._empty_stats()


_global_logger: Optional[ContextAwareLogger] = None


def get_context_logger() -> ContextAwareLogger:
    """Get or create the global context-aware logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ContextAwareLogger()
    return _global_logger


def configure_context_logger(logging_config: Dict[str, Any]) -> ContextAwareLogger:
    """Rebuild the global logger from the 'logging' config section."""
    global _global_logger
    SessionLogger.configure(
        log_dir=logging_config.get('log_dir', 'logs'),
        session_prefix=logging_config.get('session_prefix', 'lifecycle_session')
    )
    _global_logger = ContextAwareLogger(
        max_events_per_second=logging_config.get('max_events_per_second', 50),
        max_recursion_depth=logging_config.get('max_recursion_depth', 3),
        min_importance=LogImportance[logging_config.get('min_importance', 'MEDIUM')]
    )
    return _global_logger


# <Session Management Public API - Begin>
def start_service_session() -> str:
    """Explicitly start a new logging session. Call this at application startup."""
    return SessionLogger.start_new_session()


def end_service_session() -> None:
    """End the current session, writing a summary line first."""
    session_file = SessionLogger.get_current_session_file()
    if _global_logger and session_file:
        stats = _global_logger.get_stats()
        _global_logger._file_logger.info(
            f"SESSION_SUMMARY: events={stats['total_events']}, "
            f"filtered={stats['importance_filtered']}+{stats['circuit_breaker_blocks']}"
        )
    SessionLogger.end_current_session()


def get_current_session_file() -> Optional[str]:
    """Get the path to the current session's log file."""
    return SessionLogger.get_current_session_file()
# <Session Management Public API - End>
