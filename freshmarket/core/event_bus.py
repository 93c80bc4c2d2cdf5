"""
Event bus implementation for pub/sub architecture.
Delivers lifecycle events to subscribers with thread safety; a failing subscriber never breaks the publisher.
"""

import logging
from threading import RLock
from typing import Dict, List, Callable, Any

from freshmarket.core.events import EventType, LifecycleEvent


class EventBus:
    """
    Central event bus for lifecycle notifications.
    Implements publish-subscribe pattern with thread safety.
    """

    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or {}
        self._subscribers: Dict[EventType, List[Callable]] = {}
        self._global_subscribers: List[Callable] = []
        self._lock = RLock()
        self._logger = logging.getLogger(__name__)

        event_bus_config = self.config.get('event_bus', {})
        self.enabled = event_bus_config.get('enabled', True)
        self.enable_logging = event_bus_config.get('enable_logging', True)
        self.max_subscribers = event_bus_config.get('max_subscribers', 50)

        self._logger.info("EventBus initialized")

    def subscribe(self, event_type: EventType, callback: Callable) -> bool:
        """Subscribe to specific event types."""
        with self._lock:
            if event_type not in self._subscribers:
                self._subscribers[event_type] = []

            if len(self._subscribers[event_type]) >= self.max_subscribers:
                self._logger.warning(f"Max subscribers reached for {event_type}")
                return False

            self._subscribers[event_type].append(callback)

            if self.enable_logging:
                self._logger.debug(f"Subscribed to {event_type}: {_callback_name(callback)}")
            return True

    def subscribe_all(self, callback: Callable) -> bool:
        """Subscribe to all event types."""
        with self._lock:
            if len(self._global_subscribers) >= self.max_subscribers:
                self._logger.warning("Max global subscribers reached")
                return False

            self._global_subscribers.append(callback)

            if self.enable_logging:
                self._logger.debug(f"Subscribed to all events: {_callback_name(callback)}")
            return True

    def publish(self, event: LifecycleEvent) -> None:
        """Publish an event to type-specific subscribers, then to global subscribers."""
        if not self.enabled:
            return

        # Snapshot under the lock so callbacks may subscribe or publish themselves
        with self._lock:
            callbacks = list(self._subscribers.get(event.event_type, []))
            callbacks.extend(self._global_subscribers)

        for callback in callbacks:
            self._safe_execute_callback(callback, event)

        if self.enable_logging:
            self._logger.debug(f"Published {event.event_type.value}: {event.data}")

    def _safe_execute_callback(self, callback: Callable, event: LifecycleEvent) -> None:
        """Execute callback with error handling so one subscriber cannot break the others."""
        try:
            callback(event)
        except Exception as e:
            self._logger.error(f"Callback {_callback_name(callback)} failed: {e}")

    def unsubscribe(self, event_type: EventType, callback: Callable) -> bool:
        """Unsubscribe from event type."""
        with self._lock:
            if event_type in self._subscribers and callback in self._subscribers[event_type]:
                self._subscribers[event_type].remove(callback)
                return True
            return False

    def get_subscription_stats(self) -> Dict[str, Any]:
        """Get statistics about current subscriptions."""
        with self._lock:
            return {
                'total_event_types': len(self._subscribers),
                'global_subscribers': len(self._global_subscribers),
                'subscriptions_by_type': {
                    event_type.value: len(callbacks)
                    for event_type, callbacks in self._subscribers.items()
                }
            }


def _callback_name(callback: Callable) -> str:
    return getattr(callback, '__name__', repr(callback))
