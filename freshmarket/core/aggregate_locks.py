"""
Per-order mutual exclusion for status mutations.

An order and its payment form one aggregate: every read-validate-write of
either status happens while holding the order's lock. A lock only lives in the
registry while some thread holds or waits for it, so the registry does not
grow with the number of orders ever touched.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable


class _LockEntry:
    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class AggregateLockRegistry:
    """Hands out one re-entrant lock per order id."""

    def __init__(self):
        self._locks: Dict[Hashable, _LockEntry] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def hold(self, order_id: Hashable):
        """Context manager holding the aggregate lock for order_id."""
        with self._registry_lock:
            entry = self._locks.get(order_id)
            if entry is None:
                entry = _LockEntry()
                self._locks[order_id] = entry
            entry.users += 1
        try:
            with entry.lock:
                yield entry.lock
        finally:
            with self._registry_lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[order_id]

    def __len__(self) -> int:
        """Number of orders whose lock is currently held or awaited."""
        with self._registry_lock:
            return len(self._locks)


# Process-wide registry shared by every engine built without an explicit one
default_lock_registry = AggregateLockRegistry()
