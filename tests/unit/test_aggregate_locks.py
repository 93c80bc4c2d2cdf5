"""
Tests for the per-order lock registry.
"""

import threading
import time

from freshmarket.core.aggregate_locks import AggregateLockRegistry, default_lock_registry
from freshmarket.core.lifecycle_engine import LifecycleEngine


class TestAggregateLockRegistry:

    def test_same_order_gets_same_lock(self):
        registry = AggregateLockRegistry()
        with registry.hold(1) as first:
            with registry.hold(1) as again:
                assert again is first
            with registry.hold(2) as other:
                assert other is not first
                assert len(registry) == 2

    def test_hold_is_reentrant(self):
        registry = AggregateLockRegistry()
        with registry.hold(5):
            with registry.hold(5):
                pass

    def test_released_locks_are_forgotten(self):
        registry = AggregateLockRegistry()
        for order_id in range(100):
            with registry.hold(order_id):
                assert len(registry) == 1

        assert len(registry) == 0

    def test_lock_kept_while_another_thread_waits(self):
        registry = AggregateLockRegistry()
        acquired = []

        def waiter():
            with registry.hold(3) as lock:
                acquired.append(lock)

        with registry.hold(3) as held:
            thread = threading.Thread(target=waiter)
            thread.start()
            deadline = time.monotonic() + 1.0
            while registry._locks[3].users < 2 and time.monotonic() < deadline:
                time.sleep(0.001)
            assert registry._locks[3].users == 2
            assert len(registry) == 1
        thread.join()

        assert acquired == [held]
        assert len(registry) == 0

    def test_lock_released_after_exception(self):
        registry = AggregateLockRegistry()
        try:
            with registry.hold(8):
                raise ValueError("boom")
        except ValueError:
            pass

        assert len(registry) == 0

    def test_default_engines_share_one_registry(self):
        first = LifecycleEngine()
        second = LifecycleEngine()

        assert first.locks is default_lock_registry
        assert second.locks is first.locks

    def test_explicit_empty_registry_is_used(self):
        registry = AggregateLockRegistry()
        assert LifecycleEngine(lock_registry=registry).locks is registry

    def test_hold_serializes_access_for_one_order(self):
        registry = AggregateLockRegistry()
        active = []
        overlaps = []

        def worker():
            with registry.hold(1):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_different_orders_do_not_block_each_other(self):
        registry = AggregateLockRegistry()
        entered = threading.Event()

        def other_order():
            with registry.hold(2):
                entered.set()

        with registry.hold(1):
            thread = threading.Thread(target=other_order)
            thread.start()
            assert entered.wait(timeout=1.0)
            thread.join()
