"""Per-product mutexes for single-process deployments."""
import threading
from contextlib import contextmanager
from typing import Dict, Iterable


class ProductLockRegistry:
    """
    Hands out one lock per product id.

    The database compare-and-set decrement is the real oversell guard; these
    locks serialize concurrent checkouts of the same product inside one
    process so the loser fails fast instead of racing on the row.
    Locks are always taken in ascending product id order.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def lock_for(self, product_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = self._locks[product_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, product_ids: Iterable[int]):
        """Acquire the locks of every product id for the duration of the block."""
        locks = [self.lock_for(pid) for pid in sorted(set(product_ids))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


# Shared by every orchestrator in the process
product_locks = ProductLockRegistry()
