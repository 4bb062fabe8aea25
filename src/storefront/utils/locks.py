"""Per-key serialization for the contended parts of the pipeline.

A command that touches a contended row (a stock level, a coupon's usage
count, an order, a payment being settled) is dispatched while holding the
lock for that row's key, so its UnitOfWork reads, checks and commits without
another writer interleaving. Locks for unrelated keys never block each other.

The memory provider commits a UnitOfWork by writing back everything it
loaded, so two UnitOfWorks on unrelated rows can still overwrite each other.
While a memory provider is configured every dispatch also holds ``STORE_KEY``.

Keys are acquired in sorted order, so two callers holding overlapping key
sets cannot deadlock. Locks are re-entrant per thread.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from protean.utils.globals import current_domain

STORE_KEY = "store:memory"


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._local = threading.local()

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    def held(self) -> set[str]:
        """Keys held by the calling thread."""
        return set(getattr(self._local, "keys", ()))

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        previous = getattr(self._local, "keys", frozenset())
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            self._local.keys = previous | set(keys)
            yield
        finally:
            self._local.keys = previous
            for lock in reversed(acquired):
                lock.release()


row_locks = KeyedLock()


def stock_lock_key(stock_key: str) -> str:
    return f"stock:{stock_key}"


def coupon_lock_key(code: str) -> str:
    return f"coupon:{code.upper()}"


def cart_lock_key(cart_id: str) -> str:
    return f"cart:{cart_id}"


def order_lock_key(order_id: str) -> str:
    return f"order:{order_id}"


def payment_lock_key(payment_id: str) -> str:
    return f"payment:{payment_id}"


def shipment_lock_key(shipment_id: str) -> str:
    return f"shipment:{shipment_id}"


def _uses_memory_store() -> bool:
    return any(provider.conn_info["provider"] == "memory" for _, provider in current_domain.providers.items())


def process_serialized(command, *keys: str):
    """Process a command synchronously while holding the given row keys."""
    if _uses_memory_store():
        keys = (*keys, STORE_KEY)
    with row_locks.hold(*keys):
        return current_domain.process(command, asynchronous=False)
