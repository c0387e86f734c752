"""Keyed locks for per-account serialization.

Every read-compute-write sequence against one user's balance or subscription
runs while holding that user's lock. Locks are re-entrant so a component that
already holds a user's lock can call into the ledger, which takes it again.

Lock order:
    user lock → external transaction id lock. Code that needs both always
    acquires them in this order.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLocks:
    """A lazily populated set of re-entrant locks, one per key.

    Usage Example:
        ```python
        locks = KeyedLocks()
        with locks.hold("user-1"):
            ...  # no other thread holds "user-1" here
        ```
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
