"""
Purpose: Per-order mutual exclusion.
What it does:
Hands out one re-entrant lock per order id so that submit / respond / award /
cancel / expire on the SAME order are serialized, while different orders never
contend with each other.

Re-entrant so an orchestrator holding an order's lock can call ledger
operations that take the same lock.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class OrderLockManager:
    """
    In-process lock registry keyed by order id.
    A database-backed deployment would swap this for row locks or a
    conditional update keyed by (order id, expected status).
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
