"""Per-plan mutual exclusion for mutating operations."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class PlanLockRegistry:
    """Hands out one lock per plan id so writes to the same plan serialise.

    Operations on different plans never contend with each other.
    """

    def __init__(self) -> None:
        self._guard = threading.RLock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, plan_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(plan_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[plan_id] = lock
            return lock

    @contextmanager
    def hold(self, plan_id: str) -> Iterator[None]:
        lock = self.lock_for(plan_id)
        with lock:
            yield


__all__ = ["PlanLockRegistry"]
