"""Process-local snapshot cache for generated plans."""

from __future__ import annotations

import threading
from typing import Dict, Optional

from ..models import Plan


def _normalize_plan_id(plan_id: str) -> str:
    normalized = plan_id.strip()
    if not normalized:
        raise ValueError("Plan id cannot be empty when caching plans.")
    return normalized


class PlanCache:
    """Holds the last persisted snapshot of each plan.

    Entries are deep copies in both directions so callers can never mutate what
    the cache holds.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Plan] = {}
        self._lock = threading.Lock()

    def get(self, plan_id: str) -> Optional[Plan]:
        key = _normalize_plan_id(plan_id)
        with self._lock:
            plan = self._entries.get(key)
        return plan.model_copy(deep=True) if plan is not None else None

    def set(self, plan: Plan) -> None:
        key = _normalize_plan_id(plan.plan_id)
        snapshot = plan.model_copy(deep=True)
        with self._lock:
            self._entries[key] = snapshot

    def invalidate(self, plan_id: str) -> None:
        key = _normalize_plan_id(plan_id)
        with self._lock:
            self._entries.pop(key, None)


__all__ = ["PlanCache"]
