"""Plan and catalog persistence behind a single facade."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from .cache import PlanCache
from .config import get_settings
from .db.session import init_db, session_scope
from .errors import PlanNotFoundError
from .models import Plan, TopicCatalog
from .repositories import plan_repository

logger = logging.getLogger(__name__)


class _DatabasePlanStore:
    """SQL persistence through the plan repository."""

    def __init__(self) -> None:
        self._ready = False
        self._lock = threading.Lock()

    def _ensure_schema(self) -> None:
        with self._lock:
            if not self._ready:
                init_db()
                self._ready = True

    def load(self, plan_id: str) -> Optional[Plan]:
        self._ensure_schema()
        with session_scope(commit=False) as session:
            return plan_repository.get_plan(session, plan_id)

    def save(self, plan: Plan) -> Plan:
        self._ensure_schema()
        with session_scope() as session:
            return plan_repository.upsert_plan(session, plan)

    def delete(self, plan_id: str) -> bool:
        self._ensure_schema()
        with session_scope() as session:
            return plan_repository.delete_plan(session, plan_id)

    def load_catalog(self, catalog_id: str) -> Optional[TopicCatalog]:
        self._ensure_schema()
        with session_scope(commit=False) as session:
            return plan_repository.get_catalog(session, catalog_id)

    def save_catalog(self, catalog: TopicCatalog) -> TopicCatalog:
        self._ensure_schema()
        with session_scope() as session:
            return plan_repository.upsert_catalog(session, catalog)


class _InMemoryPlanStore:
    """Process-local persistence used by tests and single-node deployments."""

    def __init__(self) -> None:
        self._plans: Dict[str, Plan] = {}
        self._catalogs: Dict[str, TopicCatalog] = {}
        self._lock = threading.Lock()

    def load(self, plan_id: str) -> Optional[Plan]:
        with self._lock:
            plan = self._plans.get(plan_id)
            return plan.model_copy(deep=True) if plan else None

    def save(self, plan: Plan) -> Plan:
        with self._lock:
            self._plans[plan.plan_id] = plan.model_copy(deep=True)
        return plan.model_copy(deep=True)

    def delete(self, plan_id: str) -> bool:
        with self._lock:
            return self._plans.pop(plan_id, None) is not None

    def load_catalog(self, catalog_id: str) -> Optional[TopicCatalog]:
        with self._lock:
            catalog = self._catalogs.get(catalog_id)
            return catalog.model_copy(deep=True) if catalog else None

    def save_catalog(self, catalog: TopicCatalog) -> TopicCatalog:
        with self._lock:
            self._catalogs[catalog.catalog_id] = catalog.model_copy(deep=True)
        return catalog.model_copy(deep=True)


class PlanStore:
    """Facade that delegates to database or in-memory persistence based on configuration.

    Loaded plans are served from a snapshot cache that is refreshed on every
    save, so reads between mutations skip the backing store.
    """

    def __init__(self, mode: Optional[str] = None, cache: Optional[PlanCache] = None) -> None:
        self._mode = mode or get_settings().persistence_mode
        self._backend = _DatabasePlanStore() if self._mode == "database" else _InMemoryPlanStore()
        self._cache = cache or PlanCache()
        logger.debug("Plan store initialised in %s mode", self._mode)

    @property
    def mode(self) -> str:
        return self._mode

    def load(self, plan_id: str) -> Plan:
        cached = self._cache.get(plan_id)
        if cached is not None:
            return cached
        plan = self._backend.load(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        self._cache.set(plan)
        return plan

    def save(self, plan: Plan) -> Plan:
        stored = self._backend.save(plan)
        self._cache.set(stored)
        return stored

    def delete(self, plan_id: str) -> bool:
        self._cache.invalidate(plan_id)
        return self._backend.delete(plan_id)

    def load_catalog(self, catalog_id: str) -> Optional[TopicCatalog]:
        return self._backend.load_catalog(catalog_id)

    def save_catalog(self, catalog: TopicCatalog) -> TopicCatalog:
        return self._backend.save_catalog(catalog)


__all__ = ["PlanStore"]
