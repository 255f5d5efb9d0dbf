"""Orchestration of plan generation, repair and reporting."""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timezone
from time import perf_counter
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, TypeVar

from .allocator import StudyAllocator
from .buffer_planner import BufferPlanner
from .catalog import TopicInput, build_catalog, set_complexity
from .config import Settings, get_settings
from .errors import OptimizationTimeout, PlanNotFoundError
from .locks import PlanLockRegistry
from .models import (
    CompletionEvent,
    Constraints,
    Plan,
    PlanStatus,
    PlanWarning,
    ProgressReport,
    Topic,
    TopicCatalog,
)
from .plan_store import PlanStore
from .progress import ProgressAggregator
from .repair_engine import RepairEngine, RepairResult
from .telemetry import emit_event
from .timeline import local_today, normalise_timezone, slice_plan

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _plan_metrics(plan: Plan) -> Dict[str, Any]:
    return {
        "session_count": len(plan.sessions),
        "scheduled_hours": round(sum(session.duration_hours for session in plan.sessions), 4),
        "exam_date": plan.exam_date,
        "daily_hours": plan.daily_hours,
        "revision_start": plan.revision_start,
        "status": plan.status,
        "warnings": len(plan.warnings),
    }


def _provisional(plan: Plan, elapsed: float) -> Plan:
    warning = PlanWarning(
        code="optimization_timeout",
        message=f"Using the previous plan (recomputation exceeded its deadline after {elapsed:.2f}s).",
    )
    updated = plan.model_copy(deep=True)
    updated.status = PlanStatus.PROVISIONAL
    updated.warnings = (updated.warnings + [warning])[-5:]
    return updated


class PlanService:
    """Entry point for every plan operation.

    Mutations on one plan are serialised through a per-plan lock; the planning
    core itself is pure, so only the load and save around it touch storage.
    When a deadline is given, computation runs on a worker thread and an expired
    deadline yields the last persisted plan flagged provisional instead.
    """

    def __init__(
        self,
        store: Optional[PlanStore] = None,
        *,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[PlanLockRegistry] = None,
        repair_engine: Optional[RepairEngine] = None,
        aggregator: Optional[ProgressAggregator] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store or PlanStore(self._settings.persistence_mode)
        self._clock = clock or _utcnow
        self._locks = locks or PlanLockRegistry()
        self._buffer_planner = BufferPlanner()
        self._repair_engine = repair_engine or RepairEngine(self._buffer_planner)
        self._aggregator = aggregator or ProgressAggregator()

    @property
    def store(self) -> PlanStore:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    # Generation ------------------------------------------------------------------------

    def create_plan(
        self,
        owner: str,
        topics: Iterable[TopicInput | Topic],
        exam_date: date,
        daily_hours: float,
        *,
        timezone: Optional[str] = None,
        deadline_seconds: Optional[float] = None,
    ) -> Plan:
        started_at = perf_counter()
        tz_name = normalise_timezone(timezone) or self._settings.default_timezone
        now = self.now()
        today = local_today(now, tz_name)
        constraints = Constraints.from_settings(self._settings)
        catalog = build_catalog(topics, owner=owner)

        def _compute() -> Plan:
            allocated = StudyAllocator(constraints).allocate(
                catalog.topics,
                exam_date,
                daily_hours,
                today=today,
                owner=owner,
                catalog_id=catalog.catalog_id,
                tz_name=tz_name,
            )
            return self._buffer_planner.apply_buffer(allocated)

        plan = self._run_with_deadline("create", None, _compute, deadline_seconds, fallback=None)
        plan.created_at = now
        plan.updated_at = now
        with self._locks.hold(plan.plan_id):
            self._store.save_catalog(catalog)
            stored = self._store.save(plan)

        duration_ms = round((perf_counter() - started_at) * 1000.0, 2)
        logger.info("Generated plan %s for %s with %d topics", stored.plan_id, owner or "-", len(catalog.topics))
        emit_event(
            "plan_generation",
            plan_id=stored.plan_id,
            owner=owner,
            topic_count=len(catalog.topics),
            duration_ms=duration_ms,
            **_plan_metrics(stored),
        )
        return stored

    # Reads -----------------------------------------------------------------------------

    def get_plan(self, plan_id: str, *, start: Optional[date] = None, end: Optional[date] = None) -> Plan:
        return slice_plan(self._store.load(plan_id), start, end)

    def get_catalog(self, plan_id: str) -> TopicCatalog:
        plan = self._store.load(plan_id)
        return self._require_catalog(plan)

    def progress(self, plan_id: str) -> ProgressReport:
        plan = self._store.load(plan_id)
        catalog = self._store.load_catalog(plan.catalog_id) if plan.catalog_id else None
        today = local_today(self.now(), plan.timezone)
        return self._aggregator.report(plan, catalog, today=today)

    # Repair ----------------------------------------------------------------------------

    def record_event(
        self,
        plan_id: str,
        event: CompletionEvent,
        *,
        deadline_seconds: Optional[float] = None,
    ) -> RepairResult:
        started_at = perf_counter()
        with self._locks.hold(plan_id):
            plan = self._store.load(plan_id)
            catalog = self._require_catalog(plan)
            now = self.now()
            # No fallback plan: serving the old plan would drop the event, so the caller must retry.
            result = self._run_with_deadline(
                "event",
                plan_id,
                lambda: self._repair_engine.apply_event(plan, catalog, event, now),
                deadline_seconds,
                fallback=None,
            )
            self._persist(result)

        session = result.plan.find_session(event.session_id)
        emit_event(
            "session_event",
            plan_id=plan_id,
            session_id=event.session_id,
            status=event.status,
            topic_id=session.topic_id if session else None,
            completion_fraction=event.completion_fraction,
            understanding_rating=event.understanding_rating,
        )
        self._emit_repair(result, "event", started_at)
        return result

    def run_repair(self, plan_id: str, *, deadline_seconds: Optional[float] = None) -> RepairResult:
        started_at = perf_counter()
        with self._locks.hold(plan_id):
            plan = self._store.load(plan_id)
            catalog = self._require_catalog(plan)
            now = self.now()
            try:
                result = self._run_with_deadline(
                    "repair",
                    plan_id,
                    lambda: self._repair_engine.repair(plan, catalog, now),
                    deadline_seconds,
                    fallback=plan,
                )
            except OptimizationTimeout as exc:
                return self._timeout_result(exc, catalog)
            if result.changed:
                self._persist(result)
        self._emit_repair(result, "sweep", started_at)
        return result

    # Parameter change ------------------------------------------------------------------

    def update_parameters(
        self,
        plan_id: str,
        *,
        exam_date: Optional[date] = None,
        daily_hours: Optional[float] = None,
        topic_complexity: Optional[Mapping[str, int]] = None,
        deadline_seconds: Optional[float] = None,
    ) -> Plan:
        started_at = perf_counter()
        with self._locks.hold(plan_id):
            plan = self._store.load(plan_id)
            catalog = self._require_catalog(plan)
            for topic_id, complexity in sorted((topic_complexity or {}).items()):
                catalog = set_complexity(catalog, topic_id, complexity)
            now = self.now()
            try:
                rescheduled = self._run_with_deadline(
                    "reschedule",
                    plan_id,
                    lambda: self._repair_engine.reschedule(
                        plan,
                        catalog,
                        now=now,
                        exam_date=exam_date,
                        daily_hours=daily_hours,
                    ),
                    deadline_seconds,
                    fallback=plan,
                )
            except OptimizationTimeout as exc:
                if exc.plan is None:
                    raise
                return exc.plan
            self._store.save_catalog(catalog)
            stored = self._store.save(rescheduled)

        duration_ms = round((perf_counter() - started_at) * 1000.0, 2)
        logger.info("Rescheduled plan %s in %.2fms", plan_id, duration_ms)
        emit_event(
            "plan_reschedule",
            plan_id=plan_id,
            previous_exam_date=plan.exam_date,
            previous_daily_hours=plan.daily_hours,
            catalog_revision=catalog.revision,
            duration_ms=duration_ms,
            **_plan_metrics(stored),
        )
        return stored

    # Helpers ---------------------------------------------------------------------------

    def _require_catalog(self, plan: Plan) -> TopicCatalog:
        catalog = self._store.load_catalog(plan.catalog_id) if plan.catalog_id else None
        if catalog is None:
            logger.error("Plan %s references missing catalog %s", plan.plan_id, plan.catalog_id)
            raise PlanNotFoundError(plan.plan_id)
        return catalog

    def _persist(self, result: RepairResult) -> None:
        self._store.save_catalog(result.catalog)
        result.plan = self._store.save(result.plan)

    @staticmethod
    def _timeout_result(exc: OptimizationTimeout, catalog: TopicCatalog) -> RepairResult:
        if exc.plan is None:
            raise exc
        return RepairResult(plan=exc.plan, catalog=catalog, changed=False)

    def _emit_repair(self, result: RepairResult, trigger: str, started_at: float) -> None:
        emit_event(
            "plan_repair",
            plan_id=result.plan.plan_id,
            trigger=trigger,
            changed=result.changed,
            missed=len(result.missed_session_ids),
            redistributed=len(result.redistributed_session_ids),
            injected=len(result.injected_session_ids),
            overflowed=list(result.overflow_session_ids),
            boosted_topics=list(result.boosted_topic_ids),
            resolved_topics=list(result.resolved_topic_ids),
            duration_ms=round((perf_counter() - started_at) * 1000.0, 2),
            **_plan_metrics(result.plan),
        )

    def _run_with_deadline(
        self,
        operation: str,
        plan_id: Optional[str],
        compute: Callable[[], T],
        deadline_seconds: Optional[float],
        *,
        fallback: Optional[Plan],
    ) -> T:
        deadline = deadline_seconds if deadline_seconds is not None else self._settings.default_deadline_seconds
        if deadline is None:
            return compute()

        outcome: Dict[str, Any] = {}

        def _target() -> None:
            try:
                outcome["value"] = compute()
            except Exception as exc:  # noqa: BLE001
                outcome["error"] = exc

        started_at = perf_counter()
        worker = threading.Thread(target=_target, name=f"planner-{operation}", daemon=True)
        worker.start()
        worker.join(deadline)
        if worker.is_alive():
            elapsed = perf_counter() - started_at
            provisional = _provisional(fallback, elapsed) if fallback is not None else None
            logger.warning(
                "Plan %s %s exceeded its %.2fs deadline; %s",
                plan_id or "-",
                operation,
                deadline,
                "serving the previous plan" if provisional else "no previous plan to fall back to",
            )
            emit_event(
                "optimization_timeout",
                plan_id=plan_id,
                operation=operation,
                deadline_seconds=deadline,
                elapsed_seconds=round(elapsed, 3),
                fallback=provisional is not None,
            )
            raise OptimizationTimeout(
                f"The {operation} computation did not finish within {deadline:.2f}s.",
                elapsed_seconds=elapsed,
                plan=provisional,
            )
        if "error" in outcome:
            raise outcome["error"]
        return outcome["value"]


__all__ = ["PlanService"]
