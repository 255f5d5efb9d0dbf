"""Service orchestration: persistence, telemetry, deadlines and per-plan locking."""

from __future__ import annotations

import threading
import time
from datetime import date, datetime, timedelta, timezone
from typing import List

import pytest

from exam_planner import service as service_module
from exam_planner.allocator import StudyAllocator
from exam_planner.catalog import TopicInput
from exam_planner.errors import OptimizationTimeout, PlanNotFoundError, ValidationError
from exam_planner.models import CompletionEvent, PlanStatus, SessionKind, SessionStatus
from exam_planner.plan_store import PlanStore
from exam_planner.repair_engine import RepairEngine
from exam_planner.service import PlanService
from exam_planner.telemetry import TelemetryEvent

NOW = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)
EXAM = date(2026, 3, 21)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class _SlowRepairEngine(RepairEngine):
    def repair(self, plan, catalog, now):
        time.sleep(0.5)
        return super().repair(plan, catalog, now)


class _SlowEventEngine(RepairEngine):
    def apply_event(self, plan, catalog, event, now):
        time.sleep(0.5)
        return super().apply_event(plan, catalog, event, now)


class _SlowAllocator(StudyAllocator):
    def allocate(self, *args, **kwargs):
        time.sleep(0.5)
        return super().allocate(*args, **kwargs)


def _topics() -> List[TopicInput]:
    return [
        TopicInput(topic_id="units", name="Units", complexity=1, estimated_hours=1.0),
        TopicInput(topic_id="optics", name="Optics", complexity=3, estimated_hours=2.5),
        TopicInput(topic_id="thermo", name="Thermodynamics", complexity=5, estimated_hours=5.0),
    ]


def _service(clock: _Clock | None = None, **kwargs) -> PlanService:
    return PlanService(PlanStore("memory"), clock=clock or _Clock(NOW), **kwargs)


def test_create_plan_persists_plan_and_catalog(telemetry_events: List[TelemetryEvent]) -> None:
    service = _service()

    plan = service.create_plan("sam", _topics(), EXAM, 2.0, timezone="Europe/Berlin")

    stored = service.get_plan(plan.plan_id)
    assert stored == plan
    assert plan.timezone == "Europe/Berlin"
    assert plan.start_date == date(2026, 3, 10)
    assert plan.created_at == NOW
    catalog = service.get_catalog(plan.plan_id)
    assert catalog.catalog_id == plan.catalog_id
    assert {topic.topic_id for topic in catalog.topics} == plan.topic_ids()
    assert any(session.kind is SessionKind.REVISION for session in plan.sessions)

    generation = [event for event in telemetry_events if event.name == "plan_generation"]
    assert len(generation) == 1
    assert generation[0].payload["plan_id"] == plan.plan_id
    assert generation[0].payload["topic_count"] == 3
    assert generation[0].payload["exam_date"] == EXAM.isoformat()


def test_get_plan_filters_by_date_range() -> None:
    service = _service()
    plan = service.create_plan("sam", _topics(), EXAM, 2.0)
    start = date(2026, 3, 12)
    end = date(2026, 3, 14)

    window = service.get_plan(plan.plan_id, start=start, end=end)

    assert window.sessions
    assert all(start <= session.scheduled_for <= end for session in window.sessions)
    assert len(service.get_plan(plan.plan_id).sessions) == len(plan.sessions)


def test_unknown_plan_raises_not_found() -> None:
    with pytest.raises(PlanNotFoundError):
        _service().get_plan("plan-missing")


def test_weak_rating_event_boosts_and_emits(telemetry_events: List[TelemetryEvent]) -> None:
    service = _service()
    plan = service.create_plan("sam", _topics(), EXAM, 2.0)
    first = plan.sessions[0]

    result = service.record_event(
        plan.plan_id,
        CompletionEvent(session_id=first.session_id, status=SessionStatus.COMPLETED, understanding_rating=2),
    )

    assert result.boosted_topic_ids == [first.topic_id]
    stored = service.get_plan(plan.plan_id)
    assert stored.find_session(first.session_id).status is SessionStatus.COMPLETED
    assert any(session.kind is SessionKind.BOOST for session in stored.sessions)
    assert service.get_catalog(plan.plan_id).get(first.topic_id).weak is True

    names = [event.name for event in telemetry_events]
    assert "session_event" in names
    assert "plan_repair" in names
    repair_event = next(event for event in telemetry_events if event.name == "plan_repair")
    assert repair_event.payload["boosted_topics"] == [first.topic_id]
    assert repair_event.payload["trigger"] == "event"


def test_missed_sessions_are_repaired_on_sweep() -> None:
    clock = _Clock(NOW)
    service = _service(clock)
    plan = service.create_plan("sam", _topics(), EXAM, 2.0)

    clock.now = NOW + timedelta(days=1, hours=22)
    result = service.run_repair(plan.plan_id)

    assert result.changed is True
    assert result.missed_session_ids
    stored = service.get_plan(plan.plan_id)
    assert any(session.kind is SessionKind.REDISTRIBUTED for session in stored.sessions)
    assert service.run_repair(plan.plan_id).changed is False


def test_progress_reflects_recorded_events() -> None:
    service = _service()
    plan = service.create_plan("sam", _topics(), EXAM, 2.0)
    session = plan.sessions[0]
    service.record_event(
        plan.plan_id,
        CompletionEvent(session_id=session.session_id, status=SessionStatus.COMPLETED, understanding_rating=4),
    )

    progress = service.progress(plan.plan_id)

    assert progress.completed_sessions == 1
    assert progress.completion_percentage == pytest.approx(100.0 / progress.total_sessions)
    assert progress.days_until_exam == 11


def test_update_parameters_reschedules_in_place(telemetry_events: List[TelemetryEvent]) -> None:
    service = _service()
    plan = service.create_plan("sam", _topics(), EXAM, 2.0)

    updated = service.update_parameters(
        plan.plan_id,
        daily_hours=3.0,
        exam_date=EXAM + timedelta(days=3),
        topic_complexity={"units": 2},
    )

    assert updated.plan_id == plan.plan_id
    assert updated.daily_hours == 3.0
    assert updated.exam_date == EXAM + timedelta(days=3)
    catalog = service.get_catalog(plan.plan_id)
    assert catalog.revision == 2
    assert catalog.get("units").complexity == 2
    assert service.get_plan(plan.plan_id) == updated
    assert [event.name for event in telemetry_events].count("plan_reschedule") == 1


def test_repair_deadline_falls_back_to_provisional_plan(telemetry_events: List[TelemetryEvent]) -> None:
    clock = _Clock(NOW)
    service = _service(clock, repair_engine=_SlowRepairEngine())
    plan = service.create_plan("sam", _topics(), EXAM, 2.0)
    clock.now = NOW + timedelta(days=1, hours=22)

    result = service.run_repair(plan.plan_id, deadline_seconds=0.05)

    assert result.changed is False
    assert result.plan.status is PlanStatus.PROVISIONAL
    assert [warning.code for warning in result.plan.warnings][-1] == "optimization_timeout"
    assert service.get_plan(plan.plan_id).status is PlanStatus.ACTIVE
    timeouts = [event for event in telemetry_events if event.name == "optimization_timeout"]
    assert timeouts and timeouts[0].payload["fallback"] is True


def test_event_deadline_raises_instead_of_dropping_the_event(telemetry_events: List[TelemetryEvent]) -> None:
    service = _service(repair_engine=_SlowEventEngine())
    plan = service.create_plan("sam", _topics(), EXAM, 2.0)
    target = plan.sessions[0].session_id

    with pytest.raises(OptimizationTimeout) as excinfo:
        service.record_event(
            plan.plan_id,
            CompletionEvent(session_id=target, status=SessionStatus.COMPLETED, understanding_rating=4),
            deadline_seconds=0.05,
        )

    assert excinfo.value.plan is None
    assert service.get_plan(plan.plan_id).find_session(target).is_pending
    timeouts = [event for event in telemetry_events if event.name == "optimization_timeout"]
    assert timeouts and timeouts[0].payload["fallback"] is False
    assert "session_event" not in [event.name for event in telemetry_events]


def test_create_deadline_without_prior_plan_raises(monkeypatch) -> None:
    monkeypatch.setattr(service_module, "StudyAllocator", _SlowAllocator)
    service = _service()

    with pytest.raises(OptimizationTimeout) as excinfo:
        service.create_plan("sam", _topics(), EXAM, 2.0, deadline_seconds=0.05)

    assert excinfo.value.plan is None
    assert excinfo.value.to_payload()["code"] == "optimization_timeout"


def test_errors_inside_deadline_worker_propagate() -> None:
    service = _service()
    with pytest.raises(ValidationError) as excinfo:
        service.create_plan("sam", _topics(), date(2026, 3, 9), 2.0, deadline_seconds=5.0)
    assert excinfo.value.field == "exam_date"


def test_concurrent_events_on_one_plan_are_serialised() -> None:
    service = _service()
    plan = service.create_plan("sam", _topics(), EXAM, 2.0)
    targets = [session.session_id for session in plan.sessions if session.kind is SessionKind.CONTENT][:6]
    errors: List[Exception] = []

    def _complete(session_id: str) -> None:
        try:
            service.record_event(
                plan.plan_id,
                CompletionEvent(session_id=session_id, status=SessionStatus.COMPLETED, understanding_rating=4),
            )
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=_complete, args=(session_id,)) for session_id in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    stored = service.get_plan(plan.plan_id)
    assert all(stored.find_session(session_id).status is SessionStatus.COMPLETED for session_id in targets)
