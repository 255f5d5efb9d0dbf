from __future__ import annotations

from datetime import date
from typing import List

import pytest

from exam_planner.models import SessionStatus
from exam_planner.telemetry import TelemetryEvent, clear_listeners, emit_event, register_listener


@pytest.fixture(autouse=True)
def _reset_listeners():
    clear_listeners()
    yield
    clear_listeners()


def test_emit_event_sanitizes_dates_enums_and_sets() -> None:
    received: List[TelemetryEvent] = []
    register_listener(received.append)

    event = emit_event(
        "session_event",
        plan_id="plan-1",
        exam_date=date(2026, 3, 21),
        status=SessionStatus.MISSED,
        topics={"b", "a"},
    )

    assert received == [event]
    assert event.plan_id == "plan-1"
    assert event.payload["exam_date"] == "2026-03-21"
    assert event.payload["status"] == "missed"
    assert event.payload["topics"] == ["a", "b"]


def test_listener_name_filter_and_unsubscribe() -> None:
    repairs: List[TelemetryEvent] = []
    unsubscribe = register_listener(repairs.append, names={"plan_repair"})

    emit_event("plan_generation", plan_id="plan-1")
    emit_event("plan_repair", plan_id="plan-1")
    unsubscribe()
    emit_event("plan_repair", plan_id="plan-1")

    assert [event.name for event in repairs] == ["plan_repair"]


def test_failing_listener_does_not_block_others() -> None:
    received: List[TelemetryEvent] = []

    def _broken(event: TelemetryEvent) -> None:
        raise RuntimeError("listener down")

    register_listener(_broken)
    register_listener(received.append)

    emit_event("plan_reschedule", plan_id="plan-2")

    assert [event.name for event in received] == ["plan_reschedule"]
