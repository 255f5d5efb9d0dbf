from __future__ import annotations

import os
from typing import Iterator, List

import pytest

os.environ.setdefault("EXAM_PLANNER_DATABASE_URL", "sqlite://")
os.environ.setdefault("EXAM_PLANNER_PERSISTENCE_MODE", "memory")

from exam_planner.telemetry import TelemetryEvent, clear_listeners, register_listener  # noqa: E402


@pytest.fixture
def telemetry_events() -> Iterator[List[TelemetryEvent]]:
    events: List[TelemetryEvent] = []
    clear_listeners()
    register_listener(events.append)
    yield events
    clear_listeners()
