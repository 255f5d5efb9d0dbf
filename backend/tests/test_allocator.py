"""Initial allocation: coverage, daily limits, proportional shares."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict

import pytest

from exam_planner.allocator import StudyAllocator, allocate
from exam_planner.errors import InsufficientTimeError, ValidationError
from exam_planner.models import Plan, Topic
from exam_planner.timeline import available_hours, buffer_day_count, study_days

TODAY = date(2026, 3, 10)


def _topic(topic_id: str, complexity: int, hours: float = 2.0) -> Topic:
    return Topic(topic_id=topic_id, name=topic_id.title(), complexity=complexity, estimated_hours=hours)


def _content_hours(plan: Plan) -> Dict[str, float]:
    totals: Dict[str, float] = defaultdict(float)
    for session in plan.sessions:
        if session.scheduled_for < plan.revision_start:
            totals[session.topic_id] += session.duration_hours
    return dict(totals)


def test_every_topic_is_covered_within_daily_limit() -> None:
    topics = [_topic("alg", 2), _topic("bio", 4), _topic("chem", 3), _topic("hist", 1)]
    plan = allocate(topics, TODAY + timedelta(days=12), 3.0, today=TODAY)

    assert plan.topic_ids() == {"alg", "bio", "chem", "hist"}
    for day, total in plan.hours_by_date().items():
        assert TODAY < day < plan.exam_date
        assert total <= 3.0 + 1e-6


def test_shares_follow_complexity() -> None:
    topics = [_topic("a", 1), _topic("b", 2), _topic("c", 2), _topic("d", 4), _topic("e", 5)]
    plan = allocate(topics, TODAY + timedelta(days=15), 2.0, today=TODAY)
    hours = _content_hours(plan)

    assert hours["b"] == pytest.approx(hours["c"])
    ordered = [hours[topic.topic_id] for topic in sorted(topics, key=lambda topic: topic.complexity)]
    assert ordered == sorted(ordered)
    assert hours["e"] > hours["a"]


@pytest.mark.parametrize("daily", [0.5, 1.0, 2.5, 7.75, 16.0])
@pytest.mark.parametrize("days_ahead", [1, 2, 9, 30])
def test_available_hours_matches_days_until_minus_one(daily: float, days_ahead: int) -> None:
    exam = TODAY + timedelta(days=days_ahead)
    assert available_hours(exam, daily, TODAY) == pytest.approx((days_ahead - 1) * daily)


def test_three_topic_example_over_eleven_days() -> None:
    topics = [_topic("easy", 1), _topic("mid", 3), _topic("hard", 5)]
    exam = TODAY + timedelta(days=11)
    plan = allocate(topics, exam, 2.0, today=TODAY)

    days = study_days(exam, TODAY)
    assert len(days) * 2.0 == pytest.approx(20.0)
    assert buffer_day_count(len(days), 0.2) == 2
    assert plan.revision_start == TODAY + timedelta(days=9)

    hours = _content_hours(plan)
    content_total = sum(hours.values())
    assert content_total == pytest.approx(16.0)
    assert hours["hard"] / content_total == pytest.approx(5 / 9, abs=0.05)
    assert hours["easy"] / content_total == pytest.approx(1 / 9, abs=0.05)
    assert hours["easy"] < hours["mid"] < hours["hard"]


def test_insufficient_time_reports_minimum_daily_hours() -> None:
    topics = [_topic("everything", 5, hours=100.0)]

    with pytest.raises(InsufficientTimeError) as excinfo:
        allocate(topics, TODAY + timedelta(days=3), 2.0, today=TODAY)

    error = excinfo.value
    assert error.required_hours == pytest.approx(100.0)
    assert error.available_hours == pytest.approx(4.0)
    assert error.minimum_daily_hours == pytest.approx(50.0)
    assert error.earliest_exam_date is not None and error.earliest_exam_date > TODAY + timedelta(days=3)
    assert error.to_payload()["code"] == "insufficient_time"


def test_sessions_respect_minimum_length() -> None:
    topics = [_topic(f"t{index}", (index % 5) + 1) for index in range(6)]
    plan = allocate(topics, TODAY + timedelta(days=20), 2.5, today=TODAY)

    assert all(session.duration_hours >= 0.5 - 1e-6 for session in plan.sessions)


def test_reserved_hours_reduce_capacity() -> None:
    topics = [_topic("alg", 2), _topic("bio", 3)]
    busy_day = TODAY + timedelta(days=1)
    plan = StudyAllocator().allocate(
        topics,
        TODAY + timedelta(days=8),
        2.0,
        today=TODAY,
        reserved_hours={busy_day: 1.5},
    )

    assert plan.hours_by_date().get(busy_day, 0.0) <= 0.5 + 1e-6


@pytest.mark.parametrize(
    ("exam_offset", "daily", "field"),
    [
        (0, 2.0, "exam_date"),
        (-3, 2.0, "exam_date"),
        (10, 0.25, "daily_hours"),
        (10, 16.5, "daily_hours"),
    ],
)
def test_invalid_parameters_are_rejected_before_allocation(exam_offset: int, daily: float, field: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        allocate([_topic("alg", 2)], TODAY + timedelta(days=exam_offset), daily, today=TODAY)
    assert excinfo.value.field == field


def test_duplicate_topic_ids_are_rejected() -> None:
    with pytest.raises(ValidationError):
        allocate([_topic("alg", 2), _topic("alg", 3)], TODAY + timedelta(days=10), 2.0, today=TODAY)


def test_long_days_interleave_topics_one_chunk_per_visit() -> None:
    topics = [_topic("alg", 1), _topic("bio", 1)]
    plan = allocate(topics, TODAY + timedelta(days=6), 4.0, today=TODAY)

    first_day = [session for session in plan.sessions if session.scheduled_for == TODAY + timedelta(days=1)]
    assert {session.topic_id: session.duration_hours for session in first_day} == {"alg": 2.0, "bio": 2.0}
