from __future__ import annotations

from datetime import date, timedelta

import pytest

from exam_planner.catalog import build_catalog
from exam_planner.models import Constraints, Plan, Session, SessionStatus, Topic
from exam_planner.progress import ProgressAggregator, report

TODAY = date(2026, 3, 10)


def _plan() -> Plan:
    def session(topic_id: str, offset: int, hours: float, **fields) -> Session:
        return Session(
            plan_id="plan-progress",
            topic_id=topic_id,
            scheduled_for=TODAY + timedelta(days=offset),
            duration_hours=hours,
            **fields,
        )

    return Plan(
        plan_id="plan-progress",
        exam_date=TODAY + timedelta(days=5),
        start_date=TODAY - timedelta(days=3),
        revision_start=TODAY + timedelta(days=4),
        constraints=Constraints(daily_hours=2.0),
        sessions=[
            session("alg", -2, 2.0, status=SessionStatus.COMPLETED, understanding_rating=2),
            session("bio", -1, 1.0, status=SessionStatus.MISSED),
            session("alg", 0, 2.0, status=SessionStatus.PARTIAL, completion_fraction=0.5),
            session("bio", 1, 1.0),
        ],
    )


def _catalog(weak: bool):
    return build_catalog(
        [
            Topic(topic_id="alg", name="Algebra", complexity=3, estimated_hours=4.0, importance=4, weak=weak),
            Topic(topic_id="bio", name="Biology", complexity=2, estimated_hours=2.0),
        ]
    )


def test_report_counts_and_percentages() -> None:
    progress = ProgressAggregator().report(_plan(), _catalog(weak=True), today=TODAY)

    assert progress.total_sessions == 4
    assert progress.completed_sessions == 1
    assert progress.missed_sessions == 1
    assert progress.partial_sessions == 1
    assert progress.pending_sessions == 1
    assert progress.completion_percentage == pytest.approx(25.0)
    assert progress.adherence_score == pytest.approx(50.0)
    assert progress.completed_hours == pytest.approx(3.0)
    assert progress.days_until_exam == 5


def test_weak_topics_reduce_readiness_until_resolved() -> None:
    weak = report(_plan(), _catalog(weak=True), today=TODAY)

    assert [topic.topic_id for topic in weak.weak_topics] == ["alg"]
    flagged = weak.weak_topics[0]
    assert flagged.average_rating == pytest.approx(2.0)
    assert flagged.priority_score == pytest.approx((6 - 2) * 4 / 5)
    assert flagged.resolved is False
    assert weak.readiness_indicator == pytest.approx(12.5)

    resolved = report(_plan(), _catalog(weak=False), today=TODAY)
    assert resolved.weak_topics[0].resolved is True
    assert resolved.readiness_indicator == pytest.approx(25.0)


def test_adherence_defaults_to_full_without_history() -> None:
    plan = _plan()
    for session in plan.sessions:
        session.status = SessionStatus.PENDING
        session.understanding_rating = None
        session.completion_fraction = None

    progress = report(plan, today=TODAY)

    assert progress.adherence_score == 100.0
    assert progress.completion_percentage == 0.0
    assert progress.weak_topics == []


def test_topic_progress_tracks_remaining_hours() -> None:
    progress = report(_plan(), _catalog(weak=True), today=TODAY)
    by_topic = {entry.topic_id: entry for entry in progress.topics}

    assert by_topic["alg"].completed_hours == pytest.approx(3.0)
    assert by_topic["alg"].remaining_hours == pytest.approx(1.0)
    assert by_topic["alg"].average_rating == pytest.approx(2.0)
    assert by_topic["bio"].completed_hours == 0.0
    assert by_topic["bio"].remaining_hours == pytest.approx(2.0)
    assert by_topic["bio"].average_rating is None
