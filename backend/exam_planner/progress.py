"""Read-only progress reporting over a plan's sessions."""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional

from .models import Plan, ProgressReport, SessionStatus, TopicCatalog, TopicProgress, WeakTopic
from .scoring import average_rating, is_weak_rating, priority_score, topic_ratings
from .timeline import days_until


class ProgressAggregator:
    """Derives completion, adherence and readiness figures from session state.

    Nothing is cached: every call recomputes from the sessions it is given, so a
    report always reflects the latest status changes.
    """

    def report(self, plan: Plan, catalog: Optional[TopicCatalog] = None, *, today: Optional[date] = None) -> ProgressReport:
        today = today or date.today()
        sessions = plan.sessions
        counts: Dict[SessionStatus, int] = defaultdict(int)
        for session in sessions:
            counts[session.status] += 1

        total = len(sessions)
        completed = counts[SessionStatus.COMPLETED]
        missed = counts[SessionStatus.MISSED]
        completion = completed / total * 100.0 if total else 0.0
        attempted = completed + missed
        adherence = completed / attempted * 100.0 if attempted else 100.0

        days_left = days_until(plan.exam_date, today)
        weak_topics = self._weak_topics(plan, catalog, days_left)
        unresolved = sum(1 for topic in weak_topics if not topic.resolved)
        readiness = completion * (1.0 / (1.0 + unresolved))

        return ProgressReport(
            plan_id=plan.plan_id,
            days_until_exam=max(days_left, 0),
            total_sessions=total,
            completed_sessions=completed,
            missed_sessions=missed,
            partial_sessions=counts[SessionStatus.PARTIAL],
            pending_sessions=counts[SessionStatus.PENDING],
            scheduled_hours=round(sum(session.duration_hours for session in sessions), 4),
            completed_hours=round(sum(self._done_hours(plan, topic_id) for topic_id in plan.topic_ids()), 4),
            completion_percentage=round(completion, 4),
            adherence_score=round(adherence, 4),
            readiness_indicator=round(readiness, 4),
            weak_topics=weak_topics,
            topics=self._topic_progress(plan, catalog),
        )

    @staticmethod
    def _done_hours(plan: Plan, topic_id: str) -> float:
        hours = 0.0
        for session in plan.sessions_for_topic(topic_id):
            if session.status is SessionStatus.COMPLETED:
                hours += session.duration_hours
            elif session.status is SessionStatus.PARTIAL:
                hours += (session.completion_fraction or 0.0) * session.duration_hours
        return hours

    def _weak_topics(self, plan: Plan, catalog: Optional[TopicCatalog], days_left: int) -> List[WeakTopic]:
        topics = catalog.topic_map() if catalog else {}
        flagged: List[WeakTopic] = []
        for topic_id in sorted(plan.topic_ids()):
            ratings = topic_ratings(plan.sessions, topic_id)
            if not any(is_weak_rating(rating) for rating in ratings):
                continue
            average = average_rating(ratings) or 0.0
            topic = topics.get(topic_id)
            importance = topic.effective_importance if topic else 1
            flagged.append(
                WeakTopic(
                    topic_id=topic_id,
                    name=topic.name if topic else topic_id,
                    average_rating=round(average, 4),
                    lowest_rating=min(ratings),
                    importance=importance,
                    priority_score=round(priority_score(average, importance, days_left), 6),
                    resolved=bool(topic) and not topic.weak,
                )
            )
        flagged.sort(key=lambda weak: (-weak.priority_score, -weak.importance, weak.topic_id))
        return flagged

    def _topic_progress(self, plan: Plan, catalog: Optional[TopicCatalog]) -> List[TopicProgress]:
        if catalog is not None:
            ordered = [(topic.topic_id, topic.name, topic.estimated_hours) for topic in catalog.topics]
        else:
            ordered = [(topic_id, topic_id, None) for topic_id in sorted(plan.topic_ids())]

        entries: List[TopicProgress] = []
        for topic_id, name, estimate in ordered:
            sessions = plan.sessions_for_topic(topic_id)
            done = self._done_hours(plan, topic_id)
            pending = sum(session.duration_hours for session in sessions if session.is_pending)
            average = average_rating(topic_ratings(sessions, topic_id))
            entries.append(
                TopicProgress(
                    topic_id=topic_id,
                    name=name,
                    scheduled_hours=round(sum(session.duration_hours for session in sessions), 4),
                    completed_hours=round(done, 4),
                    remaining_hours=round(max(estimate - done, 0.0) if estimate is not None else pending, 4),
                    session_count=len(sessions),
                    completed_sessions=sum(1 for session in sessions if session.status is SessionStatus.COMPLETED),
                    average_rating=round(average, 4) if average is not None else None,
                )
            )
        return entries


def report(plan: Plan, catalog: Optional[TopicCatalog] = None, *, today: Optional[date] = None) -> ProgressReport:
    return ProgressAggregator().report(plan, catalog, today=today)


__all__ = ["ProgressAggregator", "report"]
