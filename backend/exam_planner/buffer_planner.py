"""Revision-window labelling and trimming."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional

from .models import Constraints, Plan, PlanWarning, Session, SessionKind

logger = logging.getLogger(__name__)

REVISION_SHARE = 0.5


class BufferPlanner:
    """Turns sessions inside the trailing revision window into shorter review blocks."""

    def __init__(self, constraints: Optional[Constraints] = None) -> None:
        self._constraints = constraints

    def apply_buffer(self, plan: Plan) -> Plan:
        updated = plan.model_copy(deep=True)
        start = updated.revision_start
        min_session = (self._constraints or updated.constraints).min_session_hours

        normal_length = self._normal_session_length(updated.sessions, start)
        first_seen: Dict[str, date] = {}
        for session in updated.sessions:
            if self._in_window(session, start):
                continue
            current = first_seen.get(session.topic_id)
            if current is None or session.scheduled_for < current:
                first_seen[session.topic_id] = session.scheduled_for

        kept: List[Session] = []
        dropped: List[Session] = []
        for session in updated.sessions:
            if not self._in_window(session, start):
                kept.append(session)
                continue
            seen = first_seen.get(session.topic_id)
            if seen is None or seen >= session.scheduled_for:
                dropped.append(session)
                continue
            target = max(normal_length.get(session.topic_id, session.duration_hours) * REVISION_SHARE, min_session)
            session.duration_hours = min(session.duration_hours, target)
            session.kind = SessionKind.REVISION
            kept.append(session)

        if dropped:
            topics = sorted({session.topic_id for session in dropped})
            logger.warning(
                "Dropped %d revision-window sessions introducing new topics on plan %s: %s",
                len(dropped),
                updated.plan_id,
                ", ".join(topics),
            )
            updated.warnings.append(
                PlanWarning(
                    code="buffer_session_dropped",
                    message="New topics cannot be introduced inside the revision window.",
                    detail=", ".join(topics),
                )
            )
        updated.sessions = kept
        return updated

    @staticmethod
    def _in_window(session: Session, revision_start: date) -> bool:
        """Pending first-pass sessions dated inside the revision window."""
        return (
            session.scheduled_for >= revision_start
            and session.kind is SessionKind.CONTENT
            and session.is_pending
        )

    @staticmethod
    def _normal_session_length(sessions: List[Session], revision_start: date) -> Dict[str, float]:
        totals: Dict[str, float] = defaultdict(float)
        counts: Dict[str, int] = defaultdict(int)
        for session in sessions:
            if session.scheduled_for >= revision_start or session.kind is not SessionKind.CONTENT:
                continue
            totals[session.topic_id] += session.duration_hours
            counts[session.topic_id] += 1
        return {topic_id: totals[topic_id] / counts[topic_id] for topic_id in totals}


def apply_buffer(plan: Plan) -> Plan:
    return BufferPlanner().apply_buffer(plan)


__all__ = ["BufferPlanner", "REVISION_SHARE", "apply_buffer"]
