"""Incremental re-planning for missed, partial and weak sessions."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from .allocator import StudyAllocator
from .buffer_planner import BufferPlanner
from .catalog import revise_catalog
from .errors import ScheduleOverflowError, SessionNotFoundError, SessionStateError, ValidationError
from .invariants import check_plan
from .models import (
    CompletionEvent,
    Plan,
    PlanStatus,
    PlanWarning,
    Session,
    SessionKind,
    SessionStatus,
    Topic,
    TopicCatalog,
)
from .scoring import (
    WEAK_RATING_THRESHOLD,
    average_rating,
    boost_order_key,
    is_weak_rating,
    priority_score,
    topic_ratings,
)
from .timeline import EPSILON, day_start, days_until, ensure_aware, local_today, revision_start_for

logger = logging.getLogger(__name__)

_TERMINAL_REPLAY = (SessionStatus.MISSED, SessionStatus.PARTIAL)


class RepairResult(BaseModel):
    """Outcome of one repair pass; ``changed`` is False when the plan was left as is."""

    plan: Plan
    catalog: TopicCatalog
    changed: bool = False
    updated_session_id: Optional[str] = None
    missed_session_ids: List[str] = Field(default_factory=list)
    redistributed_session_ids: List[str] = Field(default_factory=list)
    injected_session_ids: List[str] = Field(default_factory=list)
    boosted_topic_ids: List[str] = Field(default_factory=list)
    resolved_topic_ids: List[str] = Field(default_factory=list)
    overflow_session_ids: List[str] = Field(default_factory=list)


class RepairEngine:
    """Repairs a persisted plan in place instead of regenerating it.

    Missed and partial sessions keep their terminal status as history while the
    content they represent is re-injected as new pending sessions from tomorrow
    up to the day before the exam. Low understanding ratings flag the topic weak
    and inject extra boost sessions, the highest priority topic first.
    """

    def __init__(self, buffer_planner: Optional[BufferPlanner] = None) -> None:
        self._buffer_planner = buffer_planner or BufferPlanner()

    # Missed detection -----------------------------------------------------------------

    def detect_missed(self, plan: Plan, now: datetime) -> Plan:
        now = ensure_aware(now)
        working = plan.model_copy(deep=True)
        if self._mark_missed(working, now):
            working.updated_at = now
        return working

    def _mark_missed(self, plan: Plan, now: datetime) -> List[str]:
        now = ensure_aware(now)
        grace = timedelta(hours=plan.constraints.missed_grace_hours)
        missed: List[str] = []
        for session in plan.sessions:
            if not session.is_pending:
                continue
            if now - day_start(session.scheduled_for, plan.timezone) > grace:
                session.status = SessionStatus.MISSED
                missed.append(session.session_id)
        if missed:
            logger.info("Marked %d sessions missed on plan %s", len(missed), plan.plan_id)
        return missed

    # Event entry point ----------------------------------------------------------------

    def apply_event(
        self,
        plan: Plan,
        catalog: TopicCatalog,
        event: CompletionEvent,
        now: datetime,
    ) -> RepairResult:
        now = ensure_aware(now)
        working = plan.model_copy(deep=True)
        session = working.find_session(event.session_id)
        if session is None:
            raise SessionNotFoundError(event.session_id)
        self._apply_transition(session, event, now)

        resolved: Set[str] = set()
        if session.status is SessionStatus.COMPLETED and not is_weak_rating(session.understanding_rating):
            topic = catalog.get(session.topic_id)
            average = average_rating(topic_ratings(working.sessions, session.topic_id))
            if topic is not None and topic.weak and average is not None and average >= WEAK_RATING_THRESHOLD:
                resolved.add(topic.topic_id)

        # The transition is kept even when redistribution cannot fit; the
        # overflow is reported on the result and as a plan warning instead.
        result = self._repair(working, catalog, now, resolved=resolved, force_changed=True, strict=False)
        result.updated_session_id = session.session_id
        return result

    def _apply_transition(self, session: Session, event: CompletionEvent, now: datetime) -> None:
        if not session.is_pending:
            raise SessionStateError(
                f"Session {session.session_id} is already {session.status.value}.",
                field="status",
            )
        if event.status is SessionStatus.PENDING:
            raise SessionStateError("A session cannot transition back to pending.", field="status")

        if event.status is SessionStatus.COMPLETED:
            if event.completion_fraction is not None and abs(event.completion_fraction - 1.0) > EPSILON:
                raise ValidationError(
                    "Use the partial status for sessions that were not fully completed.",
                    field="completion_fraction",
                )
            session.understanding_rating = event.understanding_rating
            session.completed_at = now
        elif event.status is SessionStatus.PARTIAL:
            fraction = event.completion_fraction
            if fraction is None or not (0.0 <= fraction < 1.0):
                raise ValidationError(
                    "Partial sessions need a completion fraction in [0, 1).",
                    field="completion_fraction",
                )
            session.completion_fraction = fraction
            session.understanding_rating = event.understanding_rating
            session.completed_at = now
        elif event.understanding_rating is not None:
            raise ValidationError("Missed sessions cannot carry a rating.", field="understanding_rating")
        session.status = event.status

    # Repair entry point ---------------------------------------------------------------

    def repair(self, plan: Plan, catalog: TopicCatalog, now: datetime) -> RepairResult:
        """Process every outstanding missed, partial or weak signal on the plan.

        Raises ``ScheduleOverflowError`` when missed or partial content no
        longer fits before the exam; nothing is applied in that case.
        """
        return self._repair(plan.model_copy(deep=True), catalog, ensure_aware(now))

    def _repair(
        self,
        working: Plan,
        catalog: TopicCatalog,
        now: datetime,
        *,
        resolved: Optional[Set[str]] = None,
        force_changed: bool = False,
        strict: bool = True,
    ) -> RepairResult:
        today = local_today(now, working.timezone)
        missed_ids = self._mark_missed(working, now)

        redistributed: List[str] = []
        injected: List[str] = []
        overflowed: List[str] = []
        sources = sorted(
            (s for s in working.sessions if s.status in _TERMINAL_REPLAY and not s.redistributed),
            key=lambda s: (s.scheduled_for, s.session_id),
        )
        for source in sources:
            hours = self._unfinished_hours(source)
            if hours > EPSILON:
                durations = [session.duration_hours for session in working.sessions]
                placed, shortfall = self._inject(
                    working,
                    source.topic_id,
                    hours,
                    today,
                    kind=SessionKind.REDISTRIBUTED,
                    source_session_id=source.session_id,
                )
                if shortfall > EPSILON:
                    overflow = ScheduleOverflowError(
                        f"{shortfall:.2f}h of '{source.topic_id}' could not be rescheduled before "
                        f"{working.exam_date.isoformat()}.",
                        shortfall_hours=shortfall,
                        topic_id=source.topic_id,
                    )
                    if strict:
                        raise overflow
                    # Roll back the partial placement; the source stays queued for a later repair.
                    del working.sessions[len(durations):]
                    for session, duration in zip(working.sessions, durations):
                        session.duration_hours = duration
                    self._record_overflow(working, source, overflow)
                    overflowed.append(source.session_id)
                    continue
                injected.extend(session.session_id for session in placed)
            source.redistributed = True
            redistributed.append(source.session_id)

        updated_topics: Dict[str, Topic] = {}
        boosted = self._apply_boosts(working, catalog, today, updated_topics, injected)

        resolved_ids: List[str] = []
        for topic_id in sorted(resolved or ()):
            topic = updated_topics.get(topic_id) or catalog.get(topic_id)
            if topic is None or topic_id in boosted:
                continue
            updated_topics[topic_id] = topic.model_copy(update={"weak": False, "weak_priority": 0.0})
            resolved_ids.append(topic_id)

        new_catalog = revise_catalog(catalog, list(updated_topics.values())) if updated_topics else catalog
        changed = bool(force_changed or missed_ids or redistributed or injected or boosted or resolved_ids or overflowed)
        if changed:
            working.sort_sessions()
            check_plan(working, [topic.topic_id for topic in catalog.topics], since=today + timedelta(days=1))
            working.updated_at = now
            logger.info(
                "Repaired plan %s: %d missed, %d redistributed, %d injected, %d boosted, %d overflowed",
                working.plan_id,
                len(missed_ids),
                len(redistributed),
                len(injected),
                len(boosted),
                len(overflowed),
            )

        return RepairResult(
            plan=working,
            catalog=new_catalog,
            changed=changed,
            missed_session_ids=missed_ids,
            redistributed_session_ids=redistributed,
            injected_session_ids=injected,
            boosted_topic_ids=boosted,
            resolved_topic_ids=resolved_ids,
            overflow_session_ids=overflowed,
        )

    @staticmethod
    def _unfinished_hours(session: Session) -> float:
        if session.status is SessionStatus.PARTIAL:
            fraction = session.completion_fraction or 0.0
            return (1.0 - fraction) * session.duration_hours
        return session.duration_hours

    @staticmethod
    def _record_overflow(plan: Plan, source: Session, overflow: ScheduleOverflowError) -> None:
        logger.warning("Plan %s: %s", plan.plan_id, overflow.message)
        if any(w.code == "schedule_overflow" and w.detail == source.session_id for w in plan.warnings):
            return
        plan.warnings.append(
            PlanWarning(
                code="schedule_overflow",
                message=f"{overflow.message} Move the exam date or raise the daily hours to fit it.",
                detail=source.session_id,
            )
        )

    def _apply_boosts(
        self,
        plan: Plan,
        catalog: TopicCatalog,
        today: date,
        updated_topics: Dict[str, Topic],
        injected: List[str],
    ) -> List[str]:
        pending: Dict[str, List[Session]] = defaultdict(list)
        for session in plan.sessions:
            if (
                session.status is SessionStatus.COMPLETED
                and is_weak_rating(session.understanding_rating)
                and not session.boost_applied
            ):
                pending[session.topic_id].append(session)
        if not pending:
            return []

        topics = catalog.topic_map()
        days_left = days_until(plan.exam_date, today)
        queue: List[Tuple[Tuple[float, int, str], Topic, float, List[Session]]] = []
        for topic_id, sessions in pending.items():
            topic = topics.get(topic_id)
            if topic is None:
                logger.warning("Skipping boost for unknown topic %s on plan %s", topic_id, plan.plan_id)
                for session in sessions:
                    session.boost_applied = True
                continue
            average = average_rating(topic_ratings(plan.sessions, topic_id)) or float(WEAK_RATING_THRESHOLD - 1)
            score = priority_score(average, topic.effective_importance, days_left)
            queue.append((boost_order_key(topic, score), topic, score, sessions))

        boosted: List[str] = []
        for _, topic, score, sessions in sorted(queue, key=lambda entry: entry[0]):
            for session in sessions:
                session.boost_applied = True
            updated_topics[topic.topic_id] = topic.model_copy(update={"weak": True, "weak_priority": round(score, 6)})
            if self._has_pending_boost(plan, topic.topic_id):
                logger.debug("Topic %s already has pending boost sessions; skipping", topic.topic_id)
                continue
            hours = plan.constraints.weak_boost_factor * topic.estimated_hours
            if hours <= EPSILON:
                continue
            placed, shortfall = self._inject(
                plan,
                topic.topic_id,
                hours,
                today,
                kind=SessionKind.BOOST,
                source_session_id=sessions[-1].session_id,
            )
            injected.extend(session.session_id for session in placed)
            if placed:
                boosted.append(topic.topic_id)
            if shortfall > EPSILON:
                logger.warning(
                    "Boost for %s truncated by %.2fh on plan %s",
                    topic.topic_id,
                    shortfall,
                    plan.plan_id,
                )
                plan.warnings.append(
                    PlanWarning(
                        code="boost_truncated",
                        message=f"Only {hours - shortfall:.2f}h of the {hours:.2f}h boost for "
                        f"'{topic.name}' fit before the exam.",
                        detail=topic.topic_id,
                    )
                )
        return boosted

    @staticmethod
    def _has_pending_boost(plan: Plan, topic_id: str) -> bool:
        return any(
            session.kind is SessionKind.BOOST and session.is_pending and session.topic_id == topic_id
            for session in plan.sessions
        )

    def _inject(
        self,
        plan: Plan,
        topic_id: str,
        hours: float,
        today: date,
        *,
        kind: SessionKind,
        source_session_id: str,
    ) -> Tuple[List[Session], float]:
        """Greedy fill of ``hours`` into the free capacity from tomorrow to the exam eve.

        The first pass spreads blocks of at most ``max_session_hours`` and avoids
        leaving a tail shorter than the minimum session; the last pass takes
        whatever capacity is left so a tight plan only overflows when it is
        genuinely full. A piece shorter than the minimum session is folded into
        a pending session of the same topic on that day or a neighbouring one
        when that day has room. Returns the sessions that received hours and the
        unplaced shortfall.
        """
        constraints = plan.constraints
        daily = constraints.daily_hours
        min_session = constraints.min_session_hours
        used = defaultdict(float, plan.hours_by_date())
        first_day = max(today + timedelta(days=1), plan.start_date + timedelta(days=1))
        placed: List[Session] = []
        by_day: Dict[date, Session] = {}
        remaining = hours

        passes = (constraints.max_session_hours, daily)
        for index, block in enumerate(passes):
            final_pass = index == len(passes) - 1
            day = first_day
            while day < plan.exam_date and remaining > EPSILON:
                free = daily - used[day]
                chunk = min(remaining, free, block)
                if chunk <= EPSILON:
                    day += timedelta(days=1)
                    continue
                if not final_pass:
                    if chunk + EPSILON < min_session and chunk + EPSILON < remaining:
                        day += timedelta(days=1)
                        continue
                    tail = remaining - chunk
                    if EPSILON < tail < min_session - EPSILON:
                        chunk = remaining - min_session
                        if chunk + EPSILON < min_session:
                            day += timedelta(days=1)
                            continue
                target = by_day.get(day)
                if target is None and chunk + EPSILON < min_session:
                    target = self._merge_target(plan, topic_id, day, chunk, used, first_day)
                if target is None:
                    target = Session(
                        plan_id=plan.plan_id,
                        topic_id=topic_id,
                        scheduled_for=day,
                        duration_hours=0.0,
                        kind=kind,
                        source_session_id=source_session_id,
                    )
                    plan.sessions.append(target)
                target.duration_hours += chunk
                by_day[target.scheduled_for] = target
                if all(target is not session for session in placed):
                    placed.append(target)
                used[target.scheduled_for] += chunk
                remaining -= chunk
                day += timedelta(days=1)
            if remaining <= EPSILON:
                break
        return placed, max(remaining, 0.0)

    @staticmethod
    def _merge_target(
        plan: Plan,
        topic_id: str,
        day: date,
        hours: float,
        used: Dict[date, float],
        first_day: date,
    ) -> Optional[Session]:
        """Pending session of ``topic_id`` on ``day`` or a neighbour that can absorb ``hours``."""
        for candidate_day in (day, day - timedelta(days=1), day + timedelta(days=1)):
            if not first_day <= candidate_day < plan.exam_date:
                continue
            if used[candidate_day] + hours > plan.constraints.daily_hours + EPSILON:
                continue
            for session in plan.sessions:
                if session.is_pending and session.topic_id == topic_id and session.scheduled_for == candidate_day:
                    return session
        return None

    # Parameter change -----------------------------------------------------------------

    def reschedule(
        self,
        plan: Plan,
        catalog: TopicCatalog,
        *,
        now: datetime,
        exam_date: Optional[date] = None,
        daily_hours: Optional[float] = None,
    ) -> Plan:
        """Discard pending sessions and re-allocate the remaining content.

        Completed, missed and partial sessions stay as history; their hours are
        reserved on their dates so the new daily limit holds on every re-planned
        day. Days up to today are not re-checked against the new limit.
        """
        now = ensure_aware(now)
        working = plan.model_copy(deep=True)
        self._mark_missed(working, now)
        today = local_today(now, working.timezone)
        target_exam = exam_date or working.exam_date
        target_daily = float(daily_hours) if daily_hours is not None else working.daily_hours
        constraints = working.constraints.model_copy(update={"daily_hours": target_daily})
        allocator = StudyAllocator(constraints)
        allocator.validate_parameters(target_exam, target_daily, today)

        history = [session for session in working.sessions if not session.is_pending]
        done: Dict[str, float] = defaultdict(float)
        reserved: Dict[date, float] = defaultdict(float)
        for session in history:
            if session.status in _TERMINAL_REPLAY:
                session.redistributed = True
            if session.status is SessionStatus.COMPLETED:
                done[session.topic_id] += session.duration_hours
            elif session.status is SessionStatus.PARTIAL:
                done[session.topic_id] += (session.completion_fraction or 0.0) * session.duration_hours
            reserved[session.scheduled_for] += session.duration_hours

        remaining_topics = self._remaining_topics(catalog.topics, done)
        new_sessions: List[Session] = []
        revision_start = revision_start_for(target_exam, today, constraints.buffer_fraction)
        if remaining_topics:
            allocated = allocator.allocate(
                remaining_topics,
                target_exam,
                target_daily,
                today=today,
                owner=working.owner,
                plan_id=working.plan_id,
                catalog_id=working.catalog_id,
                tz_name=working.timezone,
                reserved_hours=reserved,
            )
            allocated = self._buffer_planner.apply_buffer(allocated)
            new_sessions = allocated.sessions
            revision_start = allocated.revision_start

        working.sessions = history + new_sessions
        working.sort_sessions()
        working.exam_date = target_exam
        working.constraints = constraints
        working.start_date = today
        working.revision_start = revision_start
        working.status = PlanStatus.ACTIVE
        # remaining content was re-allocated, so earlier timeout and overflow notices no longer apply
        working.warnings = [
            warning for warning in working.warnings if warning.code not in ("optimization_timeout", "schedule_overflow")
        ]
        working.updated_at = now
        check_plan(working, [topic.topic_id for topic in catalog.topics], since=today + timedelta(days=1))
        logger.info(
            "Rescheduled plan %s to %s at %.2fh/day: kept %d history sessions, %d new",
            working.plan_id,
            target_exam.isoformat(),
            target_daily,
            len(history),
            len(new_sessions),
        )
        return working

    @staticmethod
    def _remaining_topics(topics: Sequence[Topic], done: Dict[str, float]) -> List[Topic]:
        remaining: List[Topic] = []
        for topic in topics:
            hours = topic.estimated_hours - done.get(topic.topic_id, 0.0)
            if hours > EPSILON:
                remaining.append(topic.model_copy(update={"estimated_hours": hours}))
        return remaining


__all__ = ["RepairEngine", "RepairResult"]
