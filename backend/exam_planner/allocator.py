"""Initial allocation of topics onto study days."""

from __future__ import annotations

import logging
import math
from collections import defaultdict, deque
from datetime import date, timedelta
from typing import Deque, Dict, List, Mapping, Optional, Sequence

from .errors import InsufficientTimeError, ValidationError
from .invariants import check_plan
from .models import Constraints, Plan, Session, Topic, new_plan_id
from .timeline import (
    EPSILON,
    MAX_DAILY_HOURS,
    MIN_DAILY_HOURS,
    buffer_day_count,
    study_days,
)

logger = logging.getLogger(__name__)


def _ceil_hundredth(value: float) -> float:
    return math.ceil(round(value * 100, 6)) / 100


class StudyAllocator:
    """Derives a day-by-day session list from a topic catalog and a daily budget.

    Each day is split into equal slots no shorter than the minimum session, topic
    shares are whole slot counts proportional to complexity, and slots are handed
    out by a round-robin walk over the topics so consecutive days interleave
    subjects. The trailing revision buffer is filled with review passes over the
    topics already placed; :class:`~exam_planner.buffer_planner.BufferPlanner`
    trims those afterwards.

    A visit hands a topic at most ``max_session_hours`` before the walk moves on,
    rather than filling the day with one topic until its share runs out. When a
    day holds no more than one chunk (2h/day at the default 2h chunk) the two
    readings place the same sessions; on longer days this one interleaves
    topics within the day instead of giving a day to a single topic.
    """

    def __init__(self, constraints: Optional[Constraints] = None) -> None:
        self._constraints = constraints or Constraints()

    @property
    def constraints(self) -> Constraints:
        return self._constraints

    def allocate(
        self,
        topics: Sequence[Topic],
        exam_date: date,
        daily_hours: float,
        *,
        today: date,
        owner: str = "",
        plan_id: Optional[str] = None,
        catalog_id: Optional[str] = None,
        tz_name: str = "UTC",
        reserved_hours: Optional[Mapping[date, float]] = None,
    ) -> Plan:
        topic_list = list(topics)
        self._validate(topic_list, exam_date, daily_hours, today)
        daily = float(daily_hours)
        constraints = self._constraints.model_copy(update={"daily_hours": daily})
        reserved = dict(reserved_hours or {})
        days = study_days(exam_date, today)

        required_hours = sum(topic.estimated_hours for topic in topic_list)
        net_hours = sum(max(daily - reserved.get(day, 0.0), 0.0) for day in days)
        if net_hours + EPSILON < required_hours:
            reserved_total = sum(reserved.get(day, 0.0) for day in days)
            raise self._insufficient_time(required_hours, net_hours, len(days), daily, today, reserved_total)

        slots_per_day = max(1, int(math.floor(daily / constraints.min_session_hours + EPSILON)))
        slot_hours = daily / slots_per_day
        chunk_slots = max(1, int(math.floor(constraints.max_session_hours / slot_hours + EPSILON)))

        buffer_days = buffer_day_count(len(days), constraints.buffer_fraction)
        content_days = days[: len(days) - buffer_days]
        review_days = days[len(days) - buffer_days :]
        capacity = {
            day: self._free_slots(daily, reserved.get(day, 0.0), slot_hours, slots_per_day) for day in days
        }

        content_slots = sum(capacity[day] for day in content_days)
        if content_slots < len(topic_list):
            earliest = self._earliest_covering_exam(len(topic_list), slots_per_day, constraints.buffer_fraction, today)
            raise InsufficientTimeError(
                f"The content window holds {content_slots} sessions but {len(topic_list)} topics need one each.",
                required_hours=len(topic_list) * slot_hours,
                available_hours=content_slots * slot_hours,
                earliest_exam_date=earliest,
            )

        plan = Plan(
            plan_id=plan_id or new_plan_id(),
            owner=owner,
            catalog_id=catalog_id,
            exam_date=exam_date,
            start_date=today,
            timezone=tz_name,
            constraints=constraints,
            revision_start=review_days[0] if review_days else exam_date,
        )
        shares = self._slot_shares(topic_list, content_slots)
        sessions = self._round_robin_fill(plan.plan_id, topic_list, shares, content_days, capacity, chunk_slots, slot_hours)
        sessions.extend(self._fill_review_days(plan.plan_id, topic_list, review_days, capacity, chunk_slots, slot_hours))
        plan.sessions = sessions
        plan.sort_sessions()

        check_plan(plan, [topic.topic_id for topic in topic_list])
        logger.info(
            "Allocated %d sessions for %d topics across %d days (%d revision days) for plan %s",
            len(plan.sessions),
            len(topic_list),
            len(days),
            len(review_days),
            plan.plan_id,
        )
        return plan

    def _validate(self, topics: Sequence[Topic], exam_date: date, daily_hours: float, today: date) -> None:
        if not topics:
            raise ValidationError("At least one topic is required to build a plan.", field="topics")
        ids = [topic.topic_id for topic in topics]
        if len(set(ids)) != len(ids):
            raise ValidationError("Topic ids must be unique.", field="topics")
        self.validate_parameters(exam_date, daily_hours, today)

    def validate_parameters(self, exam_date: date, daily_hours: float, today: date) -> None:
        """Reject an exam date or daily budget before anything is computed."""
        if exam_date <= today:
            raise ValidationError(
                f"Exam date {exam_date.isoformat()} must be after {today.isoformat()}.",
                field="exam_date",
            )
        try:
            daily = float(daily_hours)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Daily hours must be a number.", field="daily_hours") from exc
        if not (MIN_DAILY_HOURS <= daily <= MAX_DAILY_HOURS):
            raise ValidationError(
                f"Daily hours must be between {MIN_DAILY_HOURS} and {MAX_DAILY_HOURS}, got {daily_hours}.",
                field="daily_hours",
            )
        if daily + EPSILON < self._constraints.min_session_hours:
            raise ValidationError(
                f"Daily hours cannot be shorter than the {self._constraints.min_session_hours}h minimum session.",
                field="daily_hours",
            )

    @staticmethod
    def _insufficient_time(
        required: float,
        available: float,
        day_count: int,
        daily: float,
        today: date,
        reserved_total: float,
    ) -> InsufficientTimeError:
        minimum_daily = _ceil_hundredth((required + reserved_total) / day_count) if day_count else None
        earliest = today + timedelta(days=math.ceil(round(required / daily, 9)) + 1)
        return InsufficientTimeError(
            f"{required:.2f}h of content does not fit into {available:.2f}h before the exam.",
            required_hours=required,
            available_hours=available,
            minimum_daily_hours=minimum_daily,
            earliest_exam_date=earliest,
        )

    @staticmethod
    def _earliest_covering_exam(topic_count: int, slots_per_day: int, buffer_fraction: float, today: date) -> date:
        total_days = 1
        while True:
            content_days = total_days - buffer_day_count(total_days, buffer_fraction)
            if content_days * slots_per_day >= topic_count:
                return today + timedelta(days=total_days + 1)
            total_days += 1

    @staticmethod
    def _free_slots(daily: float, reserved: float, slot_hours: float, slots_per_day: int) -> int:
        free = daily - reserved
        if free <= EPSILON:
            return 0
        return min(int(math.floor(free / slot_hours + EPSILON)), slots_per_day)

    @staticmethod
    def _slot_shares(topics: Sequence[Topic], content_slots: int) -> Dict[str, int]:
        """Whole-slot shares: one slot each, the rest proportional to complexity.

        Remainder slots go to entire complexity groups in order of their fractional
        part, stopping at the first group that no longer fits, so equal complexity
        always means equal time and more complex topics never get less.
        """
        shares = {topic.topic_id: 1 for topic in topics}
        extra = content_slots - len(topics)
        if extra <= 0:
            return shares

        groups: Dict[int, List[Topic]] = defaultdict(list)
        for topic in topics:
            groups[topic.complexity].append(topic)
        total_complexity = sum(topic.complexity for topic in topics)

        fractions: Dict[int, float] = {}
        assigned = 0
        for complexity, members in groups.items():
            quota = extra * complexity / total_complexity
            whole = int(math.floor(quota + EPSILON))
            fractions[complexity] = max(quota - whole, 0.0)
            for topic in members:
                shares[topic.topic_id] += whole
            assigned += whole * len(members)

        leftover = max(extra - assigned, 0)
        for complexity in sorted(groups, key=lambda key: (-fractions[key], -key)):
            members = groups[complexity]
            if fractions[complexity] <= EPSILON or len(members) > leftover:
                break
            for topic in members:
                shares[topic.topic_id] += 1
            leftover -= len(members)
        return shares

    @staticmethod
    def _place(
        sessions: List[Session],
        last: Optional[Session],
        plan_id: str,
        topic_id: str,
        day: date,
        hours: float,
    ) -> Session:
        if last is not None and last.topic_id == topic_id and last.scheduled_for == day:
            last.duration_hours += hours
            return last
        session = Session(plan_id=plan_id, topic_id=topic_id, scheduled_for=day, duration_hours=hours)
        sessions.append(session)
        return session

    def _round_robin_fill(
        self,
        plan_id: str,
        topics: Sequence[Topic],
        shares: Dict[str, int],
        days: Sequence[date],
        capacity: Dict[date, int],
        chunk_slots: int,
        slot_hours: float,
    ) -> List[Session]:
        remaining = dict(shares)
        queue: Deque[str] = deque(topic.topic_id for topic in topics if remaining[topic.topic_id] > 0)
        sessions: List[Session] = []
        for day in days:
            free = capacity[day]
            last: Optional[Session] = None
            while free > 0 and queue:
                topic_id = queue.popleft()
                take = min(remaining[topic_id], chunk_slots, free)
                last = self._place(sessions, last, plan_id, topic_id, day, take * slot_hours)
                remaining[topic_id] -= take
                free -= take
                if remaining[topic_id] > 0:
                    queue.append(topic_id)
            capacity[day] = free
            if not queue:
                break
        return sessions

    def _fill_review_days(
        self,
        plan_id: str,
        topics: Sequence[Topic],
        days: Sequence[date],
        capacity: Dict[date, int],
        chunk_slots: int,
        slot_hours: float,
    ) -> List[Session]:
        if not days:
            return []
        rotation: Deque[Topic] = deque(sorted(topics, key=lambda topic: -topic.complexity))
        sessions: List[Session] = []
        for day in days:
            free = capacity[day]
            last: Optional[Session] = None
            while free > 0:
                topic = rotation[0]
                rotation.rotate(-1)
                take = min(chunk_slots, free)
                last = self._place(sessions, last, plan_id, topic.topic_id, day, take * slot_hours)
                free -= take
            capacity[day] = free
        return sessions


def allocate(
    topics: Sequence[Topic],
    exam_date: date,
    daily_hours: float,
    *,
    today: Optional[date] = None,
    constraints: Optional[Constraints] = None,
    **kwargs,
) -> Plan:
    """Allocate ``topics`` up to ``exam_date`` with the default allocator."""
    return StudyAllocator(constraints).allocate(
        topics,
        exam_date,
        daily_hours,
        today=today or date.today(),
        **kwargs,
    )


__all__ = ["StudyAllocator", "allocate"]
