"""Post-condition checks every plan must pass before it leaves the core."""

from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

from .errors import InsufficientTimeError, ScheduleOverflowError
from .models import Plan
from .timeline import EPSILON


def check_daily_limit(plan: Plan, *, since: Optional[date] = None) -> None:
    """Check the daily limit on every study day from ``since`` up to the exam.

    Days before ``since`` are history recorded under whatever limit was in
    force at the time; a later parameter change does not re-judge them.
    """
    limit = plan.daily_hours
    for day, total in sorted(plan.hours_by_date().items()):
        if day >= plan.exam_date or (since is not None and day < since):
            continue
        if total > limit + EPSILON:
            raise ScheduleOverflowError(
                f"{total:.2f}h scheduled on {day.isoformat()} exceeds the {limit:.2f}h daily limit.",
                shortfall_hours=total - limit,
            )


def check_coverage(plan: Plan, topic_ids: Iterable[str]) -> None:
    missing = sorted(set(topic_ids) - plan.topic_ids())
    if missing:
        raise InsufficientTimeError(
            f"No session could be scheduled for: {', '.join(missing)}.",
            required_hours=len(missing) * plan.constraints.min_session_hours,
            available_hours=0.0,
        )


def check_plan(plan: Plan, topic_ids: Iterable[str], *, since: Optional[date] = None) -> None:
    check_daily_limit(plan, since=since)
    check_coverage(plan, topic_ids)


__all__ = ["check_coverage", "check_daily_limit", "check_plan"]
