"""Calendar arithmetic for study plans."""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import Plan

logger = logging.getLogger(__name__)

EPSILON = 1e-6
MIN_DAILY_HOURS = 0.5
MAX_DAILY_HOURS = 16.0


def normalise_timezone(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None
    try:
        zone = ZoneInfo(trimmed)
    except ZoneInfoNotFoundError:
        logger.warning("Ignoring unsupported timezone value: %s", trimmed)
        return None
    except Exception:  # noqa: BLE001
        logger.warning("Failed to parse timezone value: %s", trimmed)
        return None
    return zone.key


def ensure_aware(now: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def local_today(now: datetime, tz_name: str = "UTC") -> date:
    return ensure_aware(now).astimezone(ZoneInfo(tz_name)).date()


def day_start(day: date, tz_name: str = "UTC") -> datetime:
    return datetime.combine(day, time.min, tzinfo=ZoneInfo(tz_name))


def days_until(exam_date: date, today: date) -> int:
    return (exam_date - today).days


def available_days(exam_date: date, today: date) -> int:
    """Whole study days strictly between today and the exam, never negative."""
    return max(0, days_until(exam_date, today) - 1)


def available_hours(exam_date: date, daily_hours: float, today: date) -> float:
    return available_days(exam_date, today) * daily_hours


def study_days(exam_date: date, today: date) -> List[date]:
    return [today + timedelta(days=offset) for offset in range(1, available_days(exam_date, today) + 1)]


def buffer_day_count(total_days: int, buffer_fraction: float) -> int:
    """Trailing revision days; at least one content day is always kept."""
    if total_days <= 1 or buffer_fraction <= 0:
        return 0
    # round() guards against 0.2 * 15 == 3.0000000000000004
    wanted = math.ceil(round(buffer_fraction * total_days, 9))
    return min(wanted, total_days - 1)


def revision_start_for(exam_date: date, today: date, buffer_fraction: float) -> date:
    days = study_days(exam_date, today)
    buffer_days = buffer_day_count(len(days), buffer_fraction)
    if buffer_days == 0:
        return exam_date
    return days[len(days) - buffer_days]


def slice_plan(plan: Plan, start: Optional[date] = None, end: Optional[date] = None) -> Plan:
    """Return a copy of the plan holding only sessions dated within [start, end]."""
    clone = plan.model_copy(deep=True)
    if start is None and end is None:
        return clone
    clone.sessions = [
        session
        for session in clone.sessions
        if (start is None or session.scheduled_for >= start) and (end is None or session.scheduled_for <= end)
    ]
    return clone


__all__ = [
    "EPSILON",
    "MAX_DAILY_HOURS",
    "MIN_DAILY_HOURS",
    "available_days",
    "available_hours",
    "buffer_day_count",
    "day_start",
    "days_until",
    "ensure_aware",
    "local_today",
    "normalise_timezone",
    "revision_start_for",
    "slice_plan",
    "study_days",
]
