"""Failure taxonomy raised by the planning core.

Every error carries a stable ``code`` and renders to a JSON-friendly payload via
``to_payload`` so the HTTP layer and notification consumers can surface it as is.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .models import Plan


class PlannerError(Exception):
    """Base class for every planner failure."""

    code = "planner_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> Dict[str, Any]:
        return {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        payload.update(self.details())
        return payload


class ValidationError(PlannerError, ValueError):
    """Rejected input (bad exam date, out-of-range hours, malformed catalog)."""

    code = "validation_error"

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field

    def details(self) -> Dict[str, Any]:
        return {"field": self.field} if self.field else {}


class SessionStateError(ValidationError):
    """A completion event asked for a transition the session state machine forbids."""

    code = "invalid_session_transition"


class InsufficientTimeError(PlannerError):
    """Content cannot fit before the exam date with the requested daily budget."""

    code = "insufficient_time"

    def __init__(
        self,
        message: str,
        *,
        required_hours: float,
        available_hours: float,
        minimum_daily_hours: Optional[float] = None,
        earliest_exam_date: Optional[date] = None,
    ) -> None:
        super().__init__(message)
        self.required_hours = required_hours
        self.available_hours = available_hours
        self.minimum_daily_hours = minimum_daily_hours
        self.earliest_exam_date = earliest_exam_date

    def details(self) -> Dict[str, Any]:
        return {
            "required_hours": round(self.required_hours, 4),
            "available_hours": round(self.available_hours, 4),
            "minimum_daily_hours": self.minimum_daily_hours,
            "earliest_exam_date": self.earliest_exam_date.isoformat() if self.earliest_exam_date else None,
        }


class ScheduleOverflowError(PlannerError):
    """Redistributed content found no remaining capacity before the exam."""

    code = "schedule_overflow"

    def __init__(self, message: str, *, shortfall_hours: float, topic_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.shortfall_hours = shortfall_hours
        self.topic_id = topic_id

    def details(self) -> Dict[str, Any]:
        return {"shortfall_hours": round(self.shortfall_hours, 4), "topic_id": self.topic_id}


class OptimizationTimeout(PlannerError):
    """A caller-imposed deadline expired before the computation finished.

    ``plan`` holds the best invariant-respecting plan known at expiry (flagged
    provisional), or ``None`` when nothing valid existed yet.
    """

    code = "optimization_timeout"

    def __init__(self, message: str, *, elapsed_seconds: float, plan: Optional["Plan"] = None) -> None:
        super().__init__(message)
        self.elapsed_seconds = elapsed_seconds
        self.plan = plan

    def details(self) -> Dict[str, Any]:
        return {
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "plan_id": self.plan.plan_id if self.plan is not None else None,
        }


class PlanNotFoundError(PlannerError, LookupError):
    code = "plan_not_found"

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Plan '{plan_id}' was not found.")
        self.plan_id = plan_id

    def details(self) -> Dict[str, Any]:
        return {"plan_id": self.plan_id}


class SessionNotFoundError(PlannerError, LookupError):
    code = "session_not_found"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' was not found.")
        self.session_id = session_id

    def details(self) -> Dict[str, Any]:
        return {"session_id": self.session_id}


__all__ = [
    "InsufficientTimeError",
    "OptimizationTimeout",
    "PlanNotFoundError",
    "PlannerError",
    "ScheduleOverflowError",
    "SessionNotFoundError",
    "SessionStateError",
    "ValidationError",
]
