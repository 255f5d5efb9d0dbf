"""Domain models shared by the allocator, buffer planner, repair engine and aggregator."""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import date, datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Settings


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return f"ses-{uuid.uuid4().hex[:12]}"


def new_plan_id() -> str:
    return f"plan-{uuid.uuid4().hex[:12]}"


def new_catalog_id() -> str:
    return f"cat-{uuid.uuid4().hex[:12]}"


class SessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    MISSED = "missed"
    PARTIAL = "partial"


class SessionKind(str, Enum):
    CONTENT = "content"
    REVISION = "revision"
    REDISTRIBUTED = "redistributed"
    BOOST = "boost"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    PROVISIONAL = "provisional"


class Topic(BaseModel):
    """Single catalog entry consumed by the scheduler."""

    topic_id: str = Field(..., min_length=1)
    name: str
    complexity: int = Field(ge=1, le=5)
    estimated_hours: float = Field(gt=0.0)
    importance: Optional[int] = Field(default=None, ge=1, le=5)
    source_length: Optional[int] = Field(default=None, ge=0)
    weak: bool = False
    weak_priority: float = Field(default=0.0, ge=0.0)

    @property
    def effective_importance(self) -> int:
        return self.importance if self.importance is not None else self.complexity


class TopicCatalog(BaseModel):
    """Ordered topic list; any topic change produces a new revision."""

    catalog_id: str = Field(default_factory=new_catalog_id)
    owner: str = ""
    revision: int = Field(default=1, ge=1)
    topics: List[Topic] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)

    def topic_map(self) -> Dict[str, Topic]:
        return {topic.topic_id: topic for topic in self.topics}

    def get(self, topic_id: str) -> Optional[Topic]:
        return next((topic for topic in self.topics if topic.topic_id == topic_id), None)


class Constraints(BaseModel):
    daily_hours: float = 2.0
    min_session_hours: float = Field(default=0.5, gt=0.0)
    max_session_hours: float = Field(default=2.0, gt=0.0)
    buffer_fraction: float = Field(default=0.20, ge=0.0, lt=1.0)
    weak_boost_factor: float = Field(default=0.5, ge=0.0)
    missed_grace_hours: float = Field(default=24.0, ge=0.0)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Constraints":
        return cls(
            min_session_hours=settings.min_session_hours,
            max_session_hours=settings.max_session_hours,
            buffer_fraction=settings.buffer_fraction,
            weak_boost_factor=settings.weak_boost_factor,
            missed_grace_hours=settings.missed_grace_hours,
        )


class Session(BaseModel):
    """One study block for a single topic on a single date."""

    session_id: str = Field(default_factory=new_session_id)
    plan_id: str
    topic_id: str
    scheduled_for: date
    duration_hours: float = Field(gt=0.0)
    status: SessionStatus = SessionStatus.PENDING
    kind: SessionKind = SessionKind.CONTENT
    completion_fraction: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    understanding_rating: Optional[int] = Field(default=None, ge=1, le=5)
    source_session_id: Optional[str] = None
    redistributed: bool = False
    boost_applied: bool = False
    completed_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status is SessionStatus.PENDING


class PlanWarning(BaseModel):
    """Non-fatal condition surfaced alongside a plan."""

    code: Literal["boost_truncated", "optimization_timeout", "buffer_session_dropped", "schedule_overflow"]
    message: str
    detail: Optional[str] = None
    generated_at: datetime = Field(default_factory=_now)


class Plan(BaseModel):
    """Full schedule for one exam: constraints plus its ordered sessions."""

    plan_id: str = Field(default_factory=new_plan_id)
    owner: str = ""
    catalog_id: Optional[str] = None
    status: PlanStatus = PlanStatus.ACTIVE
    exam_date: date
    start_date: date
    timezone: str = "UTC"
    constraints: Constraints = Field(default_factory=Constraints)
    sessions: List[Session] = Field(default_factory=list)
    revision_start: date
    warnings: List[PlanWarning] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def daily_hours(self) -> float:
        return self.constraints.daily_hours

    def hours_by_date(self) -> Dict[date, float]:
        totals: Dict[date, float] = defaultdict(float)
        for session in self.sessions:
            totals[session.scheduled_for] += session.duration_hours
        return dict(totals)

    def find_session(self, session_id: str) -> Optional[Session]:
        return next((session for session in self.sessions if session.session_id == session_id), None)

    def sessions_for_topic(self, topic_id: str) -> List[Session]:
        return [session for session in self.sessions if session.topic_id == topic_id]

    def topic_ids(self) -> Set[str]:
        return {session.topic_id for session in self.sessions}

    def sort_sessions(self) -> None:
        self.sessions.sort(key=lambda session: session.scheduled_for)


class CompletionEvent(BaseModel):
    """Status change reported by the progress/UI layer for one session."""

    session_id: str = Field(..., min_length=1)
    status: SessionStatus
    completion_fraction: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    understanding_rating: Optional[int] = Field(default=None, ge=1, le=5)


class WeakTopic(BaseModel):
    topic_id: str
    name: str
    average_rating: float
    lowest_rating: int
    importance: int
    priority_score: float
    resolved: bool = False


class TopicProgress(BaseModel):
    topic_id: str
    name: str
    scheduled_hours: float = 0.0
    completed_hours: float = 0.0
    remaining_hours: float = 0.0
    session_count: int = 0
    completed_sessions: int = 0
    average_rating: Optional[float] = None


class ProgressReport(BaseModel):
    """Read-only summary derived from a plan's session state."""

    plan_id: str
    generated_at: datetime = Field(default_factory=_now)
    days_until_exam: int = 0
    total_sessions: int = 0
    completed_sessions: int = 0
    missed_sessions: int = 0
    partial_sessions: int = 0
    pending_sessions: int = 0
    scheduled_hours: float = 0.0
    completed_hours: float = 0.0
    completion_percentage: float = 0.0
    adherence_score: float = 100.0
    readiness_indicator: float = 0.0
    weak_topics: List[WeakTopic] = Field(default_factory=list)
    topics: List[TopicProgress] = Field(default_factory=list)


__all__ = [
    "CompletionEvent",
    "Constraints",
    "Plan",
    "PlanStatus",
    "PlanWarning",
    "ProgressReport",
    "Session",
    "SessionKind",
    "SessionStatus",
    "Topic",
    "TopicCatalog",
    "TopicProgress",
    "WeakTopic",
    "new_catalog_id",
    "new_plan_id",
    "new_session_id",
]
