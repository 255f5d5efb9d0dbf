"""ORM models backing plan and catalog persistence."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class TopicCatalogModel(TimestampMixin, Base):
    __tablename__ = "topic_catalogs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    revision: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    topics: Mapped[list["CatalogTopicModel"]] = relationship(
        back_populates="catalog",
        cascade="all, delete-orphan",
        order_by="CatalogTopicModel.position",
    )


class CatalogTopicModel(Base):
    __tablename__ = "catalog_topics"
    __table_args__ = (UniqueConstraint("catalog_id", "topic_id", name="uq_catalog_topic"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    catalog_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("topic_catalogs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    topic_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    complexity: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_hours: Mapped[float] = mapped_column(Float, nullable=False)
    importance: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    source_length: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    weak: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    weak_priority: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    catalog: Mapped[TopicCatalogModel] = relationship(back_populates="topics")


class PlanModel(TimestampMixin, Base):
    __tablename__ = "plans"
    __table_args__ = (Index("ix_plans_owner", "owner"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    catalog_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="active", nullable=False)
    exam_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    revision_start: Mapped[date] = mapped_column(Date, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    constraints: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    warnings: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    sessions: Mapped[list["PlanSessionModel"]] = relationship(
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PlanSessionModel.position",
    )


class PlanSessionModel(Base):
    __tablename__ = "plan_sessions"
    __table_args__ = (Index("ix_plan_sessions_plan_date", "plan_id", "scheduled_for"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    plan_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("plans.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    topic_id: Mapped[str] = mapped_column(String(128), nullable=False)
    scheduled_for: Mapped[date] = mapped_column(Date, nullable=False)
    duration_hours: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False)
    kind: Mapped[str] = mapped_column(String(32), default="content", nullable=False)
    completion_fraction: Mapped[float | None] = mapped_column(Float, nullable=True)
    understanding_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source_session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    redistributed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    boost_applied: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    plan: Mapped[PlanModel] = relationship(back_populates="sessions")


__all__ = [
    "CatalogTopicModel",
    "PlanModel",
    "PlanSessionModel",
    "TopicCatalogModel",
]
