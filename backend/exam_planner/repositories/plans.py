"""Database-backed plan and catalog repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.models import CatalogTopicModel, PlanModel, PlanSessionModel, TopicCatalogModel
from ..models import (
    Constraints,
    Plan,
    PlanStatus,
    PlanWarning,
    Session as StudySession,
    SessionKind,
    SessionStatus,
    Topic,
    TopicCatalog,
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PlanRepository:
    """Session-first persistence helper; callers own the transaction."""

    # Plans -----------------------------------------------------------------

    def get_plan(self, session: Session, plan_id: str) -> Plan | None:
        model = session.get(PlanModel, plan_id)
        if model is None:
            return None
        return self._plan_to_domain(session, model)

    def upsert_plan(self, session: Session, plan: Plan) -> Plan:
        model = session.get(PlanModel, plan.plan_id)
        if model is None:
            model = PlanModel(id=plan.plan_id, generated_at=plan.created_at)
            session.add(model)

        model.owner = plan.owner
        model.catalog_id = plan.catalog_id
        model.status = plan.status.value
        model.exam_date = plan.exam_date
        model.start_date = plan.start_date
        model.revision_start = plan.revision_start
        model.timezone = plan.timezone
        model.constraints = plan.constraints.model_dump(mode="json")
        model.warnings = [warning.model_dump(mode="json") for warning in plan.warnings]
        model.last_updated = plan.updated_at
        session.flush()

        session.execute(delete(PlanSessionModel).where(PlanSessionModel.plan_id == plan.plan_id))
        for position, item in enumerate(plan.sessions):
            session.add(
                PlanSessionModel(
                    id=item.session_id,
                    plan_id=plan.plan_id,
                    position=position,
                    topic_id=item.topic_id,
                    scheduled_for=item.scheduled_for,
                    duration_hours=item.duration_hours,
                    status=item.status.value,
                    kind=item.kind.value,
                    completion_fraction=item.completion_fraction,
                    understanding_rating=item.understanding_rating,
                    source_session_id=item.source_session_id,
                    redistributed=item.redistributed,
                    boost_applied=item.boost_applied,
                    completed_at=item.completed_at,
                )
            )
        session.flush()
        return plan.model_copy(deep=True)

    def delete_plan(self, session: Session, plan_id: str) -> bool:
        model = session.get(PlanModel, plan_id)
        if model is None:
            return False
        session.delete(model)
        session.flush()
        return True

    # Catalogs --------------------------------------------------------------

    def get_catalog(self, session: Session, catalog_id: str) -> TopicCatalog | None:
        model = session.get(TopicCatalogModel, catalog_id)
        if model is None:
            return None
        stmt = (
            select(CatalogTopicModel)
            .where(CatalogTopicModel.catalog_id == catalog_id)
            .order_by(CatalogTopicModel.position.asc())
        )
        rows = session.execute(stmt).scalars().all()
        return TopicCatalog(
            catalog_id=model.id,
            owner=model.owner,
            revision=model.revision,
            created_at=_aware(model.generated_at),
            topics=[
                Topic(
                    topic_id=row.topic_id,
                    name=row.name,
                    complexity=row.complexity,
                    estimated_hours=row.estimated_hours,
                    importance=row.importance,
                    source_length=row.source_length,
                    weak=row.weak,
                    weak_priority=row.weak_priority,
                )
                for row in rows
            ],
        )

    def upsert_catalog(self, session: Session, catalog: TopicCatalog) -> TopicCatalog:
        model = session.get(TopicCatalogModel, catalog.catalog_id)
        if model is None:
            model = TopicCatalogModel(id=catalog.catalog_id, generated_at=catalog.created_at)
            session.add(model)
        model.owner = catalog.owner
        model.revision = catalog.revision
        session.flush()

        session.execute(delete(CatalogTopicModel).where(CatalogTopicModel.catalog_id == catalog.catalog_id))
        for position, topic in enumerate(catalog.topics):
            session.add(
                CatalogTopicModel(
                    catalog_id=catalog.catalog_id,
                    position=position,
                    topic_id=topic.topic_id,
                    name=topic.name,
                    complexity=topic.complexity,
                    estimated_hours=topic.estimated_hours,
                    importance=topic.importance,
                    source_length=topic.source_length,
                    weak=topic.weak,
                    weak_priority=topic.weak_priority,
                )
            )
        session.flush()
        return catalog.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _plan_to_domain(self, session: Session, model: PlanModel) -> Plan:
        stmt = (
            select(PlanSessionModel)
            .where(PlanSessionModel.plan_id == model.id)
            .order_by(PlanSessionModel.position.asc())
        )
        rows = session.execute(stmt).scalars().all()
        return Plan(
            plan_id=model.id,
            owner=model.owner,
            catalog_id=model.catalog_id,
            status=PlanStatus(model.status),
            exam_date=model.exam_date,
            start_date=model.start_date,
            revision_start=model.revision_start,
            timezone=model.timezone,
            constraints=Constraints.model_validate(model.constraints or {}),
            warnings=[PlanWarning.model_validate(payload) for payload in model.warnings or []],
            created_at=_aware(model.generated_at),
            updated_at=_aware(model.last_updated),
            sessions=[
                StudySession(
                    session_id=row.id,
                    plan_id=row.plan_id,
                    topic_id=row.topic_id,
                    scheduled_for=row.scheduled_for,
                    duration_hours=row.duration_hours,
                    status=SessionStatus(row.status),
                    kind=SessionKind(row.kind),
                    completion_fraction=row.completion_fraction,
                    understanding_rating=row.understanding_rating,
                    source_session_id=row.source_session_id,
                    redistributed=row.redistributed,
                    boost_applied=row.boost_applied,
                    completed_at=_aware(row.completed_at),
                )
                for row in rows
            ],
        )


plan_repository = PlanRepository()

__all__ = ["PlanRepository", "plan_repository"]
