"""SQL persistence of plans and catalogs."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from exam_planner.allocator import allocate
from exam_planner.catalog import build_catalog
from exam_planner.config import Settings
from exam_planner.db.base import Base
from exam_planner.db.session import build_engine, dispose_engine
from exam_planner.errors import PlanNotFoundError
from exam_planner.models import PlanWarning, SessionStatus, Topic
from exam_planner.plan_store import PlanStore
from exam_planner.repositories import PlanRepository

TODAY = date(2026, 3, 10)


def _catalog():
    return build_catalog(
        [
            Topic(topic_id="alg", name="Algebra", complexity=2, estimated_hours=2.0),
            Topic(topic_id="bio", name="Biology", complexity=4, estimated_hours=3.0, importance=5),
        ],
        owner="sam",
    )


def _plan(catalog):
    return allocate(
        catalog.topics,
        TODAY + timedelta(days=9),
        2.0,
        today=TODAY,
        owner="sam",
        catalog_id=catalog.catalog_id,
        tz_name="Europe/Berlin",
    )


@pytest.fixture
def db_session() -> Iterator[Session]:
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


def test_plan_round_trip(db_session: Session) -> None:
    repository = PlanRepository()
    catalog = _catalog()
    plan = _plan(catalog)
    plan.warnings.append(PlanWarning(code="boost_truncated", message="Only part fit.", detail="bio"))

    repository.upsert_plan(db_session, plan)
    db_session.commit()
    loaded = repository.get_plan(db_session, plan.plan_id)

    assert loaded is not None
    assert loaded.exam_date == plan.exam_date
    assert loaded.revision_start == plan.revision_start
    assert loaded.timezone == "Europe/Berlin"
    assert loaded.constraints == plan.constraints
    assert loaded.warnings == plan.warnings
    assert [session.model_dump() for session in loaded.sessions] == [
        session.model_dump() for session in plan.sessions
    ]


def test_upsert_replaces_sessions(db_session: Session) -> None:
    repository = PlanRepository()
    plan = _plan(_catalog())
    repository.upsert_plan(db_session, plan)
    db_session.commit()

    first = plan.sessions[0]
    first.status = SessionStatus.COMPLETED
    first.understanding_rating = 4
    first.completed_at = datetime(2026, 3, 11, 18, 30, tzinfo=timezone.utc)
    dropped = plan.sessions.pop()
    repository.upsert_plan(db_session, plan)
    db_session.commit()

    loaded = repository.get_plan(db_session, plan.plan_id)
    assert len(loaded.sessions) == len(plan.sessions)
    assert loaded.find_session(dropped.session_id) is None
    stored_first = loaded.find_session(first.session_id)
    assert stored_first.status is SessionStatus.COMPLETED
    assert stored_first.completed_at == first.completed_at


def test_catalog_round_trip_and_delete(db_session: Session) -> None:
    repository = PlanRepository()
    catalog = _catalog()
    repository.upsert_catalog(db_session, catalog)
    db_session.commit()

    revised = catalog.model_copy(update={"revision": 2}, deep=True)
    revised.topics[0].weak = True
    repository.upsert_catalog(db_session, revised)
    db_session.commit()

    loaded = repository.get_catalog(db_session, catalog.catalog_id)
    assert loaded.revision == 2
    assert loaded.topics == revised.topics

    plan = _plan(catalog)
    repository.upsert_plan(db_session, plan)
    db_session.commit()
    assert repository.delete_plan(db_session, plan.plan_id) is True
    db_session.commit()
    assert repository.get_plan(db_session, plan.plan_id) is None
    assert repository.delete_plan(db_session, plan.plan_id) is False


def test_database_store_round_trip() -> None:
    try:
        store = PlanStore("database")
        catalog = _catalog()
        plan = _plan(catalog)
        store.save_catalog(catalog)
        store.save(plan)

        fresh = PlanStore("database")
        loaded = fresh.load(plan.plan_id)
        assert loaded.plan_id == plan.plan_id
        assert len(loaded.sessions) == len(plan.sessions)
        assert fresh.load_catalog(catalog.catalog_id).topics == catalog.topics

        assert fresh.delete(plan.plan_id) is True
        with pytest.raises(PlanNotFoundError):
            fresh.load(plan.plan_id)
    finally:
        dispose_engine()


def test_memory_store_hands_out_copies() -> None:
    store = PlanStore("memory")
    plan = _plan(_catalog())
    store.save(plan)

    loaded = store.load(plan.plan_id)
    loaded.sessions.clear()

    assert len(store.load(plan.plan_id).sessions) == len(plan.sessions)


def test_sqlite_engine_enforces_foreign_keys() -> None:
    engine = build_engine(Settings(EXAM_PLANNER_DATABASE_URL="sqlite://"))
    try:
        with engine.connect() as connection:
            assert connection.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
    finally:
        engine.dispose()


def test_deleted_plan_is_not_served_from_cache() -> None:
    store = PlanStore("memory")
    plan = _plan(_catalog())
    store.save(plan)
    store.load(plan.plan_id)

    assert store.delete(plan.plan_id) is True
    with pytest.raises(PlanNotFoundError):
        store.load(plan.plan_id)
