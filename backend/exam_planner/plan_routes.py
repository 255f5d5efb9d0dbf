"""Plan-centric REST endpoints."""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from .catalog import TopicInput
from .errors import (
    InsufficientTimeError,
    OptimizationTimeout,
    PlannerError,
    PlanNotFoundError,
    ScheduleOverflowError,
    SessionNotFoundError,
    ValidationError,
)
from .models import CompletionEvent, Plan, ProgressReport, TopicCatalog
from .repair_engine import RepairResult
from .service import PlanService

router = APIRouter(prefix="/api/plans", tags=["plans"])
logger = logging.getLogger(__name__)

_UNPROCESSABLE = 422

_STATUS_BY_ERROR = (
    (PlanNotFoundError, status.HTTP_404_NOT_FOUND),
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, _UNPROCESSABLE),
    (InsufficientTimeError, status.HTTP_409_CONFLICT),
    (ScheduleOverflowError, status.HTTP_409_CONFLICT),
    (OptimizationTimeout, status.HTTP_503_SERVICE_UNAVAILABLE),
)


class CreatePlanRequest(BaseModel):
    owner: str = Field(default="", max_length=128)
    exam_date: date
    daily_hours: float
    timezone: Optional[str] = None
    topics: List[TopicInput] = Field(..., min_length=1)
    deadline_seconds: Optional[float] = Field(default=None, gt=0.0)


class ParameterUpdateRequest(BaseModel):
    exam_date: Optional[date] = None
    daily_hours: Optional[float] = None
    topic_complexity: Dict[str, int] = Field(default_factory=dict)
    deadline_seconds: Optional[float] = Field(default=None, gt=0.0)


_service: Optional[PlanService] = None


def get_plan_service() -> PlanService:
    global _service
    if _service is None:
        _service = PlanService()
    return _service


def _raise_http(exc: PlannerError) -> NoReturn:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    if status_code >= 500:
        logger.warning("Planner request failed: %s", exc.message)
    raise HTTPException(status_code=status_code, detail=exc.to_payload()) from exc


@router.post("", response_model=Plan, status_code=status.HTTP_201_CREATED)
def create_plan(payload: CreatePlanRequest, service: PlanService = Depends(get_plan_service)) -> Plan:
    try:
        return service.create_plan(
            payload.owner,
            payload.topics,
            payload.exam_date,
            payload.daily_hours,
            timezone=payload.timezone,
            deadline_seconds=payload.deadline_seconds,
        )
    except PlannerError as exc:
        _raise_http(exc)


@router.get("/{plan_id}", response_model=Plan)
def get_plan(
    plan_id: str,
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    service: PlanService = Depends(get_plan_service),
) -> Plan:
    if start is not None and end is not None and end < start:
        raise HTTPException(
            status_code=_UNPROCESSABLE,
            detail={"code": "validation_error", "message": "end must not be before start.", "field": "end"},
        )
    try:
        return service.get_plan(plan_id, start=start, end=end)
    except PlannerError as exc:
        _raise_http(exc)


@router.get("/{plan_id}/catalog", response_model=TopicCatalog)
def get_catalog(plan_id: str, service: PlanService = Depends(get_plan_service)) -> TopicCatalog:
    try:
        return service.get_catalog(plan_id)
    except PlannerError as exc:
        _raise_http(exc)


@router.post("/{plan_id}/events", response_model=RepairResult)
def record_event(
    plan_id: str,
    event: CompletionEvent,
    deadline_seconds: Optional[float] = Query(default=None, gt=0.0),
    service: PlanService = Depends(get_plan_service),
) -> RepairResult:
    try:
        return service.record_event(plan_id, event, deadline_seconds=deadline_seconds)
    except PlannerError as exc:
        _raise_http(exc)


@router.post("/{plan_id}/repair", response_model=RepairResult)
def run_repair(
    plan_id: str,
    deadline_seconds: Optional[float] = Query(default=None, gt=0.0),
    service: PlanService = Depends(get_plan_service),
) -> RepairResult:
    try:
        return service.run_repair(plan_id, deadline_seconds=deadline_seconds)
    except PlannerError as exc:
        _raise_http(exc)


@router.put("/{plan_id}/parameters", response_model=Plan)
def update_parameters(
    plan_id: str,
    payload: ParameterUpdateRequest,
    service: PlanService = Depends(get_plan_service),
) -> Plan:
    try:
        return service.update_parameters(
            plan_id,
            exam_date=payload.exam_date,
            daily_hours=payload.daily_hours,
            topic_complexity=payload.topic_complexity,
            deadline_seconds=payload.deadline_seconds,
        )
    except PlannerError as exc:
        _raise_http(exc)


@router.get("/{plan_id}/progress", response_model=ProgressReport)
def get_progress(plan_id: str, service: PlanService = Depends(get_plan_service)) -> ProgressReport:
    try:
        return service.progress(plan_id)
    except PlannerError as exc:
        _raise_http(exc)


__all__ = ["CreatePlanRequest", "ParameterUpdateRequest", "get_plan_service", "router"]
