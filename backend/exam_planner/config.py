import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="EXAM_PLANNER_DATABASE_URL")
    database_pool_size: int = Field(10, alias="EXAM_PLANNER_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="EXAM_PLANNER_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="EXAM_PLANNER_DATABASE_ECHO")
    log_level: str = Field("INFO", alias="EXAM_PLANNER_LOG_LEVEL")
    telemetry_log_enabled: bool = Field(True, alias="EXAM_PLANNER_TELEMETRY_LOG")
    persistence_mode: Literal["database", "memory"] = Field(
        "memory",
        alias="EXAM_PLANNER_PERSISTENCE_MODE",
    )
    default_timezone: str = Field("UTC", alias="EXAM_PLANNER_DEFAULT_TIMEZONE")
    buffer_fraction: float = Field(0.20, ge=0.0, lt=1.0, alias="EXAM_PLANNER_BUFFER_FRACTION")
    min_session_hours: float = Field(0.5, gt=0.0, alias="EXAM_PLANNER_MIN_SESSION_HOURS")
    max_session_hours: float = Field(2.0, gt=0.0, alias="EXAM_PLANNER_MAX_SESSION_HOURS")
    weak_boost_factor: float = Field(0.5, ge=0.0, alias="EXAM_PLANNER_WEAK_BOOST_FACTOR")
    missed_grace_hours: float = Field(24.0, ge=0.0, alias="EXAM_PLANNER_MISSED_GRACE_HOURS")
    default_deadline_seconds: Optional[float] = Field(None, gt=0.0, alias="EXAM_PLANNER_DEADLINE_SECONDS")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid planner configuration: {exc}") from exc
