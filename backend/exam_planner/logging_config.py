import logging
from logging.config import dictConfig
from typing import Any, Dict, Optional

from .config import Settings, get_settings

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TELEMETRY_LOG_FORMAT = "%(asctime)s %(message)s"


def _planner_logging(settings: Settings) -> Dict[str, Any]:
    level = settings.log_level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": DEFAULT_LOG_FORMAT},
            "telemetry": {"format": TELEMETRY_LOG_FORMAT},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
            "telemetry": {
                "class": "logging.StreamHandler",
                "formatter": "telemetry",
            },
        },
        "loggers": {
            # TELEMETRY lines carry their own JSON payload and skip the root handler.
            "exam_planner.telemetry": {
                "handlers": ["telemetry"],
                "level": "INFO" if settings.telemetry_log_enabled else "WARNING",
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": "INFO" if settings.database_echo else "WARNING",
            },
        },
        "root": {
            "handlers": ["default"],
            "level": level,
        },
    }


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure planner logging from the active settings."""
    settings = settings or get_settings()
    dictConfig(_planner_logging(settings))
    logging.getLogger(__name__).debug(
        "Logging configured at %s (telemetry lines %s)",
        settings.log_level.upper(),
        "on" if settings.telemetry_log_enabled else "off",
    )
