"""Structured planner events fanned out to in-process listeners and the log.

Every plan operation reports one event (``plan_generation``, ``plan_repair``,
``plan_reschedule``, ``session_event`` or ``optimization_timeout``). Listeners
may subscribe to a subset of names; the returned callable unsubscribes them.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

logger = logging.getLogger("exam_planner.telemetry")

PLAN_EVENTS: FrozenSet[str] = frozenset(
    {
        "plan_generation",
        "plan_repair",
        "plan_reschedule",
        "session_event",
        "optimization_timeout",
    }
)


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def plan_id(self) -> Optional[str]:
        return self.payload.get("plan_id")


Listener = Callable[[TelemetryEvent], None]

_listeners: List[Tuple[Listener, Optional[FrozenSet[str]]]] = []
_lock = RLock()


def register_listener(listener: Listener, *, names: Optional[Iterable[str]] = None) -> Callable[[], None]:
    """Subscribe ``listener``, optionally to a subset of event names."""
    entry = (listener, frozenset(names) if names is not None else None)
    with _lock:
        _listeners.append(entry)

    def _unsubscribe() -> None:
        with _lock:
            if entry in _listeners:
                _listeners.remove(entry)

    return _unsubscribe


def clear_listeners() -> None:
    with _lock:
        _listeners.clear()


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    """Emit a planner event and hand it to every subscribed listener."""
    if name not in PLAN_EVENTS:
        logger.debug("Emitting unregistered telemetry event %s", name)
    event = TelemetryEvent(name=name, payload={key: _sanitize(value) for key, value in fields.items()})

    with _lock:
        targets = [listener for listener, names in _listeners if names is None or name in names]

    for listener in targets:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s on plan %s", name, event.plan_id or "-")

    structured = {"event": name, "emitted_at": event.emitted_at.isoformat(), **event.payload}
    logger.info("TELEMETRY %s", json.dumps(structured, default=str, sort_keys=True))
    return event


def _sanitize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_sanitize(item) for item in value]
        return sorted(items) if isinstance(value, (set, frozenset)) else items
    return value


__all__ = [
    "PLAN_EVENTS",
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "register_listener",
]
