"""Structured log events for row queries, storage operations and user actions.

Each event travels on a normal ``logging`` record: the message stays readable
in the log file, and the ``labcms_event`` attribute carries an ``Event`` for
the in-memory debug console.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


EVENT_LOGGER = logging.getLogger("labcms.events")

DB_EVENT = "DB_QUERY"
STORAGE_EVENT = "STORAGE_OP"
ACTION_EVENT = "USER_ACTION"

EVENT_ATTRIBUTE = "labcms_event"

_MAX_TEXT = 200


@dataclass(frozen=True)
class Event:
    event_type: str
    message: str
    fields: Dict[str, Any] = field(default_factory=dict)
    correlation: Dict[str, str] = field(default_factory=dict)
    duration_ms: Optional[float] = None

    @property
    def failed(self) -> bool:
        return self.fields.get("status") == "error" or "error" in self.fields

    def render(self) -> str:
        details = {**self.correlation, **self.fields}
        text = f"[{self.event_type}] {self.message}"
        if details:
            text += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"
        return text


def _clean_value(value: Any) -> Any:
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if isinstance(value, (list, tuple, set)):
        value = ", ".join(str(item) for item in value)
    text = str(value).strip()
    if not text:
        return None
    return text[:_MAX_TEXT] + ("…" if len(text) > _MAX_TEXT else "")


def clean_fields(values: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Drop empty values and flatten the rest into short log-friendly scalars."""

    cleaned: Dict[str, Any] = {}
    for key, value in (values or {}).items():
        if not key or value is None:
            continue
        value = _clean_value(value)
        if value is not None:
            cleaned[str(key)] = value
    return cleaned


def emit_event(
    event_type: str,
    message: str,
    *,
    fields: Optional[Mapping[str, Any]] = None,
    correlation: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = EVENT_LOGGER,
) -> Event:
    event = Event(
        event_type=event_type,
        message=str(message).strip(),
        fields=clean_fields(fields),
        correlation={key: str(value) for key, value in clean_fields(correlation).items()},
        duration_ms=float(duration_ms) if duration_ms is not None else None,
    )
    if event.failed and level < logging.WARNING:
        level = logging.WARNING
    logger.log(level, event.render(), extra={EVENT_ATTRIBUTE: event})
    return event


def emit_row_event(
    table: Optional[str],
    action: str,
    *,
    duration_ms: Optional[float] = None,
    correlation: Optional[Mapping[str, Any]] = None,
    logger: logging.Logger | logging.LoggerAdapter = EVENT_LOGGER,
    **details: Any,
) -> Event:
    """Log one SQL statement (or Supabase table call) against *table*."""

    return emit_event(
        DB_EVENT,
        action,
        fields={"table": table, **details},
        correlation=correlation,
        duration_ms=duration_ms,
        level=logging.DEBUG,
        logger=logger,
    )


def emit_storage_event(
    bucket: Optional[str],
    action: str,
    *,
    duration_ms: Optional[float] = None,
    correlation: Optional[Mapping[str, Any]] = None,
    logger: logging.Logger | logging.LoggerAdapter = EVENT_LOGGER,
    **details: Any,
) -> Event:
    """Log one bucket operation such as ``upload`` or ``move``."""

    return emit_event(
        STORAGE_EVENT,
        action,
        fields={"bucket": bucket, **details},
        correlation=correlation,
        duration_ms=duration_ms,
        logger=logger,
    )


def emit_action_event(
    message: str,
    *,
    correlation: Optional[Mapping[str, Any]] = None,
    logger: logging.Logger | logging.LoggerAdapter = EVENT_LOGGER,
    **details: Any,
) -> Event:
    """Log something a dashboard user did, e.g. adding a record."""

    return emit_event(
        ACTION_EVENT,
        message,
        fields=details,
        correlation=correlation,
        logger=logger,
    )


__all__ = [
    "ACTION_EVENT",
    "DB_EVENT",
    "EVENT_ATTRIBUTE",
    "EVENT_LOGGER",
    "Event",
    "STORAGE_EVENT",
    "clean_fields",
    "emit_action_event",
    "emit_event",
    "emit_row_event",
    "emit_storage_event",
]
