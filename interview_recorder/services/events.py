"""Structured event helpers shared by the session core and the pipeline."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("interview_recorder.events")

_MAX_VALUE_LENGTH = 200


def sanitize_context_value(value: Any) -> Any:
    """Return a short, log-friendly representation for *value*."""

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set, frozenset)):
        text = ", ".join(str(item) for item in value)
    else:
        text = str(value)
    text = " ".join(text.split())
    if not text:
        return None
    if len(text) > _MAX_VALUE_LENGTH:
        return text[:_MAX_VALUE_LENGTH] + "…"
    return text


def normalize_context(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop empty entries and shorten the rest."""

    normalised: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        if not key:
            continue
        value = sanitize_context_value(raw_value)
        if value is None:
            continue
        normalised[str(key)] = value
    return normalised


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log ``[TYPE] message (k=v, ...)`` and attach the fields as ``extra``."""

    details = normalize_context(payload)
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 1)
    details_text = ", ".join(f"{key}={value}" for key, value in details.items())
    base_message = str(message).strip()
    display = f"[{event_type}] {base_message}" if event_type else base_message
    log_message = f"{display} ({details_text})" if details_text else display
    logger.log(
        level,
        log_message,
        extra={
            "event": base_message,
            "event_type": event_type or "",
            "event_payload": details,
        },
    )


def emit_file_event(operation: str, **kwargs: Any) -> None:
    """Emit a file-system event (artifact writes, metadata writes, cleanup)."""

    emit_structured_event("FILE_OP", operation, **kwargs)


def emit_session_event(action: str, **kwargs: Any) -> None:
    """Emit a session lifecycle event (start, upload, finish, analysis)."""

    emit_structured_event("SESSION", action, **kwargs)


def emit_pipeline_event(stage: str, **kwargs: Any) -> None:
    """Emit an analysis pipeline stage event."""

    emit_structured_event("PIPELINE", stage, **kwargs)


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "emit_file_event",
    "emit_pipeline_event",
    "emit_session_event",
    "emit_structured_event",
    "normalize_context",
    "sanitize_context_value",
]
