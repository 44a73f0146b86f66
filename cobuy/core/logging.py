"""Structured logging helpers for negotiation and realtime components."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class LogContext:
    """Normalized context fields expected in structured logs."""

    session_id: str | None = None
    user_id: str | None = None
    connection_id: str | None = None
    trace_id: str | None = None


def build_log_event(event: str, context: LogContext, **fields: Any) -> dict[str, Any]:
    """Build a normalized structured log payload."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "session_id": context.session_id,
        "user_id": context.user_id,
        "connection_id": context.connection_id,
        "trace_id": context.trace_id,
    }
    payload.update(fields)
    return payload


def log_extra(event: str, context: LogContext, **fields: Any) -> dict[str, Any]:
    """Return the ``extra`` mapping used by every structured log call."""
    return {"event": event, "context": build_log_event(event, context, **fields)}
