"""Realtime event payloads exchanged over a session's stream."""

from __future__ import annotations

import json
import time
from collections.abc import Iterable, Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cobuy.core.enums import EventType
from cobuy.schemas.negotiations import SessionSnapshot


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionEvent(BaseModel):
    """One JSON event; every field except ``type`` is optional and set per kind."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: str
    user_id: str | None = Field(default=None, alias="userId")
    percentage: float | None = None
    status: str | None = None
    users: list[str] | None = None
    session: dict[str, Any] | None = None
    code: str | None = None
    detail: str | None = None
    timestamp: int = Field(default_factory=now_ms)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SessionEvent":
        return cls.model_validate(payload)

    def snapshot(self) -> SessionSnapshot | None:
        """Decode the full state carried by a ``session-state`` event."""
        if self.session is None:
            return None
        return SessionSnapshot.model_validate(self.session)


def format_sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=True)}\n\n"


def parse_sse(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Decode the ``data:`` frames of an event stream, one payload per blank-line-terminated frame."""
    data: list[str] = []
    for line in lines:
        if line.startswith("data:"):
            data.append(line[len("data:"):].lstrip())
        elif not line and data:
            yield json.loads("\n".join(data))
            data = []
    if data:
        yield json.loads("\n".join(data))


def connected(user_id: str) -> SessionEvent:
    return SessionEvent(type=EventType.CONNECTED.value, user_id=user_id)


def session_state(snapshot: SessionSnapshot) -> SessionEvent:
    return SessionEvent(type=EventType.SESSION_STATE.value, session=snapshot.model_dump(mode="json"))


def percentage_update(user_id: str, percentage: float, status: str) -> SessionEvent:
    return SessionEvent(
        type=EventType.PERCENTAGE_UPDATE.value, user_id=user_id, percentage=percentage, status=status
    )


def status_change(user_id: str, status: str) -> SessionEvent:
    return SessionEvent(type=EventType.STATUS_CHANGE.value, user_id=user_id, status=status)


def online_users(users: list[str]) -> SessionEvent:
    return SessionEvent(type=EventType.ONLINE_USERS.value, users=users)


def session_locked() -> SessionEvent:
    return SessionEvent(type=EventType.SESSION_LOCKED.value)


def session_cancelled(user_id: str) -> SessionEvent:
    return SessionEvent(type=EventType.SESSION_CANCELLED.value, user_id=user_id)


def user_joined(user_id: str) -> SessionEvent:
    return SessionEvent(type=EventType.USER_JOINED.value, user_id=user_id)


def user_left(user_id: str) -> SessionEvent:
    return SessionEvent(type=EventType.USER_LEFT.value, user_id=user_id)


def participant_removed(user_id: str) -> SessionEvent:
    return SessionEvent(type=EventType.PARTICIPANT_REMOVED.value, user_id=user_id)


def heartbeat() -> SessionEvent:
    return SessionEvent(type=EventType.HEARTBEAT.value)


def error_event(code: str, detail: str) -> SessionEvent:
    return SessionEvent(type=EventType.ERROR.value, code=code, detail=detail)
