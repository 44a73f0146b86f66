"""Canonical enum values for negotiation sessions and realtime events."""

from __future__ import annotations

import enum


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ParticipantStatus(str, enum.Enum):
    ADJUSTING = "adjusting"
    CONFIRMED = "confirmed"
    LOCKED = "locked"


class EventType(str, enum.Enum):
    """Kinds of events delivered over a session's realtime stream."""

    CONNECTED = "connected"
    SESSION_STATE = "session-state"
    PERCENTAGE_UPDATE = "percentage-update"
    STATUS_CHANGE = "status-change"
    ONLINE_USERS = "online-users"
    SESSION_LOCKED = "session-locked"
    SESSION_CANCELLED = "session-cancelled"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    PARTICIPANT_REMOVED = "participant-removed"
    HEARTBEAT = "heartbeat"
    ERROR = "error"


# Convenience accessors for common status values
SESSION_ACTIVE = SessionStatus.ACTIVE.value
SESSION_COMPLETED = SessionStatus.COMPLETED.value
SESSION_CANCELLED = SessionStatus.CANCELLED.value

PARTICIPANT_ADJUSTING = ParticipantStatus.ADJUSTING.value
PARTICIPANT_CONFIRMED = ParticipantStatus.CONFIRMED.value
PARTICIPANT_LOCKED = ParticipantStatus.LOCKED.value
