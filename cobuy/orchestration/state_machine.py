"""Canonical state transition tables for negotiation sessions and participants."""

from __future__ import annotations

from cobuy.core.enums import ParticipantStatus, SessionStatus
from cobuy.core.exceptions import PreconditionFailed


class InvalidTransitionError(PreconditionFailed):
    """Raised when a disallowed state transition is attempted."""


class StateMachine:
    """Transition table with explicit allowed edges; anything else is rejected."""

    def __init__(self, name: str, transitions: dict[str, set[str]]) -> None:
        self.name = name
        self._transitions = transitions

    def can_transition(self, current: str, target: str) -> bool:
        return target in self._transitions.get(current, set())

    def assert_transition(self, current: str, target: str) -> None:
        if not self.can_transition(current=current, target=target):
            raise InvalidTransitionError(f"{self.name} transition not allowed: {current} -> {target}")

    def is_terminal(self, state: str) -> bool:
        return not self._transitions.get(state)


SESSION_STATES = StateMachine(
    "session",
    {
        SessionStatus.ACTIVE.value: {SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value},
        SessionStatus.COMPLETED.value: set(),
        SessionStatus.CANCELLED.value: set(),
    },
)

# ``locked`` is only entered through the whole-session lock, never by a user action.
PARTICIPANT_STATES = StateMachine(
    "participant",
    {
        ParticipantStatus.ADJUSTING.value: {ParticipantStatus.CONFIRMED.value},
        ParticipantStatus.CONFIRMED.value: {ParticipantStatus.ADJUSTING.value, ParticipantStatus.LOCKED.value},
        ParticipantStatus.LOCKED.value: set(),
    },
)
