from __future__ import annotations

import pytest

from cobuy.core.exceptions import PreconditionFailed
from cobuy.orchestration.state_machine import (
    PARTICIPANT_STATES,
    SESSION_STATES,
    InvalidTransitionError,
    StateMachine,
)


def test_state_machine_allows_valid_transition():
    sm = StateMachine("demo", {"new": {"running"}, "running": {"completed"}})
    assert sm.can_transition("new", "running") is True
    sm.assert_transition("new", "running")


def test_state_machine_rejects_invalid_transition():
    sm = StateMachine("demo", {"new": {"running"}})
    with pytest.raises(InvalidTransitionError):
        sm.assert_transition("new", "completed")


def test_participant_lifecycle_edges():
    assert PARTICIPANT_STATES.can_transition("adjusting", "confirmed") is True
    assert PARTICIPANT_STATES.can_transition("confirmed", "adjusting") is True
    assert PARTICIPANT_STATES.can_transition("confirmed", "locked") is True
    assert PARTICIPANT_STATES.can_transition("adjusting", "locked") is False
    assert PARTICIPANT_STATES.is_terminal("locked") is True


def test_completed_and_cancelled_sessions_are_terminal():
    assert SESSION_STATES.is_terminal("completed") is True
    assert SESSION_STATES.is_terminal("cancelled") is True
    with pytest.raises(PreconditionFailed):
        SESSION_STATES.assert_transition("completed", "active")
