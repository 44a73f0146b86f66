from __future__ import annotations

import asyncio

import pytest

from cobuy.client.gateway import EngineGateway, LocalEngineGateway
from cobuy.client.session_view import SessionView
from cobuy.core.config import get_config
from cobuy.core.enums import (
    PARTICIPANT_ADJUSTING,
    PARTICIPANT_CONFIRMED,
    PARTICIPANT_LOCKED,
    SESSION_ACTIVE,
)
from cobuy.core.exceptions import PreconditionFailed
from cobuy.realtime import events
from cobuy.realtime.hub import NegotiationHub
from cobuy.schemas.negotiations import ParticipantSnapshot, SessionSnapshot


def _snapshot(percentages: dict[str, float], statuses: dict[str, str] | None = None, status: str = SESSION_ACTIVE):
    statuses = statuses or {}
    return SessionSnapshot(
        id="s1",
        calculation_id="c1",
        group_id="g1",
        property_id="p1",
        status=status,
        total_percentage=sum(percentages.values()),
        participants=[
            ParticipantSnapshot(
                user_id=user_id,
                current_percentage=value,
                status=statuses.get(user_id, PARTICIPANT_ADJUSTING),
            )
            for user_id, value in percentages.items()
        ],
    )


class _FakeGateway(EngineGateway):
    def __init__(self, state: SessionSnapshot) -> None:
        self.state = state
        self.proposals: list[float] = []
        self.reject_with: Exception | None = None
        self.release: asyncio.Event | None = None

    async def fetch_state(self, session_id):
        return self.state

    async def _apply(self, user_id, **changes):
        if self.release is not None:
            await self.release.wait()
        if self.reject_with is not None:
            raise self.reject_with
        participants = [
            p.model_copy(update=changes) if p.user_id == user_id else p for p in self.state.participants
        ]
        self.state = self.state.model_copy(update={"participants": participants}).recomputed()
        return self.state

    async def propose_percentage(self, session_id, user_id, value):
        self.proposals.append(value)
        return await self._apply(user_id, current_percentage=value)

    async def confirm(self, session_id, user_id):
        return await self._apply(user_id, status=PARTICIPANT_CONFIRMED)

    async def revoke(self, session_id, user_id):
        return await self._apply(user_id, status=PARTICIPANT_ADJUSTING)


def test_local_change_is_shown_before_acknowledgement_and_settles():
    async def scenario():
        gateway = _FakeGateway(_snapshot({"alice": 30, "bob": 30, "carol": 30}))
        view = SessionView("s1", "alice", gateway, debounce_ms=1000)
        await view.connect()

        assert view.set_percentage(40) is True
        assert view.is_provisional is True
        assert view.participant().current_percentage == 40
        assert view.total_percentage == 100
        assert view.authoritative.participant("alice").current_percentage == 30
        assert gateway.proposals == []

        await view.flush()
        assert gateway.proposals == [40]
        assert view.is_provisional is False
        assert view.participant().current_percentage == 40

    asyncio.run(scenario())


def test_rejected_change_rolls_back_and_surfaces_error():
    async def scenario():
        gateway = _FakeGateway(_snapshot({"alice": 30, "bob": 30, "carol": 30}))
        view = SessionView("s1", "alice", gateway, debounce_ms=1000)
        await view.connect()
        gateway.reject_with = PreconditionFailed("Session is completed; no further changes are accepted.")

        view.set_percentage(45)
        assert view.participant().current_percentage == 45
        await view.flush()

        assert view.is_provisional is False
        assert view.participant().current_percentage == 30
        assert view.last_error == "Session is completed; no further changes are accepted."

    asyncio.run(scenario())


def test_rapid_slider_moves_send_only_the_last_value():
    async def scenario():
        gateway = _FakeGateway(_snapshot({"alice": 30, "bob": 70}))
        view = SessionView("s1", "alice", gateway, debounce_ms=50)
        await view.connect()

        for value in (31, 35, 38, 42):
            view.set_percentage(value)
            await asyncio.sleep(0.005)
        assert gateway.proposals == []

        await asyncio.sleep(0.2)
        assert gateway.proposals == [42]
        assert view.participant().current_percentage == 42

    asyncio.run(scenario())


def test_out_of_range_value_is_refused_locally():
    async def scenario():
        gateway = _FakeGateway(_snapshot({"alice": 50, "bob": 50}))
        view = SessionView("s1", "alice", gateway, debounce_ms=50)
        await view.connect()

        assert view.set_percentage(95) is False
        assert view.is_provisional is False
        assert "between 10% and 90%" in view.last_error
        await view.flush()
        assert gateway.proposals == []

    asyncio.run(scenario())


def test_confirm_is_optimistic_and_rolls_back_on_rejection():
    async def scenario():
        gateway = _FakeGateway(_snapshot({"alice": 30, "bob": 30, "carol": 30}))
        view = SessionView("s1", "alice", gateway)
        await view.connect()
        gateway.release = asyncio.Event()
        gateway.reject_with = PreconditionFailed("Total must equal 100% to confirm (currently 90%).")

        pending = asyncio.create_task(view.confirm())
        await asyncio.sleep(0)
        assert view.participant().status == PARTICIPANT_CONFIRMED
        gateway.release.set()

        assert await pending is False
        assert view.participant().status == PARTICIPANT_ADJUSTING
        assert "currently 90%" in view.last_error

    asyncio.run(scenario())


def test_events_from_others_apply_last_write_wins_and_presence():
    async def scenario():
        gateway = _FakeGateway(_snapshot({"alice": 50, "bob": 50}))
        view = SessionView("s1", "alice", gateway)
        await view.connect()

        view.apply_event(events.percentage_update("bob", 40, PARTICIPANT_ADJUSTING).to_payload())
        view.apply_event(events.percentage_update("bob", 45, PARTICIPANT_ADJUSTING).to_payload())
        view.apply_event(events.status_change("bob", PARTICIPANT_CONFIRMED))
        view.apply_event(events.online_users(["alice", "bob"]))
        view.apply_event(events.user_left("bob"))

        bob = view.participant("bob")
        assert bob.current_percentage == 45
        assert bob.status == PARTICIPANT_CONFIRMED
        assert view.total_percentage == 95
        assert view.online_user_ids == {"alice"}

    asyncio.run(scenario())


def test_authoritative_event_for_local_user_replaces_overlay():
    async def scenario():
        gateway = _FakeGateway(_snapshot({"alice": 50, "bob": 50}))
        view = SessionView("s1", "alice", gateway, debounce_ms=1000)
        await view.connect()
        gateway.release = asyncio.Event()

        view.set_percentage(60)
        sending = asyncio.create_task(view.flush())
        await asyncio.sleep(0)
        view.apply_event(events.percentage_update("alice", 55, PARTICIPANT_ADJUSTING))
        assert view.is_provisional is False
        assert view.participant().current_percentage == 55

        gateway.release.set()
        await sending

    asyncio.run(scenario())


def test_session_locked_event_freezes_the_view():
    async def scenario():
        gateway = _FakeGateway(_snapshot({"alice": 50, "bob": 50}, statuses={"alice": "confirmed", "bob": "confirmed"}))
        view = SessionView("s1", "alice", gateway)
        await view.connect()

        view.apply_event(events.session_locked())

        assert view.is_locked is True
        assert view.can_mutate is False
        assert {p.status for p in view.snapshot.participants} == {PARTICIPANT_LOCKED}
        assert view.set_percentage(40) is False
        assert await view.revoke() is False
        assert gateway.proposals == []

    asyncio.run(scenario())


def test_view_against_live_engine_reaches_lock(store_factory, seed_group):
    seed_group("g1", ["alice", "bob"])

    async def scenario():
        hub = NegotiationHub(settings=get_config(), store_factory=store_factory)
        snapshot = await hub.engine.open_session("g1", "p1", "alice")
        gateway = LocalEngineGateway(hub)
        alice = SessionView(snapshot.id, "alice", gateway)
        bob = SessionView(snapshot.id, "bob", gateway)
        await alice.connect()
        await bob.connect()

        assert await alice.confirm() is True
        assert bob.participant("alice").status == PARTICIPANT_CONFIRMED
        assert await bob.confirm() is True

        assert alice.is_locked is True
        assert bob.is_locked is True
        assert alice.snapshot.all_locked()

    asyncio.run(scenario())


def test_connected_views_receive_each_others_changes(store_factory, seed_group):
    seed_group("g1", ["alice", "bob", "carol"])

    async def scenario():
        hub = NegotiationHub(settings=get_config(), store_factory=store_factory)
        snapshot = await hub.engine.open_session("g1", "p1", "alice")
        gateway = LocalEngineGateway(hub)
        alice = SessionView(snapshot.id, "alice", gateway, debounce_ms=1000)
        bob = SessionView(snapshot.id, "bob", gateway, debounce_ms=1000)

        await alice.connect()
        assert alice.online_user_ids == {"alice"}
        assert await hub.registry.list_online(snapshot.id) == {"alice"}

        await bob.connect()
        assert alice.online_user_ids == {"alice", "bob"}
        assert alice.online_count == 2
        assert bob.online_user_ids == {"alice", "bob"}

        assert bob.set_percentage(40) is True
        await bob.flush()
        assert alice.participant("bob").current_percentage == 40
        assert alice.total_percentage == pytest.approx(106.7)
        assert alice.is_provisional is False

        await bob.close()
        assert bob.connected is False
        assert alice.online_user_ids == {"alice"}
        assert alice.online_count == 1
        assert await hub.registry.list_online(snapshot.id) == {"alice"}

        await alice.close()
        assert await hub.registry.session_ids() == []

    asyncio.run(scenario())


def test_non_participant_view_cannot_subscribe(store_factory, seed_group):
    seed_group("g1", ["alice", "bob"])

    async def scenario():
        hub = NegotiationHub(settings=get_config(), store_factory=store_factory)
        snapshot = await hub.engine.open_session("g1", "p1", "alice")
        mallory = SessionView(snapshot.id, "mallory", LocalEngineGateway(hub))

        with pytest.raises(PreconditionFailed):
            await mallory.connect()
        assert await hub.registry.list_online(snapshot.id) == set()

    asyncio.run(scenario())
