from __future__ import annotations

import asyncio

import pytest

from cobuy.core.config import get_config
from cobuy.core.enums import PARTICIPANT_CONFIRMED, EventType
from cobuy.core.exceptions import PreconditionFailed, ValidationError
from cobuy.realtime.handles import QueueHandle
from cobuy.realtime.hub import NegotiationHub
from cobuy.schemas.negotiations import ParticipantUpdateRequest

MEMBERS = ["alice", "bob"]


def _hub(store_factory) -> NegotiationHub:
    return NegotiationHub(settings=get_config(), store_factory=store_factory)


def test_connect_sends_handshake_and_announces_presence(store_factory, seed_group, make_handle):
    seed_group("g1", MEMBERS)

    async def scenario():
        hub = _hub(store_factory)
        snapshot = await hub.engine.open_session("g1", "p1", "alice")
        alice, bob = make_handle("alice"), make_handle("bob")

        await hub.connect(snapshot.id, "alice", alice)
        state = await hub.connect(snapshot.id, "bob", bob)

        assert bob.types()[:3] == [
            EventType.CONNECTED.value,
            EventType.SESSION_STATE.value,
            EventType.ONLINE_USERS.value,
        ]
        assert {p.user_id for p in state.participants if p.is_online} == {"alice", "bob"}
        assert alice.of_type(EventType.USER_JOINED.value)[-1]["userId"] == "bob"
        assert bob.of_type(EventType.USER_JOINED.value) == []

        await hub.disconnect(snapshot.id, "bob", bob)
        assert alice.of_type(EventType.USER_LEFT.value)[-1]["userId"] == "bob"
        assert alice.of_type(EventType.ONLINE_USERS.value)[-1]["users"] == ["alice"]

    asyncio.run(scenario())


def test_second_tab_does_not_announce_a_join(store_factory, seed_group, make_handle):
    seed_group("g1", MEMBERS)

    async def scenario():
        hub = _hub(store_factory)
        snapshot = await hub.engine.open_session("g1", "p1", "alice")
        bob, alice_tab1, alice_tab2 = make_handle("bob"), make_handle("alice"), make_handle("alice")
        await hub.connect(snapshot.id, "bob", bob)
        await hub.connect(snapshot.id, "alice", alice_tab1)
        await hub.connect(snapshot.id, "alice", alice_tab2)
        assert len(bob.of_type(EventType.USER_JOINED.value)) == 1

        await hub.disconnect(snapshot.id, "alice", alice_tab1)
        assert bob.of_type(EventType.USER_LEFT.value) == []

    asyncio.run(scenario())


def test_non_participant_cannot_subscribe(store_factory, seed_group, make_handle):
    seed_group("g1", MEMBERS)

    async def scenario():
        hub = _hub(store_factory)
        snapshot = await hub.engine.open_session("g1", "p1", "alice")
        with pytest.raises(PreconditionFailed):
            await hub.connect(snapshot.id, "mallory", make_handle("mallory"))
        assert await hub.registry.list_online(snapshot.id) == set()

    asyncio.run(scenario())


def test_apply_update_routes_to_engine_operations(store_factory, seed_group):
    seed_group("g1", MEMBERS)

    async def scenario():
        hub = _hub(store_factory)
        snapshot = await hub.engine.open_session("g1", "p1", "alice")

        moved = await hub.apply_update(snapshot.id, "alice", ParticipantUpdateRequest(percentage=60))
        assert moved.participant("alice").current_percentage == 60

        both = await hub.apply_update(
            snapshot.id, "bob", ParticipantUpdateRequest(percentage=40, status=PARTICIPANT_CONFIRMED)
        )
        assert both.participant("bob").status == PARTICIPANT_CONFIRMED

        revoked = await hub.handle_message(snapshot.id, "bob", {"status": "adjusting"})
        assert revoked.participant("bob").status == "adjusting"

        with pytest.raises(ValidationError):
            await hub.handle_message(snapshot.id, "bob", {})
        with pytest.raises(ValidationError):
            await hub.handle_message(snapshot.id, "bob", {"status": "locked"})

    asyncio.run(scenario())


def test_stream_subscriber_receives_events_until_shutdown(store_factory, seed_group):
    seed_group("g1", MEMBERS)

    async def scenario():
        hub = _hub(store_factory)
        snapshot = await hub.engine.open_session("g1", "p1", "alice")
        stream = QueueHandle("bob", maxsize=32)
        await hub.connect(snapshot.id, "bob", stream)
        await hub.engine.propose_percentage(snapshot.id, "alice", 45)
        await hub.shutdown()

        received = [item async for item in stream.events(heartbeat_seconds=5)]
        kinds = [item["type"] for item in received]
        assert kinds[:2] == [EventType.CONNECTED.value, EventType.SESSION_STATE.value]
        assert EventType.PERCENTAGE_UPDATE.value in kinds
        assert stream.closed is True

    asyncio.run(scenario())
