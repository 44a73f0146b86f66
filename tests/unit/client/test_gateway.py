from __future__ import annotations

import asyncio
import io
import json

import pytest
import requests

from cobuy.client.gateway import HttpEngineGateway
from cobuy.core.exceptions import NotFoundError, PreconditionFailed, TransportError, ValidationError
from cobuy.realtime import events

SNAPSHOT = {
    "id": "s1",
    "calculation_id": "c1",
    "group_id": "g1",
    "property_id": "p1",
    "status": "active",
    "total_percentage": 100.0,
    "participants": [
        {"user_id": "alice", "current_percentage": 60.0, "status": "adjusting", "is_online": True},
        {"user_id": "bob", "current_percentage": 40.0, "status": "confirmed", "is_online": False},
    ],
}


def _raw_response(status_code: int, body: str, content_type: str) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response.raw = io.BytesIO(body.encode("utf-8"))
    response.headers["Content-Type"] = content_type
    return response


def _response(status_code: int, body: dict) -> requests.Response:
    return _raw_response(status_code, json.dumps(body), "application/json")


def _stream(payloads: list[dict]) -> requests.Response:
    return _raw_response(200, "".join(events.format_sse(item) for item in payloads), "text/event-stream")


class _StubSession:
    def __init__(self, reply) -> None:
        self.reply = reply
        self.calls: list[tuple[str, str, dict | None]] = []
        self.options: list[dict] = []

    def request(self, method, url, json=None, timeout=None, **options):
        self.calls.append((method, url, json))
        self.options.append(options)
        return self.reply(method, url)

    def close(self) -> None:
        pass


def test_requests_hit_the_participant_endpoint():
    session = _StubSession(lambda method, url: _response(200, SNAPSHOT))
    gateway = HttpEngineGateway("http://cobuy.test/api/v1/", session=session)

    async def scenario():
        state = await gateway.fetch_state("s1")
        await gateway.propose_percentage("s1", "alice", 60)
        await gateway.confirm("s1", "alice")
        await gateway.revoke("s1", "alice")
        return state

    state = asyncio.run(scenario())
    assert state.participant("alice").current_percentage == 60.0
    assert session.calls == [
        ("GET", "http://cobuy.test/api/v1/negotiations/s1", None),
        ("PATCH", "http://cobuy.test/api/v1/negotiations/s1/participants/alice", {"percentage": 60}),
        ("PATCH", "http://cobuy.test/api/v1/negotiations/s1/participants/alice", {"status": "confirmed"}),
        ("PATCH", "http://cobuy.test/api/v1/negotiations/s1/participants/alice", {"status": "adjusting"}),
    ]


@pytest.mark.parametrize(
    "status_code, error_type",
    [(404, NotFoundError), (409, PreconditionFailed), (422, ValidationError), (500, TransportError)],
)
def test_error_responses_map_back_to_domain_errors(status_code, error_type):
    envelope = {"detail": {"status": "error", "error_code": "x", "detail": "refused"}}
    session = _StubSession(lambda method, url: _response(status_code, envelope))
    gateway = HttpEngineGateway("http://cobuy.test/api/v1", session=session)

    with pytest.raises(error_type, match="refused"):
        asyncio.run(gateway.confirm("s1", "alice"))


def test_unreachable_api_is_a_transport_error():
    def _refuse(method, url):
        raise requests.exceptions.ConnectionError("connection refused")

    gateway = HttpEngineGateway("http://cobuy.test/api/v1", session=_StubSession(_refuse))

    with pytest.raises(TransportError):
        asyncio.run(gateway.fetch_state("s1"))


def test_subscribe_reads_the_event_stream_into_the_callback():
    frames = [
        events.connected("alice").to_payload(),
        events.percentage_update("bob", 40, "adjusting").to_payload(),
        events.online_users(["alice", "bob"]).to_payload(),
    ]
    session = _StubSession(lambda method, url: _stream(frames))
    gateway = HttpEngineGateway("http://cobuy.test/api/v1", session=session)
    received: list[dict] = []

    async def scenario():
        subscription = await gateway.subscribe("s1", "alice", received.append)
        await subscription.wait_closed()
        await asyncio.sleep(0)

    asyncio.run(scenario())
    assert session.calls == [("GET", "http://cobuy.test/api/v1/negotiations/s1/events", None)]
    assert session.options[0]["params"] == {"user_id": "alice"}
    assert session.options[0]["stream"] is True
    assert received == frames


def test_subscribe_refused_for_non_participant():
    envelope = {"detail": {"status": "error", "error_code": "precondition_failed", "detail": "not a participant"}}
    session = _StubSession(lambda method, url: _response(409, envelope))
    gateway = HttpEngineGateway("http://cobuy.test/api/v1", session=session)

    with pytest.raises(PreconditionFailed, match="not a participant"):
        asyncio.run(gateway.subscribe("s1", "mallory", lambda payload: None))
