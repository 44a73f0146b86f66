"""Ways a client session view reaches the negotiation engine."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import requests

from cobuy.core.exceptions import (
    NotFoundError,
    PreconditionFailed,
    StorageError,
    TransportError,
    ValidationError,
)
from cobuy.realtime.events import parse_sse
from cobuy.realtime.handles import CallbackHandle
from cobuy.realtime.hub import NegotiationHub
from cobuy.schemas.negotiations import SessionSnapshot

logger = logging.getLogger(__name__)

EventCallback = Callable[[dict[str, Any]], None]


class Subscription(ABC):
    """A live feed of one session's fan-out events."""

    @abstractmethod
    async def close(self) -> None:
        ...


class EngineGateway(ABC):
    @abstractmethod
    async def fetch_state(self, session_id: str) -> SessionSnapshot:
        ...

    @abstractmethod
    async def propose_percentage(self, session_id: str, user_id: str, value: float) -> SessionSnapshot:
        ...

    @abstractmethod
    async def confirm(self, session_id: str, user_id: str) -> SessionSnapshot:
        ...

    @abstractmethod
    async def revoke(self, session_id: str, user_id: str) -> SessionSnapshot:
        ...

    async def subscribe(self, session_id: str, user_id: str, on_event: EventCallback) -> Subscription | None:
        """Register presence and deliver the session's events to ``on_event``.

        Gateways without a live feed return None.
        """
        return None


class _HubSubscription(Subscription):
    def __init__(self, hub: NegotiationHub, session_id: str, handle: CallbackHandle) -> None:
        self._hub = hub
        self._session_id = session_id
        self._handle = handle

    async def close(self) -> None:
        await self._handle.close()
        await self._hub.disconnect(self._session_id, self._handle.user_id, self._handle)


class LocalEngineGateway(EngineGateway):
    """In-process gateway calling the hub's engine directly."""

    def __init__(self, hub: NegotiationHub) -> None:
        self._hub = hub
        self._engine = hub.engine

    async def fetch_state(self, session_id: str) -> SessionSnapshot:
        return await self._engine.get_state(session_id)

    async def propose_percentage(self, session_id: str, user_id: str, value: float) -> SessionSnapshot:
        return await self._engine.propose_percentage(session_id, user_id, value)

    async def confirm(self, session_id: str, user_id: str) -> SessionSnapshot:
        return await self._engine.confirm(session_id, user_id)

    async def revoke(self, session_id: str, user_id: str) -> SessionSnapshot:
        return await self._engine.revoke(session_id, user_id)

    async def subscribe(self, session_id: str, user_id: str, on_event: EventCallback) -> Subscription:
        handle = CallbackHandle(user_id, on_event)
        await self._hub.connect(session_id, user_id, handle)
        return _HubSubscription(self._hub, session_id, handle)


_STATUS_ERRORS: dict[int, type[Exception]] = {
    404: NotFoundError,
    409: PreconditionFailed,
    422: ValidationError,
    503: StorageError,
}


class StreamSubscription(Subscription):
    """Server-sent event stream read on a worker thread."""

    def __init__(self, response: requests.Response) -> None:
        self.response = response
        self.closing = False
        self.task: asyncio.Future | None = None

    async def wait_closed(self) -> None:
        if self.task is not None:
            await self.task

    async def close(self) -> None:
        self.closing = True
        await asyncio.to_thread(self.response.close)
        await self.wait_closed()


class HttpEngineGateway(EngineGateway):
    """Gateway against the REST API, mapping error responses back to domain exceptions.

    Blocking ``requests`` calls run on a worker thread so the view's event
    loop keeps processing realtime events meanwhile. The live feed is the
    session's SSE endpoint.
    """

    def __init__(
        self,
        base_url: str,
        session: requests.Session | None = None,
        timeout: tuple[float, float] = (2, 10),
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def close(self) -> None:
        self._session.close()

    def _issue(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.exceptions.RequestException as exc:
            logger.warning(
                "client.http.failed",
                extra={"event": "client.http.failed", "method": method, "url": url, "error": str(exc)},
            )
            raise TransportError(f"Negotiation API unreachable: {exc}") from exc

        if not response.ok:
            detail = _error_detail(response)
            response.close()
            error_type = _STATUS_ERRORS.get(response.status_code, TransportError)
            raise error_type(detail)
        return response

    def _send(self, method: str, path: str, payload: dict[str, Any] | None) -> SessionSnapshot:
        response = self._issue(method, path, json=payload, timeout=self._timeout)
        return SessionSnapshot.model_validate(response.json())

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> SessionSnapshot:
        return await asyncio.to_thread(self._send, method, path, payload)

    async def fetch_state(self, session_id: str) -> SessionSnapshot:
        return await self._request("GET", f"/negotiations/{session_id}")

    async def propose_percentage(self, session_id: str, user_id: str, value: float) -> SessionSnapshot:
        return await self._request(
            "PATCH", f"/negotiations/{session_id}/participants/{user_id}", {"percentage": value}
        )

    async def confirm(self, session_id: str, user_id: str) -> SessionSnapshot:
        return await self._request(
            "PATCH", f"/negotiations/{session_id}/participants/{user_id}", {"status": "confirmed"}
        )

    async def revoke(self, session_id: str, user_id: str) -> SessionSnapshot:
        return await self._request(
            "PATCH", f"/negotiations/{session_id}/participants/{user_id}", {"status": "adjusting"}
        )

    async def subscribe(self, session_id: str, user_id: str, on_event: EventCallback) -> StreamSubscription:
        # No read timeout: the server sends heartbeats while the stream is idle.
        response = await asyncio.to_thread(
            self._issue,
            "GET",
            f"/negotiations/{session_id}/events",
            params={"user_id": user_id},
            stream=True,
            timeout=(self._timeout[0], None),
        )
        subscription = StreamSubscription(response)
        loop = asyncio.get_running_loop()
        subscription.task = asyncio.ensure_future(
            asyncio.to_thread(self._pump, subscription, loop, on_event, session_id)
        )
        return subscription

    def _pump(
        self,
        subscription: StreamSubscription,
        loop: asyncio.AbstractEventLoop,
        on_event: EventCallback,
        session_id: str,
    ) -> None:
        lines = (raw.decode("utf-8") for raw in subscription.response.iter_lines())
        try:
            for payload in parse_sse(lines):
                if subscription.closing:
                    return
                loop.call_soon_threadsafe(on_event, payload)
        except (requests.exceptions.RequestException, OSError, ValueError) as exc:
            if subscription.closing:
                return
            logger.warning(
                "client.stream.failed",
                extra={"event": "client.stream.failed", "session_id": session_id, "error": str(exc)},
            )
            return
        logger.info("client.stream.ended", extra={"event": "client.stream.ended", "session_id": session_id})


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        return str(detail.get("detail") or detail)
    return str(detail or body)
