"""Transport-specific connection handles behind one delivery interface.

The negotiation core only ever calls ``send``/``close``; swapping websockets
for server-sent events (or a broker-backed handle) never touches engine logic.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any

from fastapi import WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from cobuy.core.exceptions import TransportError
from cobuy.realtime.events import heartbeat
from cobuy.utils.ids import new_connection_id

logger = logging.getLogger(__name__)


class ConnectionHandle(ABC):
    """One live subscriber connection of one user to one session."""

    def __init__(self, user_id: str, connection_id: str | None = None) -> None:
        self.user_id = user_id
        self.connection_id = connection_id or new_connection_id()

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    async def send(self, payload: dict[str, Any]) -> None:
        """Deliver one event; raise ``TransportError`` when the handle is no longer writable."""

    @abstractmethod
    async def close(self) -> None:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(user_id={self.user_id!r}, connection_id={self.connection_id!r})"


class WebSocketHandle(ConnectionHandle):
    def __init__(self, websocket: WebSocket, user_id: str, connection_id: str | None = None) -> None:
        super().__init__(user_id, connection_id)
        self._websocket = websocket
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._websocket.application_state != WebSocketState.CONNECTED

    async def send(self, payload: dict[str, Any]) -> None:
        if self.closed:
            raise TransportError(f"Websocket {self.connection_id} is closed.")
        async with self._send_lock:
            try:
                await self._websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError) as exc:
                self._closed = True
                raise TransportError(f"Websocket {self.connection_id} send failed: {exc}") from exc

    async def close(self, code: int = 1001) -> None:
        if self.closed:
            self._closed = True
            return
        self._closed = True
        try:
            await self._websocket.close(code=code)
        except RuntimeError as exc:
            logger.debug("Websocket %s already closed: %s", self.connection_id, exc)


class CallbackHandle(ConnectionHandle):
    """In-process subscriber that hands each payload to a callback, e.g. a client view."""

    def __init__(
        self,
        user_id: str,
        on_event: Callable[[dict[str, Any]], None],
        connection_id: str | None = None,
    ) -> None:
        super().__init__(user_id, connection_id)
        self._on_event = on_event
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, payload: dict[str, Any]) -> None:
        if self._closed:
            raise TransportError(f"Subscriber {self.connection_id} is closed.")
        self._on_event(payload)

    async def close(self) -> None:
        self._closed = True


class QueueHandle(ConnectionHandle):
    """Bounded in-process queue drained by a streaming (SSE) response.

    A full queue means the consumer stopped reading; the handle then reports
    itself unwritable so the fan-out drops it like any other stale subscriber.
    """

    def __init__(self, user_id: str, maxsize: int = 256, connection_id: str | None = None) -> None:
        super().__init__(user_id, connection_id)
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, payload: dict[str, Any]) -> None:
        if self._closed:
            raise TransportError(f"Stream {self.connection_id} is closed.")
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull as exc:
            self._closed = True
            raise TransportError(f"Stream {self.connection_id} is not draining.") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # The consumer checks ``closed`` after every item it takes.
            pass

    async def events(self, heartbeat_seconds: float) -> AsyncIterator[dict[str, Any]]:
        """Yield queued payloads, emitting a heartbeat when idle for ``heartbeat_seconds``."""
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                if self._closed:
                    return
                yield heartbeat().to_payload()
                continue
            if item is None:
                return
            yield item
            if self._closed and self._queue.empty():
                return
