"""Presence registry: which users hold a live connection to which session."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from cobuy.core.logging import LogContext, log_extra
from cobuy.realtime.handles import ConnectionHandle

logger = logging.getLogger(__name__)


class PresenceRegistry(ABC):
    """Transient session -> user -> connections map.

    Nothing here is persisted. After a restart every participant simply reads
    as offline until their client reconnects.
    """

    @abstractmethod
    async def register(self, session_id: str, user_id: str, handle: ConnectionHandle) -> bool:
        """Add ``handle``; return True when the user was offline before."""

    @abstractmethod
    async def unregister(self, session_id: str, user_id: str, handle: ConnectionHandle | None = None) -> bool:
        """Remove one handle (or all of the user's handles); return True when the user went offline."""

    @abstractmethod
    async def discard(self, session_id: str, handle: ConnectionHandle) -> bool:
        """Drop a stale handle found by the fan-out; return True when its user went offline."""

    @abstractmethod
    async def list_online(self, session_id: str) -> set[str]:
        ...

    @abstractmethod
    async def handles(self, session_id: str) -> list[ConnectionHandle]:
        ...

    @abstractmethod
    async def session_ids(self) -> list[str]:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Shutdown hook: close every live handle and forget all sessions."""


class InMemoryPresenceRegistry(PresenceRegistry):
    """Single-process registry.

    A user may hold several connections to one session (e.g. two tabs); events
    fan out to all of them and the user stays online until the last one closes.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, dict[str, dict[str, ConnectionHandle]]] = {}
        self._lock = asyncio.Lock()

    async def register(self, session_id: str, user_id: str, handle: ConnectionHandle) -> bool:
        async with self._lock:
            users = self._sessions.setdefault(session_id, {})
            connections = users.setdefault(user_id, {})
            was_online = bool(connections)
            connections[handle.connection_id] = handle
        logger.info(
            "presence.registered",
            extra=log_extra(
                "presence.registered",
                LogContext(session_id=session_id, user_id=user_id, connection_id=handle.connection_id),
                connections=len(connections),
            ),
        )
        return not was_online

    async def unregister(self, session_id: str, user_id: str, handle: ConnectionHandle | None = None) -> bool:
        async with self._lock:
            went_offline = self._remove(session_id, user_id, handle)
        logger.info(
            "presence.unregistered",
            extra=log_extra(
                "presence.unregistered",
                LogContext(
                    session_id=session_id,
                    user_id=user_id,
                    connection_id=handle.connection_id if handle else None,
                ),
                went_offline=went_offline,
            ),
        )
        return went_offline

    async def discard(self, session_id: str, handle: ConnectionHandle) -> bool:
        async with self._lock:
            went_offline = self._remove(session_id, handle.user_id, handle)
        logger.info(
            "presence.stale_discarded",
            extra=log_extra(
                "presence.stale_discarded",
                LogContext(session_id=session_id, user_id=handle.user_id, connection_id=handle.connection_id),
            ),
        )
        return went_offline

    def _remove(self, session_id: str, user_id: str, handle: ConnectionHandle | None) -> bool:
        users = self._sessions.get(session_id)
        if not users or user_id not in users:
            return False
        connections = users[user_id]
        if handle is None:
            connections.clear()
        else:
            connections.pop(handle.connection_id, None)
        if connections:
            return False
        users.pop(user_id, None)
        if not users:
            # Last subscriber gone; release the session's channel resources.
            self._sessions.pop(session_id, None)
        return True

    async def list_online(self, session_id: str) -> set[str]:
        async with self._lock:
            return set(self._sessions.get(session_id, {}))

    async def handles(self, session_id: str) -> list[ConnectionHandle]:
        async with self._lock:
            users = self._sessions.get(session_id, {})
            return [handle for connections in users.values() for handle in connections.values()]

    async def session_ids(self) -> list[str]:
        async with self._lock:
            return list(self._sessions)

    async def close(self) -> None:
        async with self._lock:
            handles = [
                handle
                for users in self._sessions.values()
                for connections in users.values()
                for handle in connections.values()
            ]
            self._sessions.clear()
        for handle in handles:
            await handle.close()
        logger.info(
            "presence.closed",
            extra=log_extra("presence.closed", LogContext(), closed_connections=len(handles)),
        )
