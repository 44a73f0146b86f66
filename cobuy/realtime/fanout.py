"""Best-effort, at-most-once fan-out of session events to live connections."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from cobuy.core.enums import EventType
from cobuy.core.exceptions import TransportError
from cobuy.core.logging import LogContext, log_extra
from cobuy.realtime.events import SessionEvent, online_users
from cobuy.realtime.handles import ConnectionHandle
from cobuy.realtime.presence import PresenceRegistry

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    sent_count: int = 0
    failed_user_ids: list[str] = field(default_factory=list)


class FanoutChannel:
    """Deliver events to every registered connection of a session.

    Missed events are not redelivered; clients resynchronize full state on
    (re)connect. A handle that fails a send is treated as disconnected and
    dropped from the registry.
    """

    def __init__(self, registry: PresenceRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> PresenceRegistry:
        return self._registry

    async def _deliver(self, handle: ConnectionHandle, payload: dict) -> bool:
        try:
            await handle.send(payload)
            return True
        except TransportError as exc:
            logger.debug("Delivery to %r failed: %s", handle, exc)
            return False

    async def publish(
        self,
        session_id: str,
        event: SessionEvent,
        exclude_user_id: str | None = None,
    ) -> PublishResult:
        targets = [
            handle
            for handle in await self._registry.handles(session_id)
            if exclude_user_id is None or handle.user_id != exclude_user_id
        ]
        payload = event.to_payload()
        outcomes = await asyncio.gather(*(self._deliver(handle, payload) for handle in targets))

        result = PublishResult()
        stale: list[ConnectionHandle] = []
        for handle, delivered in zip(targets, outcomes):
            if delivered:
                result.sent_count += 1
            else:
                result.failed_user_ids.append(handle.user_id)
                stale.append(handle)
        for handle in stale:
            await self._registry.discard(session_id, handle)

        logger.info(
            "fanout.published",
            extra=log_extra(
                "fanout.published",
                LogContext(session_id=session_id, user_id=event.user_id),
                event_type=event.type,
                sent_count=result.sent_count,
                failed_count=len(result.failed_user_ids),
            ),
        )
        if stale and event.type != EventType.ONLINE_USERS.value:
            await self.publish_online_users(session_id)
        return result

    async def publish_online_users(self, session_id: str) -> PublishResult:
        users = sorted(await self._registry.list_online(session_id))
        return await self.publish(session_id, online_users(users))

    async def send_to(self, session_id: str, handle: ConnectionHandle, event: SessionEvent) -> bool:
        """Unicast to one connection (connect handshake, errors); stale handles are dropped."""
        delivered = await self._deliver(handle, event.to_payload())
        if not delivered:
            await self._registry.discard(session_id, handle)
        return delivered
