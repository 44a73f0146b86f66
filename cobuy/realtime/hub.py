"""Lifecycle-scoped container for the realtime negotiation services.

One hub is built at process start (FastAPI lifespan) and shut down explicitly.
Swapping ``InMemoryPresenceRegistry`` for a broker-backed registry is the
path to running several server processes.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cobuy.core.config import Config, get_config
from cobuy.core.enums import PARTICIPANT_CONFIRMED
from cobuy.core.exceptions import PreconditionFailed, ValidationError
from cobuy.core.logging import LogContext, log_extra
from cobuy.realtime import events
from cobuy.realtime.fanout import FanoutChannel
from cobuy.realtime.handles import ConnectionHandle
from cobuy.realtime.presence import InMemoryPresenceRegistry, PresenceRegistry
from cobuy.schemas.negotiations import ParticipantUpdateRequest, SessionSnapshot
from cobuy.services.negotiation_engine import NegotiationEngine, StoreFactory

logger = logging.getLogger(__name__)


class NegotiationHub:
    def __init__(
        self,
        settings: Config | None = None,
        registry: PresenceRegistry | None = None,
        store_factory: StoreFactory | None = None,
    ) -> None:
        self.settings = settings or get_config()
        self.registry = registry or InMemoryPresenceRegistry()
        self.channel = FanoutChannel(self.registry)
        self.engine = NegotiationEngine(self.channel, store_factory=store_factory, settings=self.settings)

    async def connect(self, session_id: str, user_id: str, handle: ConnectionHandle) -> SessionSnapshot:
        """Register a subscriber and hand it the full current state.

        Raises before registering when the session is unknown or the user is
        not on its roster.
        """
        snapshot = await self.engine.get_state(session_id)
        if snapshot.participant(user_id) is None:
            raise PreconditionFailed(f"User {user_id} is not a participant of session {session_id}.")

        became_online = await self.registry.register(session_id, user_id, handle)
        state = snapshot.with_online(await self.registry.list_online(session_id))
        await self.channel.send_to(session_id, handle, events.connected(user_id))
        await self.channel.send_to(session_id, handle, events.session_state(state))
        if became_online:
            await self.channel.publish(session_id, events.user_joined(user_id), exclude_user_id=user_id)
        await self.channel.publish_online_users(session_id)

        logger.info(
            "realtime.connected",
            extra=log_extra(
                "realtime.connected",
                LogContext(session_id=session_id, user_id=user_id, connection_id=handle.connection_id),
                transport=type(handle).__name__,
            ),
        )
        return state

    async def disconnect(self, session_id: str, user_id: str, handle: ConnectionHandle) -> None:
        """Drop a subscriber; committed state is untouched."""
        went_offline = await self.registry.unregister(session_id, user_id, handle)
        if went_offline:
            await self.channel.publish(session_id, events.user_left(user_id), exclude_user_id=user_id)
            await self.channel.publish_online_users(session_id)
        logger.info(
            "realtime.disconnected",
            extra=log_extra(
                "realtime.disconnected",
                LogContext(session_id=session_id, user_id=user_id, connection_id=handle.connection_id),
                went_offline=went_offline,
            ),
        )

    async def apply_update(self, session_id: str, user_id: str, request: ParticipantUpdateRequest) -> SessionSnapshot:
        """Turn a client publish request into engine operations."""
        if request.percentage is None and request.status is None:
            raise ValidationError("Provide a percentage or a status.")

        if request.percentage is not None:
            snapshot = await self.engine.propose_percentage(session_id, user_id, request.percentage)
            if request.status == PARTICIPANT_CONFIRMED:
                snapshot = await self.engine.confirm(session_id, user_id)
            return snapshot
        if request.status == PARTICIPANT_CONFIRMED:
            return await self.engine.confirm(session_id, user_id)
        return await self.engine.revoke(session_id, user_id)

    async def handle_message(self, session_id: str, user_id: str, message: dict[str, Any]) -> SessionSnapshot:
        """Validate one inbound realtime message and apply it."""
        try:
            request = ParticipantUpdateRequest.model_validate(message)
        except PydanticValidationError as exc:
            raise ValidationError(f"Malformed update message: {exc.errors()[0]['msg']}") from exc
        return await self.apply_update(session_id, user_id, request)

    async def shutdown(self) -> None:
        await self.registry.close()
        logger.info("realtime.hub.shutdown", extra={"event": "realtime.hub.shutdown"})
