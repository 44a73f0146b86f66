"""Negotiation engine: the state machine behind a live percentage negotiation.

Per participant: ``adjusting -> confirmed -> locked`` with the single user
revocation ``confirmed -> adjusting``. Per session: ``active -> completed``
(the automatic lock) or ``active -> cancelled``.

Every operation validates against the current stored state, persists through
the session store and only then broadcasts. Rejected operations
(``ValidationError``/``PreconditionFailed``) change nothing and broadcast
nothing; a ``StorageError`` aborts the operation before any broadcast.

The lock fires the instant the group reaches consensus: after every
percentage change, confirmation, revocation or roster change the engine asks
the store to lock, and the store re-checks all-confirmed plus a total within
tolerance of 100 inside one transaction.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from functools import partial
from typing import Any

from cobuy.core.config import Config, get_config
from cobuy.core.enums import PARTICIPANT_ADJUSTING, PARTICIPANT_CONFIRMED, SESSION_ACTIVE
from cobuy.core.exceptions import NotFoundError, PreconditionFailed, StorageError, ValidationError
from cobuy.core.logging import LogContext, log_extra
from cobuy.orchestration.state_machine import PARTICIPANT_STATES
from cobuy.realtime import events
from cobuy.realtime.fanout import FanoutChannel
from cobuy.realtime.presence import PresenceRegistry
from cobuy.schemas.negotiations import ParticipantSnapshot, SessionSnapshot
from cobuy.services.session_store import SessionStore
from cobuy.utils.percentages import in_bounds

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], SessionStore]


class NegotiationEngine:
    def __init__(
        self,
        channel: FanoutChannel,
        store_factory: StoreFactory | None = None,
        settings: Config | None = None,
    ) -> None:
        self.settings = settings or get_config()
        self._channel = channel
        self._store_factory = store_factory or partial(SessionStore, settings=self.settings)

    @property
    def registry(self) -> PresenceRegistry:
        return self._channel.registry

    async def _store(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        """Run one store call on a worker thread with its own DB session."""

        def _run() -> Any:
            with self._store_factory() as store:
                return getattr(store, operation)(*args, **kwargs)

        return await asyncio.to_thread(_run)

    async def _with_presence(self, snapshot: SessionSnapshot) -> SessionSnapshot:
        return snapshot.with_online(await self.registry.list_online(snapshot.id))

    # ------------------------------------------------------------------
    # Reads and session lifecycle
    # ------------------------------------------------------------------

    async def open_session(
        self,
        group_id: str,
        property_id: str,
        user_id: str,
        purchase_price: float | None = None,
    ) -> SessionSnapshot:
        snapshot = await self._store(
            "get_or_create_session", group_id, property_id, user_id, purchase_price=purchase_price
        )
        return await self._with_presence(snapshot)

    async def get_state(self, session_id: str) -> SessionSnapshot:
        snapshot = await self._store("get_session", session_id)
        return await self._with_presence(snapshot)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _coerce_percentage(self, value: Any) -> float:
        if isinstance(value, bool):
            raise ValidationError("Percentage must be a number.")
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Percentage must be a number.") from exc
        if not math.isfinite(number):
            raise ValidationError("Percentage must be a finite number.")
        return number

    def _check_range(self, value: float) -> None:
        lower = self.settings.NEGOTIATION_MIN_PERCENTAGE
        upper = self.settings.NEGOTIATION_MAX_PERCENTAGE
        if not in_bounds(value, lower, upper):
            raise ValidationError(f"Percentage must be between {lower:g}% and {upper:g}%.")

    @staticmethod
    def _require_active(snapshot: SessionSnapshot) -> None:
        if snapshot.status != SESSION_ACTIVE:
            raise PreconditionFailed(f"Session is {snapshot.status}; no further changes are accepted.")

    @staticmethod
    def _require_participant(snapshot: SessionSnapshot, user_id: str) -> ParticipantSnapshot:
        participant = snapshot.participant(user_id)
        if participant is None:
            raise NotFoundError(f"User {user_id} is not a participant of session {snapshot.id}.")
        return participant

    def _log_rejection(self, operation: str, session_id: str, user_id: str, exc: Exception) -> None:
        logger.info(
            "negotiation.rejected",
            extra=log_extra(
                "negotiation.rejected",
                LogContext(session_id=session_id, user_id=user_id),
                operation=operation,
                error_type=type(exc).__name__,
                detail=str(exc),
            ),
        )

    # ------------------------------------------------------------------
    # Participant operations
    # ------------------------------------------------------------------

    async def propose_percentage(self, session_id: str, user_id: str, value: Any) -> SessionSnapshot:
        """Move the caller's percentage while they are still adjusting."""
        try:
            number = self._coerce_percentage(value)
            snapshot = await self._store("get_session", session_id)
            self._require_active(snapshot)
            participant = self._require_participant(snapshot, user_id)
            if participant.status != PARTICIPANT_ADJUSTING:
                raise PreconditionFailed("Revoke your confirmation before changing your percentage.")
            self._check_range(number)
        except (ValidationError, PreconditionFailed, NotFoundError) as exc:
            self._log_rejection("propose_percentage", session_id, user_id, exc)
            raise

        updated = await self._store("update_participant", session_id, user_id, percentage=number)
        logger.info(
            "negotiation.percentage.updated",
            extra=log_extra(
                "negotiation.percentage.updated",
                LogContext(session_id=session_id, user_id=user_id),
                percentage=number,
                total_percentage=updated.total_percentage,
            ),
        )
        await self._channel.publish(session_id, events.percentage_update(user_id, number, PARTICIPANT_ADJUSTING))
        return await self._after_transition(session_id, updated)

    async def confirm(self, session_id: str, user_id: str) -> SessionSnapshot:
        """Confirm the caller's share; only legal while the total is 100%."""
        tolerance = self.settings.NEGOTIATION_TOTAL_TOLERANCE
        try:
            snapshot = await self._store("get_session", session_id)
            self._require_active(snapshot)
            participant = self._require_participant(snapshot, user_id)
            PARTICIPANT_STATES.assert_transition(participant.status, PARTICIPANT_CONFIRMED)
            if not snapshot.has_consensus_total(tolerance):
                raise PreconditionFailed(
                    f"Total must equal 100% to confirm (currently {snapshot.total_percentage:g}%)."
                )
        except (PreconditionFailed, NotFoundError) as exc:
            self._log_rejection("confirm", session_id, user_id, exc)
            raise

        updated = await self._store("update_participant", session_id, user_id, status=PARTICIPANT_CONFIRMED)
        logger.info(
            "negotiation.confirmed",
            extra=log_extra("negotiation.confirmed", LogContext(session_id=session_id, user_id=user_id)),
        )
        await self._channel.publish(session_id, events.status_change(user_id, PARTICIPANT_CONFIRMED))
        return await self._after_transition(session_id, updated)

    async def revoke(self, session_id: str, user_id: str) -> SessionSnapshot:
        """Withdraw a confirmation before the session locks."""
        try:
            snapshot = await self._store("get_session", session_id)
            self._require_active(snapshot)
            participant = self._require_participant(snapshot, user_id)
            PARTICIPANT_STATES.assert_transition(participant.status, PARTICIPANT_ADJUSTING)
        except (PreconditionFailed, NotFoundError) as exc:
            self._log_rejection("revoke", session_id, user_id, exc)
            raise

        updated = await self._store("update_participant", session_id, user_id, status=PARTICIPANT_ADJUSTING)
        logger.info(
            "negotiation.revoked",
            extra=log_extra("negotiation.revoked", LogContext(session_id=session_id, user_id=user_id)),
        )
        await self._channel.publish(session_id, events.status_change(user_id, PARTICIPANT_ADJUSTING))
        return await self._after_transition(session_id, updated)

    # ------------------------------------------------------------------
    # Session-level operations
    # ------------------------------------------------------------------

    async def _after_transition(self, session_id: str, updated: SessionSnapshot) -> SessionSnapshot:
        if await self.evaluate_lock(session_id):
            return await self.get_state(session_id)
        return await self._with_presence(updated)

    async def evaluate_lock(self, session_id: str) -> bool:
        """Lock the whole session if every participant confirmed at a 100% total.

        A failed lock write leaves the session active; the next triggering
        event tries again.
        """
        try:
            locked = await self._store("lock_session", session_id)
        except StorageError as exc:
            logger.warning(
                "negotiation.lock.deferred",
                extra=log_extra("negotiation.lock.deferred", LogContext(session_id=session_id), error=str(exc)),
            )
            return False
        if not locked:
            return False

        logger.info("negotiation.locked", extra=log_extra("negotiation.locked", LogContext(session_id=session_id)))
        await self._channel.publish(session_id, events.session_locked())
        return True

    async def cancel(self, session_id: str, user_id: str) -> SessionSnapshot:
        try:
            snapshot = await self._store("get_session", session_id)
            self._require_participant(snapshot, user_id)
            self._require_active(snapshot)
        except (PreconditionFailed, NotFoundError) as exc:
            self._log_rejection("cancel", session_id, user_id, exc)
            raise

        updated = await self._store("cancel_session", session_id)
        logger.info(
            "negotiation.cancelled",
            extra=log_extra("negotiation.cancelled", LogContext(session_id=session_id, user_id=user_id)),
        )
        await self._channel.publish(session_id, events.session_cancelled(user_id))
        return await self._with_presence(updated)

    async def remove_participant(self, session_id: str, user_id: str) -> SessionSnapshot:
        """Drop a member who left the group; the remaining roster may now reach consensus."""
        updated = await self._store("remove_participant", session_id, user_id)
        logger.info(
            "negotiation.participant.removed",
            extra=log_extra(
                "negotiation.participant.removed",
                LogContext(session_id=session_id, user_id=user_id),
                remaining=len(updated.participants),
            ),
        )
        await self._channel.publish(session_id, events.participant_removed(user_id))
        return await self._after_transition(session_id, updated)
