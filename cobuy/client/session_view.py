"""Client-side projection of one negotiation session.

The view keeps two layers: the last authoritative snapshot (from the
engine or from realtime events) and a provisional overlay holding the
local user's not-yet-acknowledged change. Authoritative data for the local
user replaces the overlay wholly; a rejection drops it and surfaces the
error. Percentage changes are debounced so a slider drag sends one value.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from cobuy.client.debounce import Debouncer
from cobuy.client.gateway import EngineGateway, Subscription
from cobuy.core.config import Config, get_config
from cobuy.core.enums import (
    PARTICIPANT_ADJUSTING,
    PARTICIPANT_CONFIRMED,
    PARTICIPANT_LOCKED,
    SESSION_ACTIVE,
    SESSION_CANCELLED,
    SESSION_COMPLETED,
    EventType,
)
from cobuy.core.exceptions import CoBuyException
from cobuy.core.logging import LogContext, log_extra
from cobuy.realtime.events import SessionEvent
from cobuy.schemas.negotiations import ParticipantSnapshot, SessionSnapshot
from cobuy.utils.percentages import in_bounds, is_consensus_total

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProvisionalChange:
    """Local change shown before the engine acknowledges it."""

    percentage: float | None = None
    status: str | None = None


class SessionView:
    def __init__(
        self,
        session_id: str,
        user_id: str,
        gateway: EngineGateway,
        settings: Config | None = None,
        debounce_ms: int | None = None,
    ) -> None:
        self.settings = settings or get_config()
        self.session_id = session_id
        self.user_id = user_id
        self._gateway = gateway
        self._authoritative: SessionSnapshot | None = None
        self._provisional: ProvisionalChange | None = None
        self._op_lock = asyncio.Lock()
        self._subscription: Subscription | None = None
        delay_ms = debounce_ms if debounce_ms is not None else self.settings.CLIENT_DEBOUNCE_MS
        self._debouncer: Debouncer[float] = Debouncer(delay_ms / 1000.0, self._send_percentage)
        self.connected = False
        self.last_error: str | None = None

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    @property
    def authoritative(self) -> SessionSnapshot | None:
        return self._authoritative

    @property
    def is_provisional(self) -> bool:
        return self._provisional is not None

    @property
    def snapshot(self) -> SessionSnapshot | None:
        """Authoritative state with the local provisional change applied."""
        if self._authoritative is None:
            return None
        if self._provisional is None:
            return self._authoritative
        change = self._provisional
        participants = []
        for item in self._authoritative.participants:
            if item.user_id == self.user_id:
                update: dict[str, Any] = {}
                if change.percentage is not None:
                    update["current_percentage"] = change.percentage
                if change.status is not None:
                    update["status"] = change.status
                item = item.model_copy(update=update)
            participants.append(item)
        return self._authoritative.model_copy(update={"participants": participants}).recomputed()

    def participant(self, user_id: str | None = None) -> ParticipantSnapshot | None:
        snapshot = self.snapshot
        if snapshot is None:
            return None
        return snapshot.participant(user_id or self.user_id)

    @property
    def total_percentage(self) -> float:
        snapshot = self.snapshot
        return snapshot.total_percentage if snapshot else 0.0

    @property
    def total_is_valid(self) -> bool:
        return is_consensus_total(self.total_percentage, self.settings.NEGOTIATION_TOTAL_TOLERANCE)

    @property
    def online_user_ids(self) -> set[str]:
        snapshot = self._authoritative
        if snapshot is None:
            return set()
        return {p.user_id for p in snapshot.participants if p.is_online}

    @property
    def online_count(self) -> int:
        """Members-online counter shown next to the roster."""
        snapshot = self._authoritative
        return snapshot.online_count if snapshot else 0

    @property
    def is_locked(self) -> bool:
        snapshot = self._authoritative
        return snapshot is not None and snapshot.status == SESSION_COMPLETED

    @property
    def can_mutate(self) -> bool:
        snapshot = self._authoritative
        if snapshot is None or snapshot.status != SESSION_ACTIVE:
            return False
        own = snapshot.participant(self.user_id)
        return own is not None and own.status != PARTICIPANT_LOCKED

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> SessionSnapshot:
        """Fetch full state, seed the view, then subscribe to live events.

        Subscribing registers presence; the feed opens with a fresh
        ``session-state`` that supersedes the fetched snapshot.
        """
        snapshot = await self._gateway.fetch_state(self.session_id)
        self._accept(snapshot)
        if self._subscription is None:
            self._subscription = await self._gateway.subscribe(self.session_id, self.user_id, self.apply_event)
        self.connected = True
        return snapshot

    async def resync(self) -> SessionSnapshot:
        return await self.connect()

    def disconnected(self) -> None:
        self.connected = False

    async def close(self) -> None:
        """Send pending input, then leave the session's live feed."""
        await self.flush()
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()
        self.disconnected()

    # ------------------------------------------------------------------
    # Local actions
    # ------------------------------------------------------------------

    def _reject_locally(self, message: str) -> bool:
        self.last_error = message
        return False

    def set_percentage(self, value: float) -> bool:
        """Show ``value`` immediately and send it once input settles.

        Must be called from a running event loop.
        """
        if not self.can_mutate:
            return self._reject_locally("This negotiation no longer accepts changes.")
        lower = self.settings.NEGOTIATION_MIN_PERCENTAGE
        upper = self.settings.NEGOTIATION_MAX_PERCENTAGE
        if not in_bounds(value, lower, upper):
            return self._reject_locally(f"Percentage must be between {lower:g}% and {upper:g}%.")
        own = self.participant()
        if own is not None and own.status != PARTICIPANT_ADJUSTING:
            return self._reject_locally("Revoke your confirmation before changing your percentage.")

        self.last_error = None
        self._provisional = ProvisionalChange(percentage=value, status=PARTICIPANT_ADJUSTING)
        self._debouncer.schedule(value)
        return True

    async def flush(self) -> None:
        """Send any debounced percentage now."""
        await self._debouncer.flush()

    async def _send_percentage(self, value: float) -> None:
        async with self._op_lock:
            try:
                snapshot = await self._gateway.propose_percentage(self.session_id, self.user_id, value)
            except CoBuyException as exc:
                self._rollback("propose_percentage", exc)
                return
            self._accept(snapshot)

    async def confirm(self) -> bool:
        await self.flush()
        if not self.can_mutate:
            return self._reject_locally("This negotiation no longer accepts changes.")
        self.last_error = None
        self._provisional = ProvisionalChange(status=PARTICIPANT_CONFIRMED)
        async with self._op_lock:
            try:
                snapshot = await self._gateway.confirm(self.session_id, self.user_id)
            except CoBuyException as exc:
                self._rollback("confirm", exc)
                return False
            self._accept(snapshot)
        return True

    async def revoke(self) -> bool:
        if not self.can_mutate:
            return self._reject_locally("This negotiation no longer accepts changes.")
        self.last_error = None
        self._provisional = ProvisionalChange(status=PARTICIPANT_ADJUSTING)
        async with self._op_lock:
            try:
                snapshot = await self._gateway.revoke(self.session_id, self.user_id)
            except CoBuyException as exc:
                self._rollback("revoke", exc)
                return False
            self._accept(snapshot)
        return True

    def _rollback(self, operation: str, exc: CoBuyException) -> None:
        # A newer pending value keeps its overlay; it will be sent next.
        if not self._debouncer.pending:
            self._provisional = None
        self.last_error = str(exc)
        logger.info(
            "client.operation.rolled_back",
            extra=log_extra(
                "client.operation.rolled_back",
                LogContext(session_id=self.session_id, user_id=self.user_id),
                operation=operation,
                error_type=type(exc).__name__,
                detail=str(exc),
            ),
        )

    def _accept(self, snapshot: SessionSnapshot) -> None:
        self._authoritative = snapshot
        self._settle_own()
        if snapshot.status != SESSION_ACTIVE:
            self._debouncer.cancel()
            self._provisional = None

    def _settle_own(self) -> None:
        if not self._debouncer.pending:
            self._provisional = None

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def _update_participant(self, user_id: str, **changes: Any) -> None:
        if self._authoritative is None:
            return
        participants = [
            p.model_copy(update=changes) if p.user_id == user_id else p for p in self._authoritative.participants
        ]
        self._authoritative = self._authoritative.model_copy(update={"participants": participants}).recomputed()
        if user_id == self.user_id:
            self._settle_own()

    def apply_event(self, event: SessionEvent | dict[str, Any]) -> None:
        """Fold one realtime event into the view (last write wins per participant)."""
        if isinstance(event, dict):
            event = SessionEvent.from_payload(event)
        kind = event.type

        if kind == EventType.SESSION_STATE.value:
            snapshot = event.snapshot()
            if snapshot is not None:
                self._authoritative = snapshot
                self._settle_own()
            return
        if kind in (EventType.CONNECTED.value, EventType.HEARTBEAT.value):
            self.connected = True
            return
        if kind == EventType.ERROR.value:
            self.last_error = event.detail
            return
        if self._authoritative is None:
            return

        if kind == EventType.PERCENTAGE_UPDATE.value and event.user_id:
            changes: dict[str, Any] = {}
            if event.percentage is not None:
                changes["current_percentage"] = event.percentage
            if event.status is not None:
                changes["status"] = event.status
            self._update_participant(event.user_id, **changes)
        elif kind == EventType.STATUS_CHANGE.value and event.user_id and event.status:
            self._update_participant(event.user_id, status=event.status)
        elif kind == EventType.ONLINE_USERS.value:
            self._authoritative = self._authoritative.with_online(set(event.users or []))
        elif kind == EventType.USER_JOINED.value and event.user_id:
            self._update_participant(event.user_id, is_online=True)
        elif kind == EventType.USER_LEFT.value and event.user_id:
            self._update_participant(event.user_id, is_online=False)
        elif kind == EventType.PARTICIPANT_REMOVED.value and event.user_id:
            participants = [p for p in self._authoritative.participants if p.user_id != event.user_id]
            self._authoritative = self._authoritative.model_copy(update={"participants": participants}).recomputed()
        elif kind == EventType.SESSION_LOCKED.value:
            participants = [p.model_copy(update={"status": PARTICIPANT_LOCKED}) for p in self._authoritative.participants]
            self._authoritative = self._authoritative.model_copy(
                update={"status": SESSION_COMPLETED, "participants": participants}
            )
            self._debouncer.cancel()
            self._provisional = None
        elif kind == EventType.SESSION_CANCELLED.value:
            self._authoritative = self._authoritative.model_copy(update={"status": SESSION_CANCELLED})
            self._debouncer.cancel()
            self._provisional = None
