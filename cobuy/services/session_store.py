"""Durable store for negotiation sessions and their participants.

The store is the single source of truth for negotiation state. Each public
method runs in its own transaction on the service's SQLAlchemy session and
returns pydantic snapshots, never live ORM rows, so callers can hand results
across threads and over the wire.

Participant writes have row granularity. ``total_percentage`` is always a
fresh sum of participant rows: it is recomputed after every write and again
whenever a snapshot is served, so interleaved writers cannot make it drift.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cobuy.core.config import Config, get_config
from cobuy.core.enums import (
    PARTICIPANT_ADJUSTING,
    PARTICIPANT_CONFIRMED,
    PARTICIPANT_LOCKED,
    SESSION_ACTIVE,
    SESSION_CANCELLED,
    SESSION_COMPLETED,
)
from cobuy.core.exceptions import NotFoundError, PreconditionFailed, StorageError, ValidationError
from cobuy.core.logging import LogContext, log_extra
from cobuy.models import CostCalculation, GroupMember, MemberIntention, NegotiationSession, SessionParticipant
from cobuy.models.base import utcnow
from cobuy.orchestration.state_machine import SESSION_STATES
from cobuy.schemas.negotiations import (
    IntentionSnapshot,
    NegotiationStatusResponse,
    ParticipantSnapshot,
    SessionSnapshot,
    ShareItem,
    SharesResponse,
)
from cobuy.services.base_service import BaseService
from cobuy.utils.costs import build_cost_breakdown, split_amounts
from cobuy.utils.percentages import clamp, equal_split, in_bounds, is_consensus_total, total_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RosterEntry:
    """One active group member at session-open time."""

    user_id: str
    intended_percentage: float | None = None


class SessionStore(BaseService):
    """CRUD for negotiation sessions plus the derived total recomputation."""

    def __init__(self, db: Session | None = None, settings: Config | None = None) -> None:
        super().__init__(db)
        self.settings = settings or get_config()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, event: str, session_id: str | None = None, user_id: str | None = None) -> Iterator[None]:
        """Commit on success; any failure rolls the whole unit of work back."""
        try:
            yield
            self.commit()
        except SQLAlchemyError as exc:
            self.rollback()
            logger.error(
                "store.write_failed",
                extra=log_extra(
                    "store.write_failed",
                    LogContext(session_id=session_id, user_id=user_id),
                    operation=event,
                    error=str(exc),
                ),
            )
            raise StorageError(f"Failed to apply {event}.") from exc
        except Exception:
            self.rollback()
            raise

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load_session(self, session_id: str, for_update: bool = False) -> NegotiationSession:
        stmt = select(NegotiationSession).where(NegotiationSession.id == session_id)
        if for_update:
            stmt = stmt.with_for_update()
        session = self.db.execute(stmt).scalar_one_or_none()
        if session is None:
            raise NotFoundError(f"Negotiation session not found: {session_id}")
        return session

    def _load_participants(self, session_id: str, for_update: bool = False) -> list[SessionParticipant]:
        stmt = (
            select(SessionParticipant)
            .where(SessionParticipant.session_id == session_id)
            .order_by(SessionParticipant.joined_order)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.db.execute(stmt).scalars())

    def _snapshot(self, session: NegotiationSession) -> SessionSnapshot:
        calculation = self.db.get(CostCalculation, session.calculation_id)
        participants = self._load_participants(session.id)
        return SessionSnapshot(
            id=session.id,
            calculation_id=session.calculation_id,
            group_id=calculation.group_id if calculation else "",
            property_id=calculation.property_id if calculation else "",
            status=session.status,
            total_percentage=total_of(p.current_percentage for p in participants),
            created_at=session.created_at,
            locked_at=session.locked_at,
            participants=[ParticipantSnapshot.model_validate(p) for p in participants],
        )

    def get_session(self, session_id: str) -> SessionSnapshot:
        """Read the current full state of a session."""
        try:
            session = self._load_session(session_id)
            snapshot = self._snapshot(session)
            self.rollback()
            return snapshot
        except SQLAlchemyError as exc:
            self.rollback()
            raise StorageError(f"Failed to read session {session_id}.") from exc

    def _find_calculation(self, group_id: str, property_id: str) -> CostCalculation | None:
        return self.db.execute(
            select(CostCalculation).where(
                CostCalculation.group_id == group_id,
                CostCalculation.property_id == property_id,
            )
        ).scalar_one_or_none()

    def _find_active_session(self, calculation_id: str) -> NegotiationSession | None:
        return self.db.execute(
            select(NegotiationSession).where(
                NegotiationSession.calculation_id == calculation_id,
                NegotiationSession.status == SESSION_ACTIVE,
            )
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def get_or_create_calculation(
        self,
        group_id: str,
        property_id: str,
        created_by: str,
        purchase_price: float | None = None,
    ) -> CostCalculation:
        existing = self._find_calculation(group_id, property_id)
        if existing is not None:
            return existing

        costs = build_cost_breakdown(
            purchase_price=purchase_price or 0.0,
            notary_fees=self.settings.DEFAULT_NOTARY_FEES,
            inspection_costs=self.settings.DEFAULT_INSPECTION_COSTS,
            transfer_tax_rate=self.settings.TRANSFER_TAX_RATE,
        )
        calculation = CostCalculation(
            group_id=group_id,
            property_id=property_id,
            created_by=created_by,
            purchase_price=costs.purchase_price,
            notary_fees=costs.notary_fees,
            transfer_tax=costs.transfer_tax,
            inspection_costs=costs.inspection_costs,
            other_costs=costs.other_costs,
            total_costs=costs.total_costs,
        )
        try:
            with self._transaction("calculation.create"):
                self.db.add(calculation)
        except StorageError as exc:
            # Lost a concurrent create; the winner's row is the calculation.
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            existing = self._find_calculation(group_id, property_id)
            if existing is None:
                raise
            return existing
        return calculation

    def _resolve_roster(self, group_id: str, calculation_id: str) -> list[RosterEntry]:
        members = self.db.execute(
            select(GroupMember)
            .where(GroupMember.group_id == group_id, GroupMember.is_active.is_(True))
            .order_by(GroupMember.created_at, GroupMember.user_id)
        ).scalars()
        intentions = {
            item.user_id: item.desired_percentage
            for item in self.db.execute(
                select(MemberIntention).where(MemberIntention.calculation_id == calculation_id)
            ).scalars()
        }
        return [RosterEntry(user_id=m.user_id, intended_percentage=intentions.get(m.user_id)) for m in members]

    def _seed_percentages(self, roster: Sequence[RosterEntry]) -> list[float]:
        lower = self.settings.NEGOTIATION_MIN_PERCENTAGE
        upper = self.settings.NEGOTIATION_MAX_PERCENTAGE
        defaults = equal_split(len(roster))
        return [
            clamp(entry.intended_percentage if entry.intended_percentage is not None else default, lower, upper)
            for entry, default in zip(roster, defaults)
        ]

    def get_or_create_session(
        self,
        group_id: str,
        property_id: str,
        created_by: str,
        roster: Sequence[RosterEntry] | None = None,
        purchase_price: float | None = None,
    ) -> SessionSnapshot:
        """Return the active session for the pair, creating and seeding it when missing."""
        calculation = self.get_or_create_calculation(group_id, property_id, created_by, purchase_price)
        existing = self._find_active_session(calculation.id)
        if existing is not None:
            return self.get_session(existing.id)

        entries = list(roster) if roster is not None else self._resolve_roster(group_id, calculation.id)
        if not entries:
            raise PreconditionFailed("Cannot open a negotiation without active group members.")
        seeds = self._seed_percentages(entries)

        session = NegotiationSession(
            calculation_id=calculation.id,
            status=SESSION_ACTIVE,
            created_by=created_by,
            total_percentage=total_of(seeds),
        )
        try:
            with self._transaction("session.create"):
                self.db.add(session)
                self.db.flush()
                for order, (entry, seed) in enumerate(zip(entries, seeds)):
                    self.db.add(
                        SessionParticipant(
                            session_id=session.id,
                            user_id=entry.user_id,
                            joined_order=order,
                            current_percentage=seed,
                            intended_percentage=entry.intended_percentage,
                            status=PARTICIPANT_ADJUSTING,
                        )
                    )
        except StorageError as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            existing = self._find_active_session(calculation.id)
            if existing is None:
                raise
            return self.get_session(existing.id)

        logger.info(
            "store.session.created",
            extra=log_extra(
                "store.session.created",
                LogContext(session_id=session.id, user_id=created_by),
                participant_count=len(entries),
            ),
        )
        return self.get_session(session.id)

    # ------------------------------------------------------------------
    # Participant writes
    # ------------------------------------------------------------------

    def _recompute_total(self, session_id: str) -> None:
        """Rewrite the stored aggregate as a fresh sum inside the caller's transaction.

        Runs after the participant write while the session row is held, so the
        last writer always stores the sum of every committed row.
        """
        self.db.flush()
        summed = (
            select(func.coalesce(func.sum(SessionParticipant.current_percentage), 0.0))
            .where(SessionParticipant.session_id == session_id)
            .scalar_subquery()
        )
        self.db.execute(
            update(NegotiationSession)
            .where(NegotiationSession.id == session_id)
            .values(total_percentage=summed, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )

    def update_participant(
        self,
        session_id: str,
        user_id: str,
        percentage: float | None = None,
        status: str | None = None,
    ) -> SessionSnapshot:
        """Persist a participant's percentage and/or status, then recompute the total."""
        if status == PARTICIPANT_LOCKED:
            raise PreconditionFailed("Participants are only locked by the whole-session lock.")
        if status is not None and status not in {PARTICIPANT_ADJUSTING, PARTICIPANT_CONFIRMED}:
            raise ValidationError(f"Unknown participant status: {status}")

        with self._transaction("participant.update", session_id=session_id, user_id=user_id):
            session = self._load_session(session_id, for_update=True)
            if session.status != SESSION_ACTIVE:
                raise PreconditionFailed(f"Session is {session.status}; no further changes are accepted.")
            participant = self.db.get(SessionParticipant, (session_id, user_id))
            if participant is None:
                raise NotFoundError(f"User {user_id} is not a participant of session {session_id}.")

            if percentage is not None:
                if participant.status != PARTICIPANT_ADJUSTING:
                    raise PreconditionFailed("Revoke your confirmation before changing your percentage.")
                self._validate_percentage(percentage)
                participant.current_percentage = float(percentage)
            if status is not None and status != participant.status:
                participant.status = status
                participant.confirmed_at = utcnow() if status == PARTICIPANT_CONFIRMED else None
            participant.last_activity = utcnow()
            self._recompute_total(session_id)

        return self.get_session(session_id)

    def _validate_percentage(self, value: float) -> None:
        if value != value:  # NaN
            raise ValidationError("Percentage must be a number.")
        lower = self.settings.NEGOTIATION_MIN_PERCENTAGE
        upper = self.settings.NEGOTIATION_MAX_PERCENTAGE
        if not in_bounds(value, lower, upper):
            raise ValidationError(f"Percentage must be between {lower:g}% and {upper:g}%.")

    def remove_participant(self, session_id: str, user_id: str) -> SessionSnapshot:
        """Drop a member who left the group before the session locked."""
        with self._transaction("participant.remove", session_id=session_id, user_id=user_id):
            session = self._load_session(session_id, for_update=True)
            if session.status != SESSION_ACTIVE:
                raise PreconditionFailed(f"Session is {session.status}; the roster is frozen.")
            result = self.db.execute(
                delete(SessionParticipant).where(
                    SessionParticipant.session_id == session_id,
                    SessionParticipant.user_id == user_id,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError(f"User {user_id} is not a participant of session {session_id}.")
            self._recompute_total(session_id)

        return self.get_session(session_id)

    # ------------------------------------------------------------------
    # Whole-session transitions
    # ------------------------------------------------------------------

    def lock_session(self, session_id: str) -> bool:
        """Lock every participant and complete the session in one transaction.

        Returns False without writing when consensus no longer holds or another
        caller already completed the session.
        """
        tolerance = self.settings.NEGOTIATION_TOTAL_TOLERANCE
        locked = False
        with self._transaction("session.lock", session_id=session_id):
            session = self._load_session(session_id, for_update=True)
            if session.status != SESSION_ACTIVE:
                return False
            participants = self._load_participants(session_id, for_update=True)
            total = total_of(p.current_percentage for p in participants)
            if not participants or not is_consensus_total(total, tolerance):
                return False
            if any(p.status != PARTICIPANT_CONFIRMED for p in participants):
                return False

            now = utcnow()
            result = self.db.execute(
                update(NegotiationSession)
                .where(NegotiationSession.id == session_id, NegotiationSession.status == SESSION_ACTIVE)
                .values(status=SESSION_COMPLETED, locked_at=now, total_percentage=total, updated_at=now)
            )
            if result.rowcount != 1:
                return False
            self.db.execute(
                update(SessionParticipant)
                .where(SessionParticipant.session_id == session_id)
                .values(status=PARTICIPANT_LOCKED, updated_at=now)
            )
            locked = True
        return locked

    def cancel_session(self, session_id: str) -> SessionSnapshot:
        with self._transaction("session.cancel", session_id=session_id):
            session = self._load_session(session_id, for_update=True)
            SESSION_STATES.assert_transition(session.status, SESSION_CANCELLED)
            session.status = SESSION_CANCELLED
        return self.get_session(session_id)

    # ------------------------------------------------------------------
    # Intentions, status and shares
    # ------------------------------------------------------------------

    def set_intention(
        self,
        group_id: str,
        property_id: str,
        user_id: str,
        desired_percentage: float,
        max_percentage: float | None = None,
    ) -> IntentionSnapshot:
        """Record the share a member hopes for before the negotiation opens."""
        lower = self.settings.NEGOTIATION_MIN_PERCENTAGE
        upper = self.settings.NEGOTIATION_MAX_PERCENTAGE
        if not in_bounds(desired_percentage, lower, upper):
            raise ValidationError(f"Desired percentage must be between {lower:g}% and {upper:g}%.")
        if max_percentage is not None and max_percentage < desired_percentage:
            raise ValidationError("Maximum percentage cannot be lower than the desired percentage.")

        calculation = self.get_or_create_calculation(group_id, property_id, created_by=user_id)
        with self._transaction("intention.set", user_id=user_id):
            intention = self.db.get(MemberIntention, (calculation.id, user_id))
            if intention is None:
                intention = MemberIntention(calculation_id=calculation.id, user_id=user_id)
                self.db.add(intention)
            intention.desired_percentage = float(desired_percentage)
            intention.max_percentage = max_percentage
        return IntentionSnapshot.model_validate(intention)

    def list_intentions(self, group_id: str, property_id: str) -> list[IntentionSnapshot]:
        calculation = self._find_calculation(group_id, property_id)
        if calculation is None:
            return []
        rows = self.db.execute(
            select(MemberIntention).where(MemberIntention.calculation_id == calculation.id)
        ).scalars()
        return [IntentionSnapshot.model_validate(row) for row in rows]

    def get_negotiation_status(self, group_id: str, property_id: str) -> NegotiationStatusResponse:
        calculation = self._find_calculation(group_id, property_id)
        if calculation is None:
            return NegotiationStatusResponse(is_completed=False)

        completed = self.db.execute(
            select(NegotiationSession)
            .where(
                NegotiationSession.calculation_id == calculation.id,
                NegotiationSession.status == SESSION_COMPLETED,
            )
            .order_by(NegotiationSession.locked_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        active = self._find_active_session(calculation.id)
        return NegotiationStatusResponse(
            is_completed=completed is not None,
            session_id=completed.id if completed else None,
            active_session_id=active.id if active else None,
            locked_at=completed.locked_at if completed else None,
        )

    def get_shares(self, session_id: str) -> SharesResponse:
        """Per-member amounts of the calculation's total costs for a completed session."""
        snapshot = self.get_session(session_id)
        if not snapshot.is_completed:
            raise PreconditionFailed("Shares are only final once the session is completed.")
        calculation = self.db.get(CostCalculation, snapshot.calculation_id)
        total_costs = float(calculation.total_costs) if calculation else 0.0
        percentages = {p.user_id: p.current_percentage for p in snapshot.participants}
        amounts = split_amounts(total_costs, percentages)
        return SharesResponse(
            session_id=session_id,
            total_costs=total_costs,
            shares=[
                ShareItem(user_id=user_id, percentage=pct, amount=amounts[user_id])
                for user_id, pct in percentages.items()
            ],
        )

