"""Negotiation session and participant models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cobuy.core.enums import PARTICIPANT_ADJUSTING, SESSION_ACTIVE
from cobuy.models.base import AuditMixin, Base, utcnow
from cobuy.utils.ids import new_id


class NegotiationSession(Base, AuditMixin):
    __tablename__ = "negotiation_sessions"
    __table_args__ = (
        Index("idx_negotiation_sessions_calculation_status", "calculation_id", "status"),
        # One active session per (group, property) pair.
        Index(
            "uq_negotiation_sessions_active_calculation",
            "calculation_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    calculation_id: Mapped[str] = mapped_column(
        ForeignKey("cost_calculations.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SESSION_ACTIVE)
    total_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    participants: Mapped[list["SessionParticipant"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionParticipant.joined_order",
    )


class SessionParticipant(Base, AuditMixin):
    __tablename__ = "session_participants"

    session_id: Mapped[str] = mapped_column(
        ForeignKey("negotiation_sessions.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    joined_order: Mapped[int] = mapped_column(nullable=False, default=0)
    current_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    intended_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PARTICIPANT_ADJUSTING)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_activity: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    session: Mapped[NegotiationSession] = relationship(back_populates="participants")
