"""Group roster and member intention models consumed by the session store."""

from __future__ import annotations

from sqlalchemy import Boolean, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from cobuy.models.base import AuditMixin, Base


class GroupMember(Base, AuditMixin):
    """Read-only roster row; group membership is managed elsewhere."""

    __tablename__ = "group_members"

    group_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class MemberIntention(Base, AuditMixin):
    __tablename__ = "member_intentions"

    calculation_id: Mapped[str] = mapped_column(
        ForeignKey("cost_calculations.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    desired_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    max_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
