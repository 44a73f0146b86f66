"""Negotiation snapshots and request/response schemas for API contracts."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from cobuy.core.enums import PARTICIPANT_CONFIRMED, PARTICIPANT_LOCKED, SESSION_ACTIVE, SESSION_COMPLETED
from cobuy.utils.percentages import is_consensus_total, total_of


class ParticipantSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    current_percentage: float
    intended_percentage: float | None = None
    status: str
    is_online: bool = False
    confirmed_at: datetime | None = None
    last_activity: datetime | None = None


class SessionSnapshot(BaseModel):
    """Authoritative full state of one negotiation session."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    calculation_id: str
    group_id: str
    property_id: str
    status: str
    total_percentage: float
    created_at: datetime | None = None
    locked_at: datetime | None = None
    participants: list[ParticipantSnapshot] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == SESSION_ACTIVE

    @property
    def is_completed(self) -> bool:
        return self.status == SESSION_COMPLETED

    @property
    def online_count(self) -> int:
        return sum(1 for p in self.participants if p.is_online)

    def participant(self, user_id: str) -> ParticipantSnapshot | None:
        for item in self.participants:
            if item.user_id == user_id:
                return item
        return None

    def all_confirmed(self) -> bool:
        return bool(self.participants) and all(p.status == PARTICIPANT_CONFIRMED for p in self.participants)

    def all_locked(self) -> bool:
        return bool(self.participants) and all(p.status == PARTICIPANT_LOCKED for p in self.participants)

    def has_consensus_total(self, tolerance: float) -> bool:
        return is_consensus_total(self.total_percentage, tolerance)

    def with_online(self, online_user_ids: set[str]) -> "SessionSnapshot":
        """Copy with ``is_online`` stamped from the presence registry."""
        return self.model_copy(
            update={
                "participants": [
                    p.model_copy(update={"is_online": p.user_id in online_user_ids}) for p in self.participants
                ]
            }
        )

    def recomputed(self) -> "SessionSnapshot":
        """Copy whose total is the fresh sum of participant percentages."""
        return self.model_copy(update={"total_percentage": total_of(p.current_percentage for p in self.participants)})


class IntentionSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    calculation_id: str
    user_id: str
    desired_percentage: float
    max_percentage: float | None = None


class NegotiationStatusResponse(BaseModel):
    is_completed: bool
    session_id: str | None = None
    active_session_id: str | None = None
    locked_at: datetime | None = None


class ShareItem(BaseModel):
    user_id: str
    percentage: float
    amount: float


class SharesResponse(BaseModel):
    session_id: str
    total_costs: float
    shares: list[ShareItem]


class SessionOpenRequest(BaseModel):
    group_id: str = Field(min_length=1, max_length=36)
    property_id: str = Field(min_length=1, max_length=36)
    user_id: str = Field(min_length=1, max_length=36)
    purchase_price: float | None = Field(default=None, ge=0)


class ParticipantUpdateRequest(BaseModel):
    """Client publish request: either a new percentage or a status change."""

    percentage: float | None = None
    status: Literal["adjusting", "confirmed"] | None = None


class SessionActionRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=36)


class IntentionRequest(BaseModel):
    desired_percentage: float = Field(ge=0, le=100)
    max_percentage: float | None = Field(default=None, ge=0, le=100)
