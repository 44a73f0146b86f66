"""SQLAlchemy model package for the negotiation schema."""

from cobuy.models.base import Base
from cobuy.models.cost_calculation import CostCalculation
from cobuy.models.group import GroupMember, MemberIntention
from cobuy.models.negotiation import NegotiationSession, SessionParticipant

__all__ = [
    "Base",
    "CostCalculation",
    "GroupMember",
    "MemberIntention",
    "NegotiationSession",
    "SessionParticipant",
]
