"""Pydantic schema package for API contracts."""

from cobuy.schemas.common import APIEnvelope, ErrorEnvelope
from cobuy.schemas.negotiations import (
    IntentionRequest,
    IntentionSnapshot,
    NegotiationStatusResponse,
    ParticipantSnapshot,
    ParticipantUpdateRequest,
    SessionActionRequest,
    SessionOpenRequest,
    SessionSnapshot,
    ShareItem,
    SharesResponse,
)

__all__ = [
    "APIEnvelope",
    "ErrorEnvelope",
    "IntentionRequest",
    "IntentionSnapshot",
    "NegotiationStatusResponse",
    "ParticipantSnapshot",
    "ParticipantUpdateRequest",
    "SessionActionRequest",
    "SessionOpenRequest",
    "SessionSnapshot",
    "ShareItem",
    "SharesResponse",
]
