"""Negotiation session endpoints for API v1."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from cobuy.api.v1._errors import to_http_exception
from cobuy.core.dependencies import get_hub, get_session_store
from cobuy.core.exceptions import CoBuyException
from cobuy.realtime.hub import NegotiationHub
from cobuy.schemas.negotiations import (
    IntentionRequest,
    IntentionSnapshot,
    NegotiationStatusResponse,
    ParticipantUpdateRequest,
    SessionActionRequest,
    SessionOpenRequest,
    SessionSnapshot,
    SharesResponse,
)
from cobuy.services.session_store import SessionStore

router = APIRouter(tags=["negotiations"])


@router.post("/negotiations", response_model=SessionSnapshot, status_code=status.HTTP_201_CREATED)
async def open_negotiation(payload: SessionOpenRequest, hub: NegotiationHub = Depends(get_hub)) -> SessionSnapshot:
    try:
        return await hub.engine.open_session(
            payload.group_id, payload.property_id, payload.user_id, purchase_price=payload.purchase_price
        )
    except CoBuyException as exc:
        raise to_http_exception(exc) from exc


@router.get("/negotiations/{session_id}", response_model=SessionSnapshot)
async def get_negotiation(session_id: str, hub: NegotiationHub = Depends(get_hub)) -> SessionSnapshot:
    try:
        return await hub.engine.get_state(session_id)
    except CoBuyException as exc:
        raise to_http_exception(exc) from exc


@router.patch("/negotiations/{session_id}/participants/{user_id}", response_model=SessionSnapshot)
async def update_participant(
    session_id: str,
    user_id: str,
    payload: ParticipantUpdateRequest,
    hub: NegotiationHub = Depends(get_hub),
) -> SessionSnapshot:
    try:
        return await hub.apply_update(session_id, user_id, payload)
    except CoBuyException as exc:
        raise to_http_exception(exc) from exc


@router.delete("/negotiations/{session_id}/participants/{user_id}", response_model=SessionSnapshot)
async def remove_participant(session_id: str, user_id: str, hub: NegotiationHub = Depends(get_hub)) -> SessionSnapshot:
    try:
        return await hub.engine.remove_participant(session_id, user_id)
    except CoBuyException as exc:
        raise to_http_exception(exc) from exc


@router.post("/negotiations/{session_id}/cancel", response_model=SessionSnapshot)
async def cancel_negotiation(
    session_id: str,
    payload: SessionActionRequest,
    hub: NegotiationHub = Depends(get_hub),
) -> SessionSnapshot:
    try:
        return await hub.engine.cancel(session_id, payload.user_id)
    except CoBuyException as exc:
        raise to_http_exception(exc) from exc


@router.get("/negotiations/{session_id}/shares", response_model=SharesResponse)
def get_shares(session_id: str, store: SessionStore = Depends(get_session_store)) -> SharesResponse:
    try:
        return store.get_shares(session_id)
    except CoBuyException as exc:
        raise to_http_exception(exc) from exc


@router.put(
    "/groups/{group_id}/properties/{property_id}/intentions/{user_id}",
    response_model=IntentionSnapshot,
)
def set_intention(
    group_id: str,
    property_id: str,
    user_id: str,
    payload: IntentionRequest,
    store: SessionStore = Depends(get_session_store),
) -> IntentionSnapshot:
    try:
        return store.set_intention(
            group_id,
            property_id,
            user_id,
            desired_percentage=payload.desired_percentage,
            max_percentage=payload.max_percentage,
        )
    except CoBuyException as exc:
        raise to_http_exception(exc) from exc


@router.get(
    "/groups/{group_id}/properties/{property_id}/intentions",
    response_model=list[IntentionSnapshot],
)
def list_intentions(
    group_id: str,
    property_id: str,
    store: SessionStore = Depends(get_session_store),
) -> list[IntentionSnapshot]:
    return store.list_intentions(group_id, property_id)


@router.get(
    "/groups/{group_id}/properties/{property_id}/negotiation-status",
    response_model=NegotiationStatusResponse,
)
def negotiation_status(
    group_id: str,
    property_id: str,
    store: SessionStore = Depends(get_session_store),
) -> NegotiationStatusResponse:
    return store.get_negotiation_status(group_id, property_id)
