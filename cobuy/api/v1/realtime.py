"""Realtime subscription endpoints: a WebSocket and an SSE stream per session."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from cobuy.api.v1._errors import error_code, to_http_exception
from cobuy.core.dependencies import get_hub
from cobuy.core.enums import EventType
from cobuy.core.exceptions import CoBuyException, TransportError
from cobuy.realtime import events
from cobuy.realtime.handles import QueueHandle, WebSocketHandle
from cobuy.realtime.hub import NegotiationHub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

# Application-defined close code for a refused subscription.
POLICY_VIOLATION = 1008


@router.websocket("/negotiations/{session_id}/ws")
async def negotiation_socket(websocket: WebSocket, session_id: str, user_id: str = Query(min_length=1)) -> None:
    hub: NegotiationHub = websocket.app.state.hub
    await websocket.accept()
    handle = WebSocketHandle(websocket, user_id)

    try:
        await hub.connect(session_id, user_id, handle)
    except CoBuyException as exc:
        try:
            await handle.send(events.error_event(error_code(exc), str(exc)).to_payload())
        except TransportError as exc:
            logger.debug("Could not deliver refusal to %r: %s", handle, exc)
        await handle.close(code=POLICY_VIOLATION)
        return

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await hub.channel.send_to(
                    session_id, handle, events.error_event("validation_error", "Message must be JSON.")
                )
                continue
            if isinstance(message, dict) and message.get("type") == EventType.HEARTBEAT.value:
                await hub.channel.send_to(session_id, handle, events.heartbeat())
                continue
            try:
                await hub.handle_message(session_id, user_id, message)
            except CoBuyException as exc:
                # Rejections go to the originating connection only.
                await hub.channel.send_to(session_id, handle, events.error_event(error_code(exc), str(exc)))
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(session_id, user_id, handle)


@router.get("/negotiations/{session_id}/events")
async def negotiation_events(
    session_id: str,
    user_id: str = Query(min_length=1),
    hub: NegotiationHub = Depends(get_hub),
) -> StreamingResponse:
    handle = QueueHandle(user_id, maxsize=hub.settings.REALTIME_QUEUE_SIZE)
    try:
        await hub.connect(session_id, user_id, handle)
    except CoBuyException as exc:
        raise to_http_exception(exc) from exc

    async def stream():
        try:
            async for payload in handle.events(hub.settings.REALTIME_HEARTBEAT_SECONDS):
                yield events.format_sse(payload)
        finally:
            await handle.close()
            await hub.disconnect(session_id, user_id, handle)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )
