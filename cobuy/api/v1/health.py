"""Health endpoints for API v1."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from cobuy.core.config import get_config
from cobuy.core.dependencies import get_hub
from cobuy.database.db import verify_database_connection
from cobuy.realtime.hub import NegotiationHub

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict:
    cfg = get_config()
    return {"status": "ok", "service": cfg.APP_NAME, "version": cfg.APP_VERSION}


@router.get("/health/ready")
async def ready(hub: NegotiationHub = Depends(get_hub)) -> dict:
    sessions = await hub.registry.session_ids()
    database_ok = verify_database_connection()
    return {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
        "live_sessions": len(sessions),
    }
