"""Root API router for v1 endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from cobuy.api.v1 import health, negotiations, realtime
from cobuy.core.config import get_config


def get_api_router() -> APIRouter:
    api_router = APIRouter(prefix=get_config().API_PREFIX)
    api_router.include_router(health.router)
    api_router.include_router(negotiations.router)
    api_router.include_router(realtime.router)
    return api_router
