"""Dependency providers for API handlers."""

from __future__ import annotations

from collections.abc import Generator

from fastapi import Request

from cobuy.realtime.hub import NegotiationHub
from cobuy.services.session_store import SessionStore


def get_session_store() -> Generator[SessionStore, None, None]:
    """Yield a request-scoped store for read endpoints."""
    with SessionStore() as store:
        yield store


def get_hub(request: Request) -> NegotiationHub:
    """Return the process-wide hub built by the application lifespan."""
    return request.app.state.hub
