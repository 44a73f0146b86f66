"""Application entrypoint for the negotiation service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cobuy.api.v1.router import get_api_router
from cobuy.core.config import get_config
from cobuy.core.startup import bootstrap
from cobuy.database.db import create_tables
from cobuy.realtime.hub import NegotiationHub

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    bootstrap()
    create_tables()
    app.state.hub = NegotiationHub(settings=get_config())
    logger.info("app.started", extra={"event": "app.started"})
    try:
        yield
    finally:
        await app.state.hub.shutdown()
        logger.info("app.stopped", extra={"event": "app.stopped"})


def create_app() -> FastAPI:
    cfg = get_config()
    app = FastAPI(title=cfg.APP_NAME, version=cfg.APP_VERSION, lifespan=lifespan)
    app.include_router(get_api_router())

    @app.get("/")
    def root() -> dict:
        return {"service": cfg.APP_NAME, "version": cfg.APP_VERSION, "api_prefix": cfg.API_PREFIX}

    return app


# Expose ASGI app for `uvicorn cobuy.main:app`.
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_config()
    uvicorn.run("cobuy.main:app", host=settings.API_HOST, port=settings.API_PORT)
