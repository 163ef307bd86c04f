"""FastAPI application for the room signaling server."""
from __future__ import annotations

import base64
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from .core.config import Settings, get_settings
from .core.logging_config import setup_logging
from .routers import rooms as rooms_router
from .routers import signaling as signaling_router
from .services.gateway import SignalingGateway
from .services.registry import RoomRegistry
from .services.signaling import ConnectionManager
from .services.workers import WorkerPool, load_engine

logger = logging.getLogger(__name__)

HTML_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8" />
    <title>meetroom signaling</title>
</head>
<body>
    <h1>meetroom signaling</h1>
    <p>Connect a media client to <code>/api/signaling</code> over WebSocket.</p>
    <p>Live rooms are listed at <a href="/api/rooms">/api/rooms</a>.</p>
</body>
</html>
"""

FAVICON_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR4nGMAAQAABQABDQottAAAAABJRU5ErkJggg=="
)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(settings.log_level)
        pool = await WorkerPool.start(load_engine(settings.media_engine), settings)
        connections = ConnectionManager()
        registry = RoomRegistry(pool, connections.emit, settings=settings)
        app.state.pool = pool
        app.state.connections = connections
        app.state.registry = registry
        app.state.gateway = SignalingGateway(registry, connections)
        logger.info("Signaling server ready (env=%s, workers=%d)", settings.app_env, len(pool))
        try:
            yield
        finally:
            await registry.close()
            pool.close()

    app = FastAPI(title="meetroom signaling", version="0.1.0", lifespan=lifespan)

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(signaling_router.router, prefix="/api", tags=["signaling"])
    app.include_router(rooms_router.router, prefix="/api/rooms", tags=["rooms"])

    @app.get("/", response_class=HTMLResponse, tags=["meta"])
    async def index() -> HTMLResponse:
        """Describe where clients should connect."""

        return HTMLResponse(content=HTML_PAGE)

    @app.get("/api/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Simple liveness probe."""

        return {"status": "ok"}

    @app.head("/api/health", tags=["meta"])
    async def health_head() -> Response:
        """Allow HEAD for uptime monitors that only need the status code."""

        return Response(status_code=200)

    @app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
    async def robots() -> PlainTextResponse:
        """Serve a minimal robots.txt to avoid 404 noise."""

        return PlainTextResponse("User-agent: *\nDisallow: /")

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon() -> Response:
        """Return a tiny placeholder favicon."""

        return Response(content=FAVICON_BYTES, media_type="image/png")

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""

    settings = get_settings()
    uvicorn.run("meetroom.main:app", host=settings.listen_host, port=settings.listen_port)
