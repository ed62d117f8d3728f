"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (command channel bridge)
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bridge.bridge import CommandChannelBridge
from bridge.upstream import UpstreamFactory, tcp_upstream_factory
from config import AppConfig
from observability import logger
from observability.logger import log_event

from server.routes import register_routes


def create_app(
    config: AppConfig | None = None,
    upstream_factory: UpstreamFactory | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with a fake upstream factory
    - Environment-specific setup
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()

    logger.set_enabled(config.log_events_enabled)

    if upstream_factory is None:
        upstream_factory = tcp_upstream_factory(
            host=config.upstream_host,
            port=config.upstream_port,
        )

    # One bridge per process; every route shares it
    bridge = CommandChannelBridge(
        upstream_factory=upstream_factory,
        mode=config.upstream_mode,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        log_event({
            "event_type": "SERVER_STARTING",
            "env": config.env,
            "upstream": f"{config.upstream_host}:{config.upstream_port}",
            "mode": config.upstream_mode,
        })
        await bridge.start()
        try:
            yield
        finally:
            await bridge.shutdown()

    app = FastAPI(title="Sync Playback Bridge", lifespan=lifespan)

    app.state.config = config
    app.state.bridge = bridge

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
