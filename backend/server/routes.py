"""
Route registration for the bridge API.

Responsibilities:
- Define HTTP, SSE and WebSocket endpoints
- Wire subscriber adapters to the bridge for the connection lifetime
- Serve audio assets from MUSIC_DIR
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI, Response, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, PlainTextResponse
from sse_starlette.sse import EventSourceResponse

from bridge.bridge import CommandChannelBridge
from bridge.subscribers import EventStreamAdapter, WebSocketAdapter
from config import AppConfig
from constants import ASSET_MEDIA_TYPE, ASSET_ROUTE_PREFIX, SSE_LINE_SEPARATOR, SSE_PING_INTERVAL_S
from observability.logger import log_event


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/api/diagnostics")
    async def diagnostics() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        bridge: CommandChannelBridge = app.state.bridge
        return bridge.snapshot()

    @app.get("/api/events")
    async def events() -> EventSourceResponse: # pyright: ignore[reportUnusedFunction]
        bridge: CommandChannelBridge = app.state.bridge
        config: AppConfig = app.state.config

        adapter = EventStreamAdapter(max_frames=config.subscriber_queue_max_frames)
        subscriber_id = await bridge.subscribe(adapter)

        async def stream() -> AsyncIterator[str]:
            try:
                async for frame in adapter.stream():
                    yield frame
            finally:
                # Runs on normal end-of-stream and on client abort (cancel)
                bridge.unsubscribe(subscriber_id, reason="client_disconnect")

        return EventSourceResponse(
            stream(),
            ping=SSE_PING_INTERVAL_S,
            sep=SSE_LINE_SEPARATOR,
        )

    @app.websocket("/api/socket")
    async def socket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        bridge: CommandChannelBridge = app.state.bridge
        config: AppConfig = app.state.config

        adapter = WebSocketAdapter(ws, max_frames=config.subscriber_queue_max_frames)
        subscriber_id = await bridge.subscribe(adapter)
        pump_task = asyncio.create_task(adapter.pump())
        reason = "cancelled"

        try:
            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect()

                if msg.get("text") is not None:
                    await bridge.send_upstream(subscriber_id, msg["text"])

        except WebSocketDisconnect:
            reason = "client_disconnect"

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "subscriber_id": subscriber_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            reason = "server_error"

        finally:
            bridge.unsubscribe(subscriber_id, reason=reason)
            adapter.mark_consumer_gone()
            pump_task.cancel()
            try:
                await pump_task
            except asyncio.CancelledError:
                pass
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "WS_PUMP_FAILED",
                    "subscriber_id": subscriber_id,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

    @app.get(ASSET_ROUTE_PREFIX + "/{filename}")
    async def audio_asset(filename: str) -> Response: # pyright: ignore[reportUnusedFunction]
        config: AppConfig = app.state.config

        path = resolve_asset_path(config.music_dir, filename)
        if path is None:
            log_event({
                "event_type": "ASSET_NOT_FOUND",
                "filename": filename,
            })
            return PlainTextResponse("File not found", status_code=404)

        return FileResponse(path, media_type=ASSET_MEDIA_TYPE)


def resolve_asset_path(music_dir: str, filename: str) -> Path | None:
    """
    Map an asset id to a file inside music_dir.

    Returns None if the file does not exist or the id escapes music_dir.
    """
    root = Path(music_dir).resolve()
    candidate = (root / filename).resolve()

    if not candidate.is_relative_to(root) or candidate == root:
        return None
    if not candidate.is_file():
        return None
    return candidate
