"""
Client-side transports: bridge -> playback scheduler.

Responsibilities:
- Connect to the bridge (SSE /api/events or WebSocket /api/socket)
- Hand every received frame to the frame handler, in order
- Report open / lost transitions
- Reconnect after a fixed delay, forever, until stopped

Non-responsibilities:
- NO command parsing (the scheduler parses frames)
- NO backoff growth (fixed delay, EventSource semantics)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Callable

import httpx
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import WebSocketException

from constants import RECONNECT_DELAY_S_DEFAULT, SSE_DATA_FIELD
from observability.logger import log_event


FrameHandler = Callable[[str], object]
LifecycleHandler = Callable[[], None]


# ---------------------------------------------------------------------
# SSE line parsing
# ---------------------------------------------------------------------

class SseEventParser:
    """
    Incremental text/event-stream parser (data field only).

    feed_line() takes one line without its terminator and returns the
    event payload when a blank line completes an event.
    Comment lines (": ping") and other fields are ignored.
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed_line(self, line: str) -> str | None:
        if not line:
            if not self._data:
                return None
            payload = "\n".join(self._data)
            self._data = []
            return payload

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if field != SSE_DATA_FIELD:
            return None
        if value.startswith(" "):
            value = value[1:]
        self._data.append(value)
        return None

    def reset(self) -> None:
        self._data = []


# ---------------------------------------------------------------------
# Base transport
# ---------------------------------------------------------------------

class ClientTransport(ABC):
    """
    Reconnecting consumer of the bridged command stream.

    Lifecycle:
    1. run() connects -> on_open()
    2. every frame -> on_frame(frame)
    3. connection error / close -> on_lost(), sleep reconnect_delay_s
    4. goto 1 until stop()
    """

    name: str = "abstract"

    def __init__(
        self,
        *,
        on_frame: FrameHandler,
        on_open: LifecycleHandler,
        on_lost: LifecycleHandler,
        reconnect_delay_s: float = RECONNECT_DELAY_S_DEFAULT,
    ) -> None:
        self._on_frame = on_frame
        self._on_open = on_open
        self._on_lost = on_lost
        self._reconnect_delay_s = reconnect_delay_s
        self._stopping = False
        self.connect_attempts = 0

    async def run(self) -> None:
        """Connect / reconnect loop; returns after stop()."""
        while not self._stopping:
            self.connect_attempts += 1
            try:
                await self._session()
                reason = "closed"
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught
                reason = f"{type(e).__name__}: {e}"

            if self._stopping:
                break

            log_event({
                "event_type": "TRANSPORT_LOST",
                "transport": self.name,
                "reason": reason,
                "reconnect_in_s": self._reconnect_delay_s,
            })
            self._on_lost()
            await asyncio.sleep(self._reconnect_delay_s)

    def stop(self) -> None:
        """Stop after the current session ends."""
        self._stopping = True

    def _opened(self) -> None:
        log_event({
            "event_type": "TRANSPORT_OPEN",
            "transport": self.name,
            "attempt": self.connect_attempts,
        })
        self._on_open()

    @abstractmethod
    async def _session(self) -> None:
        """One connection: returns on clean close, raises on error."""
        raise NotImplementedError


# ---------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------

class SseClientTransport(ClientTransport):
    """GET {bridge_url}/api/events as text/event-stream."""

    name = "sse"

    def __init__(
        self,
        bridge_url: str,
        *,
        on_frame: FrameHandler,
        on_open: LifecycleHandler,
        on_lost: LifecycleHandler,
        reconnect_delay_s: float = RECONNECT_DELAY_S_DEFAULT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            on_frame=on_frame,
            on_open=on_open,
            on_lost=on_lost,
            reconnect_delay_s=reconnect_delay_s,
        )
        self.url = bridge_url.rstrip("/") + "/api/events"
        self._client = client
        self._parser = SseEventParser()

    async def _session(self) -> None:
        # No read timeout: the stream is long-lived; pings keep it warm
        timeout = httpx.Timeout(None, connect=10.0)
        client = self._client or httpx.AsyncClient(timeout=timeout)
        try:
            async with client.stream(
                "GET",
                self.url,
                headers={"Accept": "text/event-stream"},
            ) as response:
                response.raise_for_status()
                self._parser.reset()
                self._opened()

                async for line in response.aiter_lines():
                    payload = self._parser.feed_line(line)
                    if payload is not None:
                        self._on_frame(payload)
        finally:
            if self._client is None:
                await client.aclose()


class WebSocketClientTransport(ClientTransport):
    """WS {bridge_url}/api/socket, one text message per frame."""

    name = "ws"

    def __init__(
        self,
        bridge_url: str,
        *,
        on_frame: FrameHandler,
        on_open: LifecycleHandler,
        on_lost: LifecycleHandler,
        reconnect_delay_s: float = RECONNECT_DELAY_S_DEFAULT,
    ) -> None:
        super().__init__(
            on_frame=on_frame,
            on_open=on_open,
            on_lost=on_lost,
            reconnect_delay_s=reconnect_delay_s,
        )
        base = bridge_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        self.url = base + "/api/socket"

    async def _session(self) -> None:
        try:
            async with ws_connect(self.url) as ws:
                self._opened()
                async for message in ws:
                    if isinstance(message, bytes):
                        message = message.decode("utf-8", errors="replace")
                    self._on_frame(message)
        except WebSocketException as e:
            raise ConnectionError(f"websocket {self.url}: {e}") from e
