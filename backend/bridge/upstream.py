"""
Upstream duplex connection to the command source.

Responsibilities:
- Open a TCP connection to host:port
- Run one reader task that forwards raw bytes to on_data
- Report transfer failures (on_error) and end-of-stream (on_close)
- Allow synchronous teardown (destroy) from a subscriber disconnect

Non-responsibilities:
- NO framing (bytes are forwarded as read)
- NO retries or backoff
- NO knowledge of subscribers
"""

from __future__ import annotations

import asyncio
from typing import Callable, Protocol

from constants import UPSTREAM_CONNECT_TIMEOUT_S, UPSTREAM_READ_CHUNK_BYTES


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

DataHandler = Callable[[bytes], None]
ErrorHandler = Callable[[Exception], None]
CloseHandler = Callable[[], None]


class UpstreamConnectionError(Exception):
    """
    Transport-level failure connecting to, or reading from, the upstream
    command source. Surfaced downstream as ERROR + STATUS(disconnected).
    """


class UpstreamLink(Protocol):
    """What the bridge needs from an upstream connection."""

    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    async def write(self, data: bytes) -> None: ...

    def destroy(self) -> None: ...


class UpstreamFactory(Protocol):
    """Builds an unopened UpstreamLink wired to the given handlers."""

    def __call__(
        self,
        *,
        on_data: DataHandler,
        on_error: ErrorHandler,
        on_close: CloseHandler,
    ) -> UpstreamLink: ...


# ---------------------------------------------------------------------
# TCP implementation
# ---------------------------------------------------------------------

class TcpUpstream:
    """
    asyncio-streams implementation of UpstreamLink.

    Lifecycle:
    1. open() connects and starts the reader task
    2. reader calls on_data(bytes) for every read
    3a. peer closes -> on_close()
    3b. read fails -> on_error(UpstreamConnectionError) then on_close()
    3c. destroy() -> reader cancelled, socket closed, NO callbacks
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        on_data: DataHandler,
        on_error: ErrorHandler,
        on_close: CloseHandler,
        connect_timeout_s: float = UPSTREAM_CONNECT_TIMEOUT_S,
    ) -> None:
        self._host = host
        self._port = port
        self._on_data = on_data
        self._on_error = on_error
        self._on_close = on_close
        self._connect_timeout_s = connect_timeout_s

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._destroyed = False

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._destroyed

    @property
    def address(self) -> str:
        """host:port, for logs and error messages."""
        return f"{self._host}:{self._port}"

    async def open(self) -> None:
        """
        Connect and start reading.

        Raises:
            UpstreamConnectionError if the connection cannot be made.
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                timeout=self._connect_timeout_s,
            )
        except (OSError, asyncio.TimeoutError) as e:
            detail = str(e) or type(e).__name__
            raise UpstreamConnectionError(f"connect {self.address} failed: {detail}") from e

        self._read_task = asyncio.create_task(self._read_loop())

    async def write(self, data: bytes) -> None:
        """
        Write bytes to the command source.

        Raises:
            UpstreamConnectionError if the connection is not open.
        """
        if self._writer is None or self._destroyed:
            raise UpstreamConnectionError(f"upstream {self.address} is not connected")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            raise UpstreamConnectionError(f"write to {self.address} failed: {e}") from e

    def destroy(self) -> None:
        """
        Tear the connection down synchronously. Idempotent.

        Safe to call from a subscriber disconnect even when no frames are
        pending; the reader task is cancelled and the socket is closed
        before this returns control to the loop.
        """
        if self._destroyed:
            return
        self._destroyed = True

        task = self._read_task
        self._read_task = None
        if task is not None and not task.done():
            task.cancel()

        self._close_writer()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _close_writer(self) -> None:
        writer = self._writer
        self._writer = None
        if writer is not None:
            writer.close()

    async def _read_loop(self) -> None:
        reader = self._reader
        assert reader is not None, "open() must succeed before reading"

        try:
            while True:
                data = await reader.read(UPSTREAM_READ_CHUNK_BYTES)
                if not data:
                    break
                self._on_data(data)
        except asyncio.CancelledError:
            return
        except OSError as e:
            if not self._destroyed:
                self._on_error(UpstreamConnectionError(f"read from {self.address} failed: {e}"))

        if self._destroyed:
            return

        self._destroyed = True
        self._read_task = None
        self._close_writer()
        self._on_close()


def tcp_upstream_factory(*, host: str, port: int) -> UpstreamFactory:
    """UpstreamFactory producing TcpUpstream links to host:port."""

    def _factory(
        *,
        on_data: DataHandler,
        on_error: ErrorHandler,
        on_close: CloseHandler,
    ) -> UpstreamLink:
        return TcpUpstream(
            host=host,
            port=port,
            on_data=on_data,
            on_error=on_error,
            on_close=on_close,
        )

    return _factory
