"""
Command channel bridge.

Responsibilities:
- Single point of contact with the upstream command source
- Segment the upstream byte stream into frames (FrameDecoder)
- Fan every frame out to the subscribers of its channel, in order
- Synthesize STATUS / ERROR frames for connection lifecycle
- Tear down subscribers on upstream close and upstreams on subscriber
  disconnect

Upstream topology is configuration, not a second implementation:

    shared          one channel, one upstream, N subscribers
    per_subscriber  one channel (and upstream) per subscriber

Non-responsibilities:
- No command parsing beyond framing (frames are forwarded verbatim)
- No timed reconnect (the shared upstream is re-opened on demand when a
  subscriber arrives and it is down)
- No HTTP / WebSocket handling (see server.routes)
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable
from uuid import uuid4

from bridge.subscribers import (
    Subscriber,
    SubscriberAdapter,
    SubscriberDeliveryError,
    SubscriberRegistry,
)
from bridge.upstream import UpstreamConnectionError, UpstreamFactory, UpstreamLink
from constants import UPSTREAM_MODE_PER_SUBSCRIBER, UPSTREAM_MODE_SHARED
from observability.logger import log_event
from protocol.commands import error_frame, status_frame
from protocol.framing import FrameDecoder


SHARED_CHANNEL_ID = "chan_shared"

ReleaseFn = Callable[[str, str], None]


def _new_channel_id() -> str:
    return f"chan_{uuid4().hex[:12]}"


# ---------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------

class UpstreamChannel:
    """
    One upstream connection, its frame decoder, and its audience.

    The audience is every registry member whose channel_id matches.
    Subscribers are released through `release(subscriber_id, reason)`,
    which the bridge points at its own unsubscribe().
    """

    def __init__(
        self,
        *,
        channel_id: str,
        registry: SubscriberRegistry,
        upstream_factory: UpstreamFactory,
        release: ReleaseFn,
    ) -> None:
        self.channel_id = channel_id
        self._registry = registry
        self._upstream_factory = upstream_factory
        self._release = release

        self._decoder = FrameDecoder()
        self._upstream: UpstreamLink | None = None
        self.frames_delivered = 0
        self.frames_without_audience = 0
        self.delivery_failures = 0

    @property
    def is_open(self) -> bool:
        """True while the upstream connection is up."""
        return self._upstream is not None and self._upstream.is_open

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """
        Open the upstream connection.

        Success: STATUS(connected) to the current audience.
        Failure: ERROR + STATUS(disconnected), then the audience is closed.

        Returns True if the upstream is connected.
        """
        self._decoder.reset()
        upstream = self._upstream_factory(
            on_data=self.on_upstream_data,
            on_error=self.on_upstream_error,
            on_close=self.on_upstream_close,
        )

        try:
            await upstream.open()
        except UpstreamConnectionError as e:
            log_event({
                "event_type": "UPSTREAM_CONNECT_FAILED",
                "channel_id": self.channel_id,
                "error": str(e),
            })
            self.deliver(error_frame(str(e)))
            self.deliver(status_frame(connected=False))
            self.close_audience(reason="upstream_unavailable")
            return False

        self._upstream = upstream
        log_event({
            "event_type": "UPSTREAM_CONNECTED",
            "channel_id": self.channel_id,
            "audience": len(self._registry.members(self.channel_id)),
        })
        self.deliver(status_frame(connected=True))
        return True

    def destroy(self) -> None:
        """Drop the upstream without notifying the audience."""
        upstream = self._upstream
        self._upstream = None
        self._decoder.reset()
        if upstream is not None:
            upstream.destroy()
            log_event({
                "event_type": "UPSTREAM_DESTROYED",
                "channel_id": self.channel_id,
            })

    async def write(self, data: bytes) -> None:
        """
        Forward bytes from a subscriber to the upstream source.

        Raises:
            UpstreamConnectionError if the upstream is down.
        """
        if self._upstream is None:
            raise UpstreamConnectionError(f"channel {self.channel_id} has no upstream")
        await self._upstream.write(data)

    # ------------------------------------------------------------------
    # Upstream callbacks
    # ------------------------------------------------------------------

    def on_upstream_data(self, data: bytes) -> None:
        """Frame the bytes and deliver each frame in arrival order."""
        for frame in self._decoder.feed(data):
            self.deliver(frame)

    def on_upstream_error(self, exc: Exception) -> None:
        """Deliver ERROR(message). Subscriber channels stay open."""
        log_event({
            "event_type": "UPSTREAM_ERROR",
            "channel_id": self.channel_id,
            "exception": type(exc).__name__,
            "error": str(exc),
        })
        self.deliver(error_frame(str(exc)))

    def on_upstream_close(self) -> None:
        """Deliver STATUS(disconnected), then close every subscriber."""
        self._upstream = None
        log_event({
            "event_type": "UPSTREAM_CLOSED",
            "channel_id": self.channel_id,
            "pending_bytes_dropped": self._decoder.pending_bytes,
        })
        self._decoder.reset()
        self.deliver(status_frame(connected=False))
        self.close_audience(reason="upstream_closed")

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def deliver(self, frame: str) -> int:
        """
        Hand a frame to every live subscriber of this channel.

        A failing subscriber is released; delivery to the rest continues.
        Returns the number of subscribers that accepted the frame.
        """
        delivered = 0
        for subscriber in self._registry.members(self.channel_id):
            try:
                subscriber.adapter.send(frame)
            except SubscriberDeliveryError as e:
                self._on_delivery_failure(subscriber, e)
                continue
            delivered += 1

        if delivered:
            self.frames_delivered += 1
        else:
            self.frames_without_audience += 1
        return delivered

    def close_audience(self, *, reason: str) -> None:
        """Close and release every subscriber of this channel."""
        for subscriber in self._registry.members(self.channel_id):
            self._release(subscriber.subscriber_id, reason)

    def _on_delivery_failure(self, subscriber: Subscriber, exc: Exception) -> None:
        self.delivery_failures += 1
        log_event({
            "event_type": "SUBSCRIBER_DELIVERY_FAILED",
            **subscriber.log_context(),
            "error": str(exc),
        })
        self._release(subscriber.subscriber_id, "delivery_failed")

    def snapshot(self) -> dict[str, Any]:
        """Diagnostics for /api/diagnostics."""
        return {
            "channel_id": self.channel_id,
            "upstream_open": self.is_open,
            "subscribers": len(self._registry.members(self.channel_id)),
            "frames_delivered": self.frames_delivered,
            "frames_without_audience": self.frames_without_audience,
            "delivery_failures": self.delivery_failures,
            "pending_bytes": self._decoder.pending_bytes,
        }


# ---------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------

class CommandChannelBridge:
    """
    Multiplies upstream command streams into many downstream streams.

    All methods run on the event loop thread; fan-out and registry
    mutation never interleave, so no lock guards the registry. The only
    lock serializes concurrent (re)opens of the shared upstream.
    """

    def __init__(
        self,
        *,
        upstream_factory: UpstreamFactory,
        mode: str = UPSTREAM_MODE_SHARED,
    ) -> None:
        if mode not in (UPSTREAM_MODE_SHARED, UPSTREAM_MODE_PER_SUBSCRIBER):
            raise ValueError(f"Unknown upstream mode: {mode}")

        self.mode = mode
        self.registry = SubscriberRegistry()
        self._upstream_factory = upstream_factory
        self._channels: dict[str, UpstreamChannel] = {}
        self._open_lock = asyncio.Lock()

        if mode == UPSTREAM_MODE_SHARED:
            self._channels[SHARED_CHANNEL_ID] = self._new_channel(SHARED_CHANNEL_ID)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """
        Open the shared upstream.

        Per-subscriber mode opens upstreams in subscribe(); start() is a
        no-op there. Returns True if the shared upstream is connected.
        """
        if self.mode != UPSTREAM_MODE_SHARED:
            log_event({"event_type": "BRIDGE_STARTED", "mode": self.mode})
            return True

        connected = await self._ensure_shared_open()
        log_event({
            "event_type": "BRIDGE_STARTED",
            "mode": self.mode,
            "upstream_open": connected,
        })
        return connected

    async def subscribe(self, adapter: SubscriberAdapter) -> str:
        """
        Register a downstream consumer and return its subscriber id.

        No history is replayed. In per-subscriber mode a dedicated
        upstream is opened; in shared mode the shared upstream is
        re-opened if it is down.
        """
        if self.mode == UPSTREAM_MODE_SHARED:
            subscriber = self.registry.add(adapter, channel_id=SHARED_CHANNEL_ID)
            if not self._shared.is_open:
                await self._ensure_shared_open()
            return subscriber.subscriber_id

        channel = self._new_channel(_new_channel_id())
        self._channels[channel.channel_id] = channel
        subscriber = self.registry.add(adapter, channel_id=channel.channel_id)
        await channel.start()
        return subscriber.subscriber_id

    def unsubscribe(self, subscriber_id: str, *, reason: str = "client_disconnect") -> None:
        """
        Remove a subscriber and close its outbound channel.

        In per-subscriber mode the dedicated upstream is destroyed
        synchronously. Unknown ids are ignored (idempotent).
        """
        subscriber = self.registry.remove(subscriber_id)
        if subscriber is None:
            return

        subscriber.adapter.close()

        if self.mode == UPSTREAM_MODE_PER_SUBSCRIBER:
            channel = self._channels.pop(subscriber.channel_id, None)
            if channel is not None:
                channel.destroy()

        log_event({
            "event_type": "SUBSCRIBER_REMOVED",
            **subscriber.log_context(),
            "reason": reason,
            "subscriber_count": len(self.registry),
        })

    async def send_upstream(self, subscriber_id: str, text: str) -> bool:
        """
        Forward text from a bidirectional subscriber to its upstream.

        Only per-subscriber channels are duplex; in shared mode inbound
        text is dropped. Returns True if the text was written.
        """
        subscriber = self.registry.get(subscriber_id)
        if subscriber is None or self.mode != UPSTREAM_MODE_PER_SUBSCRIBER:
            log_event({
                "event_type": "INBOUND_TEXT_DROPPED",
                "subscriber_id": subscriber_id,
                "mode": self.mode,
            })
            return False

        channel = self._channels.get(subscriber.channel_id)
        if channel is None:
            return False

        payload = text if text.endswith("\n") else text + "\n"
        try:
            await channel.write(payload.encode("utf-8"))
        except UpstreamConnectionError as e:
            log_event({
                "event_type": "UPSTREAM_WRITE_FAILED",
                **subscriber.log_context(),
                "error": str(e),
            })
            return False
        return True

    # Shared-mode upstream callbacks (per-subscriber channels are wired
    # to their own UpstreamChannel methods directly).

    def on_upstream_data(self, data: bytes) -> None:
        """Route shared upstream bytes through framing and fan-out."""
        self._shared.on_upstream_data(data)

    def on_upstream_error(self, exc: Exception) -> None:
        """Deliver ERROR(message) to all shared subscribers."""
        self._shared.on_upstream_error(exc)

    def on_upstream_close(self) -> None:
        """Deliver STATUS(disconnected) and close all shared subscribers."""
        self._shared.on_upstream_close()

    async def shutdown(self) -> None:
        """Close every subscriber and destroy every upstream."""
        for subscriber in self.registry.all():
            self.unsubscribe(subscriber.subscriber_id, reason="shutdown")

        for channel in list(self._channels.values()):
            channel.destroy()

        if self.mode == UPSTREAM_MODE_PER_SUBSCRIBER:
            self._channels.clear()

        log_event({"event_type": "BRIDGE_SHUTDOWN", "mode": self.mode})

    def snapshot(self) -> dict[str, Any]:
        """Diagnostics for /api/diagnostics."""
        return {
            "mode": self.mode,
            "subscriber_count": len(self.registry),
            "channels": [c.snapshot() for c in self._channels.values()],
            "subscribers": [
                {**s.log_context(), **s.adapter.snapshot()}
                for s in self.registry.all()
            ],
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @property
    def _shared(self) -> UpstreamChannel:
        channel = self._channels.get(SHARED_CHANNEL_ID)
        if channel is None:
            raise RuntimeError("shared upstream callbacks used in per_subscriber mode")
        return channel

    def _new_channel(self, channel_id: str) -> UpstreamChannel:
        return UpstreamChannel(
            channel_id=channel_id,
            registry=self.registry,
            upstream_factory=self._upstream_factory,
            release=self._release,
        )

    def _release(self, subscriber_id: str, reason: str) -> None:
        self.unsubscribe(subscriber_id, reason=reason)

    async def _ensure_shared_open(self) -> bool:
        async with self._open_lock:
            if self._shared.is_open:
                return True
            return await self._shared.start()
