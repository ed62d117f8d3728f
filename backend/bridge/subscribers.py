"""
Downstream subscribers of the bridged command stream.

Responsibilities:
- Define the adapter contract shared by both transport styles
  (send(frame), close())
- Provide the push-stream (SSE) and bidirectional (WebSocket) adapters
- Own the explicit subscriber registry

Non-responsibilities:
- No upstream connection handling (see bridge.upstream)
- No fan-out policy (see bridge.bridge)
- No HTTP routing (see server.routes)

Both adapters buffer through a bounded OutboundFrameQueue, so send()
is a non-blocking enqueue and a slow consumer only degrades itself.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator
from uuid import uuid4

from bridge.queues import OutboundFrameQueue
from constants import SUBSCRIBER_ID_HEX_LEN, SUBSCRIBER_QUEUE_MAX_FRAMES
from observability.logger import log_event


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class SubscriberDeliveryError(Exception):
    """
    Raised by an adapter when a frame cannot be handed to its consumer.

    Isolated to that subscriber: the bridge unsubscribes it and keeps
    delivering to everyone else.
    """


# ---------------------------------------------------------------------
# Adapter contract
# ---------------------------------------------------------------------

class SubscriberAdapter(ABC):
    """
    Transport-agnostic handle the bridge uses to reach one consumer.

    Contract:
    - send() MUST NOT block and MUST raise SubscriberDeliveryError once
      the consumer is gone.
    - close() MUST be idempotent. Frames sent before close() are still
      delivered, then the consumer sees end-of-stream.
    """

    transport: str = "abstract"

    @abstractmethod
    def send(self, frame: str) -> None:
        """Hand one text frame to the consumer."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Signal end-of-stream to the consumer."""
        raise NotImplementedError

    def snapshot(self) -> dict[str, Any]:
        """Adapter-specific diagnostics."""
        return {"transport": self.transport}


class QueuedAdapter(SubscriberAdapter):
    """
    Adapter backed by a bounded queue drained by a transport writer.
    """

    def __init__(self, *, max_frames: int = SUBSCRIBER_QUEUE_MAX_FRAMES) -> None:
        self._queue = OutboundFrameQueue(max_frames=max_frames)
        self._consumer_gone = False

    def send(self, frame: str) -> None:
        if self._consumer_gone:
            raise SubscriberDeliveryError(f"{self.transport} consumer disconnected")
        if self._queue.closed:
            raise SubscriberDeliveryError(f"{self.transport} stream already closed")
        self._queue.put(frame)

    def close(self) -> None:
        self._queue.close()

    def mark_consumer_gone(self) -> None:
        """
        Called by the transport writer when the consumer can no longer
        receive. Pending frames are discarded.
        """
        self._consumer_gone = True
        self._queue.clear()
        self._queue.close()

    @property
    def consumer_gone(self) -> bool:
        """True once the transport writer reported the consumer lost."""
        return self._consumer_gone

    async def next_frame(self) -> str | None:
        """Next frame for the transport writer; None at end-of-stream."""
        if self._consumer_gone:
            return None
        return await self._queue.get()

    def snapshot(self) -> dict[str, Any]:
        return {
            "transport": self.transport,
            "consumer_gone": self._consumer_gone,
            **self._queue.snapshot(),
        }


class EventStreamAdapter(QueuedAdapter):
    """
    One-way push stream (text/event-stream).

    The route hands stream() to the SSE response, which wraps every
    yielded frame as `data: <frame>\\n\\n`. The stream ends after
    close(); client disconnect cancels the generator.
    """

    transport = "sse"

    async def stream(self) -> AsyncIterator[str]:
        """Yield frames until end-of-stream."""
        while True:
            frame = await self.next_frame()
            if frame is None:
                return
            yield frame


class WebSocketAdapter(QueuedAdapter):
    """
    Bidirectional channel: each frame goes out as one raw text message.

    pump() is the socket writer and runs as its own task so the bridge
    never awaits a socket send during fan-out.
    """

    transport = "ws"

    def __init__(self, websocket: Any, *, max_frames: int = SUBSCRIBER_QUEUE_MAX_FRAMES) -> None:
        super().__init__(max_frames=max_frames)
        self._websocket = websocket  # Type: starlette WebSocket in practice

    async def pump(self) -> None:
        """
        Drain queued frames into the socket, then close it.
        """
        while True:
            frame = await self.next_frame()
            if frame is None:
                break
            try:
                await self._websocket.send_text(frame)
            except Exception:  # pylint: disable=broad-exception-caught
                self.mark_consumer_gone()
                return

        if self._consumer_gone:
            return

        try:
            await self._websocket.close()
        except Exception:  # pylint: disable=broad-exception-caught
            # Socket already torn down by the peer
            pass


# ---------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------

def _new_subscriber_id() -> str:
    return f"sub_{uuid4().hex[:SUBSCRIBER_ID_HEX_LEN]}"


@dataclass
class Subscriber:
    """One downstream consumer attached to one upstream channel."""

    subscriber_id: str
    adapter: SubscriberAdapter
    channel_id: str
    alive: bool = True
    created_at: float = field(default_factory=time.time)

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this subscriber."""
        return {
            "subscriber_id": self.subscriber_id,
            "channel_id": self.channel_id,
            "transport": self.adapter.transport,
        }


class SubscriberRegistry:
    """
    Explicit registry of live subscribers, owned by the bridge.

    All mutation happens on the event loop thread. Readers take
    snapshots (members()) so fan-out may unsubscribe mid-iteration.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}

    def add(self, adapter: SubscriberAdapter, *, channel_id: str) -> Subscriber:
        """Register a new subscriber on channel_id."""
        subscriber = Subscriber(
            subscriber_id=_new_subscriber_id(),
            adapter=adapter,
            channel_id=channel_id,
        )
        self._subscribers[subscriber.subscriber_id] = subscriber

        log_event({
            "event_type": "SUBSCRIBER_ADDED",
            **subscriber.log_context(),
            "subscriber_count": len(self._subscribers),
        })
        return subscriber

    def remove(self, subscriber_id: str) -> Subscriber | None:
        """Remove and return a subscriber; None if unknown."""
        subscriber = self._subscribers.pop(subscriber_id, None)
        if subscriber is not None:
            subscriber.alive = False
        return subscriber

    def get(self, subscriber_id: str) -> Subscriber | None:
        """Look up a live subscriber."""
        return self._subscribers.get(subscriber_id)

    def members(self, channel_id: str) -> list[Subscriber]:
        """Snapshot of live subscribers on a channel, in join order."""
        return [
            s for s in self._subscribers.values()
            if s.channel_id == channel_id and s.alive
        ]

    def all(self) -> list[Subscriber]:
        """Snapshot of every live subscriber."""
        return list(self._subscribers.values())

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber_id: object) -> bool:
        return subscriber_id in self._subscribers
