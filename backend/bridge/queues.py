# backend/bridge/queues.py
"""
Bounded per-subscriber outbound frame queue.

- Capacity measured in frames
- Enqueue never blocks (fan-out must not wait on a slow subscriber)
- When full, drop the OLDEST frame so a stalled subscriber catches up
  on fresh commands instead of replaying stale ones
- close() marks end-of-stream; frames already queued are still drained
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional


@dataclass
class DropCounters:
    """
    Drop counters for observability.
    """
    overflow: int = 0


class OutboundFrameQueue:
    """
    Single-consumer FIFO of text frames with drop-oldest overflow.

    Producer side (bridge fan-out) is synchronous.
    Consumer side (transport writer) awaits get().
    """

    def __init__(self, *, max_frames: int) -> None:
        if max_frames <= 0:
            raise ValueError("max_frames must be > 0")

        self._max_frames = max_frames
        self._frames: Deque[str] = deque()
        self._ready = asyncio.Event()
        self._closed = False
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Producer
    # -------------------------

    def put(self, frame: str) -> bool:
        """
        Enqueue a frame.

        Returns:
            True if enqueued without loss
            False if the oldest frame was dropped to make room
        """
        lossless = True
        if len(self._frames) >= self._max_frames:
            self._frames.popleft()
            self.drops.overflow += 1
            lossless = False

        self._frames.append(frame)
        self._ready.set()
        return lossless

    def close(self) -> None:
        """Signal end-of-stream after the frames already queued."""
        self._closed = True
        self._ready.set()

    # -------------------------
    # Consumer
    # -------------------------

    async def get(self) -> Optional[str]:
        """
        Wait for the next frame.

        Returns None once the queue is closed and drained.
        """
        while not self._frames:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._frames.popleft()

    def clear(self) -> None:
        """Drop all queued frames without counting them as drops."""
        self._frames.clear()

    # -------------------------
    # Introspection helpers
    # -------------------------

    @property
    def closed(self) -> bool:
        """True after close()."""
        return self._closed

    def __len__(self) -> int:
        return len(self._frames)

    def snapshot(self) -> dict[str, int | bool]:
        """
        Lightweight snapshot for logging / diagnostics.
        """
        return {
            "frames": len(self._frames),
            "max_frames": self._max_frames,
            "dropped_overflow": self.drops.overflow,
            "closed": self._closed,
        }
