"""
Playback scheduler state records.

Pure data: no I/O, no asyncio. The scheduler owns one of each and
mutates them on the event loop thread.
"""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Deque

from constants import AUDIT_LOG_CAPACITY


class PlaybackStatus(str, Enum):
    """
    Connection / playback state.

    DISCONNECTED -> CONNECTED -> PLAYING -> CONNECTED -> ...
    Any state -> DISCONNECTED on channel loss. No terminal state.
    """

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    PLAYING = "playing"


@dataclass
class Diagnostics:
    """Timing and error fields shown by the debug view."""

    received_start_time_ns: int | None = None
    target_time_ns: int | None = None
    current_time_ms: int | None = None
    calibration_ms: int = 0
    last_command: str | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AuditEntry:
    """One received command."""
    timestamp_ms: int
    kind: str
    raw: str


class AuditLog:
    """
    Bounded command history, newest first.

    Oldest entries fall off once capacity is reached.
    """

    def __init__(self, capacity: int = AUDIT_LOG_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._entries: Deque[AuditEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def record(self, entry: AuditEntry) -> None:
        self._entries.appendleft(entry)

    def entries(self) -> list[AuditEntry]:
        """Snapshot, newest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def to_list(self) -> list[dict[str, Any]]:
        return [asdict(e) for e in self._entries]
