"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging

Both processes (bridge server and playback client) log exclusively
through log_event(); there is no logging.Logger hierarchy.
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable

from constants import JSON_SEPARATORS


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_enabled: bool = True


def set_enabled(enabled: bool) -> None:
    """Globally enable or silence event output (LOG_EVENTS_ENABLED)."""
    global _enabled  # pylint: disable=global-statement
    _enabled = enabled


def now_ms() -> int:
    """Wall-clock milliseconds used for event timestamps."""
    return time.time_ns() // 1_000_000


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller supplies event_type and any context fields.
    ts_ms is filled in when the caller omits it.

    This function never raises.
    """
    if not _enabled:
        return

    payload: dict[str, Any] = dict(event)
    payload.setdefault("ts_ms", now_ms())

    try:
        line = json.dumps(payload, ensure_ascii=False, separators=JSON_SEPARATORS)
    except (TypeError, ValueError) as e:
        # Logging must never crash the bridge or the scheduler
        fallback: dict[str, Any] = {
            "ts_ms": payload.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=JSON_SEPARATORS)

    _print(line)
