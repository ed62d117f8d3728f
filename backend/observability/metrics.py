"""
Timing helpers for observability.

- Measure durations using monotonic time (immune to clock changes)
- Emit one METRIC_TIMER event per measurement via observability.logger
- Never aggregate

Used around asset fetch and decode, where latency eats into the
fixed sync delay of a PLAY.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event, now_ms


@contextmanager
def timed(
    name: str,
    *,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Context manager for measuring durations safely.

    The metric is emitted exactly once, including when the block raises
    (details then carry "failed": True).

    Usage:
        with timed("asset_fetch", details={"asset_id": asset_id}):
            raw = await source.fetch(asset_id)
    """
    start_ns = time.monotonic_ns()
    failed = False
    try:
        yield
    except BaseException:
        failed = True
        raise
    finally:
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        merged = dict(details or {})
        if failed:
            merged["failed"] = True
        log_event({
            "ts_ms": now_ms(),
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": duration_ms,
            "details": merged,
        })
