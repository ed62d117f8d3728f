"""
CONSTANTS
---------
Single source of truth for all behavioral invariants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific overrides live in config.py and default to these values.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Wire Format
# =============================================================================

FRAME_DELIMITER: Final[bytes] = b"\n"
FRAME_TEXT_ENCODING: Final[str] = "utf-8"

CMD_PLAY: Final[str] = "PLAY"
CMD_STOP: Final[str] = "STOP"
CMD_STATUS: Final[str] = "STATUS"
CMD_ERROR: Final[str] = "ERROR"

STATUS_CONNECTED: Final[str] = "connected"
STATUS_DISCONNECTED: Final[str] = "disconnected"

# Compact JSON, matches what the upstream source emits
JSON_SEPARATORS: Final[Tuple[str, str]] = (",", ":")

# Push-stream wrapping: data: <json>\n\n
SSE_DATA_FIELD: Final[str] = "data"
SSE_LINE_SEPARATOR: Final[str] = "\n"
SSE_PING_INTERVAL_S: Final[int] = 15

# =============================================================================
# Upstream Command Source
# =============================================================================

UPSTREAM_HOST_DEFAULT: Final[str] = "localhost"
UPSTREAM_PORT_DEFAULT: Final[int] = 12345
UPSTREAM_READ_CHUNK_BYTES: Final[int] = 4096
UPSTREAM_CONNECT_TIMEOUT_S: Final[float] = 5.0

UPSTREAM_MODE_SHARED: Final[str] = "shared"
UPSTREAM_MODE_PER_SUBSCRIBER: Final[str] = "per_subscriber"

# =============================================================================
# Subscriber Fan-out / Backpressure
# =============================================================================

# Per-subscriber outbound queue; drop OLDEST when full
SUBSCRIBER_QUEUE_MAX_FRAMES: Final[int] = 256

SUBSCRIBER_ID_HEX_LEN: Final[int] = 12

# =============================================================================
# Playback Scheduling
# =============================================================================

# Added to PLAY startTime to absorb asset fetch/decode latency
SYNC_DELAY_S_DEFAULT: Final[float] = 3.0
CALIBRATION_MS_DEFAULT: Final[int] = 0

# One-shot timer wakes this early, the remainder is a yielding spin
WAKEUP_SPIN_WINDOW_NS: Final[int] = 5_000_000

# Diagnostics sampler period while a PLAY is pending
DIAGNOSTIC_SAMPLE_INTERVAL_MS: Final[int] = 50

AUDIT_LOG_CAPACITY: Final[int] = 50

NS_PER_S: Final[int] = 1_000_000_000
NS_PER_MS: Final[int] = 1_000_000

# =============================================================================
# Client Transport
# =============================================================================

# EventSource default retry interval
RECONNECT_DELAY_S_DEFAULT: Final[float] = 3.0
TRANSPORT_SSE: Final[str] = "sse"
TRANSPORT_WS: Final[str] = "ws"

CONNECTION_LOST_MESSAGE: Final[str] = "Connection error, attempting to reconnect..."

# =============================================================================
# Assets
# =============================================================================

ASSET_ROUTE_PREFIX: Final[str] = "/api/audio"
ASSET_MEDIA_TYPE: Final[str] = "audio/mpeg"
ASSET_FETCH_TIMEOUT_S: Final[float] = 30.0

# None = unbounded (base design)
ASSET_CACHE_MAX_ENTRIES_DEFAULT: Final[int | None] = None

# =============================================================================
# Helper Functions
# =============================================================================

def seconds_to_ns(duration_s: float) -> int:
    """Convert seconds to whole nanoseconds."""
    return int(round(duration_s * NS_PER_S))


def ms_to_ns(duration_ms: float) -> int:
    """Convert milliseconds to whole nanoseconds."""
    return int(round(duration_ms * NS_PER_MS))
