"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No bridge or scheduling logic
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    ASSET_CACHE_MAX_ENTRIES_DEFAULT,
    CALIBRATION_MS_DEFAULT,
    RECONNECT_DELAY_S_DEFAULT,
    SUBSCRIBER_QUEUE_MAX_FRAMES,
    SYNC_DELAY_S_DEFAULT,
    TRANSPORT_SSE,
    TRANSPORT_WS,
    UPSTREAM_HOST_DEFAULT,
    UPSTREAM_MODE_PER_SUBSCRIBER,
    UPSTREAM_MODE_SHARED,
    UPSTREAM_PORT_DEFAULT,
)


def _optional_int(raw: str | None) -> int | None:
    if raw is None or not raw.strip():
        return None
    return int(raw)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    The bridge server reads the upstream/bridge fields; the playback
    client reads the client fields. Both share observability settings.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_events_enabled: bool = True

    # ------------------------------------------------------------------
    # Bridge (server)
    # ------------------------------------------------------------------

    upstream_host: str = UPSTREAM_HOST_DEFAULT
    upstream_port: int = UPSTREAM_PORT_DEFAULT
    upstream_mode: str = UPSTREAM_MODE_SHARED
    subscriber_queue_max_frames: int = SUBSCRIBER_QUEUE_MAX_FRAMES
    music_dir: str = "."

    # ------------------------------------------------------------------
    # Playback client
    # ------------------------------------------------------------------

    bridge_url: str = "http://localhost:8000"
    client_transport: str = TRANSPORT_SSE
    calibration_ms: int = CALIBRATION_MS_DEFAULT
    sync_delay_s: float = SYNC_DELAY_S_DEFAULT
    reconnect_delay_s: float = RECONNECT_DELAY_S_DEFAULT
    audio_device: str | None = None
    output_sample_rate_hz: int | None = None
    asset_cache_max_entries: int | None = ASSET_CACHE_MAX_ENTRIES_DEFAULT

    def __post_init__(self) -> None:
        if self.upstream_mode not in (UPSTREAM_MODE_SHARED, UPSTREAM_MODE_PER_SUBSCRIBER):
            raise ValueError(f"Unknown UPSTREAM_MODE: {self.upstream_mode}")
        if self.client_transport not in (TRANSPORT_SSE, TRANSPORT_WS):
            raise ValueError(f"Unknown CLIENT_TRANSPORT: {self.client_transport}")
        if self.subscriber_queue_max_frames <= 0:
            raise ValueError("SUBSCRIBER_QUEUE_MAX_FRAMES must be > 0")
        if self.calibration_ms < 0:
            raise ValueError("CALIBRATION_MS must be >= 0")

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a variable holds an unusable value.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_events_enabled=os.environ.get("LOG_EVENTS_ENABLED", "1") == "1",

            upstream_host=os.environ.get("UPSTREAM_HOST", UPSTREAM_HOST_DEFAULT),
            upstream_port=int(os.environ.get("UPSTREAM_PORT", UPSTREAM_PORT_DEFAULT)),
            upstream_mode=os.environ.get("UPSTREAM_MODE", UPSTREAM_MODE_SHARED),
            subscriber_queue_max_frames=int(
                os.environ.get("SUBSCRIBER_QUEUE_MAX_FRAMES", SUBSCRIBER_QUEUE_MAX_FRAMES)
            ),
            music_dir=os.environ.get("MUSIC_DIR", "."),

            bridge_url=os.environ.get("BRIDGE_URL", "http://localhost:8000"),
            client_transport=os.environ.get("CLIENT_TRANSPORT", TRANSPORT_SSE),
            calibration_ms=int(os.environ.get("CALIBRATION_MS", CALIBRATION_MS_DEFAULT)),
            sync_delay_s=float(os.environ.get("SYNC_DELAY_S", SYNC_DELAY_S_DEFAULT)),
            reconnect_delay_s=float(
                os.environ.get("RECONNECT_DELAY_S", RECONNECT_DELAY_S_DEFAULT)
            ),
            audio_device=os.environ.get("AUDIO_DEVICE") or None,
            output_sample_rate_hz=_optional_int(os.environ.get("OUTPUT_SAMPLE_RATE_HZ")),
            asset_cache_max_entries=_optional_int(os.environ.get("ASSET_CACHE_MAX_ENTRIES")),
        )
