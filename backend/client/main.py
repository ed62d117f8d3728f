"""
Playback endpoint entry point.

Wiring:
    AppConfig -> AssetCache(HttpAssetSource) -> SoundDeviceOutput
              -> PlaybackScheduler -> SSE / WebSocket transport

Run from the backend directory:
    python -m client.main [--transport sse|ws] [--calibration-ms N]
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses

from dotenv import load_dotenv

from assets.cache import AssetCache
from assets.source import HttpAssetSource
from config import AppConfig
from constants import TRANSPORT_SSE, TRANSPORT_WS
from observability import logger
from observability.logger import log_event
from playback.output import AudioOutput
from playback.scheduler import PlaybackScheduler
from playback.transport import (
    ClientTransport,
    SseClientTransport,
    WebSocketClientTransport,
)


def build_transport(config: AppConfig, scheduler: PlaybackScheduler) -> ClientTransport:
    """Transport selected by CLIENT_TRANSPORT, wired to the scheduler."""
    cls = SseClientTransport if config.client_transport == TRANSPORT_SSE else WebSocketClientTransport
    return cls(
        config.bridge_url,
        on_frame=scheduler.handle_frame,
        on_open=scheduler.on_transport_open,
        on_lost=scheduler.on_transport_lost,
        reconnect_delay_s=config.reconnect_delay_s,
    )


async def run_client(config: AppConfig, output: AudioOutput) -> None:
    """Run one playback endpoint until cancelled."""
    cache = AssetCache(
        HttpAssetSource(config.bridge_url),
        target_rate_hz=config.output_sample_rate_hz,
        max_entries=config.asset_cache_max_entries,
    )
    scheduler = PlaybackScheduler(
        cache,
        output,
        sync_delay_s=config.sync_delay_s,
        calibration_ms=config.calibration_ms,
    )
    transport = build_transport(config, scheduler)

    log_event({
        "event_type": "CLIENT_STARTING",
        "bridge_url": config.bridge_url,
        "transport": config.client_transport,
        "sync_delay_s": config.sync_delay_s,
        "calibration_ms": config.calibration_ms,
    })

    try:
        await transport.run()
    finally:
        transport.stop()
        await scheduler.aclose()
        await cache.aclose()
        output.close()
        log_event({
            "event_type": "CLIENT_STOPPED",
            **scheduler.snapshot(),
        })


def main() -> int:
    """CLI entry point."""
    load_dotenv()

    ap = argparse.ArgumentParser(description="Synchronized playback endpoint")
    ap.add_argument("--transport", choices=[TRANSPORT_SSE, TRANSPORT_WS], default=None,
                    help="Override CLIENT_TRANSPORT.")
    ap.add_argument("--calibration-ms", type=int, default=None,
                    help="Override CALIBRATION_MS (device output latency).")
    ap.add_argument("--bridge-url", default=None, help="Override BRIDGE_URL.")
    ap.add_argument("--list-devices", action="store_true", help="Print audio devices and exit.")
    args = ap.parse_args()

    # PortAudio is loaded here, not at module import
    from playback.sounddevice_output import (  # pylint: disable=import-outside-toplevel
        SoundDeviceOutput,
        describe_devices,
    )

    if args.list_devices:
        print(describe_devices())
        return 0

    config = AppConfig.load_from_env()
    overrides = {
        "client_transport": args.transport,
        "calibration_ms": args.calibration_ms,
        "bridge_url": args.bridge_url,
    }
    config = dataclasses.replace(config, **{k: v for k, v in overrides.items() if v is not None})
    logger.set_enabled(config.log_events_enabled)

    device: str | int | None = config.audio_device
    if device is not None and device.isdigit():
        device = int(device)

    try:
        asyncio.run(run_client(config, SoundDeviceOutput(device=device)))
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
