"""
Playback scheduler (one per playback endpoint).

Responsibilities:
- Interpret PLAY / STOP / STATUS / ERROR frames from the bridge
- Resolve assets through the AssetCache
- Start output at start_time + sync delay + calibration (wall clock)
- Maintain status, diagnostics and the command audit log

Non-responsibilities:
- NO transport handling (see playback.transport)
- NO device handling (see playback.output)
- NO retry of failed asset resolution

Timing strategy for a PLAY:
1. One-shot asyncio.sleep to WAKEUP_SPIN_WINDOW_NS before the target
2. Yielding spin (asyncio.sleep(0)) until the wall clock reaches target
3. asyncio.sleep(calibration)
4. Re-check the cancellation flag, then start output

A diagnostics sampler refreshes current_time_ms while a PLAY is pending;
it never drives the timing.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

from assets.cache import AssetCache
from assets.errors import AssetError
from constants import (
    AUDIT_LOG_CAPACITY,
    CALIBRATION_MS_DEFAULT,
    CONNECTION_LOST_MESSAGE,
    DIAGNOSTIC_SAMPLE_INTERVAL_MS,
    NS_PER_MS,
    NS_PER_S,
    SYNC_DELAY_S_DEFAULT,
    WAKEUP_SPIN_WINDOW_NS,
    ms_to_ns,
    seconds_to_ns,
)
from observability.logger import log_event
from playback.output import AudioOutput, PlaybackHandle
from playback.state import AuditEntry, AuditLog, Diagnostics, PlaybackStatus
from protocol.commands import (
    Command,
    CommandKind,
    ErrorCommand,
    FrameDecodeError,
    PlayCommand,
    StatusCommand,
    parse_command,
)


ClockNs = Callable[[], int]


class PlaybackScheduler:
    """
    Single-endpoint scheduler.

    All methods run on the event loop thread. At most one PLAY is
    pending or active at a time: a newer PLAY supersedes the previous
    one (cancel pending, stop active).
    """

    def __init__(
        self,
        cache: AssetCache,
        output: AudioOutput,
        *,
        sync_delay_s: float = SYNC_DELAY_S_DEFAULT,
        calibration_ms: int = CALIBRATION_MS_DEFAULT,
        clock_ns: ClockNs = time.time_ns,
        audit_capacity: int = AUDIT_LOG_CAPACITY,
    ) -> None:
        if calibration_ms < 0:
            raise ValueError("calibration_ms must be >= 0")

        self._cache = cache
        self._output = output
        self._sync_delay_ns = seconds_to_ns(sync_delay_s)
        self._calibration_ms = calibration_ms
        self._clock_ns = clock_ns

        self.status = PlaybackStatus.DISCONNECTED
        self.current_asset: str | None = None
        self.diagnostics = Diagnostics(calibration_ms=calibration_ms)
        self.audit = AuditLog(audit_capacity)

        self._pending: asyncio.Task[None] | None = None
        self._active: PlaybackHandle | None = None
        # Bumped on every STOP / superseding PLAY; a PLAY task only
        # starts output if its generation is still current
        self._generation = 0

    # ------------------------------------------------------------------
    # Transport lifecycle
    # ------------------------------------------------------------------

    def on_transport_open(self) -> None:
        """Channel (re)established."""
        self.diagnostics.last_error = None
        self._set_status(PlaybackStatus.CONNECTED, reason="transport_open")

    def on_transport_lost(self) -> None:
        """Channel error or close; the transport reconnects on its own."""
        self.diagnostics.last_error = CONNECTION_LOST_MESSAGE
        self._set_status(PlaybackStatus.DISCONNECTED, reason="transport_lost")

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    def handle_frame(self, raw: str) -> Command | None:
        """
        Parse and apply one frame.

        Malformed frames are recorded as last_error and skipped.
        Returns the parsed command, or None if the frame was rejected.
        """
        try:
            command = parse_command(raw)
        except FrameDecodeError as e:
            self.diagnostics.last_error = f"Message error: {e}. Raw data: {raw}"
            log_event({
                "event_type": "FRAME_DECODE_FAILED",
                "error": str(e),
                "raw": raw,
            })
            return None

        self.handle_command(command, raw=raw)
        return command

    def handle_command(self, command: Command, *, raw: str = "") -> None:
        """Apply one parsed command."""
        if isinstance(command, StatusCommand):
            self._on_status(command)
            return

        if isinstance(command, ErrorCommand):
            self.diagnostics.last_error = command.message
            log_event({
                "event_type": "UPSTREAM_ERROR_RECEIVED",
                "error": command.message,
            })
            return

        now_ns = self._clock_ns()
        self.diagnostics.last_command = command.kind.value
        self.diagnostics.current_time_ms = now_ns // NS_PER_MS
        self.audit.record(AuditEntry(
            timestamp_ms=now_ns // NS_PER_MS,
            kind=command.kind.value,
            raw=raw,
        ))

        if isinstance(command, PlayCommand):
            self._on_play(command)
        elif command.kind == CommandKind.STOP:
            self.stop(reason="stop_command")
        else:
            log_event({
                "event_type": "UNKNOWN_COMMAND_IGNORED",
                "raw": raw,
            })

    # ------------------------------------------------------------------
    # STOP
    # ------------------------------------------------------------------

    def stop(self, *, reason: str = "stop_command") -> None:
        """
        Cancel a pending PLAY and halt active playback.

        No-op when idle.
        """
        self._generation += 1
        had_pending = self._cancel_pending()
        had_active = self._stop_active()

        if had_pending or had_active:
            log_event({
                "event_type": "PLAYBACK_STOPPED",
                "reason": reason,
                "cancelled_pending": had_pending,
                "stopped_active": had_active,
                "asset_id": self.current_asset,
            })

        if self.status == PlaybackStatus.PLAYING:
            self._set_status(PlaybackStatus.CONNECTED, reason=reason)

    async def aclose(self) -> None:
        """Stop everything and wait for the pending task to unwind."""
        pending = self._pending
        self.stop(reason="shutdown")
        if pending is not None:
            await asyncio.gather(pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # PLAY
    # ------------------------------------------------------------------

    def _on_play(self, command: PlayCommand) -> None:
        # Newest PLAY wins
        self.stop(reason="superseded")

        target_ns = command.start_time_ns + self._sync_delay_ns
        self.diagnostics.received_start_time_ns = command.start_time_ns
        self.diagnostics.target_time_ns = target_ns
        self.diagnostics.last_error = None
        self.current_asset = command.asset_id

        log_event({
            "event_type": "PLAY_SCHEDULED",
            "asset_id": command.asset_id,
            "start_time_ns": command.start_time_ns,
            "target_time_ns": target_ns,
            "lead_ms": (target_ns - self._clock_ns()) // NS_PER_MS,
            "calibration_ms": self._calibration_ms,
        })

        self._pending = asyncio.create_task(
            self._play_task(command.asset_id, target_ns, self._generation)
        )

    async def _play_task(self, asset_id: str, target_ns: int, generation: int) -> None:
        sampler = asyncio.create_task(self._sample_clock())
        try:
            try:
                asset = await self._cache.resolve(asset_id)
            except AssetError as e:
                if generation == self._generation:
                    self.diagnostics.last_error = f"Audio error: {e}"
                return
            except Exception as e:  # pylint: disable=broad-exception-caught
                if generation == self._generation:
                    self.diagnostics.last_error = f"Audio error: {type(e).__name__}: {e}"
                log_event({
                    "event_type": "ASSET_RESOLVE_FAILED",
                    "asset_id": asset_id,
                    "exception": type(e).__name__,
                    "error": str(e),
                })
                return

            await self._wait_until(target_ns)
            if self._calibration_ms > 0:
                await asyncio.sleep(self._calibration_ms / 1000)

            if generation != self._generation:
                return

            try:
                handle = self._output.start(
                    asset,
                    on_finished=lambda: self._on_playback_finished(generation),
                )
            except Exception as e:  # pylint: disable=broad-exception-caught
                self.diagnostics.last_error = f"Audio error: {e}"
                log_event({
                    "event_type": "AUDIO_OUTPUT_FAILED",
                    "asset_id": asset_id,
                    "exception": type(e).__name__,
                    "error": str(e),
                })
                return
        finally:
            sampler.cancel()
            if self._pending is asyncio.current_task():
                self._pending = None

        started_ns = self._clock_ns()
        self._active = handle
        self.diagnostics.current_time_ms = started_ns // NS_PER_MS
        self._set_status(PlaybackStatus.PLAYING, reason="play")

        log_event({
            "event_type": "PLAYBACK_STARTED",
            "asset_id": asset_id,
            "target_time_ns": target_ns,
            "playback_start_skew_ms": round(
                (started_ns - target_ns - ms_to_ns(self._calibration_ms)) / NS_PER_MS, 3
            ),
        })

    async def _wait_until(self, target_ns: int) -> None:
        remaining_ns = target_ns - self._clock_ns()
        if remaining_ns > WAKEUP_SPIN_WINDOW_NS:
            await asyncio.sleep((remaining_ns - WAKEUP_SPIN_WINDOW_NS) / NS_PER_S)

        while self._clock_ns() < target_ns:
            await asyncio.sleep(0)

    async def _sample_clock(self) -> None:
        interval_s = DIAGNOSTIC_SAMPLE_INTERVAL_MS / 1000
        while True:
            self.diagnostics.current_time_ms = self._clock_ns() // NS_PER_MS
            await asyncio.sleep(interval_s)

    def _on_playback_finished(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._active = None
        log_event({
            "event_type": "PLAYBACK_FINISHED",
            "asset_id": self.current_asset,
        })
        if self.status == PlaybackStatus.PLAYING:
            self._set_status(PlaybackStatus.CONNECTED, reason="finished")

    # ------------------------------------------------------------------
    # STATUS
    # ------------------------------------------------------------------

    def _on_status(self, command: StatusCommand) -> None:
        # Indicator only: active audio keeps playing
        if command.connected:
            self.diagnostics.last_error = None
            self._set_status(PlaybackStatus.CONNECTED, reason="status_connected")
            return
        self._set_status(PlaybackStatus.DISCONNECTED, reason="status_disconnected")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _cancel_pending(self) -> bool:
        task = self._pending
        self._pending = None
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def _stop_active(self) -> bool:
        handle = self._active
        self._active = None
        if handle is None:
            return False
        handle.stop()
        return True

    def _set_status(self, status: PlaybackStatus, *, reason: str) -> None:
        if status == self.status:
            return
        previous = self.status
        self.status = status
        log_event({
            "event_type": "PLAYBACK_STATUS_CHANGED",
            "from": previous.value,
            "to": status.value,
            "reason": reason,
            "asset_id": self.current_asset,
        })

    @property
    def pending(self) -> bool:
        """True while a PLAY is waiting to start."""
        return self._pending is not None and not self._pending.done()

    def snapshot(self) -> dict[str, Any]:
        """Debug view of the scheduler."""
        return {
            "status": self.status.value,
            "current_asset": self.current_asset,
            "pending": self.pending,
            "diagnostics": self.diagnostics.to_dict(),
            "audit_log": self.audit.to_list(),
        }
