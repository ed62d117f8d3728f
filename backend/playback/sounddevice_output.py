"""
PortAudio output via sounddevice.

Imported only by the client entry point: sounddevice needs the PortAudio
shared library at import time, which test environments may lack.

Threading:
- The stream callback runs on a PortAudio thread and only copies samples
- Natural end is signalled back to the event loop with
  call_soon_threadsafe
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any

import numpy as np
import sounddevice as sd

from assets.decode import DecodedAsset
from observability.logger import log_event
from playback.output import AudioOutput, FinishedCallback, PlaybackHandle


# Low-latency block size; start latency matters more than underrun margin
_BLOCKSIZE = 256


class SoundDevicePlayback(PlaybackHandle):
    """One OutputStream playing one decoded asset."""

    def __init__(
        self,
        asset: DecodedAsset,
        *,
        device: str | int | None,
        loop: asyncio.AbstractEventLoop,
        on_finished: FinishedCallback,
    ) -> None:
        self._samples: np.ndarray = asset.samples
        self._cursor = 0
        self._lock = threading.Lock()
        self._stopped = False
        self._finished = False
        self._loop = loop
        self._on_finished = on_finished
        self._underruns = 0
        self._asset_id = asset.asset_id

        self._stream = sd.OutputStream(
            samplerate=asset.sample_rate_hz,
            channels=asset.channels,
            dtype="float32",
            blocksize=_BLOCKSIZE,
            device=device,
            latency="low",
            callback=self._audio_callback,
            finished_callback=self._stream_finished,
        )

    def start(self) -> None:
        self._stream.start()

    @property
    def active(self) -> bool:
        return not self._stopped and not self._finished

    def stop(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        # abort() drops queued buffers; stop() would drain them
        self._stream.abort()
        self._stream.close()

    # ------------------------------------------------------------------
    # PortAudio thread
    # ------------------------------------------------------------------

    def _audio_callback(
        self,
        outdata: np.ndarray,
        frames: int,
        time_info: Any,  # pylint: disable=unused-argument
        status: sd.CallbackFlags,
    ) -> None:
        if status.output_underflow:
            self._underruns += 1

        start = self._cursor
        end = min(start + frames, self._samples.shape[0])
        chunk = self._samples[start:end]

        outdata[: len(chunk)] = chunk
        if len(chunk) < frames:
            outdata[len(chunk):] = 0
            self._cursor = end
            raise sd.CallbackStop()

        self._cursor = end

    def _stream_finished(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._finished = True
        self._loop.call_soon_threadsafe(self._notify_finished)

    # ------------------------------------------------------------------
    # Event loop thread
    # ------------------------------------------------------------------

    def _notify_finished(self) -> None:
        if self._stopped:
            return
        log_event({
            "event_type": "AUDIO_OUTPUT_FINISHED",
            "asset_id": self._asset_id,
            "underruns": self._underruns,
        })
        self._stream.close()
        self._on_finished()


class SoundDeviceOutput(AudioOutput):
    """AudioOutput on a PortAudio device (default device if None)."""

    def __init__(self, *, device: str | int | None = None) -> None:
        self._device = device

    def start(
        self,
        asset: DecodedAsset,
        *,
        on_finished: FinishedCallback,
    ) -> PlaybackHandle:
        playback = SoundDevicePlayback(
            asset,
            device=self._device,
            loop=asyncio.get_running_loop(),
            on_finished=on_finished,
        )
        playback.start()
        return playback


def describe_devices() -> Any:
    """PortAudio device list, for the client's --list-devices flag."""
    return sd.query_devices()
