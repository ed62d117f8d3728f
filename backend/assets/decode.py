"""
Audio decoding for playback.

- Encoded bytes -> float32 sample matrix (frames x channels)
- Optional resample to a fixed output rate (polyphase, scipy)
- Pure CPU work; callers run it in a worker thread
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from math import gcd

import numpy as np
import soundfile as sf
from scipy import signal

from assets.errors import AssetDecodeError


@dataclass(frozen=True)
class DecodedAsset:
    """Ready-to-play audio buffer."""

    asset_id: str
    samples: np.ndarray  # float32, shape (frames, channels)
    sample_rate_hz: int

    @property
    def channels(self) -> int:
        """Channel count."""
        return int(self.samples.shape[1])

    @property
    def frames(self) -> int:
        """Sample frames per channel."""
        return int(self.samples.shape[0])

    @property
    def duration_s(self) -> float:
        """Playback length in seconds."""
        return self.frames / self.sample_rate_hz


def resample(samples: np.ndarray, src_rate_hz: int, dst_rate_hz: int) -> np.ndarray:
    """Resample along the frame axis with a polyphase filter."""
    if src_rate_hz == dst_rate_hz:
        return samples

    divisor = gcd(src_rate_hz, dst_rate_hz)
    up = dst_rate_hz // divisor
    down = src_rate_hz // divisor

    out = signal.resample_poly(samples, up, down, axis=0)

    # Clip and convert back to float32
    return np.clip(out, -1.0, 1.0).astype(np.float32)


def decode_audio(
    asset_id: str,
    raw: bytes,
    *,
    target_rate_hz: int | None = None,
) -> DecodedAsset:
    """
    Decode raw bytes in any format libsndfile reads (wav, flac, ogg, mp3).

    Raises:
        AssetDecodeError if the bytes are empty or not decodable.
    """
    if not raw:
        raise AssetDecodeError(asset_id, "empty payload")

    try:
        samples, rate = sf.read(io.BytesIO(raw), dtype="float32", always_2d=True)
    except (RuntimeError, TypeError) as e:  # sf.LibsndfileError is a RuntimeError
        raise AssetDecodeError(asset_id, str(e)) from e

    if samples.shape[0] == 0:
        raise AssetDecodeError(asset_id, "no audio frames")

    if target_rate_hz is not None and target_rate_hz != rate:
        samples = resample(samples, int(rate), target_rate_hz)
        rate = target_rate_hz

    return DecodedAsset(asset_id=asset_id, samples=samples, sample_rate_hz=int(rate))
