"""
Audio output abstraction.

The scheduler decides WHEN to start; an AudioOutput decides HOW samples
reach a device. start() must return quickly: the scheduler calls it at
the target instant and measures skew right after.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from assets.decode import DecodedAsset


FinishedCallback = Callable[[], None]


class PlaybackHandle(ABC):
    """One active playback instance."""

    @abstractmethod
    def stop(self) -> None:
        """Halt playback and release the device. Idempotent."""
        raise NotImplementedError

    @property
    @abstractmethod
    def active(self) -> bool:
        """True until stopped or finished."""
        raise NotImplementedError


class AudioOutput(ABC):
    """Starts decoded assets on an output device."""

    @abstractmethod
    def start(
        self,
        asset: DecodedAsset,
        *,
        on_finished: FinishedCallback,
    ) -> PlaybackHandle:
        """
        Begin playback of asset from its first sample.

        on_finished is invoked on the event loop thread when playback
        reaches the end naturally. It is NOT invoked after stop().
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release device-level resources."""
        return None
