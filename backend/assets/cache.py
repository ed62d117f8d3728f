"""
Asset cache: asset id -> decoded buffer.

Responsibilities:
- Return a cached DecodedAsset without I/O
- On a miss: fetch, decode (worker thread), store, return
- Share one in-flight resolution between concurrent callers of an id
- Optionally bound the entry count (LRU eviction)

Non-responsibilities:
- NO retries (a failed resolution is not cached; the next PLAY retries)
- NO playback timing
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Any, Callable

from assets.decode import DecodedAsset, decode_audio
from assets.errors import AssetDecodeError, AssetError
from assets.source import AssetSource
from observability.logger import log_event
from observability.metrics import timed


Decoder = Callable[..., DecodedAsset]


class AssetCache:
    """
    Lazily populated map of decoded assets.

    Entries live for the process lifetime unless max_entries is set.
    """

    def __init__(
        self,
        source: AssetSource,
        *,
        decoder: Decoder = decode_audio,
        target_rate_hz: int | None = None,
        max_entries: int | None = None,
    ) -> None:
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be > 0")

        self._source = source
        self._decoder = decoder
        self._target_rate_hz = target_rate_hz
        self._max_entries = max_entries

        self._entries: OrderedDict[str, DecodedAsset] = OrderedDict()
        self._inflight: dict[str, asyncio.Task[DecodedAsset]] = {}

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(self, asset_id: str) -> DecodedAsset:
        """
        Decoded buffer for asset_id.

        Raises:
            AssetFetchError / AssetDecodeError (not cached).
        """
        cached = self._entries.get(asset_id)
        if cached is not None:
            self.hits += 1
            self._entries.move_to_end(asset_id)
            return cached

        task = self._inflight.get(asset_id)
        if task is None:
            self.misses += 1
            task = asyncio.create_task(self._load(asset_id))
            self._inflight[asset_id] = task
            task.add_done_callback(lambda _t: self._inflight.pop(asset_id, None))

        # shield: one caller being cancelled (STOP) must not abort the
        # shared load for the others
        return await asyncio.shield(task)

    def get(self, asset_id: str) -> DecodedAsset | None:
        """Cached entry without I/O, or None."""
        return self._entries.get(asset_id)

    def __contains__(self, asset_id: object) -> bool:
        return asset_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def aclose(self) -> None:
        """Cancel in-flight loads and release the source."""
        for task in list(self._inflight.values()):
            task.cancel()
        await self._source.aclose()

    def snapshot(self) -> dict[str, Any]:
        """Diagnostics."""
        return {
            "entries": len(self._entries),
            "max_entries": self._max_entries,
            "inflight": len(self._inflight),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _load(self, asset_id: str) -> DecodedAsset:
        try:
            with timed("asset_fetch", details={"asset_id": asset_id}):
                raw = await self._source.fetch(asset_id)

            with timed("asset_decode", details={"asset_id": asset_id, "bytes": len(raw)}):
                asset = await self._decode(asset_id, raw)
        except AssetError as e:
            log_event({
                "event_type": "ASSET_RESOLVE_FAILED",
                "asset_id": asset_id,
                "exception": type(e).__name__,
                "error": str(e),
            })
            raise

        self._store(asset)
        log_event({
            "event_type": "ASSET_CACHED",
            "asset_id": asset_id,
            "sample_rate_hz": asset.sample_rate_hz,
            "channels": asset.channels,
            "duration_s": round(asset.duration_s, 3),
            "entries": len(self._entries),
        })
        return asset

    async def _decode(self, asset_id: str, raw: bytes) -> DecodedAsset:
        try:
            return await asyncio.to_thread(
                self._decoder,
                asset_id,
                raw,
                target_rate_hz=self._target_rate_hz,
            )
        except AssetError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            # numpy / scipy / libsndfile failures outside the decoder's own checks
            raise AssetDecodeError(asset_id, f"{type(e).__name__}: {e}") from e

    def _store(self, asset: DecodedAsset) -> None:
        self._entries[asset.asset_id] = asset
        self._entries.move_to_end(asset.asset_id)

        if self._max_entries is None:
            return

        while len(self._entries) > self._max_entries:
            evicted_id, _ = self._entries.popitem(last=False)
            self.evictions += 1
            log_event({
                "event_type": "ASSET_EVICTED",
                "asset_id": evicted_id,
            })
