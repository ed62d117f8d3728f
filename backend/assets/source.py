"""
Where raw asset bytes come from.

Responsibilities:
- Map an asset id to raw encoded bytes
- Translate transport failures into AssetFetchError

Non-responsibilities:
- No decoding (see assets.decode)
- No caching (see assets.cache)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote

import httpx

from assets.errors import AssetFetchError
from constants import ASSET_FETCH_TIMEOUT_S, ASSET_ROUTE_PREFIX


class AssetSource(ABC):
    """Fetches raw encoded bytes for an asset id."""

    @abstractmethod
    async def fetch(self, asset_id: str) -> bytes:
        """
        Return the raw bytes of asset_id.

        Raises:
            AssetFetchError on any failure (not_found=True if missing).
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release held resources."""
        return None


class HttpAssetSource(AssetSource):
    """
    Fetch assets from the bridge's file server:
        GET {base_url}/api/audio/{asset_id}
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = ASSET_FETCH_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    def url_for(self, asset_id: str) -> str:
        """Absolute URL of an asset."""
        return f"{self._base_url}{ASSET_ROUTE_PREFIX}/{quote(asset_id, safe='')}"

    async def fetch(self, asset_id: str) -> bytes:
        try:
            response = await self._client.get(self.url_for(asset_id))
        except httpx.HTTPError as e:
            raise AssetFetchError(asset_id, f"{type(e).__name__}: {e}") from e

        if response.status_code == 404:
            raise AssetFetchError(asset_id, "File not found", not_found=True)
        if response.status_code >= 400:
            raise AssetFetchError(asset_id, f"HTTP {response.status_code}")

        return response.content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class FileAssetSource(AssetSource):
    """Read assets from a local music directory."""

    def __init__(self, music_dir: str | Path) -> None:
        self._root = Path(music_dir).resolve()

    def path_for(self, asset_id: str) -> Path:
        """
        Resolve asset_id inside the music directory.

        Raises:
            AssetFetchError(not_found=True) if the id escapes the directory.
        """
        candidate = (self._root / asset_id).resolve()
        if not candidate.is_relative_to(self._root) or candidate == self._root:
            raise AssetFetchError(asset_id, "File not found", not_found=True)
        return candidate

    async def fetch(self, asset_id: str) -> bytes:
        path = self.path_for(asset_id)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise AssetFetchError(asset_id, "File not found", not_found=True) from e
        except OSError as e:
            raise AssetFetchError(asset_id, str(e)) from e
