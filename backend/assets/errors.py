"""
Asset resolution errors.

Both surface to scheduler diagnostics; the PLAY that needed the asset
is abandoned and the scheduler stays CONNECTED. Neither is retried.
"""

from __future__ import annotations


class AssetError(Exception):
    """Base class for asset resolution failures."""

    def __init__(self, asset_id: str, message: str) -> None:
        super().__init__(message)
        self.asset_id = asset_id


class AssetFetchError(AssetError):
    """Raw bytes for an asset could not be retrieved."""

    def __init__(
        self,
        asset_id: str,
        cause: str,
        *,
        not_found: bool = False,
    ) -> None:
        super().__init__(asset_id, f"fetch {asset_id!r} failed: {cause}")
        self.cause = cause
        self.not_found = not_found


class AssetDecodeError(AssetError):
    """Raw bytes were retrieved but are not decodable audio."""

    def __init__(self, asset_id: str, cause: str) -> None:
        super().__init__(asset_id, f"decode {asset_id!r} failed: {cause}")
        self.cause = cause
