"""Fetch referenced media (clips, voiceovers, EDLs) into memory."""

from __future__ import annotations

from urllib.parse import urlparse

import httpx

from mohtawa.observability.logging import get_logger
from mohtawa.storage.object_store import BlobStore

logger = get_logger(__name__)


class AssetFetchError(RuntimeError):
    """Raised when a referenced asset cannot be loaded."""


class AssetFetcher:
    """Resolve blob-store URLs through the store and everything else over HTTP.

    Usage:
        fetcher = AssetFetcher(store)
        data = await fetcher.fetch("s3://bucket/video-assets/u1/abc_edl.json")
    """

    def __init__(
        self,
        store: BlobStore,
        *,
        timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.store = store
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def fetch(self, url: str) -> bytes:
        key = self.store.key_from_url(url)
        if key is not None:
            try:
                return await self.store.get(key)
            except Exception as exc:
                raise AssetFetchError(f"Failed to read {url}: {exc}") from exc

        scheme = urlparse(url).scheme
        if scheme == "s3":
            raise AssetFetchError(f"Unsupported bucket for {url}")
        if scheme not in {"http", "https"}:
            raise AssetFetchError(f"Unsupported URL scheme for asset: {url}")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPStatusError as exc:
            raise AssetFetchError(
                f"Fetch failed with status {exc.response.status_code}: {url}"
            ) from exc
        except httpx.TimeoutException as exc:
            raise AssetFetchError(f"Fetch timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise AssetFetchError(f"Fetch error for {url}: {exc}") from exc

    async def __call__(self, url: str) -> bytes:
        return await self.fetch(url)
