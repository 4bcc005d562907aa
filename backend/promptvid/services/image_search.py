"""Image search via a Pexels-compatible JSON API.

Searches for a query, picks the best available rendition URL per photo, and
downloads them concurrently. Failed downloads are skipped; ranking order of
the successful ones is preserved.
"""

import asyncio
import logging
from typing import Optional

import httpx

from promptvid.services.base import ImageSearcher

logger = logging.getLogger(__name__)

_SRC_PREFERENCE = ("original", "large2x", "large")
MAX_DOWNLOAD_BYTES = 30 * 1024 * 1024


def extract_image_urls(payload: dict) -> list[str]:
    """Extract image URLs from a Pexels API JSON response."""
    photos = payload.get("photos")
    if not isinstance(photos, list):
        return []

    results: list[str] = []
    for photo in photos:
        if not isinstance(photo, dict):
            continue
        src = photo.get("src")
        if not isinstance(src, dict):
            continue
        for key in _SRC_PREFERENCE:
            value = src.get(key)
            if isinstance(value, str) and value.startswith("http"):
                results.append(value)
                break
    return results


class PexelsImageSearcher(ImageSearcher):
    """Search + download images for a keyword."""

    def __init__(
        self,
        search_url: str,
        api_key: str = "",
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.search_url = search_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": self.api_key} if self.api_key else {}
            self._client = httpx.AsyncClient(
                headers=headers,
                follow_redirects=True,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def _download(self, url: str) -> Optional[bytes]:
        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Image download failed for {url}: {type(e).__name__}: {e}")
            return None
        if len(response.content) > MAX_DOWNLOAD_BYTES:
            logger.warning(f"Image {url} exceeds {MAX_DOWNLOAD_BYTES} bytes, skipping")
            return None
        return response.content

    async def search_images(self, query: str, count: int) -> list[bytes]:
        if count <= 0:
            return []

        logger.info(f"GET {self.search_url} query={query!r} per_page={count}")
        try:
            response = await self.client.get(
                self.search_url, params={"query": query, "per_page": count},
            )
            response.raise_for_status()
            urls = extract_image_urls(response.json())[:count]
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Image search failed for {query!r}: {type(e).__name__}: {e}")
            return []

        downloads = await asyncio.gather(*[self._download(url) for url in urls])
        images = [data for data in downloads if data]
        logger.info(f"Downloaded {len(images)}/{len(urls)} image(s) for query {query!r}")
        return images

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
