"""Outbound media downloads (menu image, profile photos)."""

from __future__ import annotations

import logging

import httpx

from pairbot.errors import MediaFetchError
from pairbot.utils.retry import with_retry

logger = logging.getLogger(__name__)

DEFAULT_MAX_MEDIA_BYTES = 16 * 1024 * 1024


class MediaClient:
    """Fetches images over HTTP with one shared connection pool.

    Transient transport failures are retried; HTTP error statuses are not.

    Example:
        ```python
        media = MediaClient(timeout=20.0)
        data = await media.fetch("https://example.com/menu.png")
        await media.aclose()
        ```
    """

    def __init__(
        self,
        timeout: float = 20.0,
        max_bytes: int = DEFAULT_MAX_MEDIA_BYTES,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._max_bytes = max_bytes

    async def fetch(self, url: str) -> bytes:
        """Download url into memory.

        Raises:
            MediaFetchError: On HTTP errors, oversize bodies or repeated transport failures
        """
        try:
            return await self._fetch(url)
        except httpx.TimeoutException as e:
            raise MediaFetchError(f"Request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise MediaFetchError(f"HTTP {e.response.status_code} fetching image") from e
        except httpx.HTTPError as e:
            raise MediaFetchError(f"Request failed: {e}") from e

    @with_retry(max_attempts=2, base_delay=0.5, max_delay=2.0, operation_name="media_fetch")
    async def _fetch(self, url: str) -> bytes:
        async with self._client.stream("GET", url) as response:
            response.raise_for_status()
            size = 0
            chunks: list[bytes] = []
            async for chunk in response.aiter_bytes():
                size += len(chunk)
                if size > self._max_bytes:
                    raise MediaFetchError(
                        f"Image too large (>{self._max_bytes / (1024 * 1024):.1f}MB)"
                    )
                chunks.append(chunk)
        logger.debug(f"Fetched {size} bytes of media")
        return b"".join(chunks)

    async def aclose(self) -> None:
        await self._client.aclose()
