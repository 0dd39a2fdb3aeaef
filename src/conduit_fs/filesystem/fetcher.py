"""
HTTP(S) source fetching for the read tool.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from conduit_fs.filesystem.exceptions import (
    ErrorCode,
    FileSizeLimitExceededError,
    HttpFetchError,
)

logger = logging.getLogger(__name__)


def is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


@dataclass
class FetchedContent:
    """Result of fetching a URL."""

    final_url: str
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    mime_type: Optional[str] = None
    content: Optional[bytes] = None

    @property
    def size_bytes(self) -> Optional[int]:
        if self.content is not None:
            return len(self.content)
        length = self.headers.get("content-length")
        return int(length) if length and length.isdigit() else None


class WebFetcher:
    """
    Fetches URL sources with a timeout and a response size cap.

    Usage:
        fetcher = WebFetcher(timeout_ms=30_000, max_bytes=20 * 1024 * 1024)
        try:
            fetched = await fetcher.fetch("https://example.com/data.json")
        finally:
            await fetcher.close()
    """

    def __init__(
        self,
        timeout_ms: int,
        max_bytes: int,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the fetcher.

        Args:
            timeout_ms: Request timeout in milliseconds
            max_bytes: Maximum response body size
            transport: Optional httpx transport (used by tests)
        """
        self.timeout_ms = timeout_ms
        self.max_bytes = max_bytes
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_ms / 1000),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def fetch(self, url: str, metadata_only: bool = False) -> FetchedContent:
        """
        Fetch ``url``.

        Args:
            url: http or https URL
            metadata_only: Issue a HEAD request and skip the body

        Returns:
            FetchedContent with the body (None for metadata requests)

        Raises:
            HttpFetchError: On invalid URLs, timeouts, transport errors
                and status codes >= 400
            FileSizeLimitExceededError: If the body exceeds ``max_bytes``
        """
        if not is_url(url):
            raise HttpFetchError(ErrorCode.HTTP_INVALID_URL, f"Invalid URL: {url}")

        client = await self._get_client()
        method = "HEAD" if metadata_only else "GET"
        logger.debug(f"Fetching {method} {url}")

        try:
            async with client.stream(method, url) as response:
                if response.status_code >= 400:
                    raise HttpFetchError(
                        ErrorCode.HTTP_STATUS_ERROR,
                        f"HTTP {response.status_code} for {url}",
                        status_code=response.status_code,
                    )

                body: Optional[bytes] = None
                if not metadata_only:
                    chunks = []
                    received = 0
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > self.max_bytes:
                            logger.warning(
                                f"Download too large: {url} (> {self.max_bytes} bytes)"
                            )
                            raise FileSizeLimitExceededError(url, received, self.max_bytes)
                        chunks.append(chunk)
                    body = b"".join(chunks)

                content_type = response.headers.get("content-type")
                return FetchedContent(
                    final_url=str(response.url),
                    status_code=response.status_code,
                    headers=dict(response.headers),
                    mime_type=content_type.split(";")[0].strip() if content_type else None,
                    content=body,
                )
        except httpx.TimeoutException as e:
            raise HttpFetchError(
                ErrorCode.HTTP_TIMEOUT,
                f"Request timed out after {self.timeout_ms}ms: {url} ({e})",
            )
        except httpx.InvalidURL as e:
            raise HttpFetchError(ErrorCode.HTTP_INVALID_URL, f"Invalid URL: {url} ({e})")
        except httpx.HTTPError as e:
            raise HttpFetchError(
                ErrorCode.HTTP_REQUEST_FAILED, f"Request failed for {url}: {e}"
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
