"""
Remote file fetching for JSON ``urls`` payloads.

``HttpFetcher`` downloads one URL per call with a shared httpx AsyncClient
(connection pooling, redirects followed). Any failure surfaces as
``RemoteFetchFailed`` carrying the upstream diagnostics.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

import httpx

from .faults import RemoteFetchFailed

logger = logging.getLogger("stowage.fetch")

Fetcher = Callable[[str], Awaitable[bytes]]

# Upstream response bodies are truncated to this many characters in faults
MAX_ERROR_BODY = 512


class HttpFetcher:
    """
    Async URL downloader.

    Call it with a URL to get the response bytes. The client is created on
    first use (or passed in) and released by ``aclose()``.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        *,
        max_redirects: int = 5,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                max_redirects=self.max_redirects,
                headers={"User-Agent": "stowage/1.0"},
            )
        return self._client

    async def __call__(self, url: str) -> bytes:
        client = self._get_client()
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            body = e.response.text[:MAX_ERROR_BODY]
            logger.warning(
                f"Download of {url} failed: {e.response.status_code} - {body}"
            )
            raise RemoteFetchFailed(url, status=e.response.status_code, body=body)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            reason = str(e) or type(e).__name__
            logger.warning(f"Download of {url} failed: {reason}")
            raise RemoteFetchFailed(url, reason=reason)

        return response.content

    async def aclose(self) -> None:
        """Close the underlying client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
