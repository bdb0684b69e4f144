"""
HTTP byte source.

Default transport for every dataset adapter, using ``httpx.AsyncClient``.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from scremote.core.config import get_settings
from scremote.core.errors import FetchError
from scremote.ingest.base import ByteSource

logger = logging.getLogger(__name__)


class HttpByteSource(ByteSource):
    """
    Byte source performing HTTP GET/HEAD requests.

    A shared client can be supplied to reuse connections; otherwise a
    short-lived client is opened per request.

    Example:
        >>> async with httpx.AsyncClient() as client:
        ...     source = HttpByteSource(client=client)
        ...     content = await source.fetch("https://example.com/data.h5")
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        """
        Initialize HTTP source.

        Args:
            client: Optional shared client; the caller owns its lifetime.
            timeout: Request timeout in seconds (defaults to settings.http_timeout).
            headers: Extra headers sent with every request.
        """
        settings = get_settings()
        self.client = client
        self.timeout = timeout if timeout is not None else settings.http_timeout
        self.follow_redirects = settings.http_follow_redirects
        self.headers = dict(headers or {})

    async def _request(self, method: str, url: str) -> httpx.Response:
        try:
            if self.client is not None:
                return await self.client.request(
                    method,
                    url,
                    headers=self.headers,
                    timeout=self.timeout,
                    follow_redirects=self.follow_redirects,
                )
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=self.follow_redirects
            ) as client:
                return await client.request(method, url, headers=self.headers)
        except httpx.RequestError as e:
            raise FetchError(url, reason=str(e)) from e

    async def fetch(self, url: str) -> bytes:
        logger.debug("GET %s", url)
        response = await self._request("GET", url)
        if response.status_code >= 400:
            raise FetchError(url, status_code=response.status_code)
        return response.content

    async def exists(self, url: str) -> bool:
        logger.debug("HEAD %s", url)
        response = await self._request("HEAD", url)
        if response.status_code < 400:
            return True
        if response.status_code == 404:
            return False
        raise FetchError(url, status_code=response.status_code)
