"""
Local filesystem byte source.

Resolves ``file://`` URLs (or plain paths) to files on disk, optionally
mapping a remote base URL onto a local mirror directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote, urlparse

import aiofiles

from scremote.core.errors import FetchError
from scremote.ingest.base import ByteSource


class LocalByteSource(ByteSource):
    """
    Byte source reading from the local filesystem.

    Example:
        >>> # Serve "https://data-gypsum.artifactdb.com/..." from a local mirror
        >>> source = LocalByteSource(
        ...     root="/data/gypsum-mirror",
        ...     base_url="https://data-gypsum.artifactdb.com",
        ... )
    """

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        base_url: Optional[str] = None,
    ):
        """
        Initialize local source.

        Args:
            root: Mirror directory substituted for ``base_url``.
            base_url: URL prefix that maps onto ``root``.
        """
        if (root is None) != (base_url is None):
            raise ValueError("'root' and 'base_url' must be supplied together")
        self.root = Path(root) if root is not None else None
        self.base_url = base_url.rstrip("/") if base_url is not None else None

    def resolve(self, url: str) -> Path:
        """Map a URL onto a local path."""
        if self.base_url is not None and url.startswith(self.base_url):
            relative = unquote(url[len(self.base_url):]).lstrip("/")
            return self.root / relative

        parsed = urlparse(url)
        if parsed.scheme == "file":
            return Path(unquote(parsed.path))
        if parsed.scheme == "":
            return Path(url)
        raise FetchError(url, reason="URL is not mapped to the local filesystem")

    async def fetch(self, url: str) -> bytes:
        path = self.resolve(url)
        if not path.is_file():
            raise FetchError(url, status_code=404, reason=f"file not found: {path}")
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def exists(self, url: str) -> bool:
        return self.resolve(url).is_file()
