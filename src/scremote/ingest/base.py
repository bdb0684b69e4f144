"""
Base interfaces for byte sources.

A ByteSource is the only thing the dataset adapters know about network or
filesystem access: ``fetch(url)`` returns the bytes at a URL and
``exists(url)`` checks for a resource without downloading it.
"""

from __future__ import annotations

import inspect
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional, Union

import aiofiles

from scremote.core.errors import FetchError

Payload = Union[bytes, bytearray, memoryview, str, Path]
"""What a download function may return: the bytes, or a path to a local copy."""


def payload_to_bytes(payload: Payload) -> bytes:
    """Normalize a download result into bytes, reading file paths from disk."""
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    if isinstance(payload, (str, Path)):
        return Path(payload).read_bytes()
    raise TypeError(f"unsupported download result of type '{type(payload).__name__}'")


async def read_payload(payload: Payload) -> bytes:
    """Async counterpart of ``payload_to_bytes``; file paths are read with aiofiles."""
    if isinstance(payload, (str, Path)):
        async with aiofiles.open(payload, "rb") as f:
            return await f.read()
    return payload_to_bytes(payload)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ByteSource(ABC):
    """
    Abstract base class for byte sources.

    Example:
        >>> source = HttpByteSource()
        >>> content = await source.fetch("https://example.com/data.h5")
        >>> meta = await source.fetch_json("https://example.com/meta.json")
    """

    @abstractmethod
    async def fetch(self, url: str) -> bytes:
        """
        Retrieve the contents of a URL.

        Args:
            url: Location of the resource.

        Returns:
            The resource contents.

        Raises:
            FetchError: If the resource cannot be retrieved.
        """
        ...

    async def exists(self, url: str) -> bool:
        """
        Check whether a URL can be retrieved.

        The default implementation downloads the resource and treats a 404 as
        absence; subclasses should override it with something cheaper.
        """
        try:
            await self.fetch(url)
        except FetchError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    async def fetch_json(self, url: str) -> Any:
        """Retrieve a URL and parse its contents as JSON."""
        return json.loads(await self.fetch(url))


class FunctionByteSource(ByteSource):
    """
    Byte source built from plain functions.

    Both functions may be synchronous or ``async``. The download function may
    return the bytes directly or a path to a local copy.

    Example:
        >>> source = FunctionByteSource(lambda url: cache[url])
    """

    def __init__(
        self,
        download: Callable[[str], Any],
        check: Optional[Callable[[str], Any]] = None,
    ):
        """
        Initialize function-backed source.

        Args:
            download: Accepts a URL, returns bytes or a file path.
            check: Accepts a URL, returns whether it exists. If None, existence
                is checked by downloading.
        """
        self._download = download
        self._check = check

    async def fetch(self, url: str) -> bytes:
        return await read_payload(await _maybe_await(self._download(url)))

    async def exists(self, url: str) -> bool:
        if self._check is None:
            return await super().exists(url)
        return bool(await _maybe_await(self._check(url)))
