"""
SewerRat adapter.

SewerRat indexes a shared filesystem; files are retrieved through its REST API
by absolute path, and ``/list`` returns every file below a directory.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Union
from urllib.parse import quote

from scremote.core.config import DatasetOptions
from scremote.core.errors import MissingResourceError
from scremote.datasets.alabaster import AlabasterResolver, join_path
from scremote.datasets.base import AbstractDataset
from scremote.ingest.base import ByteSource
from scremote.ingest.http import HttpByteSource
from scremote.ingest.listing import ManifestListing

logger = logging.getLogger(__name__)


class SewerRatResolver(AlabasterResolver):
    def __init__(self, path: str, url: str, source: ByteSource):
        super().__init__(path, source)
        self.url = url.rstrip("/")

    def file_url(self, path: str) -> str:
        return f"{self.url}/retrieve/file?path={quote(path, safe='')}"

    async def build_listing(self) -> ManifestListing:
        if not await self.source.exists(self.file_url(join_path(self.root, "OBJECT"))):
            raise MissingResourceError(f"no object found at '{self.root}'")

        listed = await self.source.fetch_json(
            f"{self.url}/list?path={quote(self.root, safe='')}&recursive=true"
        )
        logger.debug("Listed %d files under '%s'", len(listed), self.root)
        return ManifestListing(self.root, listed)


class SewerRatDataset(AbstractDataset):
    """
    Dataset saved on a filesystem indexed by SewerRat.

    Example:
        >>> dataset = SewerRatDataset("/data/zeisel-brain", "https://sewerrat.example.org")
        >>> summary = await dataset.summary()
    """

    def __init__(
        self,
        path: str,
        url: str,
        options: Optional[Union[DatasetOptions, dict[str, Any]]] = None,
        source: Optional[ByteSource] = None,
    ):
        """
        Initialize adapter.

        Args:
            path: Absolute path of the experiment directory.
            url: Base URL of the SewerRat API.
            options: Modality configuration.
            source: Byte source; HTTP if None.
        """
        self._path = path
        self._url = url
        self.source = source if source is not None else HttpByteSource()
        super().__init__(SewerRatResolver(path, url, self.source), options)

    @classmethod
    def format(cls) -> str:
        return "SewerRat"

    def identifier(self) -> Any:
        return {"path": self._path, "url": self._url}

    @classmethod
    def _from_identifier(cls, identifier: str, options: Optional[dict[str, Any]], **kwargs: Any) -> "SewerRatDataset":
        parsed = json.loads(identifier)
        return cls(parsed["path"], parsed["url"], options, **kwargs)
