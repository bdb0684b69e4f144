"""
gypsum adapter.

Files of a versioned asset live at ``{url}/{project}/{asset}/{version}/{path}``
and the version's ``..manifest`` lists every file in it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Union
from urllib.parse import quote

from scremote.core.config import DatasetOptions, get_settings
from scremote.datasets.alabaster import AlabasterResolver, join_path
from scremote.datasets.base import AbstractDataset
from scremote.ingest.base import ByteSource
from scremote.ingest.http import HttpByteSource
from scremote.ingest.listing import ManifestListing

logger = logging.getLogger(__name__)


class GypsumResolver(AlabasterResolver):
    def __init__(
        self,
        project: str,
        asset: str,
        version: str,
        path: Optional[str],
        url: str,
        source: ByteSource,
    ):
        self.version_root = join_path(project, asset, version)
        super().__init__(join_path(self.version_root, path or ""), source)
        self.url = url.rstrip("/")

    def file_url(self, path: str) -> str:
        return f"{self.url}/{quote(path)}"

    async def build_listing(self) -> ManifestListing:
        manifest = await self.source.fetch_json(self.file_url(join_path(self.version_root, "..manifest")))
        logger.debug("Manifest for '%s' lists %d files", self.version_root, len(manifest))
        return ManifestListing(self.version_root, manifest.keys())


class GypsumDataset(AbstractDataset):
    """
    Dataset stored in the gypsum bucket.

    Example:
        >>> dataset = GypsumDataset("scRNAseq", "zeisel-brain-2015", "2023-12-14")
        >>> loaded = await dataset.load()
    """

    def __init__(
        self,
        project: str,
        asset: str,
        version: str,
        path: Optional[str] = None,
        url: Optional[str] = None,
        options: Optional[Union[DatasetOptions, dict[str, Any]]] = None,
        source: Optional[ByteSource] = None,
    ):
        """
        Initialize adapter.

        Args:
            project: Project name.
            asset: Asset name.
            version: Version name.
            path: Subdirectory of the experiment inside the version; the version root if None.
            url: Bucket URL; from settings if None.
            options: Modality configuration.
            source: Byte source; HTTP if None.
        """
        url = url if url is not None else get_settings().gypsum_url
        self._id = {"project": project, "asset": asset, "version": version, "path": path, "url": url}
        self.source = source if source is not None else HttpByteSource()
        resolver = GypsumResolver(project, asset, version, path, url, self.source)
        super().__init__(resolver, options)

    @classmethod
    def format(cls) -> str:
        return "gypsum"

    def identifier(self) -> Any:
        return dict(self._id)

    @classmethod
    def _from_identifier(cls, identifier: str, options: Optional[dict[str, Any]], **kwargs: Any) -> "GypsumDataset":
        parsed = json.loads(identifier)
        return cls(
            parsed["project"],
            parsed["asset"],
            parsed["version"],
            path=parsed.get("path"),
            url=parsed.get("url"),
            options=options,
            **kwargs,
        )
