"""
ArtifactDB and CollaboratorDB adapters.

Every resource is addressed by a packed identifier ``project:path@version``.
Its JSON metadata lives at ``{base}/files/{id}/metadata``; the metadata names
the file whose bytes live at ``{base}/files/{id}``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Union
from urllib.parse import quote

import pandas as pd

from scremote.core.config import DatasetOptions, get_settings
from scremote.core.errors import InvalidIdentifierError, MissingResourceError, UnsupportedSchemaError
from scremote.datasets.base import AbstractDataset, DatasetResolver, ExperimentInfo
from scremote.decode.coerce import coerce_table
from scremote.decode.delimited import decode_delimited_table
from scremote.decode.hdf5 import decode_hdf5_table
from scremote.decode.matrix import DecodedMatrix, decode_matrix
from scremote.ingest.base import ByteSource
from scremote.ingest.http import HttpByteSource

logger = logging.getLogger(__name__)

MAX_REDIRECTIONS = 10


def pack_id(project: str, path: str, version: str) -> str:
    """Combine the parts of an ArtifactDB identifier."""
    return f"{project}:{path}@{version}"


def unpack_id(id: str) -> dict[str, str]:
    """
    Split an ArtifactDB identifier into its parts.

    Example:
        >>> unpack_id("dssc-test_basic-2023:my_first_sce@2023-01-19")
        {'project': 'dssc-test_basic-2023', 'path': 'my_first_sce', 'version': '2023-01-19'}

    Raises:
        InvalidIdentifierError: If the identifier is not ``project:path@version``.
    """
    colon = id.find(":")
    at = id.rfind("@")
    if colon <= 0 or at <= colon + 1 or at == len(id) - 1:
        raise InvalidIdentifierError(f"could not unpack ArtifactDB identifier '{id}'")
    return {"project": id[:colon], "path": id[colon + 1:at], "version": id[at + 1:]}


def _csv_compression(details: dict) -> str:
    compression = details.get("csv_data_frame", {}).get("compression", "none")
    if compression == "gzip":
        return "gz"
    return compression


class ArtifactdbNavigator:
    """Fetches metadata and files of one project version."""

    def __init__(self, base_url: str, project: str, version: str, source: ByteSource):
        self.base_url = base_url.rstrip("/")
        self.project = project
        self.version = version
        self.source = source

    def _url(self, path: str) -> str:
        return f"{self.base_url}/files/{quote(pack_id(self.project, path, self.version), safe='')}"

    async def metadata(self, path: str) -> dict[str, Any]:
        """Fetch the metadata of ``path``, following redirections."""
        for _ in range(MAX_REDIRECTIONS):
            meta = await self.source.fetch_json(self._url(path) + "/metadata")
            if not str(meta.get("$schema", "")).startswith("redirection/"):
                return meta
            targets = meta.get("redirection", {}).get("targets") or []
            if not targets:
                raise MissingResourceError(f"redirection at '{path}' has no targets")
            path = targets[0]["location"]
            logger.debug("Following redirection to '%s'", path)
        raise MissingResourceError(f"too many redirections while resolving '{path}'")

    async def file(self, path: str) -> bytes:
        return await self.source.fetch(self._url(path))


class ArtifactdbResolver(DatasetResolver):
    """Resolves a SingleCellExperiment stored as ArtifactDB metadata documents."""

    def __init__(self, navigator: ArtifactdbNavigator, path: str):
        self.navigator = navigator
        self.path = path

    @staticmethod
    def _experiment_info(name: str, meta: dict[str, Any]) -> ExperimentInfo:
        se = meta.get("summarized_experiment")
        if se is None:
            raise MissingResourceError(
                f"'summarized_experiment' missing from the metadata of '{meta.get('path', name)}'"
            )
        dims = se.get("dimensions")
        if dims is None or len(dims) != 2:
            raise MissingResourceError(f"'dimensions' missing for experiment '{name}'")
        assays = [a["name"] for a in se.get("assays") or []]
        return ExperimentInfo(name=name, dimensions=(int(dims[0]), int(dims[1])), assay_names=assays, handle=se)

    async def experiments(self) -> list[ExperimentInfo]:
        meta = await self.navigator.metadata(self.path)
        sce = meta.get("single_cell_experiment") or {}
        main = self._experiment_info(sce.get("main_experiment_name") or "", meta)

        alternatives = sce.get("alternative_experiments") or []
        alt_meta = await asyncio.gather(
            *(self.navigator.metadata(alt["resource"]["path"]) for alt in alternatives)
        )
        return [main] + [
            self._experiment_info(alt["name"], m) for alt, m in zip(alternatives, alt_meta)
        ]

    async def _data_frame(self, path: str) -> pd.DataFrame:
        details = await self.navigator.metadata(path)
        content = await self.navigator.file(details["path"])
        schema = str(details.get("$schema", ""))
        frame_info = details.get("data_frame") or {}

        if schema.startswith("csv_data_frame/") or "csv_data_frame" in details:
            raw = decode_delimited_table(
                content,
                compression=_csv_compression(details),
                delimiter=",",
                row_names=bool(frame_info.get("row_names")),
                name=path,
            )
        elif schema.startswith("hdf5_data_frame/") or "hdf5_data_frame" in details:
            group = details.get("hdf5_data_frame", {}).get("group")
            raw = decode_hdf5_table(content, group=group, name=path)
        else:
            raise UnsupportedSchemaError(f"schema '{schema}' is not yet supported for data frames")

        return coerce_table(raw, frame_info.get("columns"), name=path).to_frame()

    async def row_data(self, experiment: ExperimentInfo) -> Optional[pd.DataFrame]:
        resource = experiment.handle.get("row_data")
        if not resource:
            return None
        return await self._data_frame(resource["resource"]["path"])

    async def column_data(self, experiment: ExperimentInfo) -> Optional[pd.DataFrame]:
        resource = experiment.handle.get("column_data")
        if not resource:
            return None
        return await self._data_frame(resource["resource"]["path"])

    async def assay(
        self,
        experiment: ExperimentInfo,
        index: int,
        *,
        force_integer: bool = True,
        layered: bool = True,
    ) -> DecodedMatrix:
        path = experiment.handle["assays"][index]["resource"]["path"]
        details = await self.navigator.metadata(path)
        content = await self.navigator.file(details["path"])
        schema = str(details.get("$schema", ""))

        if schema.startswith("hdf5_sparse_matrix/") or "hdf5_sparse_matrix" in details:
            group = details.get("hdf5_sparse_matrix", {}).get("group")
            return decode_matrix(content, group=group, force_integer=force_integer, layered=layered)
        if schema.startswith("hdf5_dense_array/") or "hdf5_dense_array" in details:
            dataset = details.get("hdf5_dense_array", {}).get("dataset")
            return decode_matrix(content, dataset=dataset, force_integer=force_integer, layered=layered)
        raise UnsupportedSchemaError(f"array schema '{schema}' is not yet supported")


class ArtifactdbDataset(AbstractDataset):
    """
    Dataset stored in any ArtifactDB instance.

    Example:
        >>> dataset = ArtifactdbDataset(
        ...     "dssc-test_basic-2023:my_first_sce@2023-01-19",
        ...     "https://gypsum-test.aaron-lun.workers.dev",
        ... )
        >>> summary = await dataset.summary()
    """

    def __init__(
        self,
        id: str,
        base_url: str,
        options: Optional[Union[DatasetOptions, dict[str, Any]]] = None,
        source: Optional[ByteSource] = None,
    ):
        """
        Initialize adapter.

        Args:
            id: Packed identifier ``project:path@version``.
            base_url: Base URL of the ArtifactDB REST API.
            options: Modality configuration.
            source: Byte source; HTTP if None.
        """
        unpacked = unpack_id(id)
        self._id = id
        self._base_url = base_url.rstrip("/")
        self.source = source if source is not None else HttpByteSource()
        navigator = ArtifactdbNavigator(self._base_url, unpacked["project"], unpacked["version"], self.source)
        super().__init__(ArtifactdbResolver(navigator, unpacked["path"]), options)

    @classmethod
    def format(cls) -> str:
        return "ArtifactDB"

    def identifier(self) -> Any:
        return {"id": self._id, "url": self._base_url}

    @classmethod
    def _from_identifier(cls, identifier: str, options: Optional[dict[str, Any]], **kwargs: Any) -> "ArtifactdbDataset":
        parsed = json.loads(identifier)
        return cls(parsed["id"], parsed["url"], options, **kwargs)


class CollaboratordbDataset(ArtifactdbDataset):
    """Dataset stored in CollaboratorDB."""

    def __init__(
        self,
        id: str,
        options: Optional[Union[DatasetOptions, dict[str, Any]]] = None,
        source: Optional[ByteSource] = None,
    ):
        super().__init__(id, get_settings().collaboratordb_url, options, source)

    @classmethod
    def format(cls) -> str:
        return "CollaboratorDB"

    def identifier(self) -> Any:
        return self._id

    @classmethod
    def _from_identifier(cls, identifier: str, options: Optional[dict[str, Any]], **kwargs: Any) -> "CollaboratordbDataset":
        return cls(identifier, options, **kwargs)
