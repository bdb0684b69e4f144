"""
ExperimentHub adapter.

A small fixed registry maps dataset keys to flat numeric resource handles for
the counts, the cell annotations and (optionally) the feature annotations.
Each handle is fetched directly from ``{base}/{handle}``; there is no metadata
indirection.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

import pandas as pd

from scremote.core.cache import StageCache
from scremote.core.config import DatasetOptions, get_settings
from scremote.core.errors import InvalidIdentifierError, MissingResourceError
from scremote.datasets.base import AbstractDataset, DatasetResolver, ExperimentInfo
from scremote.decode.frame import RawTable
from scremote.decode.hdf5 import decode_hdf5_table, read_string_vector
from scremote.decode.matrix import DecodedMatrix, decode_matrix, read_matrix_shape
from scremote.ingest.base import ByteSource
from scremote.ingest.http import HttpByteSource

logger = logging.getLogger(__name__)

# EH2580, EH2582 and EH2581 are served under these handles.
DEFAULT_REGISTRY: dict[str, dict[str, str]] = {
    "zeisel-brain": {"counts": "2596", "coldata": "2598", "rowdata": "2597"},
}

COUNTS_GROUP = "matrix"
ROW_DIMNAMES = "dimnames/0"


def extract_features(table: RawTable) -> pd.DataFrame:
    """
    Keep the row names (as an ``id`` column) and any ``sym*`` columns.

    Raises:
        MissingResourceError: If the table has no row names.
    """
    if table.row_names is None:
        raise MissingResourceError("no row names found in the rowData data frame")

    headers = ["id"]
    columns: list = [list(table.row_names)]
    for header, values in zip(table.headers, table.columns):
        if values is not None and header.startswith("sym"):
            headers.append(header)
            columns.append(values)
    return RawTable(headers=headers, columns=columns).to_frame()


class ExperimentHubResolver(DatasetResolver):
    """Resolves one registry entry into a single-experiment dataset."""

    def __init__(self, entry: dict[str, str], base_url: str, source: ByteSource):
        self.entry = entry
        self.base_url = base_url.rstrip("/")
        self.source = source
        self._counts: StageCache[bytes] = StageCache("experimenthub-counts")

    def _url(self, kind: str) -> str:
        return f"{self.base_url}/{self.entry[kind]}"

    async def _counts_content(self) -> bytes:
        return await self._counts.get(lambda: self.source.fetch(self._url("counts")))

    async def experiments(self) -> list[ExperimentInfo]:
        content = await self._counts_content()
        shape = read_matrix_shape(content, group=COUNTS_GROUP)
        return [ExperimentInfo(name="", dimensions=shape, assay_names=["counts"])]

    async def row_data(self, experiment: ExperimentInfo) -> Optional[pd.DataFrame]:
        if "rowdata" in self.entry:
            content = await self.source.fetch(self._url("rowdata"))
            return extract_features(decode_hdf5_table(content, name=self.entry["rowdata"]))

        names = read_string_vector(await self._counts_content(), ROW_DIMNAMES)
        if names is None:
            return None
        return RawTable(headers=["id"], columns=[names]).to_frame()

    async def column_data(self, experiment: ExperimentInfo) -> Optional[pd.DataFrame]:
        if "coldata" not in self.entry:
            return None
        content = await self.source.fetch(self._url("coldata"))
        return decode_hdf5_table(content, name=self.entry["coldata"]).to_frame()

    async def assay(
        self,
        experiment: ExperimentInfo,
        index: int,
        *,
        force_integer: bool = True,
        layered: bool = True,
    ) -> DecodedMatrix:
        content = await self._counts_content()
        return decode_matrix(content, group=COUNTS_GROUP, force_integer=force_integer, layered=layered)

    def reset(self) -> None:
        self._counts.reset()


class ExperimentHubDataset(AbstractDataset):
    """
    Dataset from the ExperimentHub registry.

    Example:
        >>> dataset = ExperimentHubDataset("zeisel-brain")
        >>> loaded = await dataset.load()
    """

    def __init__(
        self,
        id: str,
        options: Optional[Union[DatasetOptions, dict[str, Any]]] = None,
        source: Optional[ByteSource] = None,
        registry: Optional[dict[str, dict[str, str]]] = None,
    ):
        """
        Initialize adapter.

        Args:
            id: Registry key.
            options: Modality configuration.
            source: Byte source; HTTP if None.
            registry: Mapping of keys to resource handles; the built-in one if None.

        Raises:
            InvalidIdentifierError: If ``id`` is not in the registry.
        """
        registry = registry if registry is not None else DEFAULT_REGISTRY
        if id not in registry:
            raise InvalidIdentifierError(f"unrecognized identifier '{id}' for ExperimentHub-based datasets")
        self._id = id
        self.source = source if source is not None else HttpByteSource()
        resolver = ExperimentHubResolver(dict(registry[id]), get_settings().experimenthub_url, self.source)
        super().__init__(resolver, options)

    @classmethod
    def format(cls) -> str:
        return "ExperimentHub"

    def identifier(self) -> Any:
        return self._id

    @classmethod
    def _from_identifier(cls, identifier: str, options: Optional[dict[str, Any]], **kwargs: Any) -> "ExperimentHubDataset":
        return cls(identifier, options, **kwargs)
