"""
Resolver for objects saved in the alabaster directory layout.

Every object is a directory holding an ``OBJECT`` JSON file that names its
type. A SummarizedExperiment directory contains:

    OBJECT
    assays/names.json, assays/<i>/...
    row_data/...                        (optional)
    column_data/...                     (optional)
    alternative_experiments/names.json, alternative_experiments/<i>/...
    reduced_dimensions/names.json, reduced_dimensions/<i>/...   (single-cell only)

Which optional parts exist is answered from a manifest listing, fetched once
per resolver. Subclasses supply file URLs and the manifest.
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from typing import Any, Optional

import numpy as np
import pandas as pd

from scremote.core.cache import StageCache
from scremote.core.errors import DimensionMismatchError, MissingResourceError, UnsupportedSchemaError
from scremote.datasets.base import DatasetResolver, ExperimentInfo
from scremote.decode.coerce import coerce_table
from scremote.decode.hdf5 import decode_hdf5_table
from scremote.decode.matrix import DecodedMatrix, decode_dense_array, decode_matrix
from scremote.ingest.base import ByteSource
from scremote.ingest.listing import ManifestListing

logger = logging.getLogger(__name__)

EXPERIMENT_TYPES = frozenset({
    "summarized_experiment",
    "ranged_summarized_experiment",
    "single_cell_experiment",
})

# Column types as stored in basic_columns.h5, mapped onto annotation types.
_COLUMN_TYPES = {
    "integer": "integer",
    "number": "number",
    "boolean": "boolean",
    "string": "string",
    "factor": "string",
    "other": "other",
}


def join_path(base: str, *parts: str) -> str:
    """Join path components with ``/``, keeping a leading slash on ``base``."""
    output = base.rstrip("/")
    for part in parts:
        if part:
            output = f"{output}/{part}" if output else part
    return output


class AlabasterResolver(DatasetResolver):
    """Base resolver for alabaster-layout stores."""

    def __init__(self, root: str, source: ByteSource):
        """
        Args:
            root: Directory of the experiment object.
            source: Byte source used for every fetch.
        """
        self.root = root
        self.source = source
        self._listing: StageCache[ManifestListing] = StageCache("manifest")

    @abstractmethod
    def file_url(self, path: str) -> str:
        """URL of the file at ``path``."""
        ...

    @abstractmethod
    async def build_listing(self) -> ManifestListing:
        """Fetch the manifest of every file under the dataset."""
        ...

    async def listing(self) -> ManifestListing:
        return await self._listing.get(self.build_listing)

    async def list(self, path: str) -> list[str]:
        """Children of the directory at ``path``."""
        return (await self.listing()).list(path)

    async def get(self, path: str) -> bytes:
        return await self.source.fetch(self.file_url(path))

    async def get_json(self, path: str) -> Any:
        return await self.source.fetch_json(self.file_url(path))

    async def read_object(self, directory: str) -> dict[str, Any]:
        return await self.get_json(join_path(directory, "OBJECT"))

    async def _has_child(self, directory: str, child: str) -> bool:
        return (await self.listing()).has_child(directory, child)

    async def _names(self, directory: str) -> list[str]:
        if not await self._has_child(directory, "names.json"):
            return []
        return list(await self.get_json(join_path(directory, "names.json")))

    async def _experiment(self, name: Optional[str], directory: str) -> tuple[ExperimentInfo, dict]:
        obj = await self.read_object(directory)
        obj_type = obj.get("type")
        if obj_type not in EXPERIMENT_TYPES:
            raise UnsupportedSchemaError(
                f"object at '{directory}' has type '{obj_type}', expected a SummarizedExperiment"
            )

        se = obj.get("summarized_experiment") or {}
        dims = se.get("dimensions")
        if dims is None or len(dims) != 2:
            raise MissingResourceError(f"'summarized_experiment.dimensions' missing at '{directory}'")

        assay_names: list[str] = []
        if await self._has_child(directory, "assays"):
            assay_names = await self._names(join_path(directory, "assays"))

        if name is None:
            name = (obj.get("single_cell_experiment") or {}).get("main_experiment_name") or ""

        info = ExperimentInfo(
            name=name,
            dimensions=(int(dims[0]), int(dims[1])),
            assay_names=assay_names,
            handle=directory,
        )
        return info, obj

    async def experiments(self) -> list[ExperimentInfo]:
        # The listing doubles as an existence check for the dataset root.
        await self.listing()
        main, _ = await self._experiment(None, self.root)

        alt_dir = join_path(self.root, "alternative_experiments")
        alt_names: list[str] = []
        if await self._has_child(self.root, "alternative_experiments"):
            alt_names = await self._names(alt_dir)

        alternatives = await asyncio.gather(
            *(self._experiment(n, join_path(alt_dir, str(i))) for i, n in enumerate(alt_names))
        )
        return [main] + [info for info, _ in alternatives]

    async def _data_frame(self, directory: str) -> pd.DataFrame:
        obj = await self.read_object(directory)
        if obj.get("type") != "data_frame":
            raise UnsupportedSchemaError(
                f"object at '{directory}' has type '{obj.get('type')}', expected a data frame"
            )

        content = await self.get(join_path(directory, "basic_columns.h5"))
        raw = decode_hdf5_table(content, group="data_frame", name=directory)
        annotations = [
            {"name": h, "type": _COLUMN_TYPES.get(t or "", "other")}
            for h, t in zip(raw.headers, raw.column_types or [])
        ]
        return coerce_table(raw, annotations, name=directory).to_frame()

    async def row_data(self, experiment: ExperimentInfo) -> Optional[pd.DataFrame]:
        if not await self._has_child(experiment.handle, "row_data"):
            return None
        return await self._data_frame(join_path(experiment.handle, "row_data"))

    async def column_data(self, experiment: ExperimentInfo) -> Optional[pd.DataFrame]:
        if not await self._has_child(experiment.handle, "column_data"):
            return None
        return await self._data_frame(join_path(experiment.handle, "column_data"))

    async def assay(
        self,
        experiment: ExperimentInfo,
        index: int,
        *,
        force_integer: bool = True,
        layered: bool = True,
    ) -> DecodedMatrix:
        directory = join_path(experiment.handle, "assays", str(index))
        obj = await self.read_object(directory)
        obj_type = obj.get("type")

        if obj_type == "compressed_sparse_matrix":
            content = await self.get(join_path(directory, "matrix.h5"))
            group = "compressed_sparse_matrix"
        elif obj_type == "dense_array":
            content = await self.get(join_path(directory, "array.h5"))
            group = "dense_array"
        else:
            raise UnsupportedSchemaError(f"assay at '{directory}' has unsupported type '{obj_type}'")

        return decode_matrix(content, group=group, force_integer=force_integer, layered=layered)

    async def reduced_dimension_names(self, experiment: ExperimentInfo) -> list[str]:
        """Names of the reduced dimensions stored on a single-cell experiment."""
        if not await self._has_child(experiment.handle, "reduced_dimensions"):
            return []
        return await self._names(join_path(experiment.handle, "reduced_dimensions"))

    async def reduced_dimension(self, experiment: ExperimentInfo, index: int) -> np.ndarray:
        """
        Decode the ``index``-th reduced dimension.

        Returns:
            Float64 array of shape (cells, dimensions).
        """
        directory = join_path(experiment.handle, "reduced_dimensions", str(index))
        obj = await self.read_object(directory)
        if obj.get("type") != "dense_array":
            raise UnsupportedSchemaError(
                f"reduced dimension at '{directory}' has unsupported type '{obj.get('type')}'"
            )

        content = await self.get(join_path(directory, "array.h5"))
        values = decode_dense_array(content, group="dense_array")
        ncol = experiment.dimensions[1]
        if values.shape[0] != ncol:
            raise DimensionMismatchError(
                values.shape, (ncol, values.shape[1]), what=f"reduced dimension '{directory}'"
            )
        return values

    def reset(self) -> None:
        self._listing.reset()
