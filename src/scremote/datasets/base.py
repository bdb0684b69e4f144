"""
Dataset adapter contract.

Every backend supplies a ``DatasetResolver`` that knows how to locate
experiments, tables and assays in its store. ``AbstractDataset`` drives the
resolver through the shared loading protocol:

- ``summary()``: cell table, feature tables and assay names per experiment
- ``load()``: counts split into RNA/ADT/CRISPR with aligned feature tables
- ``preview_primary_ids()``: the primary identifiers ``load()`` would report
- ``serialize()``/``unserialize()``/``abbreviate()``: identifier plus options
- ``clear()``: drop every cached stage and release cached matrices

Each stage is cached per adapter instance behind a ``StageCache``.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import numpy as np
import pandas as pd

from scremote.core.cache import StageCache
from scremote.core.config import MODALITIES, AssaySelector, ColumnSelector, DatasetOptions
from scremote.core.errors import (
    AssayIndexOutOfRangeError,
    AssayNotFoundError,
    DimensionMismatchError,
    DuplicateExperimentError,
    InvalidIdentifierError,
)
from scremote.datasets.results import DatasetSummary, LoadedDataset
from scremote.decode.frame import empty_frame, row_names, take_rows
from scremote.decode.matrix import DecodedMatrix
from scremote.ingest.base import payload_to_bytes

logger = logging.getLogger(__name__)


@dataclass
class ExperimentInfo:
    """One experiment (main or alternative) of a dataset."""

    name: str
    """Declared name; "" for an unnamed main experiment."""

    dimensions: tuple[int, int]
    """Number of features and number of cells."""

    assay_names: list[str] = field(default_factory=list)
    """Assay names in declaration order."""

    handle: Any = None
    """Backend-specific locator (a metadata dict or a directory path)."""


class DatasetResolver(ABC):
    """
    Backend strategy for locating dataset components.

    The first experiment returned by ``experiments()`` is the main one; its
    column data is the dataset's cell table.
    """

    @abstractmethod
    async def experiments(self) -> list[ExperimentInfo]:
        """Describe the main experiment followed by any alternative experiments."""
        ...

    @abstractmethod
    async def row_data(self, experiment: ExperimentInfo) -> Optional[pd.DataFrame]:
        """Feature table of an experiment, or None if it has none."""
        ...

    @abstractmethod
    async def column_data(self, experiment: ExperimentInfo) -> Optional[pd.DataFrame]:
        """Cell table of an experiment, or None if it has none."""
        ...

    @abstractmethod
    async def assay(
        self,
        experiment: ExperimentInfo,
        index: int,
        *,
        force_integer: bool = True,
        layered: bool = True,
    ) -> DecodedMatrix:
        """Decode the ``index``-th assay of an experiment."""
        ...

    def reset(self) -> None:
        """Forget anything the resolver itself memoized."""


CountsKey = tuple[str, str, int, bool, bool]
"""(modality, experiment, assay index, force_integer, layered)."""


class ExperimentStages:
    """
    Cached experiment, cell and feature stages over a resolver.

    Shared by dataset adapters and result readers; each stage is fetched at
    most once until ``_reset_stages()``.
    """

    def __init__(self, resolver: DatasetResolver):
        self._resolver = resolver
        self._core: StageCache[dict[str, ExperimentInfo]] = StageCache("core")
        self._cells: StageCache[pd.DataFrame] = StageCache("cells")
        self._features: StageCache[dict[str, pd.DataFrame]] = StageCache("features")

    async def _experiments(self) -> dict[str, ExperimentInfo]:
        return await self._core.get(self._load_core)

    async def _load_core(self) -> dict[str, ExperimentInfo]:
        infos = await self._resolver.experiments()
        indexed: dict[str, ExperimentInfo] = {}
        for info in infos:
            if info.name in indexed:
                raise DuplicateExperimentError(info.name)
            indexed[info.name] = info
        logger.debug("Resolved experiments %s", list(indexed))
        return indexed

    async def _main_experiment(self) -> ExperimentInfo:
        experiments = await self._experiments()
        return next(iter(experiments.values()))

    async def _cell_table(self) -> pd.DataFrame:
        return await self._cells.get(self._load_cells)

    async def _load_cells(self) -> pd.DataFrame:
        main = await self._main_experiment()
        ncol = main.dimensions[1]
        cells = await self._resolver.column_data(main)
        if cells is None:
            return empty_frame(ncol)
        if len(cells) != ncol:
            raise DimensionMismatchError((len(cells),), (ncol,), what="column data")
        return cells

    async def _feature_tables(self) -> dict[str, pd.DataFrame]:
        return await self._features.get(self._load_features)

    async def _load_features(self) -> dict[str, pd.DataFrame]:
        experiments = list((await self._experiments()).values())
        tables = await asyncio.gather(*(self._resolver.row_data(e) for e in experiments))

        output: dict[str, pd.DataFrame] = {}
        for experiment, table in zip(experiments, tables):
            nrow = experiment.dimensions[0]
            if table is None:
                table = empty_frame(nrow)
            elif len(table) != nrow:
                raise DimensionMismatchError(
                    (len(table),), (nrow,), what=f"row data of experiment '{experiment.name}'"
                )
            output[experiment.name] = table
        return output

    @staticmethod
    def _resolve_assay(experiment: ExperimentInfo, selector: AssaySelector) -> Optional[int]:
        names = experiment.assay_names
        if isinstance(selector, str):
            if selector not in names:
                raise AssayNotFoundError(selector, experiment.name, names)
            return names.index(selector)

        if selector is None or selector == 0:
            return 0 if names else None

        if isinstance(selector, bool) or not isinstance(selector, (int, np.integer)):
            raise TypeError(f"assay selector must be a name or an index, got {selector!r}")
        index = int(selector)
        if index < 0 or index >= len(names):
            raise AssayIndexOutOfRangeError(index, experiment.name, len(names))
        return index

    async def _decode_assay(
        self,
        label: str,
        experiment: ExperimentInfo,
        index: int,
        *,
        force_integer: bool,
        layered: bool,
    ) -> DecodedMatrix:
        decoded = await self._resolver.assay(
            experiment,
            index,
            force_integer=force_integer,
            layered=layered,
        )
        observed = decoded.matrix.shape
        if tuple(observed) != tuple(experiment.dimensions):
            decoded.matrix.release()
            raise DimensionMismatchError(observed, experiment.dimensions, what=f"{label} matrix")
        logger.info(
            "Loaded %s assay %d from experiment '%s' (%d x %d)",
            label,
            index,
            experiment.name,
            observed[0],
            observed[1],
        )
        return decoded

    def _reset_stages(self) -> None:
        self._core.reset()
        self._cells.reset()
        self._features.reset()


class AbstractDataset(ExperimentStages, ABC):
    """
    Base class for remote dataset adapters.

    Example:
        >>> dataset = GypsumDataset("scRNAseq", "zeisel-brain-2015", "2023-12-14")
        >>> summary = await dataset.summary()
        >>> loaded = await dataset.load()
        >>> loaded.matrix["RNA"].number_of_rows()
        20006
        >>> dataset.clear()
    """

    def __init__(
        self,
        resolver: DatasetResolver,
        options: Optional[Union[DatasetOptions, dict[str, Any]]] = None,
    ):
        """
        Initialize adapter state.

        Args:
            resolver: Backend strategy.
            options: Modality configuration, as DatasetOptions or a plain dict.
        """
        super().__init__(resolver)
        if isinstance(options, DatasetOptions):
            self._options = copy.deepcopy(options)
        else:
            self._options = DatasetOptions.from_dict(options)

        self._counts: dict[CountsKey, StageCache[DecodedMatrix]] = {}

    # ==================== Identity ====================

    @classmethod
    @abstractmethod
    def format(cls) -> str:
        """Name under which this adapter is registered."""
        ...

    @abstractmethod
    def identifier(self) -> Any:
        """JSON-serializable identifier (string or dict) of the dataset."""
        ...

    @classmethod
    @abstractmethod
    def _from_identifier(
        cls,
        identifier: str,
        options: Optional[dict[str, Any]],
        **kwargs: Any,
    ) -> "AbstractDataset":
        """Construct an adapter from the text written by ``serialize()``."""
        ...

    def abbreviate(self) -> dict[str, Any]:
        """Cheap JSON-serializable snapshot of the identifier and options."""
        return {"id": copy.deepcopy(self.identifier()), "options": self.options()}

    def serialize(self) -> dict[str, Any]:
        """
        Persist the identifier and options.

        Returns:
            ``{"files": [{"type": "id", "file": bytes}], "options": dict}``.
        """
        identifier = self.identifier()
        if not isinstance(identifier, str):
            identifier = json.dumps(identifier)
        return {
            "files": [{"type": "id", "file": identifier.encode("utf-8")}],
            "options": self.options(),
        }

    @classmethod
    def unserialize(
        cls,
        files: list[dict[str, Any]],
        options: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> "AbstractDataset":
        """
        Rebuild an adapter from ``serialize()`` output.

        Args:
            files: File entries with "type" and "file" (bytes or a local path).
            options: Options dict from ``serialize()``.
            **kwargs: Forwarded to the constructor (e.g. ``source``).

        Raises:
            InvalidIdentifierError: If no "id" file is present.
        """
        contents: dict[str, str] = {}
        for entry in files:
            contents[entry["type"]] = payload_to_bytes(entry["file"]).decode("utf-8")

        if "id" not in contents:
            raise InvalidIdentifierError(f"expected a file of type 'id' to unserialize a {cls.format()} dataset")
        return cls._from_identifier(contents["id"], options, **kwargs)

    # ==================== Options ====================

    def options(self) -> dict[str, Any]:
        """Current options as a plain dict (a copy)."""
        return self._options.to_dict()

    def set_options(self, options: Optional[dict[str, Any]] = None, **kwargs: Any) -> None:
        """Update options; cached matrices stay keyed by the options they were loaded with."""
        self._options.update(**(options or {}), **kwargs)

    # ==================== Modality resolution ====================

    @staticmethod
    def _resolve_primary_ids(
        table: pd.DataFrame,
        selector: ColumnSelector,
    ) -> Optional[list[Optional[str]]]:
        if selector is None:
            values = row_names(table)
        elif isinstance(selector, str):
            if selector not in table.columns:
                return None
            values = table[selector].tolist()
        elif isinstance(selector, (int, np.integer)) and not isinstance(selector, bool):
            if selector < 0 or selector >= table.shape[1]:
                return None
            values = table.iloc[:, int(selector)].tolist()
        else:
            return None

        if values is None:
            return None
        return [None if pd.isna(x) else str(x) for x in values]

    async def _modality_plan(self) -> list[tuple[str, ExperimentInfo, int]]:
        experiments = await self._experiments()
        plan = []
        for modality in MODALITIES:
            name = self._options.experiment_for(modality)
            if name is None or name not in experiments:
                continue
            experiment = experiments[name]
            index = self._resolve_assay(experiment, self._options.assay_for(modality))
            if index is None:
                continue
            plan.append((modality, experiment, index))
        return plan

    # ==================== Public operations ====================

    async def summary(self, cache: bool = True) -> DatasetSummary:
        """
        Fetch the cell table, feature tables and assay names.

        Args:
            cache: Keep fetched state for later calls; if False, the adapter
                is cleared before returning.

        Returns:
            DatasetSummary keyed by experiment name.
        """
        features, cells = await asyncio.gather(self._feature_tables(), self._cell_table())
        experiments = await self._experiments()

        output = DatasetSummary(
            cells=cells,
            modality_features=dict(features),
            modality_assay_names={name: list(e.assay_names) for name, e in experiments.items()},
        )
        if not cache:
            self.clear()
        return output

    async def preview_primary_ids(self, cache: bool = True) -> dict[str, Optional[list[Optional[str]]]]:
        """
        Primary feature identifiers per modality, without fetching any counts.

        The result equals ``load().primary_ids`` for the same options.
        """
        features = await self._feature_tables()
        plan = await self._modality_plan()
        output = {
            modality: self._resolve_primary_ids(
                features[experiment.name],
                self._options.primary_column_for(modality),
            )
            for modality, experiment, _ in plan
        }
        if not cache:
            self.clear()
        return output

    async def _fetch_counts(self, key: CountsKey, experiment: ExperimentInfo) -> DecodedMatrix:
        modality, _, index, force_integer, layered = key
        return await self._decode_assay(
            modality,
            experiment,
            index,
            force_integer=force_integer,
            layered=layered,
        )

    async def _counts_for(self, key: CountsKey, experiment: ExperimentInfo) -> DecodedMatrix:
        stage = self._counts.get(key)
        if stage is None:
            stage = self._counts[key] = StageCache(f"counts:{key[0]}")
        cached = stage.peek()
        if cached is not None and cached.matrix.released:
            stage.reset()
        return await stage.get(lambda: self._fetch_counts(key, experiment))

    async def load(
        self,
        cache: bool = True,
        *,
        force_integer: bool = True,
        layered: bool = True,
    ) -> LoadedDataset:
        """
        Load count matrices and annotations for each configured modality.

        Matrices for different modalities are fetched concurrently, and
        concurrent calls share each in-flight fetch. If any fetch fails,
        matrices that did arrive are released and the first error is raised.

        Args:
            cache: Keep fetched state (matrices included) for later calls; if
                False, the matrices are handed over to the caller and the
                adapter is cleared.
            force_integer: Truncate counts to 32-bit integers.
            layered: Allow row regrouping of integer counts.

        Returns:
            LoadedDataset keyed by modality.
        """
        features, cells = await asyncio.gather(self._feature_tables(), self._cell_table())
        plan = await self._modality_plan()

        keys = [(m, e.name, i, force_integer, layered) for m, e, i in plan]
        results = await asyncio.gather(
            *(self._counts_for(key, experiment) for key, (_, experiment, _) in zip(keys, plan)),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            for key in keys:
                self._counts.pop(key, None)
            for r in results:
                if isinstance(r, DecodedMatrix):
                    r.matrix.release()
            raise errors[0]

        output = LoadedDataset(cells=cells)
        for decoded, (modality, experiment, _) in zip(results, plan):
            table = features[experiment.name]
            ids = self._resolve_primary_ids(table, self._options.primary_column_for(modality))

            aligned = take_rows(table, decoded.row_ids)
            if ids is not None:
                aligned.index = pd.Index([ids[i] for i in decoded.row_ids], dtype=object)

            output.matrix[modality] = decoded.matrix
            output.features[modality] = aligned
            output.primary_ids[modality] = ids
            output.row_ids[modality] = decoded.row_ids

        if not cache:
            for key in keys:
                self._counts.pop(key, None)
            self.clear()
        return output

    def clear(self) -> None:
        """Drop all cached stages and release cached matrices. Idempotent."""
        self._reset_stages()
        for stage in self._counts.values():
            decoded = stage.reset()
            if decoded is not None:
                decoded.matrix.release()
        self._counts.clear()
        self._resolver.reset()
