"""
Readers for saved analysis results.

A result is stored like any alabaster SummarizedExperiment, but it is read
back as-is rather than split into RNA/ADT/CRISPR roles: every experiment
keeps its own name, the chosen assay may hold normalized values, and the
reduced dimensions (PCA, t-SNE, UMAP) of the main experiment are loaded
alongside.

- ``GypsumResult``: a result stored in the gypsum bucket
- ``SewerRatResult``: a result on a filesystem indexed by SewerRat
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Optional, Union

from scremote.core.cache import StageCache
from scremote.core.config import ResultOptions, get_settings
from scremote.datasets.alabaster import AlabasterResolver
from scremote.datasets.base import ExperimentInfo, ExperimentStages
from scremote.datasets.gypsum import GypsumResolver
from scremote.datasets.results import LoadedResult, ResultSummary
from scremote.datasets.sewerrat import SewerRatResolver
from scremote.decode.frame import take_rows
from scremote.decode.matrix import DecodedMatrix
from scremote.ingest.base import ByteSource
from scremote.ingest.http import HttpByteSource

logger = logging.getLogger(__name__)


class AbstractResult(ExperimentStages):
    """
    Base class for saved result readers.

    Example:
        >>> result = GypsumResult("my-project", "pbmc-analysis", "v1")
        >>> summary = await result.summary()
        >>> summary.reduced_dimension_names
        ['PCA', 'TSNE', 'UMAP']
        >>> loaded = await result.load()
        >>> loaded.reduced_dimensions["UMAP"].shape
        (3000, 2)
    """

    def __init__(
        self,
        resolver: AlabasterResolver,
        options: Optional[Union[ResultOptions, dict[str, Any]]] = None,
    ):
        super().__init__(resolver)
        if isinstance(options, ResultOptions):
            self._options = copy.deepcopy(options)
        else:
            self._options = ResultOptions.from_dict(options)
        self._reduced_names: StageCache[list[str]] = StageCache("reduced_dimension_names")

    def options(self) -> dict[str, Any]:
        """Current options as a plain dict (a copy)."""
        return self._options.to_dict()

    def set_options(self, options: Optional[dict[str, Any]] = None, **kwargs: Any) -> None:
        self._options.update(**(options or {}), **kwargs)

    async def _reduced_dimension_names(self) -> list[str]:
        return await self._reduced_names.get(self._load_reduced_names)

    async def _load_reduced_names(self) -> list[str]:
        return await self._resolver.reduced_dimension_names(await self._main_experiment())

    async def summary(self, cache: bool = True) -> ResultSummary:
        """
        Fetch the cell table, feature tables, assay names and reduced dimension names.

        Args:
            cache: Keep fetched state for later calls; if False, the reader
                is cleared before returning.
        """
        features, cells, reduced = await asyncio.gather(
            self._feature_tables(),
            self._cell_table(),
            self._reduced_dimension_names(),
        )
        experiments = await self._experiments()

        output = ResultSummary(
            cells=cells,
            modality_features=dict(features),
            modality_assay_names={name: list(e.assay_names) for name, e in experiments.items()},
            reduced_dimension_names=list(reduced),
        )
        if not cache:
            self.clear()
        return output

    async def _assay_plan(self) -> list[tuple[ExperimentInfo, int, bool]]:
        plan = []
        for name, experiment in (await self._experiments()).items():
            index = self._resolve_assay(experiment, self._options.assay_for(name))
            if index is None:
                logger.debug("Experiment '%s' has no assays, skipping", name)
                continue
            plan.append((experiment, index, self._options.normalized_for(name)))
        return plan

    async def _selected_reduced_dimensions(self) -> list[tuple[str, int]]:
        available = await self._reduced_dimension_names()
        wanted = self._options.reduced_dimension_names
        if wanted is None:
            return [(name, i) for i, name in enumerate(available)]

        selected = []
        for name in wanted:
            if name not in available:
                logger.warning("reduced dimension '%s' not found, available: %s", name, available)
                continue
            selected.append((name, available.index(name)))
        return selected

    async def load(self, cache: bool = True) -> LoadedResult:
        """
        Load one assay per experiment plus the selected reduced dimensions.

        Normalized assays are loaded as floating point; count assays are
        truncated to integers and may be layered, as for datasets. The
        matrices belong to the caller, who releases them with
        ``LoadedResult.release()``. If any fetch fails, matrices that did
        arrive are released and the first error is raised.

        Args:
            cache: Keep the tables for later calls; if False, the reader is
                cleared before returning.
        """
        features, cells = await asyncio.gather(self._feature_tables(), self._cell_table())
        plan = await self._assay_plan()
        reduced = await self._selected_reduced_dimensions()
        main = await self._main_experiment()

        results = await asyncio.gather(
            *(
                self._decode_assay(
                    experiment.name or "main",
                    experiment,
                    index,
                    force_integer=not normalized,
                    layered=not normalized,
                )
                for experiment, index, normalized in plan
            ),
            *(self._resolver.reduced_dimension(main, index) for _, index in reduced),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            for r in results:
                if isinstance(r, DecodedMatrix):
                    r.matrix.release()
            raise errors[0]

        output = LoadedResult(cells=cells)
        for (experiment, _, _), decoded in zip(plan, results):
            output.matrix[experiment.name] = decoded.matrix
            output.features[experiment.name] = take_rows(features[experiment.name], decoded.row_ids)
            output.row_ids[experiment.name] = decoded.row_ids
        for (name, _), values in zip(reduced, results[len(plan):]):
            output.reduced_dimensions[name] = values

        if not cache:
            self.clear()
        return output

    def clear(self) -> None:
        """Drop all cached stages. Idempotent."""
        self._reset_stages()
        self._reduced_names.reset()
        self._resolver.reset()


class GypsumResult(AbstractResult):
    """
    Saved result in the gypsum bucket.

    Example:
        >>> result = GypsumResult("my-project", "pbmc-analysis", "v1", path="result")
        >>> loaded = await result.load()
    """

    def __init__(
        self,
        project: str,
        asset: str,
        version: str,
        path: Optional[str] = None,
        url: Optional[str] = None,
        options: Optional[Union[ResultOptions, dict[str, Any]]] = None,
        source: Optional[ByteSource] = None,
    ):
        """
        Initialize reader.

        Args:
            project: Project name.
            asset: Asset name.
            version: Version name.
            path: Subdirectory of the result inside the version; the version root if None.
            url: Bucket URL; from settings if None.
            options: Assay and reduced dimension choices.
            source: Byte source; HTTP if None.
        """
        url = url if url is not None else get_settings().gypsum_url
        self.source = source if source is not None else HttpByteSource()
        super().__init__(GypsumResolver(project, asset, version, path, url, self.source), options)


class SewerRatResult(AbstractResult):
    """
    Saved result on a filesystem indexed by SewerRat.

    Example:
        >>> result = SewerRatResult("/data/analyses/pbmc", "https://sewerrat.example.org")
        >>> summary = await result.summary()
    """

    def __init__(
        self,
        path: str,
        url: str,
        options: Optional[Union[ResultOptions, dict[str, Any]]] = None,
        source: Optional[ByteSource] = None,
    ):
        """
        Initialize reader.

        Args:
            path: Absolute path of the result directory.
            url: Base URL of the SewerRat API.
            options: Assay and reduced dimension choices.
            source: Byte source; HTTP if None.
        """
        self.source = source if source is not None else HttpByteSource()
        super().__init__(SewerRatResolver(path, url, self.source), options)
