"""
Result containers returned by dataset adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

import numpy as np
import pandas as pd

from scremote.decode.matrix import CountMatrix

if TYPE_CHECKING:
    import anndata as ad


@dataclass
class DatasetSummary:
    """Tables and assay names of a dataset, without any counts."""

    cells: pd.DataFrame
    """Per-cell annotations shared by every experiment."""

    modality_features: dict[str, pd.DataFrame] = field(default_factory=dict)
    """Feature table per experiment name ("" is the main experiment)."""

    modality_assay_names: dict[str, list[str]] = field(default_factory=dict)
    """Assay names per experiment name."""

    def to_dict(self) -> dict:
        return {
            "cells": self.cells,
            "modality_features": dict(self.modality_features),
            "modality_assay_names": {k: list(v) for k, v in self.modality_assay_names.items()},
        }


@dataclass
class LoadedDataset:
    """
    Counts and annotations split by modality (RNA, ADT, CRISPR).

    ``features[mod]`` is aligned to the rows of ``matrix[mod]``, while
    ``primary_ids[mod]`` follows the original feature order; the two are
    linked by ``row_ids[mod]``.
    """

    cells: pd.DataFrame
    """Per-cell annotations."""

    features: dict[str, pd.DataFrame] = field(default_factory=dict)
    """Feature table per modality, in matrix row order."""

    matrix: dict[str, CountMatrix] = field(default_factory=dict)
    """Count matrix per modality."""

    primary_ids: dict[str, Optional[list[Optional[str]]]] = field(default_factory=dict)
    """Primary feature identifiers per modality, None if unresolved."""

    row_ids: dict[str, np.ndarray] = field(default_factory=dict)
    """Original feature index of each matrix row, per modality."""

    def modalities(self) -> list[str]:
        return list(self.matrix)

    def number_of_columns(self) -> int:
        for counts in self.matrix.values():
            return counts.number_of_columns()
        return len(self.cells)

    def release(self) -> None:
        """Release every count matrix."""
        for counts in self.matrix.values():
            counts.release()

    def to_anndata(self, modality: str = "RNA") -> "ad.AnnData":
        """
        Convert one modality to an AnnData object (cells x features).

        Args:
            modality: Key of ``matrix``.

        Returns:
            AnnData with ``obs`` from ``cells`` and ``var`` from ``features``.
        """
        import anndata as ad

        if modality not in self.matrix:
            raise KeyError(f"modality '{modality}' was not loaded")

        obs = self.cells.copy()
        obs.index = obs.index.astype(str)
        var = self.features[modality].copy()
        var.index = pd.Index(
            [str(x) if x is not None else str(i) for i, x in enumerate(var.index)]
        )
        return ad.AnnData(
            X=self.matrix[modality].to_scipy().T.tocsr(),
            obs=obs,
            var=var,
        )


@dataclass
class ResultSummary:
    """Tables, assay names and reduced dimension names of a saved result."""

    cells: pd.DataFrame
    modality_features: dict[str, pd.DataFrame] = field(default_factory=dict)
    modality_assay_names: dict[str, list[str]] = field(default_factory=dict)
    reduced_dimension_names: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "cells": self.cells,
            "modality_features": dict(self.modality_features),
            "modality_assay_names": {k: list(v) for k, v in self.modality_assay_names.items()},
            "reduced_dimension_names": list(self.reduced_dimension_names),
        }


@dataclass
class LoadedResult:
    """
    One assay per experiment of a saved result, keyed by experiment name.

    Unlike ``LoadedDataset`` nothing is split into roles: ``matrix[""]`` is the
    main experiment and every alternative experiment keeps its own name.
    """

    cells: pd.DataFrame
    features: dict[str, pd.DataFrame] = field(default_factory=dict)
    matrix: dict[str, CountMatrix] = field(default_factory=dict)
    row_ids: dict[str, np.ndarray] = field(default_factory=dict)

    reduced_dimensions: dict[str, np.ndarray] = field(default_factory=dict)
    """Embedding per name, shaped (cells, dimensions)."""

    def modalities(self) -> list[str]:
        return list(self.matrix)

    def release(self) -> None:
        for values in self.matrix.values():
            values.release()

    def to_anndata(self, experiment: str = "") -> "ad.AnnData":
        """Convert one experiment to AnnData, with reduced dimensions in ``obsm``."""
        import anndata as ad

        if experiment not in self.matrix:
            raise KeyError(f"experiment '{experiment}' was not loaded")

        obs = self.cells.copy()
        obs.index = obs.index.astype(str)
        var = self.features[experiment].copy()
        var.index = pd.Index(
            [str(x) if x is not None else str(i) for i, x in enumerate(var.index)]
        )
        return ad.AnnData(
            X=self.matrix[experiment].to_scipy().T.tocsr(),
            obs=obs,
            var=var,
            obsm={name: values for name, values in self.reduced_dimensions.items()},
        )
