"""
scremote: remote single-cell dataset loaders.

Fetches SummarizedExperiment-style datasets (counts plus feature and cell
annotations) from ArtifactDB, CollaboratorDB, ExperimentHub, SewerRat and
gypsum, and splits them into RNA/ADT/CRISPR modalities. Saved analysis
results in gypsum or SewerRat are read back with their reduced dimensions.
"""

__version__ = "0.1.0"

from scremote.core import DatasetOptions, ResultOptions, ScRemoteError, get_settings, setup_logging
from scremote.datasets import (
    AbstractDataset,
    ArtifactdbDataset,
    CollaboratordbDataset,
    DatasetSummary,
    ExperimentHubDataset,
    GypsumDataset,
    GypsumResult,
    LoadedDataset,
    LoadedResult,
    SewerRatDataset,
    SewerRatResult,
    available_readers,
    get_reader,
    unserialize,
)
from scremote.decode import CountMatrix
from scremote.ingest import ByteSource, FunctionByteSource, HttpByteSource, LocalByteSource

__all__ = [
    "__version__",
    "AbstractDataset",
    "ArtifactdbDataset",
    "ByteSource",
    "CollaboratordbDataset",
    "CountMatrix",
    "DatasetOptions",
    "DatasetSummary",
    "ExperimentHubDataset",
    "FunctionByteSource",
    "GypsumDataset",
    "GypsumResult",
    "HttpByteSource",
    "LoadedDataset",
    "LoadedResult",
    "LocalByteSource",
    "ResultOptions",
    "ScRemoteError",
    "SewerRatDataset",
    "SewerRatResult",
    "available_readers",
    "get_reader",
    "get_settings",
    "setup_logging",
    "unserialize",
]
