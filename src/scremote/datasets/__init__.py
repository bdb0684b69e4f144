"""
Dataset adapters.

One adapter per remote store, all implementing the ``AbstractDataset``
contract:
- ArtifactDB and CollaboratorDB
- ExperimentHub
- SewerRat
- gypsum

Saved analysis results are read back by ``GypsumResult`` and ``SewerRatResult``.
"""

from scremote.datasets.analysis import AbstractResult, GypsumResult, SewerRatResult
from scremote.datasets.artifactdb import (
    ArtifactdbDataset,
    CollaboratordbDataset,
    pack_id,
    unpack_id,
)
from scremote.datasets.base import AbstractDataset, DatasetResolver, ExperimentInfo, ExperimentStages
from scremote.datasets.experimenthub import ExperimentHubDataset
from scremote.datasets.gypsum import GypsumDataset
from scremote.datasets.registry import available_readers, get_reader, register_reader, unserialize
from scremote.datasets.results import DatasetSummary, LoadedDataset, LoadedResult, ResultSummary
from scremote.datasets.sewerrat import SewerRatDataset

__all__ = [
    "AbstractDataset",
    "DatasetResolver",
    "ExperimentInfo",
    "ExperimentStages",
    "DatasetSummary",
    "LoadedDataset",
    "ResultSummary",
    "LoadedResult",
    "AbstractResult",
    "GypsumResult",
    "SewerRatResult",
    "ArtifactdbDataset",
    "CollaboratordbDataset",
    "ExperimentHubDataset",
    "SewerRatDataset",
    "GypsumDataset",
    "pack_id",
    "unpack_id",
    "available_readers",
    "get_reader",
    "register_reader",
    "unserialize",
]
