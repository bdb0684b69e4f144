"""
Adapter registry.

Maps each adapter's ``format()`` name to its class, so that serialized
datasets can be restored knowing only the format and the saved files.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from scremote.datasets.artifactdb import ArtifactdbDataset, CollaboratordbDataset
from scremote.datasets.base import AbstractDataset
from scremote.datasets.experimenthub import ExperimentHubDataset
from scremote.datasets.gypsum import GypsumDataset
from scremote.datasets.sewerrat import SewerRatDataset

logger = logging.getLogger(__name__)

available_readers: dict[str, type[AbstractDataset]] = {
    cls.format(): cls
    for cls in (
        ArtifactdbDataset,
        CollaboratordbDataset,
        ExperimentHubDataset,
        SewerRatDataset,
        GypsumDataset,
    )
}


def register_reader(cls: type[AbstractDataset]) -> type[AbstractDataset]:
    """
    Register an adapter class under its ``format()`` name.

    Usable as a class decorator.

    Raises:
        ValueError: If another class is already registered under that name.
    """
    name = cls.format()
    existing = available_readers.get(name)
    if existing is not None and existing is not cls:
        raise ValueError(f"a reader is already registered for format '{name}'")
    available_readers[name] = cls
    logger.debug("Registered reader '%s'", name)
    return cls


def get_reader(format: str) -> type[AbstractDataset]:
    """
    Look up the adapter class for a format name.

    Raises:
        ValueError: If no adapter is registered for ``format``.
    """
    if format not in available_readers:
        raise ValueError(
            f"no reader available for format '{format}' "
            f"(available: {sorted(available_readers)})"
        )
    return available_readers[format]


def unserialize(
    format: str,
    files: list[dict[str, Any]],
    options: Optional[dict[str, Any]] = None,
    **kwargs: Any,
) -> AbstractDataset:
    """Restore a dataset from ``serialize()`` output and its format name."""
    return get_reader(format).unserialize(files, options, **kwargs)
