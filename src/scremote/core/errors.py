"""
Exception hierarchy for remote dataset loading.

Decode-time and fetch-time errors propagate to the caller of ``summary()`` or
``load()``; nothing here is retried internally.
"""

from __future__ import annotations

from typing import Optional


class ScRemoteError(Exception):
    """Base exception for all scremote errors."""


class UnsupportedSchemaError(ScRemoteError):
    """Metadata declares a table or matrix layout that the decoders do not recognize."""


class UnsupportedCompressionError(UnsupportedSchemaError):
    """A delimited table declares a compression codec other than "gz" or "none"."""

    def __init__(self, compression: str):
        self.compression = compression
        super().__init__(f"compression '{compression}' is not supported")


class DimensionMismatchError(ScRemoteError):
    """Decoded matrix dimensions disagree with the declared metadata."""

    def __init__(self, observed: tuple[int, int], expected: tuple[int, int], what: str = "matrix"):
        self.observed = tuple(observed)
        self.expected = tuple(expected)
        super().__init__(
            f"{what} has dimensions {list(self.observed)}, "
            f"expected {list(self.expected)} from the metadata"
        )


class MissingResourceError(ScRemoteError):
    """A required metadata field or file is absent."""


class AssayNotFoundError(ScRemoteError):
    """An explicitly named assay is not among the experiment's assays."""

    def __init__(self, assay: str, experiment: str, available: list[str]):
        self.assay = assay
        self.experiment = experiment
        self.available = list(available)
        super().__init__(
            f"assay '{assay}' not found in experiment '{experiment}' "
            f"(available: {self.available})"
        )


class AssayIndexOutOfRangeError(ScRemoteError):
    """An explicitly indexed assay is beyond the experiment's assay count."""

    def __init__(self, index: int, experiment: str, n_assays: int):
        self.index = index
        self.experiment = experiment
        self.n_assays = n_assays
        super().__init__(
            f"assay index {index} out of range for experiment '{experiment}' "
            f"with {n_assays} assay(s)"
        )


class MalformedListingError(ScRemoteError):
    """A directory listing was requested for a path that is not in the index."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"no directory listing available for '{path}'")


class FetchError(ScRemoteError):
    """A remote resource could not be retrieved."""

    def __init__(self, url: str, status_code: Optional[int] = None, reason: str = ""):
        self.url = url
        self.status_code = status_code
        detail = f" ({status_code})" if status_code is not None else ""
        if reason:
            detail += f": {reason}"
        super().__init__(f"failed to fetch content at '{url}'{detail}")


class DuplicateExperimentError(ScRemoteError):
    """Two experiments in one dataset were declared under the same name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"experiment name '{name}' is declared more than once")


class InvalidIdentifierError(ScRemoteError):
    """A dataset identifier cannot be parsed or is not registered."""


class ReleasedMatrixError(ScRemoteError):
    """A count matrix was accessed after its storage was released."""
