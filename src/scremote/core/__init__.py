"""
Core infrastructure for scremote.

Provides:
- Settings and per-dataset options
- Error taxonomy
- Logging setup
- Single-flight stage caching
"""

from scremote.core.cache import StageCache
from scremote.core.config import MODALITIES, DatasetOptions, ResultOptions, Settings, get_settings
from scremote.core.errors import (
    AssayIndexOutOfRangeError,
    AssayNotFoundError,
    DimensionMismatchError,
    DuplicateExperimentError,
    FetchError,
    InvalidIdentifierError,
    MalformedListingError,
    MissingResourceError,
    ReleasedMatrixError,
    ScRemoteError,
    UnsupportedCompressionError,
    UnsupportedSchemaError,
)
from scremote.core.logging import setup_logging

__all__ = [
    "MODALITIES",
    "DatasetOptions",
    "ResultOptions",
    "Settings",
    "get_settings",
    "setup_logging",
    "StageCache",
    # Errors
    "ScRemoteError",
    "UnsupportedSchemaError",
    "UnsupportedCompressionError",
    "DimensionMismatchError",
    "MissingResourceError",
    "AssayNotFoundError",
    "AssayIndexOutOfRangeError",
    "MalformedListingError",
    "FetchError",
    "DuplicateExperimentError",
    "InvalidIdentifierError",
    "ReleasedMatrixError",
]
