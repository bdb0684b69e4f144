"""
Configuration management.

Two layers:
- ``Settings``: process-wide defaults loaded from environment variables
  (base URLs, HTTP timeout, logging), cached behind ``get_settings()``.
- ``DatasetOptions``: per-dataset modality configuration, persisted as plain
  JSON alongside the dataset identifier.
- ``ResultOptions``: assay and reduced dimension choices for saved results.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from functools import lru_cache
from typing import Any, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

AssaySelector = Union[str, int, None]
"""Assay name, assay index, or None for the first declared assay."""

ColumnSelector = Union[str, int, None]
"""Feature column name, column index, or None for the existing row names."""

MODALITIES = ("RNA", "ADT", "CRISPR")
"""Semantic roles recognized by ``load()``, in result order."""


class Settings(BaseSettings):
    """Library settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SCREMOTE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = False
    log_level: str = "INFO"

    @field_validator("debug", mode="before")
    @classmethod
    def normalize_debug(cls, v) -> bool:
        """Normalize debug value, handling quoted strings."""
        if isinstance(v, str):
            v = v.strip().strip('"').strip("'").lower()
            return v in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().strip('"').strip("'").upper()
        return v

    # Remote endpoints
    collaboratordb_url: str = "https://collaboratordb.aaron-lun.workers.dev"
    experimenthub_url: str = "https://experimenthub.bioconductor.org/fetch"
    gypsum_url: str = "https://data-gypsum.artifactdb.com"

    @field_validator("collaboratordb_url", "experimenthub_url", "gypsum_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().strip('"').strip("'").rstrip("/")
        return v

    # HTTP
    http_timeout: float = Field(default=60.0, gt=0)
    http_follow_redirects: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


class _PlainOptions:
    """Update and dict round-trip shared by the option dataclasses."""

    _label = "dataset"

    def update(self, **kwargs: Any) -> None:
        """Set one or more options, rejecting unknown names."""
        known = {f.name for f in fields(self)}
        for key, value in kwargs.items():
            if key not in known:
                raise TypeError(f"unknown {self._label} option '{key}'")
            setattr(self, key, value)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Optional[dict[str, Any]]):
        """Create from dictionary; missing keys keep their defaults."""
        output = cls()
        if d:
            output.update(**d)
        return output


@dataclass
class DatasetOptions(_PlainOptions):
    """
    Modality configuration for a dataset adapter.

    Example:
        >>> options = DatasetOptions(rna_experiment="gene", adt_experiment="ERCC")
        >>> options.experiment_for("ADT")
        'ERCC'
    """

    rna_experiment: Optional[str] = ""
    """Experiment holding RNA counts; "" is the main experiment, None disables RNA."""

    adt_experiment: Optional[str] = "Antibody Capture"
    """Experiment holding ADT counts, None disables ADT."""

    crispr_experiment: Optional[str] = "CRISPR Guide Capture"
    """Experiment holding CRISPR guide counts, None disables CRISPR."""

    rna_count_assay: AssaySelector = 0
    """Assay name or index for RNA counts."""

    adt_count_assay: AssaySelector = 0
    """Assay name or index for ADT counts."""

    crispr_count_assay: AssaySelector = 0
    """Assay name or index for CRISPR counts."""

    primary_rna_feature_id_column: ColumnSelector = 0
    """Feature column (name or index) used as the primary RNA identifier."""

    primary_adt_feature_id_column: ColumnSelector = 0
    """Feature column (name or index) used as the primary ADT identifier."""

    primary_crispr_feature_id_column: ColumnSelector = 0
    """Feature column (name or index) used as the primary CRISPR identifier."""

    def experiment_for(self, modality: str) -> Optional[str]:
        return getattr(self, f"{modality.lower()}_experiment")

    def assay_for(self, modality: str) -> AssaySelector:
        return getattr(self, f"{modality.lower()}_count_assay")

    def primary_column_for(self, modality: str) -> ColumnSelector:
        return getattr(self, f"primary_{modality.lower()}_feature_id_column")


@dataclass
class ResultOptions(_PlainOptions):
    """
    Loading configuration for a saved analysis result.

    Per-experiment settings accept either one value for every experiment or a
    dict keyed by experiment name ("" is the main experiment).

    Example:
        >>> options = ResultOptions(primary_assay={"": "logcounts"}, is_primary_normalized=True)
        >>> options.assay_for("")
        'logcounts'
        >>> options.assay_for("Antibody Capture")
        0
    """

    _label = "result"

    primary_assay: Union[AssaySelector, dict[str, AssaySelector]] = 0
    """Assay to load from each experiment."""

    is_primary_normalized: Union[bool, dict[str, bool]] = True
    """Whether the loaded assay holds normalized values rather than counts."""

    reduced_dimension_names: Optional[list[str]] = None
    """Reduced dimensions to load; None loads all of them."""

    def assay_for(self, experiment: str) -> AssaySelector:
        if isinstance(self.primary_assay, dict):
            return self.primary_assay.get(experiment, 0)
        return self.primary_assay

    def normalized_for(self, experiment: str) -> bool:
        if isinstance(self.is_primary_normalized, dict):
            return bool(self.is_primary_normalized.get(experiment, True))
        return bool(self.is_primary_normalized)
