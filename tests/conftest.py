"""Pytest configuration and fixtures."""

import logging

import pytest

from scremote.core.config import get_settings
from tests.stores import (
    build_artifactdb_store,
    build_experimenthub_source,
    build_result_store,
    build_sce_store,
    gypsum_source,
    sewerrat_source,
)

GYPSUM_URL = "https://gypsum.test"
SEWERRAT_URL = "https://sewerrat.test"
SEWERRAT_ROOT = "/data/home/zeisel"
SEWERRAT_RESULT_ROOT = "/data/home/analyses/zeisel-kana"
EXPERIMENTHUB_URL = "https://experimenthub.test/fetch"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Point every default endpoint at test hosts."""
    monkeypatch.setenv("SCREMOTE_GYPSUM_URL", GYPSUM_URL)
    monkeypatch.setenv("SCREMOTE_EXPERIMENTHUB_URL", EXPERIMENTHUB_URL)
    monkeypatch.setenv("SCREMOTE_COLLABORATORDB_URL", "https://collaboratordb.test")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def caplog_scremote(caplog):
    """Capture warnings from the scremote loggers."""
    caplog.set_level(logging.WARNING, logger="scremote")
    return caplog


@pytest.fixture
def sce_store():
    """Alabaster-layout single-cell experiment (20 genes, 12 cells, 5 ADTs)."""
    return build_sce_store()


@pytest.fixture
def gypsum_files(sce_store):
    return gypsum_source(sce_store, GYPSUM_URL, "scRNAseq", "zeisel", "v1")


@pytest.fixture
def gypsum_dataset(gypsum_files):
    from scremote.datasets.gypsum import GypsumDataset

    return GypsumDataset("scRNAseq", "zeisel", "v1", source=gypsum_files)


@pytest.fixture
def sewerrat_files(sce_store):
    return sewerrat_source(sce_store, SEWERRAT_URL, SEWERRAT_ROOT)


@pytest.fixture
def sewerrat_dataset(sewerrat_files):
    from scremote.datasets.sewerrat import SewerRatDataset

    return SewerRatDataset(SEWERRAT_ROOT, SEWERRAT_URL, source=sewerrat_files)


@pytest.fixture
def artifactdb_store():
    return build_artifactdb_store()


@pytest.fixture
def artifactdb_dataset(artifactdb_store):
    from scremote.datasets.artifactdb import ArtifactdbDataset

    return ArtifactdbDataset(
        "test-project:my_sce@v1",
        artifactdb_store.base_url,
        source=artifactdb_store.source,
    )


@pytest.fixture
def experimenthub_registry():
    return {
        "zeisel-brain": {"counts": "2596", "coldata": "2598", "rowdata": "2597"},
        "counts-only": {"counts": "3000"},
    }


@pytest.fixture
def experimenthub_files(experimenthub_registry):
    source = build_experimenthub_source(EXPERIMENTHUB_URL, experimenthub_registry["zeisel-brain"])
    extra = build_experimenthub_source(EXPERIMENTHUB_URL, experimenthub_registry["counts-only"], nrow=6, ncol=4)
    source.files.update(extra.files)
    return source


@pytest.fixture
def experimenthub_dataset(experimenthub_files, experimenthub_registry):
    from scremote.datasets.experimenthub import ExperimentHubDataset

    return ExperimentHubDataset(
        "zeisel-brain",
        source=experimenthub_files,
        registry=experimenthub_registry,
    )


@pytest.fixture
def result_store():
    """sce_store plus PCA (12 x 3) and UMAP (12 x 2) embeddings."""
    return build_result_store()


@pytest.fixture
def gypsum_result_files(result_store):
    return gypsum_source(result_store, GYPSUM_URL, "analyses", "zeisel-kana", "v2")


@pytest.fixture
def gypsum_result(gypsum_result_files):
    from scremote.datasets.analysis import GypsumResult

    return GypsumResult("analyses", "zeisel-kana", "v2", source=gypsum_result_files)


@pytest.fixture
def sewerrat_result_files(result_store):
    return sewerrat_source(result_store, SEWERRAT_URL, SEWERRAT_RESULT_ROOT)


@pytest.fixture
def sewerrat_result(sewerrat_result_files):
    from scremote.datasets.analysis import SewerRatResult

    return SewerRatResult(SEWERRAT_RESULT_ROOT, SEWERRAT_URL, source=sewerrat_result_files)
