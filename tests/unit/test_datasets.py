"""Unit tests for the dataset adapters and their shared loading contract."""

import asyncio
import json

import numpy as np
import pandas as pd
import pytest

from tests.conftest import EXPERIMENTHUB_URL, GYPSUM_URL, SEWERRAT_ROOT, SEWERRAT_URL
from tests.stores import AlabasterStore, build_sce_store, counts_matrix, gypsum_source

ALL_BACKENDS = ["gypsum_dataset", "sewerrat_dataset", "artifactdb_dataset", "experimenthub_dataset"]


class TestSummary:
    """summary() across every backend."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", ALL_BACKENDS)
    async def test_tables_match_dimensions(self, backend, request):
        dataset = request.getfixturevalue(backend)
        summary = await dataset.summary()
        experiments = await dataset._experiments()

        assert set(summary.modality_features) == set(experiments)
        for name, table in summary.modality_features.items():
            assert len(table) > 0
            assert len(table) == experiments[name].dimensions[0]
        assert len(summary.cells) == next(iter(experiments.values())).dimensions[1]
        assert set(summary.modality_assay_names) == set(experiments)

    @pytest.mark.asyncio
    async def test_alabaster_summary(self, gypsum_dataset):
        summary = await gypsum_dataset.summary()

        assert list(summary.modality_features) == ["", "Antibody Capture"]
        assert summary.modality_assay_names == {"": ["counts", "logcounts"], "Antibody Capture": ["counts"]}

        rna = summary.modality_features[""]
        assert list(rna.columns) == ["id", "location", "symbol", "length"]
        assert rna["location"].tolist()[:2] == ["chr2", "chr1"]
        assert rna["symbol"].tolist()[2] is None
        assert np.isnan(rna["length"].iloc[4])
        assert rna["length"].iloc[5] == 105

        cells = summary.cells
        assert list(cells.columns) == ["cluster", "size_factor", "passed"]
        assert str(cells["passed"].dtype) == "boolean"
        assert pd.isna(cells["passed"].iloc[0])
        assert bool(cells["passed"].iloc[1]) is True
        assert np.isnan(cells["size_factor"].iloc[1])

    @pytest.mark.asyncio
    async def test_summary_uncached(self, gypsum_dataset, gypsum_files):
        await gypsum_dataset.summary(cache=False)
        first = gypsum_files.total_calls
        await gypsum_dataset.summary(cache=False)
        assert gypsum_files.total_calls == 2 * first

    @pytest.mark.asyncio
    async def test_summary_cached(self, gypsum_dataset, gypsum_files):
        first = await gypsum_dataset.summary()
        calls = gypsum_files.total_calls
        second = await gypsum_dataset.summary()
        assert gypsum_files.total_calls == calls
        assert second.cells is first.cells

        as_dict = second.to_dict()
        assert set(as_dict) == {"cells", "modality_features", "modality_assay_names"}
        assert as_dict["modality_assay_names"]["Antibody Capture"] == ["counts"]


class TestLoad:
    """load() across every backend."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", ALL_BACKENDS)
    async def test_result_invariants(self, backend, request):
        dataset = request.getfixturevalue(backend)
        loaded = await dataset.load()

        assert "RNA" in loaded.matrix
        for modality, counts in loaded.matrix.items():
            assert counts.number_of_columns() == len(loaded.cells)
            assert len(loaded.features[modality]) == counts.number_of_rows()
            assert modality in loaded.primary_ids
            assert len(loaded.row_ids[modality]) == counts.number_of_rows()
        assert loaded.number_of_columns() == len(loaded.cells)

    @pytest.mark.asyncio
    async def test_modalities(self, gypsum_dataset):
        loaded = await gypsum_dataset.load()
        assert loaded.modalities() == ["RNA", "ADT"]
        assert loaded.matrix["RNA"].shape == (20, 12)
        assert loaded.matrix["ADT"].shape == (5, 12)
        assert loaded.primary_ids["ADT"] == [f"ADT{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_features_follow_matrix_rows(self, gypsum_dataset):
        loaded = await gypsum_dataset.load()
        ids = loaded.primary_ids["RNA"]
        row_ids = loaded.row_ids["RNA"]

        assert ids == [f"ENSG{i:05d}" for i in range(20)]
        assert row_ids[-2:].tolist() == [3, 7]
        assert list(loaded.features["RNA"].index) == [ids[i] for i in row_ids]
        assert loaded.features["RNA"]["id"].tolist() == [ids[i] for i in row_ids]

        original = counts_matrix(20, 12)
        np.testing.assert_array_equal(loaded.matrix["RNA"].to_scipy().toarray(), original[row_ids, :])

    @pytest.mark.asyncio
    async def test_unlayered_keeps_order(self, gypsum_dataset):
        loaded = await gypsum_dataset.load(layered=False)
        np.testing.assert_array_equal(loaded.row_ids["RNA"], np.arange(20))
        np.testing.assert_array_equal(loaded.matrix["RNA"].to_scipy().toarray(), counts_matrix(20, 12))

    @pytest.mark.asyncio
    async def test_disabled_and_absent_roles_skipped(self, gypsum_dataset):
        gypsum_dataset.set_options(adt_experiment=None, crispr_experiment="not there")
        loaded = await gypsum_dataset.load()
        assert loaded.modalities() == ["RNA"]
        assert set(loaded.features) == {"RNA"}
        assert set(loaded.primary_ids) == {"RNA"}

    @pytest.mark.asyncio
    async def test_dense_assays(self):
        from scremote.datasets.gypsum import GypsumDataset

        store = AlabasterStore()
        values = counts_matrix(8, 6, large=False)
        store.experiment("", {"counts": values}, dense=True, obj_type="summarized_experiment")
        source = gypsum_source(store, GYPSUM_URL, "p", "a", "v")

        loaded = await GypsumDataset("p", "a", "v", source=source).load(layered=False)
        np.testing.assert_array_equal(loaded.matrix["RNA"].to_scipy().toarray(), values)
        assert loaded.primary_ids["RNA"] is None
        assert len(loaded.cells) == 6

    def test_to_anndata(self):
        from scremote.datasets.gypsum import GypsumDataset

        store = build_sce_store()
        dataset = GypsumDataset("scRNAseq", "zeisel", "v1", source=gypsum_source(store, GYPSUM_URL, "scRNAseq", "zeisel", "v1"))
        loaded = asyncio.run(dataset.load())

        adata = loaded.to_anndata("RNA")
        assert adata.shape == (12, 20)
        assert list(adata.var_names) == list(loaded.features["RNA"].index)
        assert "cluster" in adata.obs.columns
        with pytest.raises(KeyError):
            loaded.to_anndata("CRISPR")


class TestPrimaryIds:
    """Primary identifier resolution."""

    @pytest.mark.asyncio
    async def test_name_and_index_equivalent(self, gypsum_dataset):
        gypsum_dataset.set_options(primary_rna_feature_id_column="symbol")
        by_name = await gypsum_dataset.load()
        gypsum_dataset.set_options(primary_rna_feature_id_column=2)
        by_index = await gypsum_dataset.load()

        assert by_name.primary_ids["RNA"] == by_index.primary_ids["RNA"]
        assert list(by_name.features["RNA"].index) == list(by_index.features["RNA"].index)
        assert by_name.primary_ids["RNA"][0] == "GENE0"
        assert by_name.primary_ids["RNA"][2] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("selector", ["no_such_column", 99, -1])
    async def test_unresolvable_selector_leaves_ids_unset(self, gypsum_dataset, selector):
        from scremote.decode.frame import row_names

        gypsum_dataset.set_options(primary_rna_feature_id_column=selector)
        loaded = await gypsum_dataset.load()
        assert loaded.primary_ids["RNA"] is None
        assert row_names(loaded.features["RNA"]) is None

    @pytest.mark.asyncio
    async def test_existing_row_names(self, artifactdb_dataset):
        artifactdb_dataset.set_options(primary_rna_feature_id_column=None)
        loaded = await artifactdb_dataset.load()
        assert loaded.primary_ids["RNA"] == [f"ENSG{i:05d}" for i in range(20)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", ALL_BACKENDS)
    async def test_preview_matches_load(self, backend, request):
        dataset = request.getfixturevalue(backend)
        preview = await dataset.preview_primary_ids()
        loaded = await dataset.load()
        assert preview == loaded.primary_ids

    @pytest.mark.asyncio
    async def test_preview_fetches_no_counts(self, gypsum_dataset, gypsum_files):
        await gypsum_dataset.preview_primary_ids()
        assert not any(url.endswith("matrix.h5") for url in gypsum_files.calls)


class TestAssaySelection:
    """Assay name and index resolution."""

    @pytest.mark.asyncio
    async def test_named_assay(self, gypsum_dataset):
        gypsum_dataset.set_options(rna_count_assay="logcounts")
        loaded = await gypsum_dataset.load(layered=False)
        expected = np.trunc(np.log1p(counts_matrix(20, 12)))
        np.testing.assert_array_equal(loaded.matrix["RNA"].to_scipy().toarray(), expected)

    @pytest.mark.asyncio
    async def test_missing_name_raises(self, gypsum_dataset):
        from scremote.core.errors import AssayNotFoundError

        gypsum_dataset.set_options(rna_count_assay="normcounts")
        with pytest.raises(AssayNotFoundError, match="normcounts"):
            await gypsum_dataset.load()

    @pytest.mark.asyncio
    async def test_out_of_range_index_raises(self, gypsum_dataset):
        from scremote.core.errors import AssayIndexOutOfRangeError

        gypsum_dataset.set_options(adt_count_assay=3)
        with pytest.raises(AssayIndexOutOfRangeError):
            await gypsum_dataset.load()

    @pytest.mark.asyncio
    async def test_preview_validates_assays(self, gypsum_dataset):
        from scremote.core.errors import AssayNotFoundError

        gypsum_dataset.set_options(rna_count_assay="normcounts")
        with pytest.raises(AssayNotFoundError):
            await gypsum_dataset.preview_primary_ids()

    @pytest.mark.asyncio
    async def test_default_on_assayless_experiment_skips(self):
        from scremote.datasets.gypsum import GypsumDataset

        store = build_sce_store()
        store.files["alternative_experiments/0/assays/names.json"] = []
        source = gypsum_source(store, GYPSUM_URL, "p", "a", "v")

        loaded = await GypsumDataset("p", "a", "v", source=source).load()
        assert loaded.modalities() == ["RNA"]


class TestCaching:
    """Stage caching and clear()."""

    @pytest.mark.asyncio
    async def test_repeated_load_reuses_cache(self, gypsum_dataset, gypsum_files):
        first = await gypsum_dataset.load()
        calls = gypsum_files.total_calls
        second = await gypsum_dataset.load()

        assert gypsum_files.total_calls == calls
        assert second.cells is first.cells
        assert second.matrix["RNA"] is first.matrix["RNA"]

    @pytest.mark.asyncio
    async def test_clear_then_reload_equivalent(self, gypsum_dataset, gypsum_files):
        first = await gypsum_dataset.load()
        first_counts = first.matrix["RNA"].to_scipy().toarray()
        calls = gypsum_files.total_calls

        gypsum_dataset.clear()
        assert first.matrix["RNA"].released
        gypsum_dataset.clear()

        second = await gypsum_dataset.load()
        assert gypsum_files.total_calls == 2 * calls
        pd.testing.assert_frame_equal(second.cells, first.cells)
        pd.testing.assert_frame_equal(second.features["RNA"], first.features["RNA"])
        np.testing.assert_array_equal(second.matrix["RNA"].to_scipy().toarray(), first_counts)
        assert second.primary_ids == first.primary_ids

    @pytest.mark.asyncio
    async def test_uncached_load_hands_over_matrices(self, gypsum_dataset, gypsum_files):
        loaded = await gypsum_dataset.load(cache=False)
        calls = gypsum_files.total_calls

        assert not loaded.matrix["RNA"].released
        assert loaded.matrix["RNA"].number_of_rows() == 20

        await gypsum_dataset.load(cache=False)
        assert gypsum_files.total_calls == 2 * calls
        assert not loaded.matrix["RNA"].released
        loaded.release()
        assert loaded.matrix["RNA"].released

    @pytest.mark.asyncio
    async def test_released_cache_entry_refetched(self, gypsum_dataset):
        first = await gypsum_dataset.load()
        first.release()
        second = await gypsum_dataset.load()
        assert second.matrix["RNA"] is not first.matrix["RNA"]
        assert second.matrix["RNA"].number_of_rows() == 20

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_count_fetches(self, gypsum_dataset, gypsum_files):
        rna_url = f"{GYPSUM_URL}/scRNAseq/zeisel/v1/assays/0/matrix.h5"
        adt_url = f"{GYPSUM_URL}/scRNAseq/zeisel/v1/alternative_experiments/0/assays/0/matrix.h5"

        first, second = await asyncio.gather(gypsum_dataset.load(), gypsum_dataset.load())

        assert first.matrix["RNA"] is second.matrix["RNA"]
        assert first.matrix["ADT"] is second.matrix["ADT"]
        assert gypsum_files.calls[rna_url] == 1
        assert gypsum_files.calls[adt_url] == 1

        gypsum_dataset.clear()
        assert first.matrix["RNA"].released
        assert first.matrix["ADT"].released

    @pytest.mark.asyncio
    async def test_concurrent_uncached_load_keeps_handed_over_matrix(self, gypsum_dataset):
        cached, handed = await asyncio.gather(gypsum_dataset.load(), gypsum_dataset.load(cache=False))

        assert handed.matrix["RNA"] is cached.matrix["RNA"]
        assert not handed.matrix["RNA"].released
        assert gypsum_dataset._counts == {}

    @pytest.mark.asyncio
    async def test_loads_with_different_layering_cached_separately(self, gypsum_dataset):
        layered = await gypsum_dataset.load()
        plain = await gypsum_dataset.load(layered=False)
        assert layered.matrix["RNA"] is not plain.matrix["RNA"]
        assert not layered.matrix["RNA"].released


class TestFailures:
    """Error propagation and resource release."""

    @pytest.mark.asyncio
    async def test_dimension_mismatch_releases_everything(self, artifactdb_store, artifactdb_dataset):
        from scremote.core.errors import DimensionMismatchError

        artifactdb_store.metadata("my_sce/altexp-1/experiment.json")["summarized_experiment"]["dimensions"] = [6, 12]

        decoded = []
        original = artifactdb_dataset._resolver.assay

        async def spy(*args, **kwargs):
            result = await original(*args, **kwargs)
            decoded.append(result)
            return result

        artifactdb_dataset._resolver.assay = spy
        with pytest.raises(DimensionMismatchError, match=r"\[5, 12\]"):
            await artifactdb_dataset.load()

        assert len(decoded) == 2
        assert all(d.matrix.released for d in decoded)
        assert artifactdb_dataset._counts == {}

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates(self, gypsum_dataset, gypsum_files):
        from scremote.core.errors import FetchError

        del gypsum_files.files[f"{GYPSUM_URL}/scRNAseq/zeisel/v1/alternative_experiments/0/assays/0/matrix.h5"]
        with pytest.raises(FetchError) as exc_info:
            await gypsum_dataset.load()
        assert exc_info.value.status_code == 404
        assert gypsum_dataset._counts == {}

    @pytest.mark.asyncio
    async def test_column_data_mismatch(self, artifactdb_store, artifactdb_dataset):
        from scremote.core.errors import DimensionMismatchError

        artifactdb_store.metadata("my_sce/experiment.json")["summarized_experiment"]["dimensions"] = [20, 13]
        with pytest.raises(DimensionMismatchError, match="column data"):
            await artifactdb_dataset.summary()

    @pytest.mark.asyncio
    async def test_unsupported_alabaster_assay(self, gypsum_dataset, gypsum_files):
        from scremote.core.errors import UnsupportedSchemaError

        gypsum_files.files[f"{GYPSUM_URL}/scRNAseq/zeisel/v1/assays/0/OBJECT"] = {"type": "delayed_array"}
        with pytest.raises(UnsupportedSchemaError, match="delayed_array"):
            await gypsum_dataset.load()

    @pytest.mark.asyncio
    async def test_not_an_experiment(self, gypsum_dataset, gypsum_files):
        from scremote.core.errors import UnsupportedSchemaError

        gypsum_files.files[f"{GYPSUM_URL}/scRNAseq/zeisel/v1/OBJECT"] = {"type": "data_frame"}
        with pytest.raises(UnsupportedSchemaError, match="SummarizedExperiment"):
            await gypsum_dataset.summary()


class TestArtifactdb:
    """ArtifactDB and CollaboratorDB specifics."""

    def test_pack_unpack(self):
        from scremote.datasets.artifactdb import pack_id, unpack_id

        parts = unpack_id("dssc-test_basic-2023:my_first_sce/x@2023-01-19")
        assert parts == {"project": "dssc-test_basic-2023", "path": "my_first_sce/x", "version": "2023-01-19"}
        assert pack_id(**parts) == "dssc-test_basic-2023:my_first_sce/x@2023-01-19"

    @pytest.mark.parametrize("bad", ["no-separators", "project:path", "project@v1", ":path@v1", "project:path@"])
    def test_unpack_invalid(self, bad):
        from scremote.core.errors import InvalidIdentifierError
        from scremote.datasets.artifactdb import unpack_id

        with pytest.raises(InvalidIdentifierError):
            unpack_id(bad)

    @pytest.mark.asyncio
    async def test_csv_and_hdf5_frames(self, artifactdb_dataset):
        summary = await artifactdb_dataset.summary()

        rna = summary.modality_features[""]
        assert list(rna.columns) == ["symbol", "length", "keep"]
        assert rna.index[0] == "ENSG00000"
        assert rna["length"].dtype == np.float64
        assert rna["keep"].tolist()[:2] == [False, True]

        cells = summary.cells
        assert list(cells.index[:2]) == ["cell0", "cell1"]
        assert pd.isna(cells["passed"].iloc[0])
        assert cells["passed"].iloc[1:3].tolist() == [True, False]

        assert summary.modality_features["Antibody Capture"].shape == (5, 0)

    @pytest.mark.asyncio
    async def test_alternative_csr_matrix(self, artifactdb_dataset):
        loaded = await artifactdb_dataset.load(layered=False)
        np.testing.assert_array_equal(
            loaded.matrix["ADT"].to_scipy().toarray(),
            counts_matrix(5, 12, seed=1, large=False),
        )

    @pytest.mark.asyncio
    async def test_dense_assay(self, artifactdb_dataset):
        artifactdb_dataset.set_options(rna_count_assay=1)
        loaded = await artifactdb_dataset.load(force_integer=False)
        np.testing.assert_allclose(loaded.matrix["RNA"].to_scipy().toarray(), np.log1p(counts_matrix(20, 12)))

    @pytest.mark.asyncio
    async def test_unsupported_frame_schema(self, artifactdb_store, artifactdb_dataset):
        from scremote.core.errors import UnsupportedSchemaError

        meta = artifactdb_store.metadata("my_sce/rowdata/simple.csv.gz")
        meta["$schema"] = "parquet_data_frame/v1.json"
        del meta["csv_data_frame"]
        with pytest.raises(UnsupportedSchemaError, match="parquet_data_frame"):
            await artifactdb_dataset.summary()

    @pytest.mark.asyncio
    async def test_unsupported_compression(self, artifactdb_store, artifactdb_dataset):
        from scremote.core.errors import UnsupportedCompressionError

        artifactdb_store.metadata("my_sce/rowdata/simple.csv.gz")["csv_data_frame"]["compression"] = "bzip2"
        with pytest.raises(UnsupportedCompressionError):
            await artifactdb_dataset.summary()

    @pytest.mark.asyncio
    async def test_missing_experiment_metadata(self, artifactdb_store, artifactdb_dataset):
        from scremote.core.errors import MissingResourceError

        del artifactdb_store.metadata("my_sce/experiment.json")["summarized_experiment"]
        with pytest.raises(MissingResourceError, match="summarized_experiment"):
            await artifactdb_dataset.summary()

    @pytest.mark.asyncio
    async def test_duplicate_experiment_names(self, artifactdb_store, artifactdb_dataset):
        from scremote.core.errors import DuplicateExperimentError

        sce = artifactdb_store.metadata("my_sce/experiment.json")["single_cell_experiment"]
        sce["alternative_experiments"].append(dict(sce["alternative_experiments"][0]))
        with pytest.raises(DuplicateExperimentError, match="Antibody Capture"):
            await artifactdb_dataset.summary()

    @pytest.mark.asyncio
    async def test_main_experiment_name(self, artifactdb_store, artifactdb_dataset):
        meta = artifactdb_store.metadata("my_sce/experiment.json")
        meta["single_cell_experiment"]["main_experiment_name"] = "Gene Expression"

        summary = await artifactdb_dataset.summary()
        assert list(summary.modality_features) == ["Gene Expression", "Antibody Capture"]

        loaded = await artifactdb_dataset.load()
        assert loaded.modalities() == ["ADT"]

        artifactdb_dataset.set_options(rna_experiment="Gene Expression")
        loaded = await artifactdb_dataset.load()
        assert loaded.modalities() == ["RNA", "ADT"]

    @pytest.mark.asyncio
    async def test_collaboratordb(self):
        from scremote.datasets.artifactdb import CollaboratordbDataset
        from tests.stores import build_artifactdb_store

        store = build_artifactdb_store(base_url="https://collaboratordb.test")
        dataset = CollaboratordbDataset("test-project:my_sce@v1", source=store.source)
        assert CollaboratordbDataset.format() == "CollaboratorDB"
        assert dataset.abbreviate()["id"] == "test-project:my_sce@v1"

        loaded = await dataset.load()
        assert loaded.matrix["RNA"].shape == (20, 12)


class TestExperimentHub:
    """ExperimentHub specifics."""

    @pytest.mark.asyncio
    async def test_feature_columns(self, experimenthub_dataset):
        summary = await experimenthub_dataset.summary()
        features = summary.modality_features[""]
        assert list(features.columns) == ["id", "symbol"]
        assert features["id"].tolist()[:2] == ["Gene0", "Gene1"]
        assert summary.modality_assay_names == {"": ["counts"]}
        assert list(summary.cells.columns) == ["tissue", "total_mRNA"]

    @pytest.mark.asyncio
    async def test_counts_fetched_once(self, experimenthub_dataset, experimenthub_files):
        await experimenthub_dataset.load()
        assert experimenthub_files.calls[f"{EXPERIMENTHUB_URL}/2596"] == 1

    @pytest.mark.asyncio
    async def test_dimnames_fallback(self, experimenthub_files, experimenthub_registry):
        from scremote.datasets.experimenthub import ExperimentHubDataset

        dataset = ExperimentHubDataset("counts-only", source=experimenthub_files, registry=experimenthub_registry)
        loaded = await dataset.load()
        assert loaded.primary_ids["RNA"] == [f"Gene{i}" for i in range(6)]
        assert loaded.cells.shape == (4, 0)

    def test_unknown_identifier(self):
        from scremote.core.errors import InvalidIdentifierError
        from scremote.datasets.experimenthub import ExperimentHubDataset

        with pytest.raises(InvalidIdentifierError, match="unrecognized identifier 'nope'"):
            ExperimentHubDataset("nope")

    def test_rowdata_without_row_names(self):
        from scremote.core.errors import MissingResourceError
        from scremote.datasets.experimenthub import extract_features
        from scremote.decode.frame import RawTable

        with pytest.raises(MissingResourceError):
            extract_features(RawTable(["symbol"], [["A"]]))


class TestAlabasterStores:
    """SewerRat and gypsum specifics."""

    @pytest.mark.asyncio
    async def test_sewerrat_missing_object(self, sewerrat_files):
        from scremote.core.errors import MissingResourceError
        from scremote.datasets.sewerrat import SewerRatDataset

        dataset = SewerRatDataset("/data/elsewhere", SEWERRAT_URL, source=sewerrat_files)
        with pytest.raises(MissingResourceError, match="/data/elsewhere"):
            await dataset.summary()

    @pytest.mark.asyncio
    async def test_gypsum_listing(self, gypsum_dataset):
        from scremote.core.errors import MalformedListingError

        resolver = gypsum_dataset._resolver
        assert await resolver.list("scRNAseq/zeisel/v1/assays") == ["names.json", "0", "1"]
        with pytest.raises(MalformedListingError, match="scRNAseq/zeisel/v1/nope"):
            await resolver.list("scRNAseq/zeisel/v1/nope")

    @pytest.mark.asyncio
    async def test_gypsum_manifest_fetched_once(self, gypsum_dataset, gypsum_files):
        await gypsum_dataset.load()
        await gypsum_dataset.summary()
        assert gypsum_files.calls[f"{GYPSUM_URL}/scRNAseq/zeisel/v1/..manifest"] == 1

    @pytest.mark.asyncio
    async def test_gypsum_subdirectory(self):
        from scremote.datasets.gypsum import GypsumDataset

        inner = build_sce_store()
        store = AlabasterStore()
        store.files = {f"experiments/zeisel/{k}": v for k, v in inner.files.items()}
        source = gypsum_source(store, GYPSUM_URL, "p", "a", "v")

        dataset = GypsumDataset("p", "a", "v", path="experiments/zeisel", source=source)
        loaded = await dataset.load()
        assert loaded.matrix["RNA"].shape == (20, 12)

    @pytest.mark.asyncio
    async def test_gypsum_local_mirror(self, tmp_path, sce_store):
        from scremote.datasets.gypsum import GypsumDataset
        from scremote.ingest.local import LocalByteSource

        version_dir = tmp_path / "scRNAseq" / "zeisel" / "v1"
        for path, content in sce_store.files.items():
            target = version_dir / path
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, (dict, list)):
                target.write_text(json.dumps(content))
            else:
                target.write_bytes(content)
        (version_dir / "..manifest").write_text(json.dumps({p: {} for p in sce_store.files}))

        source = LocalByteSource(root=tmp_path, base_url=GYPSUM_URL)
        dataset = GypsumDataset("scRNAseq", "zeisel", "v1", source=source)
        loaded = await dataset.load()
        assert loaded.matrix["RNA"].shape == (20, 12)
        assert loaded.matrix["ADT"].shape == (5, 12)


class TestSerialization:
    """serialize(), unserialize() and abbreviate()."""

    @pytest.mark.parametrize("backend", ALL_BACKENDS + ["collaboratordb"])
    def test_round_trip(self, backend, request):
        from scremote.datasets.artifactdb import CollaboratordbDataset

        if backend == "collaboratordb":
            dataset = CollaboratordbDataset("test-project:my_sce@v1")
        else:
            dataset = request.getfixturevalue(backend)
        dataset.set_options(adt_experiment=None, primary_rna_feature_id_column="symbol")

        saved = dataset.serialize()
        assert [f["type"] for f in saved["files"]] == ["id"]
        assert isinstance(saved["files"][0]["file"], bytes)

        kwargs = {}
        if backend == "experimenthub_dataset":
            kwargs["registry"] = request.getfixturevalue("experimenthub_registry")
        restored = type(dataset).unserialize(saved["files"], saved["options"], **kwargs)
        assert restored.abbreviate() == dataset.abbreviate()

    def test_abbreviate_shapes(self, gypsum_dataset, sewerrat_dataset, artifactdb_dataset):
        assert gypsum_dataset.abbreviate()["id"] == {
            "project": "scRNAseq",
            "asset": "zeisel",
            "version": "v1",
            "path": None,
            "url": GYPSUM_URL,
        }
        assert sewerrat_dataset.abbreviate()["id"] == {"path": SEWERRAT_ROOT, "url": SEWERRAT_URL}
        assert artifactdb_dataset.abbreviate()["id"]["id"] == "test-project:my_sce@v1"
        assert artifactdb_dataset.abbreviate()["options"]["adt_experiment"] == "Antibody Capture"

    def test_abbreviate_is_a_snapshot(self, gypsum_dataset):
        snapshot = gypsum_dataset.abbreviate()
        snapshot["id"]["project"] = "changed"
        snapshot["options"]["rna_experiment"] = "changed"
        assert gypsum_dataset.abbreviate()["id"]["project"] == "scRNAseq"
        assert gypsum_dataset.options()["rna_experiment"] == ""

    def test_unserialize_requires_id(self):
        from scremote.core.errors import InvalidIdentifierError
        from scremote.datasets.gypsum import GypsumDataset

        with pytest.raises(InvalidIdentifierError, match="'id'"):
            GypsumDataset.unserialize([{"type": "other", "file": b"x"}], {})

    @pytest.mark.asyncio
    async def test_restored_dataset_loads(self, gypsum_dataset, gypsum_files):
        saved = gypsum_dataset.serialize()
        restored = type(gypsum_dataset).unserialize(saved["files"], saved["options"], source=gypsum_files)
        loaded = await restored.load()
        assert loaded.matrix["RNA"].shape == (20, 12)


class TestRegistry:
    """Format registry."""

    def test_available_readers(self):
        from scremote.datasets.registry import available_readers

        assert set(available_readers) == {"ArtifactDB", "CollaboratorDB", "ExperimentHub", "SewerRat", "gypsum"}

    def test_get_reader(self):
        from scremote.datasets.gypsum import GypsumDataset
        from scremote.datasets.registry import get_reader

        assert get_reader("gypsum") is GypsumDataset
        with pytest.raises(ValueError, match="no reader available"):
            get_reader("H5AD")

    def test_unserialize_by_format(self, sewerrat_dataset, sewerrat_files):
        from scremote.datasets.registry import unserialize

        saved = sewerrat_dataset.serialize()
        restored = unserialize("SewerRat", saved["files"], saved["options"], source=sewerrat_files)
        assert restored.abbreviate() == sewerrat_dataset.abbreviate()

    def test_register_reader(self, monkeypatch):
        from scremote.datasets import registry
        from scremote.datasets.gypsum import GypsumDataset

        monkeypatch.setattr(registry, "available_readers", dict(registry.available_readers))

        class MirrorDataset(GypsumDataset):
            @classmethod
            def format(cls):
                return "mirror"

        assert registry.register_reader(MirrorDataset) is MirrorDataset
        assert registry.get_reader("mirror") is MirrorDataset
        registry.register_reader(MirrorDataset)

        class Clash(GypsumDataset):
            pass

        with pytest.raises(ValueError, match="already registered"):
            registry.register_reader(Clash)
