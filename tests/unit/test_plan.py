"""Tests for infparquet.plan module."""

import pytest

from infparquet._exceptions import InvalidParameterError, MetadataError, NotFoundError, StructuralReadError
from infparquet._types import CompressOptions
from infparquet.api import compress
from infparquet.plan import compress_options, decompress_options, plan_compress, plan_decompress


class TestCompressOptions:

    def test_valid(self):
        assert compress_options(level=9, workers=2).level == 9

    @pytest.mark.parametrize("level", [0, 10])
    def test_level_out_of_range(self, level):
        with pytest.raises(InvalidParameterError, match="level"):
            compress_options(level=level)

    def test_negative_workers(self):
        with pytest.raises(InvalidParameterError, match="workers"):
            decompress_options(workers=-1)


class TestPlanCompress:

    def test_one_task_per_chunk_then_residuals(self, source_parquet, output_dir):
        plan = plan_compress(source_parquet, output_dir)

        assert plan.chunk_count == 12
        chunk_tasks = plan.tasks[:12]
        assert [(t.row_group_index, t.column_index) for t in chunk_tasks] == [
            (rg, col) for rg in range(3) for col in range(4)
        ]
        assert all(t.column_index is None for t in plan.tasks[12:])
        assert [t.slot for t in plan.tasks] == list(range(len(plan.tasks)))

    def test_tasks_cover_source(self, source_parquet, output_dir):
        plan = plan_compress(source_parquet, output_dir)
        assert sum(t.length for t in plan.tasks) == source_parquet.stat().st_size

    def test_output_paths(self, source_parquet, output_dir):
        plan = plan_compress(source_parquet, output_dir)

        assert output_dir.is_dir()
        assert plan.blob_path == output_dir / "data.parquet.infp"
        assert plan.metadata_path == output_dir / "data.parquet.infp.json"

    def test_in_memory_plan(self, layout):
        plan = plan_compress(layout)

        assert plan.blob_path is None
        assert plan.metadata_path is None

    def test_options_carried(self, source_parquet):
        plan = plan_compress(source_parquet, options=CompressOptions(level=9))
        assert {t.level for t in plan.tasks} == {9}

    def test_source_identity(self, source_parquet):
        plan = plan_compress(source_parquet)

        assert plan.source.name == "data.parquet"
        assert plan.source.size == source_parquet.stat().st_size
        assert len(plan.source.sha256) == 64

    def test_source_not_found(self, tmp_path):
        with pytest.raises(NotFoundError):
            plan_compress(tmp_path / "missing.parquet")

    def test_source_not_parquet(self, tmp_path):
        path = tmp_path / "text.parquet"
        path.write_text("hello")

        with pytest.raises(StructuralReadError):
            plan_compress(path)

    def test_empty_source_path(self):
        with pytest.raises(InvalidParameterError):
            plan_compress("")

    def test_unknown_codec(self, source_parquet):
        with pytest.raises(InvalidParameterError, match="codec"):
            plan_compress(source_parquet, options=CompressOptions(codec="zstd-9000"))


class TestPlanDecompress:

    @pytest.fixture
    def sidecar(self, source_parquet, output_dir):
        return compress(source_parquet, output_dir, level=1, workers=1, progress=False)

    def test_tasks_mirror_document(self, sidecar):
        plan = plan_decompress(sidecar)
        basic = plan.document.basic

        assert len(plan.tasks) == len(basic.chunks) + len(basic.residuals)
        assert [(t.row_group_index, t.column_index) for t in plan.tasks[:12]] == [c.key for c in basic.chunks]
        assert plan.output is None

    def test_accepts_directory(self, sidecar, output_dir):
        assert plan_decompress(output_dir).document.basic.source.name == "data.parquet"

    def test_output_exists(self, sidecar, tmp_path):
        existing = tmp_path / "exists.parquet"
        existing.write_bytes(b"x")

        with pytest.raises(InvalidParameterError, match="already exists"):
            plan_decompress(sidecar, existing)

    def test_blob_missing(self, sidecar, output_dir):
        (output_dir / "data.parquet.infp").unlink()

        with pytest.raises(NotFoundError, match="blob"):
            plan_decompress(sidecar)

    def test_blob_truncated(self, sidecar, output_dir):
        blob = output_dir / "data.parquet.infp"
        blob.write_bytes(blob.read_bytes()[:-1])

        with pytest.raises(MetadataError, match="bytes"):
            plan_decompress(sidecar)
