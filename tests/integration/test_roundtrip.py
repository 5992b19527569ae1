"""Integration tests for compress -> decompress roundtrips."""

import json

import pyarrow.parquet as pq
import pytest

from conftest import make_table, write_parquet
from infparquet import compress, decompress
from infparquet._exceptions import (
    CompressionError,
    DecompressionError,
    InvalidParameterError,
    MetadataError,
    OperationCancelled,
)
from infparquet._metadata import load
from infparquet.plan import plan_decompress


class TestRoundtrip:

    def test_byte_identical(self, source_parquet, output_dir, tmp_path):
        sidecar = compress(source_parquet, output_dir, level=1, workers=2, progress=False)
        restored = decompress(sidecar, tmp_path / "restored.parquet", workers=2, progress=False)

        assert restored.read_bytes() == source_parquet.read_bytes()

    def test_dictionary_and_snappy_pages(self, dictionary_parquet, output_dir, tmp_path):
        sidecar = compress(dictionary_parquet, output_dir, level=3, progress=False)
        restored = decompress(output_dir, tmp_path / "restored.parquet", progress=False)

        assert restored.read_bytes() == dictionary_parquet.read_bytes()
        assert pq.read_table(restored).equals(pq.read_table(dictionary_parquet))
        assert sidecar.exists()

    def test_single_row_group(self, tmp_path):
        source = write_parquet(tmp_path / "one.parquet", make_table(50), row_group_size=100)
        sidecar = compress(source, tmp_path / "out", level=1, progress=False)
        restored = decompress(sidecar, tmp_path / "one_restored.parquet", progress=False)

        assert load(sidecar).basic.row_group_count == 1
        assert restored.read_bytes() == source.read_bytes()

    def test_sequential_and_parallel_blobs_identical(self, source_parquet, tmp_path):
        compress(source_parquet, tmp_path / "seq", level=2, workers=1, progress=False)
        compress(source_parquet, tmp_path / "par", level=2, workers=4, progress=False)

        seq = (tmp_path / "seq" / "data.parquet.infp").read_bytes()
        par = (tmp_path / "par" / "data.parquet.infp").read_bytes()
        assert seq == par

    def test_no_partial_files_left(self, source_parquet, output_dir, tmp_path):
        sidecar = compress(source_parquet, output_dir, level=1, progress=False)
        decompress(sidecar, tmp_path / "restored.parquet", progress=False)

        assert sorted(p.name for p in output_dir.iterdir()) == ["data.parquet.infp", "data.parquet.infp.json"]
        assert not (tmp_path / "restored.parquet.partial").exists()


class TestConcreteScenario:

    def test_three_by_four_level_nine(self, source_parquet, output_dir):
        sidecar = compress(source_parquet, output_dir, level=9, workers=2, progress=False)
        basic = load(sidecar).basic

        assert len(basic.chunks) == 12
        assert [c.key for c in basic.chunks] == [(rg, col) for rg in range(3) for col in range(4)]
        for chunk in basic.chunks:
            assert chunk.compressed_length <= chunk.original_length
            assert chunk.checksum
            assert chunk.level == 9

    def test_row_group_sizes(self, source_parquet, output_dir):
        basic = load(compress(source_parquet, output_dir, level=1, progress=False)).basic

        for summary in basic.row_groups:
            chunks = [c for c in basic.chunks if c.row_group_index == summary.index]
            assert sum(c.original_length for c in chunks) == summary.original_size

    def test_without_basic_metadata(self, source_parquet, output_dir, tmp_path):
        sidecar = compress(source_parquet, output_dir, level=1, include_basic_metadata=False, progress=False)

        assert all(c.statistics is None for c in load(sidecar).basic.chunks)
        restored = decompress(sidecar, tmp_path / "restored.parquet", progress=False)
        assert restored.read_bytes() == source_parquet.read_bytes()


class TestChecksumIntegrity:

    def _flip(self, blob, offset):
        data = bytearray(blob.read_bytes())
        data[offset] ^= 0xFF
        blob.write_bytes(bytes(data))

    def test_flipped_byte_identifies_chunk(self, source_parquet, output_dir, tmp_path):
        sidecar = compress(source_parquet, output_dir, level=1, progress=False)
        target = load(sidecar).basic.chunks[6]
        self._flip(output_dir / "data.parquet.infp", target.compressed_offset + target.compressed_length // 2)

        with pytest.raises(DecompressionError) as exc_info:
            decompress(sidecar, tmp_path / "restored.parquet", workers=2, progress=False)

        assert exc_info.value.failures == [(1, 2)]
        assert not (tmp_path / "restored.parquet").exists()
        assert exc_info.value.incomplete_path == str(tmp_path / "restored.parquet.incomplete")

    def test_other_row_groups_intact(self, source_parquet, output_dir, tmp_path):
        sidecar = compress(source_parquet, output_dir, level=1, progress=False)
        basic = load(sidecar).basic
        target = basic.chunks[6]
        self._flip(output_dir / "data.parquet.infp", target.compressed_offset)

        with pytest.raises(DecompressionError):
            decompress(sidecar, tmp_path / "restored.parquet", progress=False)

        incomplete = (tmp_path / "restored.parquet.incomplete").read_bytes()
        original = source_parquet.read_bytes()
        for chunk in basic.chunks:
            if chunk.row_group_index == 1:
                continue
            span = slice(chunk.original_offset, chunk.original_offset + chunk.original_length)
            assert incomplete[span] == original[span]

    def test_every_failure_reported(self, source_parquet, output_dir, tmp_path):
        sidecar = compress(source_parquet, output_dir, level=1, progress=False)
        chunks = load(sidecar).basic.chunks
        blob = output_dir / "data.parquet.infp"
        self._flip(blob, chunks[9].compressed_offset)
        self._flip(blob, chunks[1].compressed_offset)

        with pytest.raises(DecompressionError) as exc_info:
            decompress(sidecar, tmp_path / "restored.parquet", progress=False)

        assert exc_info.value.failures == [(0, 1), (2, 1)]

    def test_tampered_ranges_rejected(self, source_parquet, output_dir, tmp_path):
        sidecar = compress(source_parquet, output_dir, level=1, progress=False)
        raw = json.loads(sidecar.read_text())
        raw["basic"]["residuals"][-1]["original_offset"] += 1000
        sidecar.write_text(json.dumps(raw))

        with pytest.raises(MetadataError, match="gap or overlap"):
            decompress(sidecar, tmp_path / "restored.parquet", progress=False)

        assert not (tmp_path / "restored.parquet").exists()


class TestCancellation:

    def test_compress_cancelled_at_half(self, source_parquet, output_dir):
        def observer(operation, row_group_index, total_row_groups, percent):
            return percent < 50

        with pytest.raises(OperationCancelled):
            compress(source_parquet, output_dir, level=1, workers=2, observer=observer, progress=False)

        assert not (output_dir / "data.parquet.infp.json").exists()

    def test_stale_sidecar_removed(self, source_parquet, output_dir):
        compress(source_parquet, output_dir, level=1, progress=False)
        assert (output_dir / "data.parquet.infp.json").exists()

        with pytest.raises(OperationCancelled):
            compress(source_parquet, output_dir, level=1, observer=lambda *args: False, progress=False)

        assert not (output_dir / "data.parquet.infp.json").exists()

    def test_decompress_cancelled(self, source_parquet, output_dir, tmp_path):
        sidecar = compress(source_parquet, output_dir, level=1, progress=False)

        with pytest.raises(OperationCancelled):
            decompress(sidecar, tmp_path / "restored.parquet", observer=lambda *args: False, progress=False)

        assert not (tmp_path / "restored.parquet").exists()

    def test_observer_sees_every_unit(self, source_parquet, output_dir):
        calls = []

        def observer(operation, row_group_index, total_row_groups, percent):
            calls.append((operation, row_group_index, total_row_groups, percent))
            return True

        compress(source_parquet, output_dir, level=1, workers=2, observer=observer, progress=False)

        total_units = len(plan_decompress(output_dir).tasks)
        assert len(calls) == total_units
        assert {c[0] for c in calls} == {"compress"}
        assert {c[2] for c in calls} == {3}
        assert max(c[3] for c in calls) == 100
        assert None in {c[1] for c in calls}


class TestInvalidParameters:

    @pytest.mark.parametrize("level", [0, 10])
    def test_level_rejected_before_work(self, source_parquet, output_dir, level):
        with pytest.raises(InvalidParameterError):
            compress(source_parquet, output_dir, level=level, progress=False)

        assert not output_dir.exists()

    def test_negative_workers(self, source_parquet, output_dir):
        with pytest.raises(InvalidParameterError):
            compress(source_parquet, output_dir, workers=-1, progress=False)

    def test_decompress_output_exists(self, source_parquet, output_dir):
        sidecar = compress(source_parquet, output_dir, level=1, progress=False)

        with pytest.raises(InvalidParameterError):
            decompress(sidecar, source_parquet, progress=False)


class TestCompressionFailure:

    def test_truncated_source(self, source_parquet, output_dir, monkeypatch):
        from infparquet import plan as plan_module

        original_read_layout = plan_module.read_layout

        def read_then_truncate(path):
            layout = original_read_layout(path)
            data = source_parquet.read_bytes()
            source_parquet.write_bytes(data[: len(data) // 2])
            return layout

        monkeypatch.setattr(plan_module, "read_layout", read_then_truncate)

        with pytest.raises(CompressionError):
            compress(source_parquet, output_dir, level=1, workers=1, progress=False)

        assert not (output_dir / "data.parquet.infp.json").exists()
        assert not (output_dir / "data.parquet.infp").exists()
