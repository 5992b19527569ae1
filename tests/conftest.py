"""Shared fixtures for infparquet tests."""

import pytest
import pyarrow as pa
import pyarrow.parquet as pq

from infparquet._layout import read_layout
from infparquet._types import MetadataDocument
from infparquet.api import compress_layout
from infparquet.plan import compress_options

NUM_ROWS = 30000
ROW_GROUP_SIZE = 10000


def make_table(num_rows=NUM_ROWS):
    """Four compressible columns: id, category, price, flag."""
    return pa.table({
        "id": pa.array(range(num_rows), pa.int64()),
        "category": pa.array([f"cat_{i % 5}" for i in range(num_rows)], pa.string()),
        "price": pa.array([float(i % 100) for i in range(num_rows)], pa.float64()),
        "flag": pa.array([i % 3 == 0 for i in range(num_rows)], pa.bool_()),
    })


def write_parquet(path, table=None, row_group_size=ROW_GROUP_SIZE, **kwargs):
    kwargs.setdefault("compression", "NONE")
    kwargs.setdefault("use_dictionary", False)
    pq.write_table(make_table() if table is None else table, path, row_group_size=row_group_size, **kwargs)
    return path


@pytest.fixture
def source_parquet(tmp_path):
    """3 row groups x 4 columns, uncompressed plain encoding."""
    return write_parquet(tmp_path / "data.parquet")


@pytest.fixture
def dictionary_parquet(tmp_path):
    """Same rows written with dictionary pages and snappy pages."""
    return write_parquet(tmp_path / "dict.parquet", compression="snappy", use_dictionary=True)


@pytest.fixture
def layout(source_parquet):
    return read_layout(source_parquet)


@pytest.fixture
def document(layout):
    """In-memory document for the 3x4 source, level 1."""
    outcome = compress_layout(layout, compress_options(level=1, workers=1))
    return MetadataDocument(basic=outcome.basic)


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "out"
