"""Structural reader for source Parquet files.

Reads the footer through pyarrow and turns it into a ParquetLayout: the
exact byte range of every column chunk plus its footer statistics. Also
provides table access for derivation queries.
"""

import datetime as dt
from decimal import Decimal
from pathlib import Path
from typing import Any

import pyarrow as pa
import pyarrow.parquet as pq

from infparquet._exceptions import NotFoundError, StructuralReadError, from_os_error
from infparquet._logging import get_logger
from infparquet._types import ChunkStatistics, ColumnChunk, ColumnSchema, ParquetLayout, RowGroup, Scalar

logger = get_logger(__name__)


def read_layout(path: str | Path) -> ParquetLayout:
    """Read row-group and column-chunk boundaries from a Parquet footer.

    Raises:
        NotFoundError: If the file does not exist
        StructuralReadError: If the footer is unreadable or chunk ranges are invalid
    """
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(f"Source file not found: {path}")

    try:
        size = path.stat().st_size
        metadata = pq.read_metadata(path)
    except OSError as e:
        raise from_os_error(e, f"Failed to read footer: {path}", StructuralReadError) from e
    except (pa.ArrowException, ValueError) as e:
        raise StructuralReadError(f"Not a readable Parquet file: {path}: {e}") from e

    schema_columns = tuple(_column_schema(metadata.schema.column(i)) for i in range(metadata.num_columns))
    row_groups = tuple(_row_group(metadata.row_group(i), i) for i in range(metadata.num_row_groups))

    layout = ParquetLayout(
        path=str(path),
        size=size,
        schema_columns=schema_columns,
        row_groups=row_groups,
        num_rows=metadata.num_rows,
        created_by=metadata.created_by,
    )
    validate_layout(layout)
    logger.debug(f"Read layout {path.name}: {len(row_groups)} row groups x {len(schema_columns)} columns")
    return layout


def validate_layout(layout: ParquetLayout) -> None:
    """Check chunk ranges lie inside the file without overlapping."""
    width = len(layout.schema_columns)
    for row_group in layout.row_groups:
        if len(row_group.columns) != width:
            raise StructuralReadError(
                f"Row group {row_group.index} has {len(row_group.columns)} columns, schema has {width}"
            )
        for column_index, chunk in enumerate(row_group.columns):
            if chunk.column_index != column_index or chunk.row_group_index != row_group.index:
                raise StructuralReadError(f"Column chunk out of order at row group {row_group.index}")

    cursor = 0
    for chunk in sorted(layout.chunks(), key=lambda c: c.offset):
        if chunk.length == 0:
            continue
        if chunk.offset < cursor or chunk.offset + chunk.length > layout.size:
            raise StructuralReadError(
                f"Invalid byte range for row group {chunk.row_group_index} column {chunk.path}: "
                f"offset={chunk.offset} length={chunk.length} file size={layout.size}"
            )
        cursor = chunk.offset + chunk.length


def read_table(source: str | Path | bytes, columns: list[str] | None = None) -> pa.Table:
    """Read row data from a Parquet file on disk or in memory."""
    try:
        if isinstance(source, bytes):
            return pq.read_table(pa.BufferReader(source), columns=columns)
        return pq.read_table(source, columns=columns)
    except OSError as e:
        raise from_os_error(e, f"Failed to read table: {_describe(source)}", StructuralReadError) from e
    except (pa.ArrowException, ValueError) as e:
        raise StructuralReadError(f"Failed to read table: {_describe(source)}: {e}") from e


def _describe(source: str | Path | bytes) -> str:
    return f"<{len(source)} bytes in memory>" if isinstance(source, bytes) else str(source)


def _column_schema(column: Any) -> ColumnSchema:
    logical = str(column.logical_type) if column.logical_type is not None else None
    if logical in ("None", ""):
        logical = None
    return ColumnSchema(name=column.path, physical_type=column.physical_type, logical_type=logical)


def _row_group(row_group: Any, index: int) -> RowGroup:
    columns = tuple(_column_chunk(row_group.column(j), index, j) for j in range(row_group.num_columns))
    return RowGroup(index=index, num_rows=row_group.num_rows, columns=columns)


def _column_chunk(column: Any, row_group_index: int, column_index: int) -> ColumnChunk:
    # Some writers record dictionary_page_offset=0 when there is no dictionary page.
    offset = column.data_page_offset
    if column.has_dictionary_page and column.dictionary_page_offset:
        offset = min(offset, column.dictionary_page_offset)

    return ColumnChunk(
        row_group_index=row_group_index,
        column_index=column_index,
        path=column.path_in_schema,
        physical_type=column.physical_type,
        offset=offset,
        length=column.total_compressed_size,
        statistics=_statistics(column),
    )


def _statistics(column: Any) -> ChunkStatistics | None:
    if not column.is_stats_set or column.statistics is None:
        return None
    stats = column.statistics
    return ChunkStatistics(
        min=normalize_scalar(stats.min) if stats.has_min_max else None,
        max=normalize_scalar(stats.max) if stats.has_min_max else None,
        null_count=stats.null_count if stats.has_null_count else None,
        distinct_count=stats.distinct_count if stats.has_distinct_count else None,
    )


def normalize_scalar(value: Any) -> Scalar:
    """Convert a pyarrow statistic or compute result into a JSON scalar."""
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dt.datetime | dt.date | dt.time):
        return value.isoformat()
    if isinstance(value, dt.timedelta):
        return value.total_seconds()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
