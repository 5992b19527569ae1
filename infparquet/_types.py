"""Data types for infparquet operations.

Three groups of records:

    Layout (read from the source, never persisted as-is):
        - ParquetLayout / RowGroup / ColumnChunk: byte ranges of each
          column chunk in the source file, plus footer statistics

    Document (persisted in the sidecar JSON):
        - BasicMetadata: write-once description of one compression run
        - CustomMetadataItem: named derived values, overwritable
        - MetadataDocument: basic + custom

    Work (plan -> execute -> finalize):
        - CompressTask / DecompressTask: one independent unit each
        - CompressPlan / DecompressPlan: tasks plus everything finalize needs
"""

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from infparquet._constants import DEFAULT_CODEC, DEFAULT_LEVEL, FORMAT_VERSION, MAX_LEVEL, MIN_LEVEL

Scalar = int | float | str | bool | None
"""JSON scalar stored in statistics and custom metadata."""

CustomValue = Scalar | list[dict[str, Scalar]]
"""Scalar, or a small table given as a list of row mappings."""

ProgressObserver = Callable[[str, int | None, int, int], bool]
"""(operation, row_group_index or None, total_row_groups, percent) -> continue?"""


# --- Layout ---


class ColumnSchema(BaseModel, frozen=True):
    """One leaf column of the source schema.

    Attributes:
        name: Dotted path of the leaf column (e.g. "address.city")
        physical_type: Parquet physical type (INT64, BYTE_ARRAY, ...)
        logical_type: Logical annotation if any (String, Timestamp, ...)
    """

    name: str
    physical_type: str
    logical_type: str | None = None


class ChunkStatistics(BaseModel, frozen=True):
    """Footer statistics of one column chunk, normalised to JSON scalars."""

    min: Scalar = None
    max: Scalar = None
    null_count: int | None = None
    distinct_count: int | None = None


class ColumnChunk(BaseModel, frozen=True):
    """Byte range of one column inside one row group of the source file."""

    row_group_index: int
    column_index: int
    path: str
    physical_type: str
    offset: int
    length: int
    statistics: ChunkStatistics | None = None


class RowGroup(BaseModel, frozen=True):
    index: int
    num_rows: int
    columns: tuple[ColumnChunk, ...]

    @property
    def original_size(self) -> int:
        """Bytes covered by this row group's column chunks."""
        return sum(chunk.length for chunk in self.columns)


class ParquetLayout(BaseModel, frozen=True):
    """Structure of a source Parquet file as seen by the structural reader.

    Attributes:
        path: Source file path
        size: Source file size in bytes
        schema_columns: Leaf columns in schema order
        row_groups: Row groups in file order
        num_rows: Total rows
        created_by: Writer identification string from the footer
    """

    path: str
    size: int
    schema_columns: tuple[ColumnSchema, ...]
    row_groups: tuple[RowGroup, ...]
    num_rows: int = 0
    created_by: str | None = None

    def chunks(self) -> Iterator[ColumnChunk]:
        """All column chunks ordered by (row_group_index, column_index)."""
        for row_group in self.row_groups:
            yield from row_group.columns

    def gaps(self) -> list[tuple[int, int]]:
        """(offset, length) of every byte range not covered by a column chunk.

        Covers the leading magic, page indexes, bloom filters and the footer.
        """
        ranges = sorted((c.offset, c.length) for c in self.chunks() if c.length > 0)
        gaps: list[tuple[int, int]] = []
        cursor = 0
        for offset, length in ranges:
            if offset > cursor:
                gaps.append((cursor, offset - cursor))
            cursor = max(cursor, offset + length)
        if cursor < self.size:
            gaps.append((cursor, self.size - cursor))
        return gaps


# --- Document ---


class SourceInfo(BaseModel, frozen=True):
    name: str
    path: str
    size: int
    sha256: str


class CodecInfo(BaseModel, frozen=True):
    name: str = DEFAULT_CODEC
    level: int = DEFAULT_LEVEL


class RowGroupSummary(BaseModel, frozen=True):
    index: int
    num_rows: int
    original_size: int


class CompressedChunk(BaseModel, frozen=True):
    """One compressed column chunk and where it lives in source and blob.

    Attributes:
        row_group_index: Row group of the chunk (0-based)
        column_index: Column position in schema order (0-based)
        path: Column path
        physical_type: Parquet physical type of the column
        original_offset: Byte offset in the source file
        original_length: Byte length in the source file
        compressed_offset: Byte offset in the blob
        compressed_length: Byte length in the blob (0 for empty chunks)
        level: Codec level used
        checksum: SHA-256 hex digest of the compressed bytes
        statistics: Footer statistics, omitted when basic metadata is off
    """

    row_group_index: int
    column_index: int
    path: str
    physical_type: str = ""
    original_offset: int
    original_length: int
    compressed_offset: int
    compressed_length: int
    level: int
    checksum: str
    statistics: ChunkStatistics | None = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.row_group_index, self.column_index)


class ResidualSegment(BaseModel, frozen=True):
    """Source bytes outside every column chunk (magic, indexes, footer)."""

    original_offset: int
    original_length: int
    compressed_offset: int
    compressed_length: int
    checksum: str


class BasicMetadata(BaseModel, frozen=True):
    """Write-once description of one compression run."""

    format_version: int = FORMAT_VERSION
    source: SourceInfo
    schema_columns: tuple[ColumnSchema, ...]
    row_group_count: int
    column_count: int
    num_rows: int
    codec: CodecInfo
    blob_name: str
    blob_size: int
    created_at: datetime
    created_by: str | None = None
    row_groups: tuple[RowGroupSummary, ...] = ()
    chunks: tuple[CompressedChunk, ...] = ()
    residuals: tuple[ResidualSegment, ...] = ()


class CustomMetadataItem(BaseModel, frozen=True):
    """Named derived value cached in the document.

    Attributes:
        name: Unique name within the document
        query: Derivation query text ("" when set directly)
        value: Scalar or small table
        computed_at: When the value was computed
    """

    name: str
    query: str = ""
    value: CustomValue = None
    computed_at: datetime


class MetadataDocument(BaseModel, frozen=True):
    basic: BasicMetadata
    custom: dict[str, CustomMetadataItem] = {}


# --- Options ---


class CompressOptions(BaseModel, frozen=True):
    """Options for compression.

    Attributes:
        level: Codec level, 1 (fastest) to 9 (strongest)
        workers: Worker threads, 0 = available parallelism
        include_basic_metadata: Keep per-chunk footer statistics
        codec: Codec name
    """

    level: int = Field(default=DEFAULT_LEVEL, ge=MIN_LEVEL, le=MAX_LEVEL)
    workers: int = Field(default=0, ge=0)
    include_basic_metadata: bool = True
    codec: str = DEFAULT_CODEC


class DecompressOptions(BaseModel, frozen=True):
    workers: int = Field(default=0, ge=0)


# --- Work ---


class CompressTask(BaseModel, frozen=True):
    """Compress one byte range of the source.

    Attributes:
        src: Source file path
        slot: Index of the result slot (chunks first, then residuals)
        row_group_index: Row group, None for residual segments
        column_index: Column, None for residual segments
        offset: Byte offset in the source
        length: Byte count
        level: Codec level
        codec: Codec name
    """

    src: str
    slot: int
    row_group_index: int | None
    column_index: int | None
    offset: int
    length: int
    level: int
    codec: str = DEFAULT_CODEC


class DecompressTask(BaseModel, frozen=True):
    """Decompress one slice of the blob into its place in the output."""

    src: str
    slot: int
    row_group_index: int | None
    column_index: int | None
    compressed_offset: int
    compressed_length: int
    original_offset: int
    original_length: int
    checksum: str
    codec: str = DEFAULT_CODEC


class CompressPlan(BaseModel, frozen=True):
    """Plan for compression.

    Workflow: plan_compress() -> execute(task) for each -> finalize_compress(plan, slots)

    Attributes:
        tasks: Chunk tasks in (row_group_index, column_index) order, then residuals
        layout: Source layout
        source: Identity of the source file
        options: Validated compression options
        blob_path: Blob destination, None for in-memory runs
        metadata_path: Sidecar destination, None for in-memory runs
    """

    tasks: tuple[CompressTask, ...]
    layout: ParquetLayout
    source: SourceInfo
    options: CompressOptions
    blob_path: Path | None = None
    metadata_path: Path | None = None

    @property
    def chunk_count(self) -> int:
        return sum(1 for task in self.tasks if task.column_index is not None)


class DecompressPlan(BaseModel, frozen=True):
    """Plan for decompression.

    Workflow: plan_decompress() -> execute(task) for each -> finalize_decompress(plan, slots)
    """

    tasks: tuple[DecompressTask, ...]
    document: MetadataDocument
    blob_path: Path
    output: Path | None = None


class QueryResult(BaseModel, frozen=True):
    success: bool
    message: str = ""
    matching_files: tuple[str, ...] = ()
    matching_row_groups: tuple[str, ...] = ()
    matching_columns: tuple[str, ...] = ()


# --- Results ---


@dataclass(frozen=True)
class CompressedSlot:
    """Output of one compress task. Written once into its slot."""

    data: bytes
    checksum: str


@dataclass(frozen=True)
class CompressionOutcome:
    """Assembled BasicMetadata plus the compressed payloads in blob order."""

    basic: BasicMetadata
    payloads: tuple[bytes, ...]

    def blob_bytes(self) -> bytes:
        return b"".join(self.payloads)

    def write_blob(self, path: Path) -> int:
        """Write payloads in order to ``path``. Returns bytes written."""
        written = 0
        with open(path, "wb") as f:
            for payload in self.payloads:
                f.write(payload)
                written += len(payload)
        return written


def to_jsonable(document: MetadataDocument) -> dict[str, Any]:
    """Plain JSON structure of a document."""
    return document.model_dump(mode="json")
