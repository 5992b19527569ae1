"""Planning functions for infparquet operations.

Plans compute what needs to be done without compressing or decompressing
anything. Every unit of work is fixed here, including the result slot it
writes to, so execution order never affects output layout.
"""

from pathlib import Path
from typing import Any

from pydantic import ValidationError

from infparquet._codec import file_checksum, get_codec
from infparquet._exceptions import (
    InvalidParameterError,
    MetadataError,
    NotFoundError,
    StructuralReadError,
    from_os_error,
)
from infparquet._layout import read_layout
from infparquet._logging import get_logger
from infparquet._metadata import blob_path, blob_path_for, load, metadata_path_for, resolve_metadata_path
from infparquet._types import (
    BasicMetadata,
    CompressOptions,
    CompressPlan,
    CompressTask,
    DecompressOptions,
    DecompressPlan,
    DecompressTask,
    ParquetLayout,
    SourceInfo,
)

logger = get_logger(__name__)


def compress_options(**kwargs: Any) -> CompressOptions:
    """Build CompressOptions, mapping validation failures to InvalidParameterError."""
    try:
        return CompressOptions(**kwargs)
    except ValidationError as e:
        raise InvalidParameterError(f"Invalid compression options: {_first_error(e)}") from e


def decompress_options(**kwargs: Any) -> DecompressOptions:
    try:
        return DecompressOptions(**kwargs)
    except ValidationError as e:
        raise InvalidParameterError(f"Invalid decompression options: {_first_error(e)}") from e


def plan_compress(
    source: str | Path | ParquetLayout,
    output_dir: str | Path | None = None,
    options: CompressOptions | None = None,
) -> CompressPlan:
    """Plan compression of a Parquet file.

    Args:
        source: Source file path, or a layout already read from it
        output_dir: Directory for blob and sidecar. None plans an in-memory run.
        options: Compression options (defaults: level 5, automatic workers)

    Raises:
        InvalidParameterError: Empty path, unknown codec
        NotFoundError: Source missing
        StructuralReadError: Source layout unreadable
    """
    options = options or CompressOptions()
    get_codec(options.codec)

    if isinstance(source, ParquetLayout):
        layout = source
    else:
        if not str(source):
            raise InvalidParameterError("Source path is empty")
        layout = read_layout(source)

    source_info = _source_info(layout)
    tasks = _collect_compress_tasks(layout, options)

    blob_dest: Path | None = None
    metadata_dest: Path | None = None
    if output_dir is not None:
        if not str(output_dir):
            raise InvalidParameterError("Output directory is empty")
        output_dir = Path(output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise from_os_error(e, f"Cannot create output directory {output_dir}") from e
        blob_dest = blob_path_for(output_dir, source_info.name)
        metadata_dest = metadata_path_for(output_dir, source_info.name)

    logger.debug(f"Planned {len(tasks)} compress tasks for {source_info.name}")
    return CompressPlan(
        tasks=tuple(tasks),
        layout=layout,
        source=source_info,
        options=options,
        blob_path=blob_dest,
        metadata_path=metadata_dest,
    )


def plan_decompress(metadata_location: str | Path, output: str | Path | None = None) -> DecompressPlan:
    """Plan reconstruction of the original file from a sidecar and its blob.

    Args:
        metadata_location: Sidecar document, or the directory holding it
        output: Destination file. None plans an in-memory reconstruction.

    Raises:
        InvalidParameterError: Empty output path or output already exists
        NotFoundError: Sidecar or blob missing
        MetadataError: Sidecar malformed or blob size inconsistent
    """
    if output is not None:
        if not str(output):
            raise InvalidParameterError("Output path is empty")
        output = Path(output)
        if output.exists():
            raise InvalidParameterError(f"Output already exists: {output}")

    metadata_path = resolve_metadata_path(metadata_location)
    document = load(metadata_path)
    blob = blob_path(document, metadata_path)

    if not blob.is_file():
        raise NotFoundError(f"Compressed blob not found: {blob}")
    actual_size = blob.stat().st_size
    if actual_size != document.basic.blob_size:
        raise MetadataError(f"Blob {blob.name} is {actual_size} bytes, metadata records {document.basic.blob_size}")

    get_codec(document.basic.codec.name)
    tasks = _collect_decompress_tasks(document.basic, str(blob))

    return DecompressPlan(tasks=tuple(tasks), document=document, blob_path=blob, output=output)


def _source_info(layout: ParquetLayout) -> SourceInfo:
    path = Path(layout.path)
    try:
        digest = file_checksum(str(path))
    except OSError as e:
        raise from_os_error(e, f"Failed to read source {path}", StructuralReadError) from e
    return SourceInfo(name=path.name, path=str(path.resolve()), size=layout.size, sha256=digest)


def _collect_compress_tasks(layout: ParquetLayout, options: CompressOptions) -> list[CompressTask]:
    """One task per column chunk in (row_group, column) order, then one per residual range."""
    tasks: list[CompressTask] = []

    for chunk in layout.chunks():
        tasks.append(
            CompressTask(
                src=layout.path,
                slot=len(tasks),
                row_group_index=chunk.row_group_index,
                column_index=chunk.column_index,
                offset=chunk.offset,
                length=chunk.length,
                level=options.level,
                codec=options.codec,
            )
        )

    for offset, length in layout.gaps():
        tasks.append(
            CompressTask(
                src=layout.path,
                slot=len(tasks),
                row_group_index=None,
                column_index=None,
                offset=offset,
                length=length,
                level=options.level,
                codec=options.codec,
            )
        )

    return tasks


def _collect_decompress_tasks(basic: BasicMetadata, blob: str) -> list[DecompressTask]:
    tasks: list[DecompressTask] = []

    for chunk in basic.chunks:
        tasks.append(
            DecompressTask(
                src=blob,
                slot=len(tasks),
                row_group_index=chunk.row_group_index,
                column_index=chunk.column_index,
                compressed_offset=chunk.compressed_offset,
                compressed_length=chunk.compressed_length,
                original_offset=chunk.original_offset,
                original_length=chunk.original_length,
                checksum=chunk.checksum,
                codec=basic.codec.name,
            )
        )

    for residual in basic.residuals:
        tasks.append(
            DecompressTask(
                src=blob,
                slot=len(tasks),
                row_group_index=None,
                column_index=None,
                compressed_offset=residual.compressed_offset,
                compressed_length=residual.compressed_length,
                original_offset=residual.original_offset,
                original_length=residual.original_length,
                checksum=residual.checksum,
                codec=basic.codec.name,
            )
        )

    return tasks


def _first_error(err: ValidationError) -> str:
    first = err.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {first.get('msg', 'invalid value')}" if field else str(first.get("msg"))
