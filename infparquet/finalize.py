"""Finalize operations after tasks are executed.

Two finalization paths:

    CompressPlan:
        - Assemble BasicMetadata from the filled slots (offsets follow slot order)
        - Write the blob, then the sidecar document

    DecompressPlan:
        - Place every decompressed unit at its original offset
        - Verify the whole-file digest
        - Publish the output, or leave it marked .incomplete on failure
"""

import hashlib
from datetime import UTC, datetime
from pathlib import Path

from infparquet._constants import CHECKSUM_ALGORITHM, INCOMPLETE_SUFFIX, PARTIAL_SUFFIX
from infparquet._exceptions import (
    DecompressionError,
    InfParquetError,
    OperationCancelled,
    ParallelProcessingError,
    WriteError,
    from_os_error,
)
from infparquet._logging import get_logger
from infparquet._metadata import save, validate_basic
from infparquet._parallel import TaskRun
from infparquet._types import (
    BasicMetadata,
    CodecInfo,
    CompressedChunk,
    CompressedSlot,
    CompressionOutcome,
    CompressPlan,
    CustomMetadataItem,
    DecompressPlan,
    MetadataDocument,
    ResidualSegment,
    RowGroupSummary,
)

logger = get_logger(__name__)


def assemble_compression(plan: CompressPlan, slots: list[CompressedSlot | None]) -> CompressionOutcome:
    """Build BasicMetadata and blob payloads from filled slots.

    Raises:
        ParallelProcessingError: If a slot was never filled
    """
    layout = plan.layout
    chunks: list[CompressedChunk] = []
    residuals: list[ResidualSegment] = []
    payloads: list[bytes] = []
    cursor = 0

    for task in plan.tasks:
        slot = slots[task.slot]
        if slot is None:
            raise ParallelProcessingError(f"Result slot {task.slot} was never filled")

        if task.row_group_index is not None and task.column_index is not None:
            source_chunk = layout.row_groups[task.row_group_index].columns[task.column_index]
            chunks.append(
                CompressedChunk(
                    row_group_index=task.row_group_index,
                    column_index=task.column_index,
                    path=source_chunk.path,
                    physical_type=source_chunk.physical_type,
                    original_offset=task.offset,
                    original_length=task.length,
                    compressed_offset=cursor,
                    compressed_length=len(slot.data),
                    level=task.level,
                    checksum=slot.checksum,
                    statistics=source_chunk.statistics if plan.options.include_basic_metadata else None,
                )
            )
        else:
            residuals.append(
                ResidualSegment(
                    original_offset=task.offset,
                    original_length=task.length,
                    compressed_offset=cursor,
                    compressed_length=len(slot.data),
                    checksum=slot.checksum,
                )
            )
        payloads.append(slot.data)
        cursor += len(slot.data)

    basic = BasicMetadata(
        source=plan.source,
        schema_columns=layout.schema_columns,
        row_group_count=len(layout.row_groups),
        column_count=len(layout.schema_columns),
        num_rows=layout.num_rows,
        codec=CodecInfo(name=plan.options.codec, level=plan.options.level),
        blob_name=plan.blob_path.name if plan.blob_path else f"{plan.source.name}.infp",
        blob_size=cursor,
        created_at=datetime.now(UTC),
        created_by=layout.created_by,
        row_groups=tuple(
            RowGroupSummary(index=rg.index, num_rows=rg.num_rows, original_size=rg.original_size)
            for rg in layout.row_groups
        ),
        chunks=tuple(chunks),
        residuals=tuple(residuals),
    )
    validate_basic(basic)
    return CompressionOutcome(basic=basic, payloads=tuple(payloads))


def finalize_compress(
    plan: CompressPlan,
    outcome: CompressionOutcome,
    custom: dict[str, CustomMetadataItem] | None = None,
) -> Path:
    """Write blob and sidecar document for a completed compression run.

    Returns:
        Path to the sidecar document

    Raises:
        WriteError: If the blob or document cannot be written
    """
    if plan.blob_path is None or plan.metadata_path is None:
        raise WriteError("Plan has no output location (planned as an in-memory run)")

    partial = plan.blob_path.with_name(plan.blob_path.name + PARTIAL_SUFFIX)
    try:
        written = outcome.write_blob(partial)
        partial.replace(plan.blob_path)
        logger.debug(f"Wrote {plan.blob_path.name}: {written} bytes")

        document = MetadataDocument(basic=outcome.basic, custom=custom or {})
        save(document, plan.metadata_path)
    except InfParquetError:
        _discard(partial)
        raise
    except OSError as e:
        _discard(partial)
        raise from_os_error(e, f"Failed to write {plan.blob_path}") from e

    logger.info(
        f"Compressed {plan.source.name}: {plan.source.size} -> {outcome.basic.blob_size} bytes "
        f"({len(outcome.basic.chunks)} chunks)"
    )
    return plan.metadata_path


def finalize_decompress(plan: DecompressPlan, run: TaskRun) -> Path:
    """Assemble decompressed units into the output file.

    On failure the partial reconstruction is written to
    ``<output>.incomplete`` and reported on the raised error.

    Raises:
        OperationCancelled: If the observer cancelled the run
        DecompressionError: If any unit failed or the file digest differs
        WriteError: If the output cannot be written
    """
    if plan.output is None:
        raise WriteError("Plan has no output file (planned as an in-memory run)")
    if run.cancelled:
        raise OperationCancelled(f"Decompression of {plan.document.basic.source.name} cancelled")

    buffer = _assemble(plan, run)
    try:
        _verify(plan, run, buffer)
    except DecompressionError as e:
        incomplete = _write_incomplete(plan.output, buffer)
        raise DecompressionError(
            f"{e.message}. Incomplete output left at {incomplete}",
            failures=e.failures,
            incomplete_path=str(incomplete),
        ) from e

    partial = plan.output.with_name(plan.output.name + PARTIAL_SUFFIX)
    try:
        plan.output.parent.mkdir(parents=True, exist_ok=True)
        partial.write_bytes(buffer)
        partial.replace(plan.output)
    except OSError as e:
        _discard(partial)
        raise from_os_error(e, f"Failed to write {plan.output}") from e

    basic = plan.document.basic
    logger.info(f"Decompressed {basic.source.name} -> {plan.output} ({basic.source.size} bytes)")
    return plan.output


def reconstruct(plan: DecompressPlan, run: TaskRun) -> bytes:
    """In-memory counterpart of finalize_decompress. Writes nothing."""
    if run.cancelled:
        raise OperationCancelled(f"Decompression of {plan.document.basic.source.name} cancelled")
    buffer = _assemble(plan, run)
    _verify(plan, run, buffer)
    return bytes(buffer)


def _assemble(plan: DecompressPlan, run: TaskRun) -> bytearray:
    """Place each unit at its original offset in a buffer sized like the source."""
    buffer = bytearray(plan.document.basic.source.size)
    view = memoryview(buffer)
    for task in plan.tasks:
        data = run.slots[task.slot]
        if data is not None:
            view[task.original_offset : task.original_offset + task.original_length] = data
    return buffer


def _verify(plan: DecompressPlan, run: TaskRun, buffer: bytearray) -> None:
    if run.errors:
        failures = sorted({unit for e in run.errors if isinstance(e, DecompressionError) for unit in e.failures})
        units = ", ".join(f"(row_group={rg}, column={col})" for rg, col in failures)
        first = run.errors[0]
        raise DecompressionError(
            f"{len(run.errors)} unit(s) failed: {units or first.message}",
            failures=failures,
        )

    digest = hashlib.new(CHECKSUM_ALGORITHM, buffer).hexdigest()
    if digest != plan.document.basic.source.sha256:
        raise DecompressionError("Reconstructed file digest does not match the source digest")


def _write_incomplete(output: Path, buffer: bytearray) -> Path:
    incomplete = output.with_name(output.name + INCOMPLETE_SUFFIX)
    try:
        incomplete.parent.mkdir(parents=True, exist_ok=True)
        incomplete.write_bytes(buffer)
    except OSError as e:
        raise from_os_error(e, f"Failed to write {incomplete}") from e
    logger.warning(f"Reconstruction failed, partial output left at {incomplete}")
    return incomplete


def _discard(path: Path) -> None:
    if path.exists():
        path.unlink()
