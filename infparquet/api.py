"""High-level convenience API for infparquet.

Operations:
    compress: Parquet file -> blob + sidecar metadata document
    decompress: sidecar + blob -> byte-identical Parquet file
    list_metadata: human-readable summary of a sidecar
    query: filter a sidecar with ``SELECT * WHERE ...``
    define_custom / set_custom / load_custom_definitions: add custom metadata
        to an existing sidecar

Output naming (for a source ``data.parquet``):
    - ``<output_dir>/data.parquet.infp``: compressed blob
    - ``<output_dir>/data.parquet.infp.json``: sidecar document
"""

from collections.abc import Iterable
from pathlib import Path

from infparquet._codec import get_codec
from infparquet._constants import OP_COMPRESS, OP_DECOMPRESS
from infparquet._exceptions import InfParquetError, OperationCancelled
from infparquet._logging import get_logger
from infparquet._metadata import add_custom, load, remove, resolve_metadata_path, save, summarize
from infparquet._parallel import ProgressTracker, TaskRun, run_tasks
from infparquet._types import (
    CompressionOutcome,
    CompressOptions,
    CompressPlan,
    CustomValue,
    DecompressPlan,
    MetadataDocument,
    ParquetLayout,
    ProgressObserver,
    QueryResult,
)
from infparquet.custom import BatchReport, CustomDefinition, TableSource, define, define_batch, load_definitions
from infparquet.execute import execute
from infparquet.finalize import assemble_compression, finalize_compress, finalize_decompress, reconstruct
from infparquet.plan import compress_options, decompress_options, plan_compress, plan_decompress
from infparquet.query import evaluate, parse

logger = get_logger(__name__)

Definitions = str | Path | Iterable[CustomDefinition]


def compress(
    input: str | Path,
    output_dir: str | Path,
    level: int = 5,
    workers: int = 0,
    include_basic_metadata: bool = True,
    custom_definitions: Definitions | None = None,
    observer: ProgressObserver | None = None,
    progress: bool = True,
) -> Path:
    """Compress every column chunk of a Parquet file.

    Any sidecar left at the target by an earlier run is removed before work
    starts, so a failed or cancelled run never leaves a loadable document.

    Args:
        input: Source Parquet file
        output_dir: Directory for blob and sidecar (created if missing)
        level: Codec level 1-9
        workers: Worker threads, 0 = available parallelism
        include_basic_metadata: Keep per-chunk footer statistics in the sidecar
        custom_definitions: Definitions file, or CustomDefinition items, evaluated
            against the source and stored as custom metadata. Failing items are
            logged and skipped.
        observer: Progress callback, return False to cancel
        progress: Show progress bar

    Returns:
        Path to the sidecar document

    Raises:
        InvalidParameterError: Bad level or worker count
        CompressionError: A chunk failed to compress
        OperationCancelled: Observer requested cancellation

    Example:
        >>> sidecar = infparquet.compress("data.parquet", "out/", level=9)
        >>> infparquet.query(sidecar, "SELECT * WHERE num_rows > 1000")
    """
    options = compress_options(
        level=level,
        workers=workers,
        include_basic_metadata=include_basic_metadata,
    )
    definitions = _resolve_definitions(custom_definitions)

    plan = plan_compress(input, output_dir, options)
    if plan.metadata_path is not None and remove(plan.metadata_path):
        logger.warning(f"Removed stale metadata document {plan.metadata_path}")

    outcome = _run_compress(plan, observer, progress)

    custom = {}
    if definitions:
        document, report = define_batch(MetadataDocument(basic=outcome.basic), definitions, plan.layout.path)
        if not report.ok:
            logger.warning(report.summary())
        custom = dict(document.custom)

    return finalize_compress(plan, outcome, custom)


def compress_layout(
    layout: ParquetLayout,
    options: CompressOptions | None = None,
    observer: ProgressObserver | None = None,
    progress: bool = False,
) -> CompressionOutcome:
    """Compress the chunks of an already-read layout in memory.

    Nothing is written. The outcome holds BasicMetadata plus the compressed
    payloads in blob order; ``outcome.write_blob(path)`` persists them.
    """
    plan = plan_compress(layout, None, options)
    return _run_compress(plan, observer, progress)


def decompress(
    metadata_location: str | Path,
    output_file: str | Path,
    workers: int = 0,
    observer: ProgressObserver | None = None,
    progress: bool = True,
) -> Path:
    """Rebuild the original Parquet file from a sidecar and its blob.

    Every unit is attempted even after a failure. On failure the partial
    reconstruction is left at ``<output_file>.incomplete``.

    Args:
        metadata_location: Sidecar document, or the directory holding it
        output_file: Destination, must not exist
        workers: Worker threads, 0 = available parallelism
        observer: Progress callback, return False to cancel
        progress: Show progress bar

    Returns:
        Path to the reconstructed file

    Raises:
        DecompressionError: Listing every failing (row_group_index, column_index)
        OperationCancelled: Observer requested cancellation
    """
    options = decompress_options(workers=workers)
    plan = plan_decompress(metadata_location, output_file)
    run = _run_decompress(plan, options.workers, observer, progress)
    return finalize_decompress(plan, run)


def list_metadata(metadata_location: str | Path) -> str:
    """Human-readable summary of a sidecar document. Read-only."""
    return summarize(load(metadata_location))


def query(metadata_location: str | Path, text: str) -> QueryResult:
    """Filter a sidecar document with ``SELECT * [WHERE predicate]``.

    Errors are reported in the result (``success=False``, error code in the
    message) so they stay distinct from an empty match.

    Example:
        >>> result = infparquet.query("out/", "SELECT * WHERE price.max > 100")
        >>> result.matching_row_groups
        ('row_group_0', 'row_group_2')
    """
    try:
        document = load(metadata_location)
        return evaluate(document, parse(text))
    except InfParquetError as e:
        logger.debug(f"Query failed: {e}")
        return QueryResult(success=False, message=str(e))


def define_custom(
    metadata_location: str | Path,
    name: str,
    query: str,
    source: TableSource | None = None,
) -> MetadataDocument:
    """Evaluate a derivation query and store the result in the sidecar.

    Args:
        metadata_location: Sidecar document, or the directory holding it
        name: Custom metadata name. An existing item is overwritten.
        query: Derivation query, e.g. ``SELECT COUNT(*) FROM data``
        source: Row data to evaluate against. Defaults to the recorded source
            file, or a reconstruction from the blob when it is gone.

    Returns:
        The saved document
    """
    metadata_path = resolve_metadata_path(metadata_location)
    document = load(metadata_path)
    document = define(document, name, query, source if source is not None else _open_source(document, metadata_path))
    save(document, metadata_path)
    return document


def set_custom(metadata_location: str | Path, name: str, value: CustomValue) -> MetadataDocument:
    """Store a literal value as custom metadata in the sidecar."""
    metadata_path = resolve_metadata_path(metadata_location)
    document = add_custom(load(metadata_path), name, value)
    save(document, metadata_path)
    return document


def load_custom_definitions(
    metadata_location: str | Path,
    definitions: Definitions,
    source: TableSource | None = None,
) -> BatchReport:
    """Apply a batch of definitions to an existing sidecar.

    Successful items are saved even when others fail; the report carries
    the status of each item.
    """
    metadata_path = resolve_metadata_path(metadata_location)
    document = load(metadata_path)
    items = _resolve_definitions(definitions)

    table_source = source if source is not None else _open_source(document, metadata_path)
    document, report = define_batch(document, items, table_source)
    if report.succeeded:
        save(document, metadata_path)
    return report


def _run_compress(plan: CompressPlan, observer: ProgressObserver | None, progress: bool) -> CompressionOutcome:
    """Run all compress tasks, stopping at the first failure."""
    codec = get_codec(plan.options.codec)
    tracker = ProgressTracker(
        OP_COMPRESS,
        total_units=len(plan.tasks),
        total_row_groups=len(plan.layout.row_groups),
        observer=observer,
        progress=progress,
    )
    run = run_tasks(plan.tasks, lambda task: execute(task, codec), tracker, plan.options.workers, stop_on_error=True)

    if run.errors:
        raise run.errors[0]
    if run.cancelled:
        raise OperationCancelled(
            f"Compression of {plan.source.name} cancelled after {tracker.completed}/{len(plan.tasks)} units"
        )
    return assemble_compression(plan, run.slots)


def _run_decompress(
    plan: DecompressPlan,
    workers: int,
    observer: ProgressObserver | None,
    progress: bool,
) -> TaskRun:
    """Run all decompress tasks. Failures are collected, not fatal."""
    codec = get_codec(plan.document.basic.codec.name)
    tracker = ProgressTracker(
        OP_DECOMPRESS,
        total_units=len(plan.tasks),
        total_row_groups=plan.document.basic.row_group_count,
        observer=observer,
        progress=progress,
    )
    return run_tasks(plan.tasks, lambda task: execute(task, codec), tracker, workers, stop_on_error=False)


def _resolve_definitions(definitions: Definitions | None) -> list[CustomDefinition]:
    if definitions is None:
        return []
    if isinstance(definitions, str | Path):
        return load_definitions(definitions)
    return list(definitions)


def _open_source(document: MetadataDocument, metadata_path: Path) -> TableSource:
    """Recorded source path if still intact, else bytes rebuilt from the blob."""
    recorded = Path(document.basic.source.path)
    if recorded.is_file() and recorded.stat().st_size == document.basic.source.size:
        return recorded

    logger.info(f"Source {recorded} unavailable, reconstructing from {document.basic.blob_name}")
    plan = plan_decompress(metadata_path)
    run = _run_decompress(plan, workers=0, observer=None, progress=False)
    return reconstruct(plan, run)
