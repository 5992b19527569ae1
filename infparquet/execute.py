"""Execute a single compress or decompress task.

Tasks are independent: each reads its own byte range, runs the codec and
returns the result for its slot. The worker pool in ``_parallel`` decides
how many run at once.
"""

import lzma

from infparquet._codec import Codec, checksum, get_codec
from infparquet._exceptions import (
    CompressionError,
    DecompressionError,
    InfParquetError,
    ResourceExhaustionError,
    from_os_error,
)
from infparquet._types import CompressedSlot, CompressTask, DecompressTask


def execute(task: CompressTask | DecompressTask, codec: Codec | None = None) -> CompressedSlot | bytes:
    """Execute one task.

    Args:
        task: CompressTask or DecompressTask
        codec: Codec override, defaults to the codec named by the task

    Returns:
        CompressedSlot for a CompressTask, original bytes for a DecompressTask

    Raises:
        CompressionError: Reading or compressing the source range failed
        DecompressionError: Checksum mismatch, corrupt stream or wrong length

    Example:
        >>> from concurrent.futures import ThreadPoolExecutor
        >>> with ThreadPoolExecutor(8) as pool:
        ...     slots = list(pool.map(execute, plan.tasks))
    """
    codec = codec or get_codec(task.codec)
    if isinstance(task, CompressTask):
        return _compress(task, codec)
    return _decompress(task, codec)


def describe_unit(task: CompressTask | DecompressTask) -> str:
    if task.column_index is None:
        offset = task.offset if isinstance(task, CompressTask) else task.original_offset
        return f"residual segment at offset {offset}"
    return f"row group {task.row_group_index} column {task.column_index}"


def _unit(task: CompressTask | DecompressTask) -> tuple[int, int] | None:
    if task.row_group_index is None or task.column_index is None:
        return None
    return (task.row_group_index, task.column_index)


def _compress(task: CompressTask, codec: Codec) -> CompressedSlot:
    if task.length == 0:
        return CompressedSlot(data=b"", checksum=checksum(b""))

    try:
        data = _read_range(task.src, task.offset, task.length)
        if len(data) != task.length:
            raise CompressionError(
                f"Short read for {describe_unit(task)}: expected {task.length} bytes, got {len(data)}",
                unit=_unit(task),
            )
        compressed = codec.compress(data, task.level)
    except InfParquetError:
        raise
    except MemoryError as e:
        raise ResourceExhaustionError(f"Out of memory compressing {describe_unit(task)}") from e
    except OSError as e:
        raise from_os_error(e, f"Failed to read {describe_unit(task)} from {task.src}", CompressionError) from e
    except Exception as e:
        raise CompressionError(f"Failed to compress {describe_unit(task)}: {e}", unit=_unit(task)) from e

    return CompressedSlot(data=compressed, checksum=checksum(compressed))


def _decompress(task: DecompressTask, codec: Codec) -> bytes:
    failures = [unit] if (unit := _unit(task)) else []

    try:
        data = _read_range(task.src, task.compressed_offset, task.compressed_length)
    except OSError as e:
        raise from_os_error(e, f"Failed to read {describe_unit(task)} from {task.src}", DecompressionError) from e

    if checksum(data) != task.checksum:
        raise DecompressionError(f"Checksum mismatch for {describe_unit(task)}", failures=failures)

    if task.original_length == 0 and task.compressed_length == 0:
        return b""

    try:
        original = codec.decompress(data)
    except MemoryError as e:
        raise ResourceExhaustionError(f"Out of memory decompressing {describe_unit(task)}") from e
    except (lzma.LZMAError, ValueError, EOFError) as e:
        raise DecompressionError(f"Corrupt data for {describe_unit(task)}: {e}", failures=failures) from e

    if len(original) != task.original_length:
        raise DecompressionError(
            f"Length mismatch for {describe_unit(task)}: expected {task.original_length}, got {len(original)}",
            failures=failures,
        )
    return original


def _read_range(src: str, offset: int, size: int) -> bytes:
    """Read ``size`` bytes at ``offset`` from a local file."""
    with open(src, "rb") as f:
        f.seek(offset)
        return f.read(size)
