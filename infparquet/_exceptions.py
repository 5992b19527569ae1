"""Exception classes for infparquet operations.

Every error carries an ``ErrorCode`` from a fixed taxonomy plus a
human-readable message. Callers that only need the category can inspect
``err.code`` instead of matching on the class.
"""

from enum import Enum


class ErrorCode(str, Enum):
    INVALID_PARAMETER = "InvalidParameter"
    NOT_FOUND = "NotFound"
    PERMISSION_DENIED = "PermissionDenied"
    RESOURCE_EXHAUSTION = "ResourceExhaustion"
    COMPRESSION_ERROR = "CompressionError"
    DECOMPRESSION_ERROR = "DecompressionError"
    METADATA_ERROR = "MetadataError"
    STRUCTURAL_READ_ERROR = "StructuralReadError"
    PARALLEL_PROCESSING_ERROR = "ParallelProcessingError"
    INVALID_QUERY = "InvalidQuery"
    WRITE_ERROR = "WriteError"
    CANCELLED = "Cancelled"


class InfParquetError(Exception):
    """Base exception for all infparquet errors."""

    code: ErrorCode = ErrorCode.PARALLEL_PROCESSING_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class InvalidParameterError(InfParquetError):
    """Bad level, worker count, empty name or empty path.

    Raised before any work starts.
    """

    code = ErrorCode.INVALID_PARAMETER


class NotFoundError(InfParquetError):
    """Missing source file, blob or metadata document."""

    code = ErrorCode.NOT_FOUND


class PermissionDeniedError(InfParquetError):
    code = ErrorCode.PERMISSION_DENIED


class ResourceExhaustionError(InfParquetError):
    code = ErrorCode.RESOURCE_EXHAUSTION


class CompressionError(InfParquetError):
    """A chunk failed to compress.

    Nothing is persisted for the run. ``unit`` is the
    ``(row_group_index, column_index)`` of the first failure, or None for
    a residual segment.
    """

    code = ErrorCode.COMPRESSION_ERROR

    def __init__(self, message: str, unit: tuple[int, int] | None = None) -> None:
        super().__init__(message)
        self.unit = unit


class DecompressionError(InfParquetError):
    """One or more units failed to decompress or verify.

    Raised when:
    - A stored checksum does not match the compressed bytes
    - The codec rejects a compressed slice
    - A decompressed unit has the wrong length
    - The reconstructed file digest differs from the source digest

    ``failures`` lists ``(row_group_index, column_index)`` for every failing
    chunk in ascending order. ``incomplete_path`` points at the partial
    output left on disk, if one was written.
    """

    code = ErrorCode.DECOMPRESSION_ERROR

    def __init__(
        self,
        message: str,
        failures: list[tuple[int, int]] | None = None,
        incomplete_path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.failures = failures or []
        self.incomplete_path = incomplete_path


class MetadataError(InfParquetError):
    """Metadata document is unreadable, malformed or inconsistent."""

    code = ErrorCode.METADATA_ERROR


class StructuralReadError(InfParquetError):
    """Source Parquet layout could not be read."""

    code = ErrorCode.STRUCTURAL_READ_ERROR


class ParallelProcessingError(InfParquetError):
    """Worker pool failure not attributable to a single unit."""

    code = ErrorCode.PARALLEL_PROCESSING_ERROR


class InvalidQueryError(InfParquetError):
    """Predicate or derivation query failed to parse or resolve."""

    code = ErrorCode.INVALID_QUERY


class WriteError(InfParquetError):
    code = ErrorCode.WRITE_ERROR


class OperationCancelled(InfParquetError):
    """Progress observer requested cancellation.

    In-flight units were allowed to finish. No valid output is claimed.
    """

    code = ErrorCode.CANCELLED


def from_os_error(
    err: BaseException,
    context: str,
    default: type[InfParquetError] = WriteError,
) -> InfParquetError:
    """Translate an OS-level failure into the taxonomy."""
    if isinstance(err, FileNotFoundError):
        return NotFoundError(f"{context}: {err}")
    if isinstance(err, PermissionError):
        return PermissionDeniedError(f"{context}: {err}")
    if isinstance(err, MemoryError):
        return ResourceExhaustionError(f"{context}: out of memory")
    return default(f"{context}: {err}")
