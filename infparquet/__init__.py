"""Re-compress Parquet column chunks and query their metadata.

infparquet stores every column chunk of a Parquet file compressed with a
stronger codec, next to a sidecar document describing the layout. The
sidecar can be listed, filtered and extended with custom metadata without
touching the compressed data.
"""

from infparquet._exceptions import ErrorCode, InfParquetError
from infparquet.api import (
    compress,
    compress_layout,
    decompress,
    define_custom,
    list_metadata,
    load_custom_definitions,
    query,
    set_custom,
)
from infparquet.execute import execute
from infparquet.finalize import assemble_compression, finalize_compress, finalize_decompress
from infparquet.plan import plan_compress, plan_decompress


def _get_version() -> str:
    """Get package version."""
    from importlib import metadata

    try:
        return metadata.version("infparquet")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__version__ = _get_version()

__all__ = [
    # High-level API
    "compress",
    "decompress",
    "list_metadata",
    "query",
    "define_custom",
    "set_custom",
    "load_custom_definitions",
    "compress_layout",
    # Low-level API (plan/execute/finalize)
    "plan_compress",
    "plan_decompress",
    "execute",
    "assemble_compression",
    "finalize_compress",
    "finalize_decompress",
    # Errors
    "ErrorCode",
    "InfParquetError",
]
