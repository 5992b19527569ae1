"""Constants for infparquet operations."""

FORMAT_VERSION = 1
"""Version of the sidecar metadata document layout."""

BLOB_SUFFIX = ".infp"
"""Suffix appended to the source file name for the compressed blob."""

METADATA_SUFFIX = ".infp.json"
"""Suffix appended to the source file name for the sidecar metadata document."""

PARTIAL_SUFFIX = ".partial"
"""Suffix for outputs still being written. Renamed on success."""

INCOMPLETE_SUFFIX = ".incomplete"
"""Suffix marking a reconstructed file that failed verification."""

TEMP_SUFFIX = ".tmp"
"""Suffix for atomic writes (temp file + replace)."""

DEFAULT_CODEC = "lzma"
"""Codec used when none is specified."""

MIN_LEVEL = 1
MAX_LEVEL = 9
DEFAULT_LEVEL = 5
"""Codec level bounds. 9 is the strongest compression."""

CHECKSUM_ALGORITHM = "sha256"
"""hashlib algorithm used for chunk and source checksums."""

READ_BLOCK_SIZE = 8 * 1024 * 1024
"""Block size for streaming the source through the whole-file digest."""

MAX_TABULAR_ROWS = 100
"""Largest tabular result a derivation query may store in a document."""

CUSTOM_DEFINITIONS_KEY = "custom_metadata"
"""Top-level key of a custom metadata definitions file."""

OP_COMPRESS = "compress"
OP_DECOMPRESS = "decompress"
"""Operation names reported to progress observers."""
