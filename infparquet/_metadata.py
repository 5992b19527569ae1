"""Metadata store for infparquet sidecar documents.

One document per compressed output location. BasicMetadata is written once
by a compression run; custom items may be appended or overwritten later by
loading, mutating and saving the document again.
"""

import json
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from infparquet._constants import BLOB_SUFFIX, FORMAT_VERSION, METADATA_SUFFIX, TEMP_SUFFIX
from infparquet._exceptions import InvalidParameterError, MetadataError, NotFoundError, from_os_error
from infparquet._logging import get_logger
from infparquet._types import BasicMetadata, CustomMetadataItem, CustomValue, MetadataDocument, to_jsonable

logger = get_logger(__name__)


def metadata_path_for(output_dir: str | Path, source_name: str) -> Path:
    return Path(output_dir) / f"{source_name}{METADATA_SUFFIX}"


def blob_path_for(output_dir: str | Path, source_name: str) -> Path:
    return Path(output_dir) / f"{source_name}{BLOB_SUFFIX}"


def resolve_metadata_path(location: str | Path) -> Path:
    """Find the sidecar document for ``location``.

    Accepts the sidecar file itself or the output directory holding exactly
    one ``*.infp.json``.
    """
    if not str(location):
        raise InvalidParameterError("Metadata location is empty")

    path = Path(location)
    if path.is_dir():
        candidates = sorted(path.glob(f"*{METADATA_SUFFIX}"))
        if not candidates:
            raise NotFoundError(f"No *{METADATA_SUFFIX} document in {path}")
        if len(candidates) > 1:
            names = ", ".join(c.name for c in candidates)
            raise InvalidParameterError(f"Several metadata documents in {path}: {names}")
        return candidates[0]

    if not path.exists():
        raise NotFoundError(f"Metadata document not found: {path}")
    return path


def blob_path(document: MetadataDocument, metadata_path: str | Path) -> Path:
    """Blob belonging to a document. Always stored beside the sidecar."""
    return Path(metadata_path).parent / document.basic.blob_name


def load(location: str | Path) -> MetadataDocument:
    """Load and validate a sidecar document.

    Raises:
        NotFoundError: If no document exists at ``location``
        MetadataError: If the document is unreadable, malformed or inconsistent
    """
    path = resolve_metadata_path(location)

    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise MetadataError(f"Invalid JSON in {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise MetadataError(f"Metadata document is not UTF-8: {path}") from e
    except OSError as e:
        raise from_os_error(e, f"Failed to read {path}", MetadataError) from e

    if not isinstance(raw, dict):
        raise MetadataError(f"Metadata document must be a JSON object: {path}")

    version = raw.get("basic", {}).get("format_version") if isinstance(raw.get("basic"), dict) else None
    if isinstance(version, int) and not isinstance(version, bool):
        _check_format_version(version, path)

    try:
        document = MetadataDocument.model_validate(raw)
    except ValidationError as e:
        raise MetadataError(f"Malformed metadata document {path}: {e}") from e

    _check_format_version(document.basic.format_version, path)

    validate_basic(document.basic)
    _validate_custom(document)
    logger.debug(f"Loaded {path.name}: {len(document.basic.chunks)} chunks, {len(document.custom)} custom items")
    return document


def _check_format_version(version: int, path: Path) -> None:
    if version > FORMAT_VERSION:
        raise MetadataError(f"Unsupported format_version {version} in {path} (max {FORMAT_VERSION})")


def save(document: MetadataDocument, location: str | Path) -> Path:
    """Write ``document`` as JSON, atomically replacing any previous version."""
    if not str(location):
        raise InvalidParameterError("Metadata location is empty")

    path = Path(location)
    temp_path = path.with_name(path.name + TEMP_SUFFIX)
    content = json.dumps(to_jsonable(document), indent=4, ensure_ascii=False)

    try:
        temp_path.write_text(content, encoding="utf-8")
        temp_path.replace(path)
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise from_os_error(e, f"Failed to write metadata document {path}") from e

    logger.debug(f"Wrote {path}")
    return path


def remove(location: str | Path) -> bool:
    """Delete the document at ``location`` if present. Returns True if removed."""
    path = Path(location)
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise from_os_error(e, f"Failed to remove {path}") from e
    return True


def add_custom(
    document: MetadataDocument,
    name: str,
    value: CustomValue,
    query: str = "",
    computed_at: datetime | None = None,
) -> MetadataDocument:
    """Return a copy of ``document`` with ``name`` bound to ``value``.

    An existing item with the same name is overwritten in place.
    """
    name = name.strip() if name else ""
    if not name:
        raise InvalidParameterError("Custom metadata name must not be empty")

    try:
        item = CustomMetadataItem(
            name=name,
            query=query,
            value=value,
            computed_at=computed_at or datetime.now(UTC),
        )
    except ValidationError as e:
        raise InvalidParameterError(f"Unsupported value for custom metadata {name!r}: {e}") from e

    custom = dict(document.custom)
    custom[name] = item
    return document.model_copy(update={"custom": custom})


def validate_basic(basic: BasicMetadata) -> None:
    """Check ordering, size and blob-offset invariants of basic metadata.

    Raises:
        MetadataError: On the first violated invariant
    """
    if basic.row_group_count != len(basic.row_groups):
        raise MetadataError(f"row_group_count={basic.row_group_count} but {len(basic.row_groups)} row groups listed")
    if basic.column_count != len(basic.schema_columns):
        raise MetadataError(f"column_count={basic.column_count} but schema has {len(basic.schema_columns)} columns")

    expected = [(rg, col) for rg in range(basic.row_group_count) for col in range(basic.column_count)]
    actual = [chunk.key for chunk in basic.chunks]
    if actual != expected:
        raise MetadataError("Chunks are not strictly ordered by (row_group_index, column_index) without gaps")

    for position, summary in enumerate(basic.row_groups):
        if summary.index != position:
            raise MetadataError(f"Row group summary at position {position} has index {summary.index}")

    sizes = [0] * basic.row_group_count
    for chunk in basic.chunks:
        sizes[chunk.row_group_index] += chunk.original_length
    for summary, size in zip(basic.row_groups, sizes, strict=True):
        if summary.original_size != size:
            raise MetadataError(
                f"Row group {summary.index}: chunk lengths sum to {size}, expected {summary.original_size}"
            )

    cursor = 0
    for entry in (*basic.chunks, *basic.residuals):
        if entry.compressed_offset != cursor:
            raise MetadataError(f"Blob offset {entry.compressed_offset} is not contiguous (expected {cursor})")
        cursor += entry.compressed_length
    if cursor != basic.blob_size:
        raise MetadataError(f"Blob entries cover {cursor} bytes, blob_size is {basic.blob_size}")

    covered = sum(c.original_length for c in basic.chunks) + sum(r.original_length for r in basic.residuals)
    if covered != basic.source.size:
        raise MetadataError(f"Chunks and residuals cover {covered} bytes, source size is {basic.source.size}")

    # Non-empty original ranges must tile [0, source.size) exactly.
    cursor = 0
    entries = [e for e in (*basic.chunks, *basic.residuals) if e.original_length > 0]
    for entry in sorted(entries, key=lambda e: e.original_offset):
        if entry.original_offset != cursor:
            raise MetadataError(
                f"Original range at offset {entry.original_offset} (length {entry.original_length}) "
                f"leaves a gap or overlap (expected offset {cursor})"
            )
        cursor += entry.original_length
    for entry in (*basic.chunks, *basic.residuals):
        if entry.original_offset < 0 or entry.original_offset > basic.source.size:
            raise MetadataError(f"Original offset {entry.original_offset} lies outside the source file")


def _validate_custom(document: MetadataDocument) -> None:
    for key, item in document.custom.items():
        if not key or key != item.name:
            raise MetadataError(f"Custom metadata key {key!r} does not match item name {item.name!r}")


def summarize(document: MetadataDocument) -> str:
    """Human-readable listing of a document."""
    basic = document.basic
    ratio = basic.blob_size / basic.source.size if basic.source.size else 0.0
    lines = [
        f"File: {basic.source.name}",
        f"  Source size: {basic.source.size} bytes",
        f"  Compressed size: {basic.blob_size} bytes (ratio {ratio:.3f})",
        f"  Codec: {basic.codec.name} level {basic.codec.level}",
        f"  Rows: {basic.num_rows}",
        f"  Row groups: {basic.row_group_count}",
        f"  Columns: {basic.column_count}",
        f"  Format version: {basic.format_version}",
        f"  Created at: {basic.created_at.isoformat()}",
        "Schema:",
    ]
    for index, column in enumerate(basic.schema_columns):
        logical = f" ({column.logical_type})" if column.logical_type else ""
        lines.append(f"  [{index}] {column.name}: {column.physical_type}{logical}")

    lines.append("Row groups:")
    for summary in basic.row_groups:
        chunks = basic.chunks[summary.index * basic.column_count : (summary.index + 1) * basic.column_count]
        compressed = sum(c.compressed_length for c in chunks)
        lines.append(
            f"  [{summary.index}] rows={summary.num_rows} size={summary.original_size} compressed={compressed}"
        )

    lines.append(f"Custom metadata: {len(document.custom)}")
    for item in document.custom.values():
        value = f"table[{len(item.value)} rows]" if isinstance(item.value, list) else repr(item.value)
        query = f"  <- {item.query}" if item.query else ""
        lines.append(f"  {item.name} = {value}{query}")

    return "\n".join(lines)
