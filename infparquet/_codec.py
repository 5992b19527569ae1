"""Byte-block codecs and checksums.

The codec is a pure primitive: ``compress(data, level)`` and
``decompress(data)``. It knows nothing about chunks, offsets or ordering.
"""

import hashlib
import lzma
from typing import Protocol

from infparquet._constants import CHECKSUM_ALGORITHM, DEFAULT_CODEC, MAX_LEVEL, MIN_LEVEL, READ_BLOCK_SIZE
from infparquet._exceptions import InvalidParameterError


class Codec(Protocol):
    name: str

    def compress(self, data: bytes, level: int) -> bytes: ...

    def decompress(self, data: bytes) -> bytes: ...


class LzmaCodec:
    """XZ container with the LZMA2 filter, preset = level."""

    name = "lzma"

    def compress(self, data: bytes, level: int) -> bytes:
        if not MIN_LEVEL <= level <= MAX_LEVEL:
            raise InvalidParameterError(f"Codec level must be {MIN_LEVEL}-{MAX_LEVEL}, got {level}")
        return lzma.compress(data, format=lzma.FORMAT_XZ, preset=level)

    def decompress(self, data: bytes) -> bytes:
        return lzma.decompress(data, format=lzma.FORMAT_XZ)


_CODECS: dict[str, Codec] = {LzmaCodec.name: LzmaCodec()}


def register_codec(codec: Codec) -> None:
    """Make ``codec`` available by name to plans and workers."""
    _CODECS[codec.name] = codec


def get_codec(name: str = DEFAULT_CODEC) -> Codec:
    try:
        return _CODECS[name]
    except KeyError:
        raise InvalidParameterError(f"Unknown codec: {name!r} (available: {sorted(_CODECS)})") from None


def checksum(data: bytes) -> str:
    """Hex digest of ``data``. Defined for empty input."""
    return hashlib.new(CHECKSUM_ALGORITHM, data).hexdigest()


def file_checksum(path: str, block_size: int = READ_BLOCK_SIZE) -> str:
    """Hex digest of a whole file, streamed in blocks."""
    digest = hashlib.new(CHECKSUM_ALGORITHM)
    with open(path, "rb") as f:
        while block := f.read(block_size):
            digest.update(block)
    return digest.hexdigest()
