"""Shared transfer identity and chunk arithmetic."""

import hashlib
import math
from dataclasses import dataclass


@dataclass(frozen=True)
class ChunkSpan:
    """
    Byte range of one chunk inside a file.
    """
    index: int
    offset: int
    length: int


def derive_transfer_id(name: str, size: int, mtime_ms: int) -> str:
    """
    Derive the TransferId of a source file from its immutable properties.

    The id depends only on the original file's name, byte size and
    last-modified time, so compressing the file before upload does not
    change it. The hex digest doubles as a safe directory name on the server.

    Args:
        name: Original file name (no directory part)
        size: Original size in bytes
        mtime_ms: Last-modified timestamp in milliseconds

    Returns:
        64 character lowercase hex string
    """
    key = f"{name}-{size}-{mtime_ms}"
    return hashlib.sha256(key.encode('utf-8')).hexdigest()


def total_chunks(file_size: int, chunk_size: int) -> int:
    """
    Number of chunks needed for a file.

    A zero-byte file still travels as one empty chunk.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if file_size < 0:
        raise ValueError("file_size must not be negative")
    return max(1, math.ceil(file_size / chunk_size))


def chunk_span(index: int, file_size: int, chunk_size: int) -> ChunkSpan:
    """Byte range for chunk `index`; only the last chunk may be shorter."""
    count = total_chunks(file_size, chunk_size)
    if not 0 <= index < count:
        raise IndexError(f"chunk index {index} outside [0, {count})")
    offset = index * chunk_size
    length = min(chunk_size, file_size - offset)
    return ChunkSpan(index=index, offset=offset, length=max(0, length))


def is_valid_transfer_id(transfer_id: str) -> bool:
    """True if the id can be used as a single path component."""
    if not transfer_id or len(transfer_id) > 255:
        return False
    if transfer_id in ('.', '..'):
        return False
    return all(ch.isalnum() or ch in '-_.' for ch in transfer_id)
