from __future__ import annotations

from typing import Any

from .config import get_settings


def chunk_size() -> int:
    return get_settings().copy_chunk_size


def write_all(dst: Any, data: bytes) -> int:
    """Write every byte of data to dst, retrying short writes."""
    total = 0
    while total < len(data):
        n = dst.write(data[total:] if total else data)
        if n is None:
            # Buffered writers return None once everything is accepted.
            n = len(data) - total
        if n == 0:
            raise BrokenPipeError("short write")
        total += n
    return total


def copy_bytes(dst: Any, src: Any) -> int:
    """Copy src to dst until src returns b"". Returns the number of bytes copied."""
    size = chunk_size()
    written = 0
    while True:
        chunk = src.read(size)
        if not chunk:
            return written
        written += write_all(dst, chunk)


def drain(src: Any) -> None:
    """Read src to end of stream, discarding the output."""
    size = chunk_size()
    while src.read(size):
        pass
