from __future__ import annotations

from typing import Any, Optional

from ._io import copy_bytes
from .buffer import Buffer, Machine, WriteBuffer, describe
from .context import Context
from .errors import ReadOnlyError

__all__ = ["Stream", "new_stream"]


class Stream:
    """
    A bidirectional command handle for the middle of a pipeline.

    read() reads stdout, write() feeds stdin and close() closes stdin. There
    is no waiting on close: copy() reads every stage to the end, so it
    observes completion itself.
    """

    def __init__(self, buf: Buffer):
        self._buf = buf

    def read(self, size: int = -1) -> bytes:
        return self._buf.read(size)

    def write(self, data: bytes) -> int:
        if not isinstance(self._buf, WriteBuffer):
            raise ReadOnlyError()
        return self._buf.write(data)

    def close(self) -> None:
        if isinstance(self._buf, WriteBuffer):
            self._buf.close()

    def read_from(self, src: Any) -> int:
        """Copy src into stdin, then close stdin."""
        if not isinstance(self._buf, WriteBuffer):
            raise ReadOnlyError()
        first: Optional[BaseException] = None
        written = 0
        try:
            written = copy_bytes(self._buf, src)
        except Exception as exc:
            first = exc
        try:
            self._buf.close()
        except Exception as exc:
            first = first or exc
        if first is not None:
            raise first
        return written

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return isinstance(self._buf, WriteBuffer)

    def __enter__(self) -> "Stream":
        return self

    def __exit__(self, *args):
        self.close()

    def __str__(self) -> str:
        return describe(self._buf)


def new_stream(ctx: Context, m: Machine, *args: str) -> Stream:
    """
    Create a bidirectional command stream.

    Prefer new_reader or new_writer outside of copy() pipelines.
    """
    return Stream(m.command(ctx, *args))
