from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from ._io import copy_bytes, drain
from .buffer import Buffer, Machine, WriteBuffer, describe
from .context import Context
from .errors import BufferClosedError, ReadOnlyError

__all__ = ["Writer", "new_writer"]

logger = logging.getLogger(__name__)


class _ReadOnlyBuffer:
    """Stands in for a buffer that accepts no input."""

    def __init__(self, buf: Buffer):
        self._buf = buf

    def read(self, size: int = -1) -> bytes:
        return self._buf.read(size)

    def write(self, data: bytes) -> int:
        raise ReadOnlyError()

    def __str__(self) -> str:
        return describe(self._buf)


class Writer:
    """
    A write-only command handle that waits for the command on close().

    The command starts on the first write(). At that point a background
    thread begins draining the command's output so it never blocks on a full
    stdout pipe. close() closes stdin, then waits for that thread and raises
    the command's failure, if any. If close() is called before any write(),
    the command never starts.
    """

    def __init__(self, buf: Any):
        self._buf = buf
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._err: Optional[BaseException] = None
        self._started = False
        self._closed = False

    def _drain(self) -> None:
        err: Optional[BaseException] = None
        try:
            drain(self._buf)
        except Exception as exc:
            logger.debug("drain of %s failed: %s", describe(self._buf), exc)
            err = exc
        self._err = err
        self._done.set()

    def _wait(self) -> Optional[BaseException]:
        self._done.wait()
        return self._err

    def _start(self) -> None:
        # Caller holds self._lock.
        if self._closed:
            raise BufferClosedError()
        if not self._started:
            self._started = True
            threading.Thread(
                target=self._drain,
                name=f"drain {describe(self._buf)}",
                daemon=True,
            ).start()

    def _close_input(self) -> None:
        close = getattr(self._buf, "close", None)
        if close is not None:
            close()

    def write(self, data: bytes) -> int:
        with self._lock:
            self._start()
        return self._buf.write(data)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            started = self._started

        if not started:
            return
        self._close_input()
        err = self._wait()
        if err is not None:
            raise err

    def read_from(self, src: Any) -> int:
        """
        Copy src into the command, then close stdin and wait for it to finish.

        This is the fast path used by copy(): callers never need to remember
        to close the writer after copying into it. The first error wins.
        """
        with self._lock:
            self._start()

        first: Optional[BaseException] = None
        written = 0
        try:
            written = copy_bytes(self._buf, src)
        except Exception as exc:
            first = exc
        try:
            self._close_input()
        except Exception as exc:
            first = first or exc
        err = self._wait()
        with self._lock:
            self._closed = True
        first = first or err
        if first is not None:
            raise first
        return written

    @property
    def closed(self) -> bool:
        return self._closed

    def writable(self) -> bool:
        return True

    def __enter__(self) -> "Writer":
        return self

    def __exit__(self, *args):
        self.close()

    def __str__(self) -> str:
        return describe(self._buf)


def new_writer(ctx: Context, m: Machine, *args: str) -> Writer:
    """
    Create a write-only command that waits for completion on close().

    Commands that do not accept input produce a Writer whose writes raise
    ReadOnlyError.
    """
    buf = m.command(ctx, *args)
    if not isinstance(buf, WriteBuffer):
        return Writer(_ReadOnlyBuffer(buf))
    return Writer(buf)
