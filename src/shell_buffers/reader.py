from __future__ import annotations

import threading

from .buffer import Buffer, Machine, describe
from .context import Context
from .errors import BufferClosedError

__all__ = ["Reader", "new_reader"]


class Reader:
    """
    A read-only command handle that stops the command early on close().

    The command starts on the first read(). If close() is called before any
    read(), the command never starts and its context is detached from ctx
    without being cancelled. Otherwise close() cancels the command's
    context and closes the buffer, without waiting for the command to exit.

    Example:
        with new_reader(ctx, m, "find", "/") as r:
            first = r.read(4096)  # closing here terminates find
    """

    def __init__(self, buf: Buffer, cancel=None, detach=None):
        self._buf = buf
        self._cancel = cancel
        self._detach = detach
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

    def read(self, size: int = -1) -> bytes:
        with self._lock:
            if self._closed:
                raise BufferClosedError()
            self._started = True
        return self._buf.read(size)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            started = self._started

        if not started:
            if self._detach is not None:
                self._detach()
            return
        if self._cancel is not None:
            self._cancel()
        close = getattr(self._buf, "close", None)
        if close is not None:
            close()

    @property
    def closed(self) -> bool:
        return self._closed

    def readable(self) -> bool:
        return True

    def __enter__(self) -> "Reader":
        return self

    def __exit__(self, *args):
        self.close()

    def __str__(self) -> str:
        return describe(self._buf)


def new_reader(ctx: Context, m: Machine, *args: str) -> Reader:
    """
    Create a read-only command that cancels on close().

    The machine receives a child of ctx, which close() cancels.
    """
    child, cancel = ctx.with_cancel()
    return Reader(m.command(child, *args), cancel=cancel, detach=child.detach)
