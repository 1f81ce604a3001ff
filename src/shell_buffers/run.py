"""
One-call helpers that create a command buffer and drive it to completion.

    read(ctx, m, "git", "describe")   -> "v1.2.0"  (output, trailing whitespace stripped)
    do(ctx, m, "git", "fetch")        -> None      (output discarded)
    run(ctx, m, "make", "test")       -> None      (output goes to the terminal)
"""

from __future__ import annotations

import asyncio
import io
import logging
import sys

from . import trace as _trace
from ._io import copy_bytes, drain
from .buffer import AttachBuffer, Buffer, LogBuffer, Machine, describe
from .context import Context
from .errors import CommandError, iter_errors

__all__ = ["read", "do", "run", "read_async", "do_async"]

logger = logging.getLogger(__name__)


def _attach_log(err: BaseException, log: io.BytesIO) -> None:
    data = log.getvalue()
    if not data:
        return
    for e in iter_errors(err):
        if isinstance(e, CommandError):
            e.log = data
            return


class _TextSink:
    """Adapts a text stream without a binary buffer (e.g. captured stdout)."""

    def __init__(self, stream):
        self._stream = stream

    def write(self, data: bytes) -> int:
        self._stream.write(bytes(data).decode(errors="replace"))
        return len(data)

    def flush(self) -> None:
        self._stream.flush()


def _binary(stream):
    buffer = getattr(stream, "buffer", None)
    return buffer if buffer is not None else _TextSink(stream)


def _start(buf: Buffer) -> None:
    label = describe(buf)
    logger.debug("running %s", label)
    _trace.trace(label)


def read(ctx: Context, m: Machine, *args: str) -> str:
    """
    Run a command and return its output with trailing whitespace removed.

    Like $(...) in a shell. For exact output, read the buffer directly.

    Raises:
        CommandError: If the command fails. Diagnostics are attached as log.
    """
    buf = m.command(ctx, *args)
    log = io.BytesIO()
    if isinstance(buf, LogBuffer):
        buf.log(log)
    _start(buf)
    out = io.BytesIO()
    try:
        copy_bytes(out, buf)
    except Exception as exc:
        _attach_log(exc, log)
        raise
    return out.getvalue().decode(errors="replace").rstrip()


def do(ctx: Context, m: Machine, *args: str) -> None:
    """
    Run a command for its side effects, discarding output.

    Raises:
        CommandError: If the command fails. Diagnostics are attached as log.
    """
    buf = m.command(ctx, *args)
    log = io.BytesIO()
    if isinstance(buf, LogBuffer):
        buf.log(log)
    _start(buf)
    try:
        drain(buf)
    except Exception as exc:
        _attach_log(exc, log)
        raise


def run(ctx: Context, m: Machine, *args: str) -> None:
    """
    Run a command attached to the controlling terminal.

    Buffers that cannot attach have their output streamed to stdout and their
    diagnostics to stderr. Errors raised here carry no log.
    """
    buf = m.command(ctx, *args)
    _start(buf)
    if isinstance(buf, AttachBuffer):
        buf.attach()
    if isinstance(buf, LogBuffer):
        buf.log(_binary(sys.stderr))
    out = _binary(sys.stdout)
    copy_bytes(out, buf)
    out.flush()


async def read_async(ctx: Context, m: Machine, *args: str) -> str:
    """Run read() in a worker thread."""
    return await asyncio.to_thread(read, ctx, m, *args)


async def do_async(ctx: Context, m: Machine, *args: str) -> None:
    """Run do() in a worker thread."""
    await asyncio.to_thread(do, ctx, m, *args)
