"""
Concurrent N-stage copying between command buffers.

    copy(dst, src)                  like shutil.copyfileobj, but closes dst
    copy(dst, src, mid1, mid2, ...) src | mid1 | mid2 | ... | dst

Every edge of the pipeline is copied by its own thread. When an edge's
reader reaches end of stream, or fails, its writer is closed so the next
stage always sees end of stream. All threads are joined before copy()
returns; failures from every edge are collected into one CopyError.
"""

from __future__ import annotations

import asyncio
import enum
import io
import logging
import sys
import threading
from dataclasses import dataclass, field
from typing import Any

from ._io import copy_bytes
from .buffer import describe
from .errors import iter_errors

__all__ = [
    "copy",
    "copy_async",
    "CopyError",
    "CopyPolicy",
    "StageResult",
]

logger = logging.getLogger(__name__)


class CopyPolicy(enum.Enum):
    """What copy() does with the other edges when one edge fails."""

    WAIT_ALL = "wait_all"
    """Let every edge run to its own end."""

    CANCEL_ON_ERROR = "cancel_on_error"
    """Close every endpoint as soon as one edge fails, so blocked edges unwind."""


@dataclass
class StageResult:
    """Outcome of copying one edge of a pipeline."""

    label: str
    written: int = 0
    errors: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def __str__(self) -> str:
        if self.ok:
            return f"{self.label}\n\t<success>"
        text = "\n".join(str(e) for e in self.errors)
        return f"{self.label}\n\t" + text.replace("\n", "\n\t")


class CopyError(Exception):
    """
    Raised by copy() when any edge fails.

    Attributes:
        written: Total bytes copied by the edges whose copy succeeded.
        results: One StageResult per edge, in pipeline order.

    Use ``err in copy_error`` (or errors.contains) to test whether a given
    exception instance or exception class occurred in any stage.
    """

    def __init__(self, results: list[StageResult], written: int = 0):
        self.results = results
        self.written = written
        super().__init__(self.exceptions)

    @property
    def exceptions(self) -> tuple[BaseException, ...]:
        return tuple(e for result in self.results for e in result.errors)

    def __contains__(self, target: Any) -> bool:
        for e in iter_errors(self):
            if e is self:
                continue
            if isinstance(target, type):
                if isinstance(e, target):
                    return True
            elif e is target:
                return True
        return False

    def __str__(self) -> str:
        return "\n\n".join(str(result) for result in self.results)


class _Counter:
    """Counts bytes read through it."""

    def __init__(self, reader: Any):
        self._reader = reader
        self.count = 0

    def read(self, size: int = -1) -> bytes:
        data = self._reader.read(size)
        self.count += len(data)
        return data


def _copy_edge(w: Any, r: Any) -> None:
    read_from = getattr(w, "read_from", None)
    if read_from is not None:
        read_from(r)
    else:
        copy_bytes(w, r)


def _std_streams() -> list:
    streams = [sys.stdout, sys.stderr]
    streams += [getattr(s, "buffer", None) for s in streams]
    return [s for s in streams if s is not None]


def _close(obj: Any) -> None:
    # In-memory buffers hold the pipeline's result and the standard streams
    # belong to the process; neither is closed.
    if isinstance(obj, (io.BytesIO, io.StringIO)):
        return
    if any(obj is s for s in _std_streams()):
        return
    close = getattr(obj, "close", None)
    if close is not None:
        close()


def copy(
    dst: Any,
    src: Any,
    *mid: Any,
    policy: CopyPolicy = CopyPolicy.WAIT_ALL,
) -> int:
    """
    Copy src through each mid stage into dst.

    Args:
        dst: Final writer. Closed when the last edge finishes, if closable.
        src: First reader.
        *mid: Interior stages, each readable and writable (see new_stream).
        policy: Whether a failing edge closes the others early.

    Returns:
        The sum of the bytes copied by every edge. Each edge counts the
        bytes it moved, so "data" through one mid stage returns 8.

    Raises:
        CopyError: If any edge failed. Every edge is still run to completion
                   and closed before this is raised. Its written attribute
                   sums the edges that copied successfully; a failed edge
                   counts 0.

    Note:
        Every edge closes its writer when it finishes, except io.BytesIO,
        io.StringIO and the process's standard streams. Closing those would
        discard the collected output or the terminal, so they stay open.
    """
    stages = [src, *mid, dst]
    results = [StageResult(label=describe(r)) for r in stages[:-1]]
    failed = threading.Event()
    lock = threading.Lock()

    def abort() -> None:
        # Close every endpoint so edges blocked on I/O unwind.
        for stage in stages:
            try:
                _close(stage)
            except Exception as exc:
                logger.debug("closing %s during abort: %s", describe(stage), exc)

    def run(index: int, r: Any, w: Any) -> None:
        counter = _Counter(r)
        errors: list[BaseException] = []
        copied = 0
        try:
            _copy_edge(w, counter)
            copied = counter.count
        except Exception as exc:
            errors.append(exc)
        finally:
            try:
                _close(w)
            except Exception as exc:
                errors.append(exc)
            result = results[index]
            with lock:
                result.written = copied
                result.errors = errors
        if errors:
            logger.debug("copy stage %d (%s) failed: %s", index, result.label, errors[0])
            if policy is CopyPolicy.CANCEL_ON_ERROR:
                with lock:
                    first = not failed.is_set()
                    failed.set()
                if first:
                    abort()

    threads = [
        threading.Thread(
            target=run,
            args=(i, stages[i], stages[i + 1]),
            name=f"copy {i}",
            daemon=True,
        )
        for i in range(len(stages) - 1)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    written = sum(result.written for result in results)
    if any(not result.ok for result in results):
        raise CopyError(results, written=written)
    return written


async def copy_async(
    dst: Any,
    src: Any,
    *mid: Any,
    policy: CopyPolicy = CopyPolicy.WAIT_ALL,
) -> int:
    """Run copy() in a worker thread."""
    return await asyncio.to_thread(copy, dst, src, *mid, policy=policy)
