"""
Error types shared by buffers, wrappers, the pipeline copier and shells.

A command can fail in one of four ways:

    not found     CommandError with a cause and code 0: the command never ran.
    execution     CommandError with a non-zero code: it ran and failed.
    transport     any OSError raised while moving bytes (BrokenPipeError, ...).
    usage         BufferClosedError or ReadOnlyError: the caller misused a wrapper.
"""

from __future__ import annotations

import io
from typing import Iterator, Optional, Union

__all__ = [
    "CommandError",
    "BufferClosedError",
    "ReadOnlyError",
    "not_found",
    "contains",
    "iter_errors",
]


def _indent(text: str) -> str:
    return text.replace("\n", "\n\t")


class CommandError(Exception):
    """
    A command execution failure.

    Attributes:
        cause: The underlying exception, if any.
        code: The exit code. 0 does not mean success: a CommandError with a
              cause and code 0 means the command never started.
        log: Captured diagnostic output, usually stderr. Commands attached to
             the terminal have an empty log.
    """

    def __init__(
        self,
        cause: Optional[BaseException] = None,
        code: int = 0,
        log: bytes = b"",
    ):
        self.cause = cause
        self.code = code
        self.log = log
        super().__init__(cause, code)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            text = str(self.cause)
        else:
            text = f"exit status {self.code}"
        if self.log:
            log = self.log.decode(errors="replace")
            if log.endswith("\n"):
                log = log[:-1]
            text += "\n\t" + _indent(log)
        return text

    def __repr__(self) -> str:
        return f"CommandError(cause={self.cause!r}, code={self.code!r}, log={self.log!r})"


class BufferClosedError(ValueError):
    """Raised when reading from or writing to a closed buffer."""

    def __init__(self, message: str = "command: I/O on closed buffer"):
        super().__init__(message)


class ReadOnlyError(io.UnsupportedOperation):
    """Raised when writing to a command that does not accept input."""

    def __init__(self, message: str = "command: write to read-only buffer"):
        super().__init__(message)


def iter_errors(err: Optional[BaseException]) -> Iterator[BaseException]:
    """
    Yield err and every exception reachable from it.

    Follows explicit causes, implicit context, and the members of aggregate
    errors (anything exposing an ``exceptions`` sequence, such as CopyError).
    Each exception is yielded once.
    """
    seen: set[int] = set()
    pending: list[BaseException] = [err] if err is not None else []
    while pending:
        e = pending.pop()
        if id(e) in seen:
            continue
        seen.add(id(e))
        yield e
        members = getattr(e, "exceptions", None)
        if members:
            pending.extend(reversed(list(members)))
        if e.__context__ is not None and not e.__suppress_context__:
            pending.append(e.__context__)
        if e.__cause__ is not None:
            pending.append(e.__cause__)


def contains(
    err: Optional[BaseException],
    target: Union[BaseException, type],
) -> bool:
    """
    Report whether target occurs anywhere in err's error tree.

    Args:
        err: The error to search.
        target: An exception instance (matched by identity) or an exception
                class (matched by isinstance).
    """
    for e in iter_errors(err):
        if isinstance(target, type):
            if isinstance(e, target):
                return True
        elif e is target:
            return True
    return False


def not_found(err: Optional[BaseException]) -> bool:
    """
    True if err represents a command that never started.

    A CommandError is "not found" when it has a cause and its code is 0.
    The whole error tree is searched, so wrapped errors are recognised.
    """
    for e in iter_errors(err):
        if isinstance(e, CommandError):
            return e.cause is not None and e.code == 0
    return False
