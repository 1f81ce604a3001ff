"""
The Buffer and Machine contracts.

A Buffer represents one command's execution. Reading drives the command
forward and returns its output; b"" signals that the command has completed.
Buffers start on the first read or write, never at construction.

Optional capabilities are separate protocols, checked at the call site:

    WriteBuffer   write() feeds stdin, close() closes stdin (not stdout)
    AttachBuffer  attach() connects the command to the controlling terminal
    LogBuffer     log(sink) sets where diagnostics (stderr) go

A Machine turns arguments into Buffers. Optional Machine capabilities are
OSMachine, ArchMachine, FSMachine, ShutdownMachine and Unsheller.
"""

from __future__ import annotations

from typing import IO, Any, Callable, Optional, Protocol, runtime_checkable

from .context import Context

__all__ = [
    "Buffer",
    "WriteBuffer",
    "AttachBuffer",
    "LogBuffer",
    "Machine",
    "OSMachine",
    "ArchMachine",
    "FSMachine",
    "ShutdownMachine",
    "Unsheller",
    "MachineFunc",
    "attach",
    "log",
    "describe",
    "fail",
    "from_reader",
    "shutdown",
]


@runtime_checkable
class Buffer(Protocol):
    def read(self, size: int = -1) -> bytes: ...


@runtime_checkable
class WriteBuffer(Protocol):
    def read(self, size: int = -1) -> bytes: ...

    def write(self, data: bytes) -> int: ...

    def close(self) -> None: ...


@runtime_checkable
class AttachBuffer(Protocol):
    """
    A buffer that can run attached to the controlling terminal.

    After attach() returns, the buffer must be read exactly once; that read
    blocks until the command completes and returns b"".
    """

    def read(self, size: int = -1) -> bytes: ...

    def attach(self) -> None: ...


@runtime_checkable
class LogBuffer(Protocol):
    def read(self, size: int = -1) -> bytes: ...

    def log(self, sink: IO[bytes]) -> None: ...


@runtime_checkable
class Machine(Protocol):
    def command(self, ctx: Context, *args: str) -> Buffer: ...


@runtime_checkable
class OSMachine(Protocol):
    def command(self, ctx: Context, *args: str) -> Buffer: ...

    def os(self, ctx: Context) -> str: ...


@runtime_checkable
class ArchMachine(Protocol):
    def command(self, ctx: Context, *args: str) -> Buffer: ...

    def arch(self, ctx: Context) -> str: ...


@runtime_checkable
class FSMachine(Protocol):
    def command(self, ctx: Context, *args: str) -> Buffer: ...

    def fs(self) -> Any: ...


@runtime_checkable
class ShutdownMachine(Protocol):
    def command(self, ctx: Context, *args: str) -> Buffer: ...

    def shutdown(self, ctx: Context) -> None: ...


@runtime_checkable
class Unsheller(Protocol):
    def unshell(self) -> Optional[Machine]: ...


class MachineFunc:
    """
    Adapt a plain function into a Machine.

    Example:
        m = MachineFunc(lambda ctx, *args: from_reader(io.BytesIO(b"hi")))
    """

    def __init__(self, fn: Callable[..., Buffer]):
        self._fn = fn

    def command(self, ctx: Context, *args: str) -> Buffer:
        return self._fn(ctx, *args)

    def __repr__(self) -> str:
        return f"MachineFunc({getattr(self._fn, '__name__', self._fn)!r})"


class _Fail:
    def __init__(self, err: BaseException):
        self._err = err

    def read(self, size: int = -1) -> bytes:
        raise self._err

    def __repr__(self) -> str:
        return f"<fail: {self._err}>"


def fail(err: BaseException) -> Buffer:
    """Return a Buffer that raises err on every read."""
    return _Fail(err)


class _ReaderBuffer:
    def __init__(self, reader: Any):
        self._reader = reader

    def read(self, size: int = -1) -> bytes:
        return self._reader.read(size)

    def __str__(self) -> str:
        return describe(self._reader)


def from_reader(reader: Any) -> Buffer:
    """
    Wrap any object with read() as a read-only Buffer.

    Write and close capabilities of reader are hidden, so a BytesIO becomes a
    command that produces output but accepts no input.
    """
    return _ReaderBuffer(reader)


def attach(buf: Buffer) -> None:
    """Attach buf to the terminal if it supports it; otherwise do nothing."""
    if isinstance(buf, AttachBuffer):
        buf.attach()


def log(buf: Buffer, sink: IO[bytes]) -> None:
    """Send buf's diagnostics to sink if it supports it; otherwise do nothing."""
    if isinstance(buf, LogBuffer):
        buf.log(sink)


def describe(obj: Any) -> str:
    """
    Return a human-readable label for a buffer or pipeline endpoint.

    Objects defining their own __str__ describe themselves; anything else is
    labelled by type, e.g. "<BytesIO>".
    """
    if type(obj).__str__ is not object.__str__:
        return str(obj)
    return f"<{type(obj).__name__}>"


def shutdown(ctx: Context, m: Machine) -> None:
    """Release m's resources if it is a ShutdownMachine."""
    if isinstance(m, ShutdownMachine):
        m.shutdown(ctx)
