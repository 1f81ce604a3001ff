"""
An in-memory Machine for tests and examples.

MemMachine implements echo, cat, tee and tr over a dict filesystem, so code
written against a Machine can be exercised without spawning processes. It
reports OS "linux" and architecture "amd64" on every host.

Usage:
    m = MemMachine()
    copy(new_writer(ctx, m, "tee", "greeting"), io.BytesIO(b"hello\\n"))
    read(ctx, m, "cat", "greeting")  # "hello"
"""

from __future__ import annotations

import codecs
import errno
import io
import threading
from typing import Optional

from ..buffer import Buffer, fail
from ..context import Context, envs
from ..errors import BufferClosedError, CommandError
from ..trace import command_string

__all__ = ["MemMachine", "expand_set"]


class _Output:
    """Fixed output, no input."""

    def __init__(self, data: bytes, label: str):
        self._data = io.BytesIO(data)
        self._label = label

    def read(self, size: int = -1) -> bytes:
        return self._data.read(size)

    def __str__(self) -> str:
        return self._label


class _Pipe:
    """
    Bytes written to the pipe come back out of read().

    read() blocks until data is available or the pipe is closed, and returns
    b"" once it is closed and empty.
    """

    def __init__(self, label: str):
        self._label = label
        self._cond = threading.Condition()
        self._buf = bytearray()
        self._closed = False

    def _feed(self, data: bytes) -> None:
        with self._cond:
            self._buf += data
            self._cond.notify_all()

    def write(self, data: bytes) -> int:
        with self._cond:
            if self._closed:
                raise BufferClosedError("write to closed pipe")
        self._feed(self._transform(bytes(data)))
        return len(data)

    def _transform(self, data: bytes) -> bytes:
        return data

    def _flush(self) -> bytes:
        return b""

    def close(self) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
        tail = self._flush()
        with self._cond:
            self._buf += tail
            self._cond.notify_all()

    def read(self, size: int = -1) -> bytes:
        with self._cond:
            while not self._buf and not self._closed:
                self._cond.wait()
            if size < 0 or size >= len(self._buf):
                data = bytes(self._buf)
                self._buf.clear()
            else:
                data = bytes(self._buf[:size])
                del self._buf[:size]
            return data

    def __str__(self) -> str:
        return self._label


class _Tee(_Pipe):
    def __init__(self, label: str, machine: "MemMachine", paths: list[str]):
        super().__init__(label)
        self._machine = machine
        self._paths = paths

    def _transform(self, data: bytes) -> bytes:
        for path in self._paths:
            self._machine._append(path, data)
        return data


class _Tr(_Pipe):
    def __init__(self, label: str, table: dict[int, str]):
        super().__init__(label)
        self._table = table
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._lock = threading.Lock()

    def _transform(self, data: bytes) -> bytes:
        with self._lock:
            text = self._decoder.decode(data)
        return text.translate(self._table).encode()

    def _flush(self) -> bytes:
        with self._lock:
            text = self._decoder.decode(b"", final=True)
        return text.translate(self._table).encode()


def expand_set(chars: str) -> str:
    """
    Expand tr-style ranges: "a-e" becomes "abcde".

    Descending ranges expand in descending order; a "-" at either end is
    taken literally.
    """
    out: list[str] = []
    i = 0
    while i < len(chars):
        if i + 2 < len(chars) and chars[i + 1] == "-":
            start, end = ord(chars[i]), ord(chars[i + 2])
            step = 1 if start <= end else -1
            out.extend(chr(c) for c in range(start, end + step, step))
            i += 3
        else:
            out.append(chars[i])
            i += 1
    return "".join(out)


def _translation(set1: str, set2: str) -> dict[int, str]:
    src, dst = expand_set(set1), expand_set(set2)
    if not dst:
        return {}
    # Like tr, a short second set is padded with its last character.
    return {ord(c): dst[min(i, len(dst) - 1)] for i, c in enumerate(src)}


class MemMachine:
    """
    A Machine backed by an in-memory filesystem.

    Args:
        files: Initial file contents keyed by path. The mapping is copied.
    """

    def __init__(self, files: Optional[dict[str, bytes]] = None):
        self._files: dict[str, bytes] = dict(files or {})
        self._lock = threading.Lock()

    def fs(self) -> dict[str, bytes]:
        """The live file mapping."""
        return self._files

    def os(self, ctx: Context) -> str:
        return "linux"

    def arch(self, ctx: Context) -> str:
        return "amd64"

    def _append(self, path: str, data: bytes) -> None:
        with self._lock:
            self._files[path] = self._files.get(path, b"") + data

    def command(self, ctx: Context, *args: str) -> Buffer:
        if not args:
            return fail(CommandError(ValueError("bad command: no command given")))
        label = command_string(envs(ctx), args)
        name = args[0]

        if name == "echo":
            return _Output((" ".join(args[1:]) + "\n").encode(), label)

        if name == "cat":
            if len(args) == 1:
                return _Pipe(label)
            parts = []
            with self._lock:
                for path in args[1:]:
                    if path not in self._files:
                        err = FileNotFoundError(errno.ENOENT, "no such file or directory", path)
                        return fail(CommandError(err, code=1))
                    parts.append(self._files[path])
            return _Output(b"".join(parts), label)

        if name == "tee":
            paths = list(args[1:])
            with self._lock:
                for path in paths:
                    self._files[path] = b""
            return _Tee(label, self, paths)

        if name == "tr":
            set1, set2 = (args[1], args[2]) if len(args) >= 3 else ("", "")
            return _Tr(label, _translation(set1, set2))

        return fail(CommandError(LookupError(f"command not found: {name}")))

    def __repr__(self) -> str:
        return f"MemMachine(files={sorted(self._files)!r})"
