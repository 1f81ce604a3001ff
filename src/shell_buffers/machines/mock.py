"""
A Machine for tests that records invocations and replays queued responses.

    m = MockMachine()
    m.returns(b"hello\\n", "echo")
    m.returns(b"Linux\\n", "uname", "-s")
    m.returns(fail(CommandError(code=1)))   # default for everything else

Responses are matched from most to least specific argument prefix. Each
pattern has a queue; once it is down to its last response, that response's
output is replayed for every later call.

For conditional behavior, register a handler with do():

    m.do(lambda ctx, *args: from_reader(io.BytesIO(b"Hello, " + args[1].encode())), "greet")

Every invocation is recorded as a Call with its arguments, environment and
the input written to it. Use calls() to read them, even through a Shell:

    sh = shell(m, "git")
    ...
    calls(sh, "git")  # every git invocation
"""

from __future__ import annotations

import io
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from ..buffer import Buffer, Machine, Unsheller, fail
from ..context import Context, envs
from ..trace import command_string

__all__ = ["Call", "MockMachine", "calls"]

Handler = Callable[..., Buffer]


@dataclass
class Call:
    """One recorded command invocation."""

    args: list[str]
    env: Optional[dict[str, str]] = None
    got: bytes = b""


def _matches(args: tuple[str, ...], pattern: tuple[str, ...]) -> bool:
    return args[: len(pattern)] == pattern


class _MockCommand:
    def __init__(
        self,
        machine: "MockMachine",
        call: Call,
        reader: Any,
        key: Optional[tuple[str, ...]] = None,
        capture: Optional[bytearray] = None,
    ):
        self._machine = machine
        self._call = call
        self._reader = reader
        self._key = key
        self._capture = capture
        self._lock = threading.Lock()
        self._input = bytearray()
        self._index: Optional[int] = None

    def read(self, size: int = -1) -> bytes:
        try:
            data = self._reader.read(size)
        except Exception:
            # The response stays queued; only clean output is replayed.
            self._record()
            raise
        if data:
            if self._capture is not None:
                self._capture += data
            return data
        if self._capture is not None:
            self._machine._remember(self._key, bytes(self._capture))
        self._record()
        return b""

    def write(self, data: bytes) -> int:
        with self._lock:
            self._input += data
        return len(data)

    def close(self) -> None:
        self._record()

    def _record(self) -> None:
        with self._lock:
            self._call.got = bytes(self._input)
            call = Call(list(self._call.args), self._call.env, self._call.got)
            self._index = self._machine._record(call, self._index)

    def __str__(self) -> str:
        return command_string(self._call.env, self._call.args)


class MockMachine:
    """
    A Machine that records calls and returns canned responses.

    It also reports a settable OS and architecture (empty means "probe for
    it") and exposes a dict filesystem through fs().
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: list[Call] = []
        self._responses: dict[tuple[str, ...], list[Any]] = {}
        self._captured: dict[tuple[str, ...], bytes] = {}
        self._handlers: dict[tuple[str, ...], Handler] = {}
        self._fs: Any = {}
        self._os = ""
        self._arch = ""

    @property
    def calls(self) -> list[Call]:
        """A snapshot of every recorded invocation."""
        with self._lock:
            return list(self._calls)

    def fs(self) -> Any:
        with self._lock:
            return self._fs

    def set_fs(self, fs: Any) -> None:
        with self._lock:
            self._fs = fs

    def os(self, ctx: Context) -> str:
        with self._lock:
            return self._os

    def set_os(self, name: str) -> None:
        with self._lock:
            self._os = name

    def arch(self, ctx: Context) -> str:
        with self._lock:
            return self._arch

    def set_arch(self, arch: str) -> None:
        with self._lock:
            self._arch = arch

    def returns(self, response: Union[bytes, str, Any], *pattern: str) -> None:
        """
        Queue a response for commands starting with pattern.

        Args:
            response: Output as bytes or str, or any object with read()
                      (including a Buffer such as fail(err)).
            *pattern: Argument prefix to match. Empty matches every command.
        """
        if isinstance(response, str):
            response = response.encode()
        if isinstance(response, bytes):
            response = io.BytesIO(response)
        key = tuple(pattern)
        with self._lock:
            queue = self._responses.get(key)
            if queue is not None:
                if self._captured.pop(key, None) is not None:
                    # A replayed response is replaced, not queued behind.
                    self._responses[key] = [response]
                else:
                    queue.append(response)
                return
            self._responses[key] = [response]
        self.do(self._queue_handler(key), *pattern)

    def _queue_handler(self, key: tuple[str, ...]) -> Handler:
        def handler(ctx: Context, *args: str) -> Buffer:
            capture = None
            with self._lock:
                queue = self._responses.get(key, [])
                if len(queue) > 1:
                    reader = queue.pop(0)
                    self._captured.pop(key, None)
                elif key in self._captured:
                    reader = io.BytesIO(self._captured[key])
                elif queue:
                    reader = queue[0]
                    capture = bytearray()
                else:
                    reader = io.BytesIO()
            call = Call(list(args), envs(ctx))
            return _MockCommand(self, call, reader, key, capture)

        return handler

    def do(self, fn: Handler, *pattern: str) -> None:
        """
        Handle commands starting with pattern by calling fn(ctx, *args).

        Replaces any handler registered for the same pattern. With no pattern,
        fn handles every command that nothing more specific matches.
        """
        with self._lock:
            self._handlers[tuple(pattern)] = fn

    def _remember(self, key: tuple[str, ...], output: bytes) -> None:
        with self._lock:
            self._captured[key] = output

    def _record(self, call: Call, index: Optional[int]) -> int:
        with self._lock:
            if index is None:
                self._calls.append(call)
                return len(self._calls) - 1
            self._calls[index] = call
            return index

    def command(self, ctx: Context, *args: str) -> Buffer:
        if not args:
            return fail(ValueError("no command given"))
        best: Optional[Handler] = None
        best_len = -1
        with self._lock:
            for pattern, fn in self._handlers.items():
                if len(pattern) > best_len and _matches(args, pattern):
                    best, best_len = fn, len(pattern)
        if best is not None:
            return best(ctx, *args)
        return _MockCommand(self, Call(list(args), envs(ctx)), io.BytesIO())

    def __repr__(self) -> str:
        return "MockMachine()"


def calls(m: Machine, *pattern: str) -> list[Call]:
    """
    Return the calls recorded by m, optionally only those starting with pattern.

    Shells are unwrapped until a MockMachine is found; any other machine
    yields an empty list.
    """
    while not isinstance(m, MockMachine):
        inner = m.unshell() if isinstance(m, Unsheller) else None
        if inner is None or inner is m:
            return []
        m = inner
    recorded = m.calls
    if not pattern:
        return recorded
    key = tuple(pattern)
    return [c for c in recorded if _matches(tuple(c.args), key)]
