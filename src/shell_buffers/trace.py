"""
Command tracing.

The trace sink is process-wide. It discards everything until replaced with
set_trace() or configure(). read(), do() and run() write one line per
command to the sink at the moment the command is about to start.
"""

from __future__ import annotations

import shlex
import sys
import threading
from typing import IO, Mapping, Optional, Sequence

from .config import Settings, get_settings

__all__ = [
    "PrefixWriter",
    "command_string",
    "configure",
    "get_trace",
    "set_trace",
]


class _Discard:
    def write(self, text: str) -> int:
        return len(text)

    def flush(self) -> None:
        pass


class PrefixWriter:
    """A text writer that prefixes every line written to it, like set -x."""

    def __init__(self, prefix: str, out: IO[str]):
        self.prefix = prefix
        self.out = out
        self._lock = threading.Lock()

    def write(self, text: str) -> int:
        lines = text.splitlines(keepends=True)
        with self._lock:
            for line in lines:
                self.out.write(self.prefix + line)
            self.out.flush()
        return len(text)

    def flush(self) -> None:
        self.out.flush()


_lock = threading.Lock()
_sink: IO[str] = _Discard()


def get_trace() -> IO[str]:
    """Return the current trace sink."""
    with _lock:
        return _sink


def set_trace(sink: Optional[IO[str]]) -> None:
    """Replace the trace sink. None restores the discarding default."""
    global _sink
    with _lock:
        _sink = sink if sink is not None else _Discard()


def configure(settings: Optional[Settings] = None) -> None:
    """
    Install a trace sink according to settings.

    With SHELL_BUFFERS_TRACE enabled, commands are traced to stderr with
    the configured prefix; otherwise tracing is turned off.
    """
    settings = settings or get_settings()
    if settings.trace:
        set_trace(PrefixWriter(settings.trace_prefix, sys.stderr))
    else:
        set_trace(None)


def command_string(env: Optional[Mapping[str, str]], args: Sequence[str]) -> str:
    """Render a command as a shell would show it: sorted K=V pairs, then quoted args."""
    parts = [f"{k}={env[k]}" for k in sorted(env or {})]
    parts.append(shlex.join(args))
    return " ".join(parts)


def trace(label: str) -> None:
    label = label.rstrip("\n")
    if label:
        get_trace().write(label + "\n")
