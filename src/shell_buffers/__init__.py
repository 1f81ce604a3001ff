"""
Command buffers: run commands as streams and wire them into pipelines.

Usage:
    from shell_buffers import background, copy, new_reader, new_stream, new_writer, read, shell
    from shell_buffers.machines import LocalMachine

    ctx = background()
    sh = shell(LocalMachine(), "echo", "tr", "tee", "git")

    # Capture output, like $(...)
    version = read(ctx, sh, "git", "describe")

    # Pipelines: echo hello world | tr a-z A-Z | tee out.txt
    copy(
        new_writer(ctx, sh, "tee", "out.txt"),
        new_reader(ctx, sh, "echo", "hello world"),
        new_stream(ctx, sh, "tr", "a-z", "A-Z"),
    )

    # Commands that are not routed fail as not found
    try:
        read(ctx, sh, "cat", "/etc/passwd")
    except CommandError as e:
        assert not_found(e)
"""

from __future__ import annotations

import logging

from .buffer import (
    ArchMachine,
    AttachBuffer,
    Buffer,
    FSMachine,
    LogBuffer,
    Machine,
    MachineFunc,
    OSMachine,
    ShutdownMachine,
    Unsheller,
    WriteBuffer,
    attach,
    describe,
    fail,
    from_reader,
    log,
    shutdown,
)
from .config import Settings, get_settings, set_settings
from .context import Context, background, envs, unset_env, with_env, without_env
from .errors import (
    BufferClosedError,
    CommandError,
    ReadOnlyError,
    contains,
    iter_errors,
    not_found,
)
from .pipeline import CopyError, CopyPolicy, StageResult, copy, copy_async
from .probe import get_arch, get_os, getenv, map_architecture, probe_read
from .reader import Reader, new_reader
from .run import do, do_async, read, read_async, run
from .shell import Shell, handle, handle_func, shell, unshell
from .stream import Stream, new_stream
from .trace import PrefixWriter, configure, get_trace, set_trace
from .writer import Writer, new_writer

__version__ = "0.1.0"

__all__ = [
    # contracts
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
    # context
    "Context",
    "background",
    "envs",
    "with_env",
    "without_env",
    "unset_env",
    # errors
    "CommandError",
    "BufferClosedError",
    "ReadOnlyError",
    "contains",
    "iter_errors",
    "not_found",
    # wrappers
    "Reader",
    "Writer",
    "Stream",
    "new_reader",
    "new_writer",
    "new_stream",
    # pipelines
    "copy",
    "copy_async",
    "CopyError",
    "CopyPolicy",
    "StageResult",
    # running
    "read",
    "do",
    "run",
    "read_async",
    "do_async",
    # routing
    "Shell",
    "shell",
    "handle",
    "handle_func",
    "unshell",
    # probes
    "probe_read",
    "get_os",
    "get_arch",
    "getenv",
    "map_architecture",
    # tracing and settings
    "PrefixWriter",
    "configure",
    "get_trace",
    "set_trace",
    "Settings",
    "get_settings",
    "set_settings",
    "__version__",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
