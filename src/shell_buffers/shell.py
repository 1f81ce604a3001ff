"""
Command routing.

A Shell is a Machine that routes each command to a handler by name, the way
a system shell resolves commands through $PATH. Unregistered commands fail
with a not-found CommandError unless the Shell was built with fallback.

Usage:
    sh = shell(LocalMachine(), "git", "tar")    # whitelist git and tar
    sh.handle("jq", jq_machine)                 # route jq elsewhere
    sh.read(ctx, "git", "describe")             # works
    sh.read(ctx, "cat", "file")                 # CommandError: command not found: cat

    sh.handle("make", sh.unshell())             # whitelist one more command later
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from . import probe
from .buffer import Buffer, FSMachine, Machine, MachineFunc, Unsheller, fail
from .buffer import shutdown as _shutdown
from .context import Context
from .errors import CommandError
from .reader import Reader, new_reader
from .run import do, read, run
from .stream import Stream, new_stream
from .writer import Writer, new_writer

__all__ = ["Shell", "shell", "handle", "handle_func", "unshell"]

logger = logging.getLogger(__name__)


class Shell:
    """
    A Machine that routes commands by name.

    Args:
        core: The machine one layer down. It handles commands only when they
              are routed to it (or when fallback is enabled), and it is what
              os(), arch() and fs() describe.
        fallback: Send unregistered commands to core instead of failing.
    """

    def __init__(self, core: Machine, fallback: bool = False):
        self._core = core
        self.fallback = fallback
        self._routes: dict[str, Machine] = {}
        self._routes_lock = threading.Lock()
        self._probe_lock = threading.Lock()
        self._probed = False
        self._os = ""
        self._arch = ""
        self._fs_lock = threading.Lock()
        self._fs_loaded = False
        self._fs: Any = None

    def handle(self, name: str, machine: Machine) -> "Shell":
        """Route command name to machine, replacing any previous route. Returns self."""
        with self._routes_lock:
            routes = dict(self._routes)
            routes[name] = machine
            # Dispatch reads self._routes without the lock; publish a new dict.
            self._routes = routes
        return self

    def handle_func(self, name: str, fn: Callable[..., Buffer]) -> "Shell":
        """Route command name to a plain function. Returns self."""
        return self.handle(name, MachineFunc(fn))

    def command(self, ctx: Context, *args: str) -> Buffer:
        if not args:
            return fail(ValueError("no command specified"))
        name = args[0]
        machine = self._routes.get(name)
        if machine is not None:
            return machine.command(ctx, *args)
        if self.fallback:
            return self._core.command(ctx, *args)
        logger.debug("command not found: %s", name)
        return fail(CommandError(LookupError(f"command not found: {name}")))

    def unshell(self) -> Machine:
        """
        Return the machine one layer down.

        Commands sent to it bypass this Shell's routing entirely, so use it
        deliberately: to whitelist a command (sh.handle("make", sh.unshell()))
        or to probe the underlying system.
        """
        return self._core

    def _probe(self, ctx: Context) -> None:
        with self._probe_lock:
            if not self._probed:
                self._os = probe.get_os(ctx, self._core)
                self._arch = probe.get_arch(ctx, self._core)
                self._probed = True

    def os(self, ctx: Context) -> str:
        """The core's operating system, detected once and cached."""
        self._probe(ctx)
        return self._os

    def arch(self, ctx: Context) -> str:
        """The core's architecture, detected once and cached."""
        self._probe(ctx)
        return self._arch

    def fs(self) -> Any:
        """The core's filesystem, if it provides one; looked up once and cached."""
        with self._fs_lock:
            if not self._fs_loaded:
                self._fs = self._core.fs() if isinstance(self._core, FSMachine) else None
                self._fs_loaded = True
            return self._fs

    def getenv(self, ctx: Context, key: str) -> str:
        """Look up key in ctx, then on the core, piercing nested shells."""
        return probe.getenv(ctx, self._core, key)

    def shutdown(self, ctx: Context) -> None:
        _shutdown(ctx, self._core)

    def read(self, ctx: Context, *args: str) -> str:
        return read(ctx, self, *args)

    def do(self, ctx: Context, *args: str) -> None:
        do(ctx, self, *args)

    def run(self, ctx: Context, *args: str) -> None:
        run(ctx, self, *args)

    def new_reader(self, ctx: Context, *args: str) -> Reader:
        return new_reader(ctx, self, *args)

    def new_writer(self, ctx: Context, *args: str) -> Writer:
        return new_writer(ctx, self, *args)

    def new_stream(self, ctx: Context, *args: str) -> Stream:
        return new_stream(ctx, self, *args)

    def __repr__(self) -> str:
        return f"Shell({self._core!r}, routes={sorted(self._routes)!r})"


def shell(core: Machine, *commands: str) -> Shell:
    """
    Create a Shell over core with the given commands routed straight to core.

    Example:
        sh = shell(LocalMachine(), "make", "git")
        sh.read(ctx, "git", "status")  # works
        sh.read(ctx, "cat", "file")    # command not found
    """
    sh = Shell(core)
    for name in commands:
        sh.handle(name, sh.unshell())
    return sh


def handle(m: Machine, name: str, handler: Machine) -> Shell:
    """
    Register handler for name on m.

    If m is already a Shell it is updated in place. Otherwise m is wrapped in
    a new Shell with fallback enabled, so m's other commands keep working.
    """
    if isinstance(m, Shell):
        return m.handle(name, handler)
    return Shell(m, fallback=True).handle(name, handler)


def handle_func(m: Machine, name: str, fn: Callable[..., Buffer]) -> Shell:
    return handle(m, name, MachineFunc(fn))


def unshell(m: Machine) -> Machine:
    """
    Return the machine one layer below m, or m itself if it has none.

    This removes a Shell's routing protection; see Shell.unshell.
    """
    if isinstance(m, Unsheller):
        inner: Optional[Machine] = m.unshell()
        if inner is not None:
            return inner
    return m
