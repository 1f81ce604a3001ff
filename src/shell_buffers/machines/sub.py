from __future__ import annotations

from ..buffer import Buffer, Machine
from ..context import Context

__all__ = ["SubMachine"]


class SubMachine:
    """
    A Machine that prefixes every command with fixed arguments.

    Example:
        git = SubMachine(LocalMachine(), "git", "-C", "/srv/repo")
        read(ctx, git, "rev-parse", "HEAD")  # git -C /srv/repo rev-parse HEAD
    """

    def __init__(self, machine: Machine, *prefix: str):
        self._machine = machine
        self._prefix = tuple(prefix)

    def command(self, ctx: Context, *args: str) -> Buffer:
        return self._machine.command(ctx, *self._prefix, *args)

    def __repr__(self) -> str:
        parts = [repr(self._machine), *map(repr, self._prefix)]
        return f"SubMachine({', '.join(parts)})"
