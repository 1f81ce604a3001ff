"""Machine implementations: local subprocesses, in-memory commands, prefixing and mocks."""

from .local import LocalCommand, LocalMachine
from .mem import MemMachine
from .mock import Call, MockMachine, calls
from .sub import SubMachine

__all__ = [
    "Call",
    "LocalCommand",
    "LocalMachine",
    "MemMachine",
    "MockMachine",
    "SubMachine",
    "calls",
]
