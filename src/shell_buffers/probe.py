"""
Best-effort discovery of a machine's OS, architecture and environment.

Probes run ordinary commands (uname, printenv, cmd, powershell). When a
probe command is not found on a Shell, the probe retries one layer down via
unshell(), so a restrictive Shell can still be probed while handlers
registered on it override the probe commands.
"""

from __future__ import annotations

import logging

from .buffer import ArchMachine, Machine, OSMachine, Unsheller
from .context import Context, envs
from .errors import not_found
from .run import read

__all__ = [
    "probe_read",
    "get_os",
    "get_arch",
    "getenv",
    "map_architecture",
]

logger = logging.getLogger(__name__)


def probe_read(ctx: Context, m: Machine, *args: str) -> str:
    """
    Like read(), but retries on inner machines when the command is not found.

    Stops at the first success, at the first error that is not a not-found
    error, or when m has no inner machine.
    """
    while True:
        try:
            return read(ctx, m, *args)
        except Exception as exc:
            if not not_found(exc):
                raise
            inner = m.unshell() if isinstance(m, Unsheller) else None
            if inner is None:
                raise
            logger.debug("%s not found on %r, retrying on %r", args[0] if args else "", m, inner)
            m = inner


def _try(ctx: Context, m: Machine, *args: str):
    try:
        return probe_read(ctx, m, *args)
    except Exception as exc:
        logger.debug("probe %s failed: %s", " ".join(args), exc)
        return None


def get_os(ctx: Context, m: Machine) -> str:
    """
    Detect m's operating system.

    Returns a lowercase name such as "linux", "darwin", "freebsd" or
    "windows", or "unknown".
    """
    if isinstance(m, OSMachine):
        name = m.os(ctx)
        if name:
            return name

    out = _try(ctx, m, "uname", "-s")
    if out is not None:
        name = out.strip().lower()
        if "msys_nt" in name:
            return "windows"
        return name

    out = _try(ctx, m, "cmd", "/c", "ver")
    if out is not None and "windows" in out.lower():
        return "windows"

    return "unknown"


_ARCHITECTURES = {
    "x86_64": "amd64",
    "x86-64": "amd64",
    "x64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i486": "386",
    "i586": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
    "arm": "arm",
}


def map_architecture(arch: str) -> str:
    """Normalize a machine name from uname -m or %PROCESSOR_ARCHITECTURE%."""
    return _ARCHITECTURES.get(arch.strip().lower(), "unknown")


def get_arch(ctx: Context, m: Machine) -> str:
    """
    Detect m's CPU architecture.

    Returns "amd64", "arm64", "386", "arm" or "unknown".
    """
    if isinstance(m, ArchMachine):
        arch = m.arch(ctx)
        if arch:
            return arch

    # uname -m is unreliable on macOS under Rosetta; the kernel version
    # string names the real hardware.
    if get_os(ctx, m) == "darwin":
        out = _try(ctx, m, "uname", "-v")
        if out is not None:
            version = out.upper()
            if "ARM64" in version:
                return "arm64"
            if "X86_64" in version:
                return "amd64"

    out = _try(ctx, m, "uname", "-m")
    if out is not None:
        return map_architecture(out)

    out = _try(ctx, m, "cmd", "/c", "echo %PROCESSOR_ARCHITECTURE%")
    if out is not None and out.strip() != "%PROCESSOR_ARCHITECTURE%":
        return map_architecture(out)

    out = _try(ctx, m, "powershell", "Write-Output", "$env:PROCESSOR_ARCHITECTURE")
    if out is not None:
        return map_architecture(out)

    return "unknown"


def getenv(ctx: Context, m: Machine, key: str) -> str:
    """
    Return the value of environment variable key, or "" if it is unset.

    Overrides stored in ctx win; otherwise m is queried.
    """
    env = envs(ctx)
    if env is not None and key in env:
        return env[key]

    if get_os(ctx, m) == "windows":
        out = _try(ctx, m, "powershell", "-Command", f"Write-Output $env:{key}")
        if out:
            return out
        out = _try(ctx, m, "cmd", "/c", f"echo %{key}%")
        if out is not None:
            value = out.strip()
            if value and value != f"%{key}%":
                return value
        return ""

    out = _try(ctx, m, "printenv", key)
    return out if out is not None else ""
