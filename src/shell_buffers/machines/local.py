"""
A Machine that runs commands as local subprocesses.

Usage:
    m = LocalMachine()
    print(read(background(), m, "uname", "-a"))

    with new_writer(ctx, m, "tee", "hello.txt") as w:
        w.write(b"Hello world!\\n")
"""

from __future__ import annotations

import io
import logging
import os
import subprocess
import threading
from typing import IO, Optional

from ..buffer import Buffer, fail
from ..context import Context, envs
from ..errors import BufferClosedError, CommandError
from ..trace import command_string

__all__ = ["LocalMachine", "LocalCommand"]

logger = logging.getLogger(__name__)

_CHUNK = 8192


class LocalCommand:
    """
    One subprocess, started lazily.

    The process is spawned on the first read(), write() or attach(). Closing a
    command that never started spawns nothing; a later read() starts it with
    stdin at end of file, and writes raise BufferClosedError.
    Output is read from a pipe; stderr goes to the log sink when one is set,
    otherwise it is captured and attached to the CommandError on failure.
    Cancelling the context kills the process.
    """

    def __init__(self, ctx: Context, args: list[str]):
        self._ctx = ctx
        self._args = list(args)
        self._env = envs(ctx)
        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None
        self._start_error: Optional[BaseException] = None
        self._started = False
        self._attached = False
        self._log_sink: Optional[IO[bytes]] = None
        self._log_buf = io.BytesIO()
        self._stderr_thread: Optional[threading.Thread] = None
        self._wait_lock = threading.Lock()
        self._waited = False
        self._error: Optional[BaseException] = None
        self._closed = False
        self._unwatch = None

    def _popen_env(self) -> Optional[dict]:
        if not self._env:
            return None
        return {**os.environ, **self._env}

    def _start(self) -> None:
        with self._lock:
            if not self._started:
                self._started = True
                try:
                    self._spawn()
                except BaseException as exc:
                    self._start_error = exc
            if self._start_error is not None:
                raise self._start_error

    def _spawn(self) -> None:
        if self._ctx.cancelled:
            raise CommandError(RuntimeError("context cancelled"))
        pipe = None if self._attached else subprocess.PIPE
        stdin = subprocess.DEVNULL if self._closed and not self._attached else pipe
        try:
            self._proc = subprocess.Popen(
                self._args,
                stdin=stdin,
                stdout=pipe,
                stderr=pipe,
                env=self._popen_env(),
            )
        except OSError as exc:
            # The command never ran: classified as not found.
            raise CommandError(exc) from exc
        logger.debug("started pid %d: %s", self._proc.pid, self)

        if self._proc.stderr is not None:
            self._stderr_thread = threading.Thread(
                target=self._copy_stderr,
                name=f"stderr {self._args[0]}",
                daemon=True,
            )
            self._stderr_thread.start()
        self._unwatch = self._ctx.on_cancel(self._kill)

    def _copy_stderr(self) -> None:
        sink = self._log_sink if self._log_sink is not None else self._log_buf
        stream = self._proc.stderr
        try:
            while True:
                chunk = stream.read1(_CHUNK)
                if not chunk:
                    break
                sink.write(chunk)
        except (OSError, ValueError) as exc:
            logger.debug("stderr of %s: %s", self, exc)
        finally:
            stream.close()

    def _kill(self) -> None:
        if self._proc is None:
            return
        try:
            self._proc.kill()
        except OSError:
            pass  # Already dead

    def _wait(self) -> None:
        with self._wait_lock:
            if not self._waited:
                self._waited = True
                returncode = self._proc.wait()
                if self._unwatch is not None:
                    self._unwatch()
                if self._stderr_thread is not None:
                    self._stderr_thread.join()
                if self._proc.stdout is not None:
                    self._proc.stdout.close()
                if returncode != 0:
                    log = b"" if self._log_sink is not None else self._log_buf.getvalue()
                    self._error = CommandError(code=returncode, log=log)
                logger.debug("pid %d exited with %d", self._proc.pid, returncode)
        if self._error is not None:
            raise self._error

    def read(self, size: int = -1) -> bytes:
        self._start()
        stdout = self._proc.stdout
        if stdout is None or self._waited:
            self._wait()
            return b""
        try:
            data = stdout.read1(size if size > 0 else _CHUNK) if size != -1 else stdout.read()
        except ValueError:
            # stdout was closed by a concurrent wait.
            data = b""
        if data:
            return data
        self._wait()
        return b""

    def write(self, data: bytes) -> int:
        with self._lock:
            if self._closed:
                raise BufferClosedError("command: write to closed stdin")
        self._start()
        stdin = self._proc.stdin
        if stdin is None:
            return 0
        if stdin.closed:
            raise BufferClosedError("command: write to closed stdin")
        n = stdin.write(data)
        stdin.flush()
        return n

    def close(self) -> None:
        """Close stdin. Output must still be read to observe completion."""
        with self._lock:
            self._closed = True
            if not self._started:
                return
        self._start()
        stdin = self._proc.stdin
        if stdin is None or stdin.closed:
            return
        try:
            stdin.close()
        except BrokenPipeError:
            pass  # The command exited without reading all of its input

    def attach(self) -> None:
        """Run the command with the terminal's stdin, stdout and stderr."""
        with self._lock:
            if not self._started:
                self._attached = True
        self._start()

    def log(self, sink: IO[bytes]) -> None:
        self._log_sink = sink

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc is not None else None

    def __str__(self) -> str:
        return command_string(self._env, self._args)

    def __repr__(self) -> str:
        return f"LocalCommand({self._args!r})"


class LocalMachine:
    """Runs commands on the local system."""

    def command(self, ctx: Context, *args: str) -> Buffer:
        if not args:
            return fail(ValueError("no command given"))
        return LocalCommand(ctx, list(args))

    def __repr__(self) -> str:
        return "LocalMachine()"
