"""Shared fixtures and test doubles."""

import io
import threading

import pytest

from shell_buffers import background, set_settings, set_trace


class RecordingBuffer:
    """A writable buffer that records how it was driven."""

    def __init__(self, ctx, args, output=b"", error=None):
        self.ctx = ctx
        self.args = args
        self.error = error
        self.touched = False
        self.close_calls = 0
        self.got = bytearray()
        self._out = io.BytesIO(output)
        self._lock = threading.Lock()

    def read(self, size=-1):
        self.touched = True
        self.ctx.cancelled
        if self.error is not None:
            raise self.error
        return self._out.read(size)

    def write(self, data):
        self.touched = True
        with self._lock:
            self.got += data
        return len(data)

    def close(self):
        self.close_calls += 1

    def __str__(self):
        return " ".join(self.args)


class ReadOnlyRecordingBuffer:
    """A buffer with output but no input side."""

    def __init__(self, ctx, args, output=b""):
        self.ctx = ctx
        self.args = args
        self.touched = False
        self._out = io.BytesIO(output)

    def read(self, size=-1):
        self.touched = True
        return self._out.read(size)


class RecordingMachine:
    """Hands out recording buffers and keeps them for inspection."""

    def __init__(self, output=b"", error=None, writable=True):
        self.output = output
        self.error = error
        self.writable = writable
        self.buffers = []

    def command(self, ctx, *args):
        if self.writable:
            buf = RecordingBuffer(ctx, list(args), self.output, self.error)
        else:
            buf = ReadOnlyRecordingBuffer(ctx, list(args), self.output)
        self.buffers.append(buf)
        return buf


@pytest.fixture
def ctx():
    return background()


@pytest.fixture(autouse=True)
def reset_globals():
    yield
    set_trace(None)
    set_settings(None)
