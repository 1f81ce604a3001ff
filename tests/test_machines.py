"""Tests for the bundled machines."""

import io
import sys

import pytest

from shell_buffers import (
    BufferClosedError,
    CommandError,
    copy,
    fail,
    from_reader,
    get_arch,
    get_os,
    new_reader,
    new_stream,
    new_writer,
    not_found,
    read,
    shell,
    with_env,
)
from shell_buffers.machines import (
    LocalMachine,
    MemMachine,
    MockMachine,
    SubMachine,
    calls,
)
from shell_buffers.machines.mem import expand_set

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX utilities")


@posix_only
class TestLocalMachine:
    """Test subprocess-backed commands."""

    def test_read(self, ctx):
        assert read(ctx, LocalMachine(), "echo", "hello") == "hello"

    def test_does_not_start_until_read(self, ctx):
        buf = LocalMachine().command(ctx, "echo", "lazy")
        assert buf.pid is None
        assert buf.read() == b"lazy\n"
        assert buf.pid is not None

    def test_environment(self, ctx):
        ctx = with_env(ctx, {"SHELL_BUFFERS_TEST_GREETING": "hi there"})
        assert read(ctx, LocalMachine(), "printenv", "SHELL_BUFFERS_TEST_GREETING") == "hi there"

    def test_exit_code(self, ctx):
        with pytest.raises(CommandError) as exc_info:
            read(ctx, LocalMachine(), "false")
        assert exc_info.value.code == 1
        assert not not_found(exc_info.value)

    def test_stderr_in_log(self, ctx):
        with pytest.raises(CommandError) as exc_info:
            read(ctx, LocalMachine(), "sh", "-c", "echo oops >&2; exit 3")
        err = exc_info.value
        assert err.code == 3
        assert err.log == b"oops\n"
        assert str(err) == "exit status 3\n\toops"

    def test_missing_command(self, ctx):
        with pytest.raises(CommandError) as exc_info:
            read(ctx, LocalMachine(), "definitely-not-a-real-command-12345")
        assert not_found(exc_info.value)

    def test_no_command(self, ctx):
        with pytest.raises(ValueError):
            read(ctx, LocalMachine())

    def test_pipeline(self, ctx):
        m = LocalMachine()
        dst = io.BytesIO()
        n = copy(
            dst,
            new_reader(ctx, m, "echo", "hello world"),
            new_stream(ctx, m, "tr", "a-z", "A-Z"),
        )
        assert dst.getvalue() == b"HELLO WORLD\n"
        assert n == 24

    def test_writer(self, ctx, tmp_path):
        path = tmp_path / "out.txt"
        with new_writer(ctx, LocalMachine(), "tee", str(path)) as w:
            w.write(b"written\n")
        assert path.read_bytes() == b"written\n"

    def test_reader_close_stops_command(self, ctx):
        r = new_reader(ctx, LocalMachine(), "yes")
        assert r.read(10)
        r.close()

    def test_cancel_kills(self, ctx):
        child, cancel = ctx.with_cancel()
        buf = LocalMachine().command(child, "sleep", "30")
        buf.write(b"")
        cancel()
        with pytest.raises(CommandError) as exc_info:
            buf.read()
        assert exc_info.value.code != 0

    def test_close_before_start_spawns_nothing(self, ctx):
        s = new_stream(ctx, LocalMachine(), "sleep", "0")
        s.close()
        assert s._buf.pid is None
        buf = LocalMachine().command(ctx, "cat")
        buf.close()
        assert buf.pid is None
        with pytest.raises(BufferClosedError):
            buf.write(b"late")
        assert buf.pid is None
        assert buf.read() == b""
        assert buf.pid is not None

    def test_empty_source_still_runs_stage(self, ctx):
        dst = io.BytesIO()
        copy(dst, io.BytesIO(), new_stream(ctx, LocalMachine(), "echo", "ran"))
        assert dst.getvalue() == b"ran\n"

    def test_finished_commands_release_cancel_callbacks(self, ctx):
        for _ in range(20):
            assert read(ctx, LocalMachine(), "true") == ""
        assert len(ctx._scope._callbacks) == 0

    def test_str(self, ctx):
        buf = LocalMachine().command(with_env(ctx, {"A": "1"}), "echo", "hello world")
        assert str(buf) == "A=1 echo 'hello world'"


class TestMemMachine:
    """Test the in-memory commands."""

    def test_echo(self, ctx):
        assert read(ctx, MemMachine(), "echo", "a", "b") == "a b"

    def test_cat_files(self, ctx):
        m = MemMachine({"a": b"one\n", "b": b"two\n"})
        assert read(ctx, m, "cat", "a", "b") == "one\ntwo"

    def test_cat_missing_file(self, ctx):
        with pytest.raises(CommandError) as exc_info:
            read(ctx, MemMachine(), "cat", "nope")
        assert exc_info.value.code == 1
        assert not not_found(exc_info.value)

    def test_cat_stdin(self, ctx):
        dst = io.BytesIO()
        copy(dst, io.BytesIO(b"piped"), new_stream(ctx, MemMachine(), "cat"))
        assert dst.getvalue() == b"piped"

    def test_tee(self, ctx):
        m = MemMachine()
        dst = io.BytesIO()
        copy(dst, io.BytesIO(b"both"), new_stream(ctx, m, "tee", "x", "y"))
        assert dst.getvalue() == b"both"
        assert m.fs() == {"x": b"both", "y": b"both"}
        assert read(ctx, m, "cat", "x") == "both"

    def test_tr_short_second_set(self, ctx):
        dst = io.BytesIO()
        copy(dst, io.BytesIO(b"abcd"), new_stream(ctx, MemMachine(), "tr", "abc", "x"))
        assert dst.getvalue() == b"xxxd"

    def test_tr_multibyte_split_across_writes(self, ctx):
        s = new_stream(ctx, MemMachine(), "tr", "é", "e")
        data = "café".encode()
        s.write(data[:-1])
        s.write(data[-1:])
        s.close()
        out = b""
        while True:
            chunk = s.read()
            if not chunk:
                break
            out += chunk
        assert out == b"cafe"

    def test_unknown_command(self, ctx):
        with pytest.raises(CommandError) as exc_info:
            read(ctx, MemMachine(), "ls")
        assert not_found(exc_info.value)

    def test_platform(self, ctx):
        m = MemMachine()
        assert get_os(ctx, m) == "linux"
        assert get_arch(ctx, m) == "amd64"

    @pytest.mark.parametrize(
        "chars,expected",
        [
            ("a-e", "abcde"),
            ("e-a", "edcba"),
            ("a-c0-2", "abc012"),
            ("-a", "-a"),
            ("a-", "a-"),
        ],
    )
    def test_expand_set(self, chars, expected):
        assert expand_set(chars) == expected


class TestSubMachine:
    """Test argument prefixing."""

    def test_prefix(self, ctx):
        m = MockMachine()
        git = SubMachine(m, "git", "-C", "/srv/repo")
        read(ctx, git, "status")
        assert [c.args for c in calls(m)] == [["git", "-C", "/srv/repo", "status"]]


class TestMockMachine:
    """Test queued responses and call recording."""

    def test_queue_then_repeat(self, ctx):
        m = MockMachine()
        m.returns(b"first", "x")
        m.returns(b"second", "x")
        assert [read(ctx, m, "x") for _ in range(3)] == ["first", "second", "second"]

    def test_most_specific_match(self, ctx):
        m = MockMachine()
        m.returns(b"default")
        m.returns(b"git", "git")
        m.returns(b"git status", "git", "status")
        assert read(ctx, m, "git", "status", "--short") == "git status"
        assert read(ctx, m, "git", "log") == "git"
        assert read(ctx, m, "ls") == "default"

    def test_unmatched_is_empty(self, ctx):
        assert read(ctx, MockMachine(), "anything") == ""

    def test_replayed_response_replaced(self, ctx):
        m = MockMachine()
        m.returns(b"a", "x")
        assert read(ctx, m, "x") == "a"
        assert read(ctx, m, "x") == "a"
        m.returns(b"b", "x")
        assert read(ctx, m, "x") == "b"

    def test_failure_response(self, ctx):
        m = MockMachine()
        m.returns(fail(CommandError(code=5)), "deploy")
        for _ in range(2):
            with pytest.raises(CommandError):
                read(ctx, m, "deploy")
        assert len(calls(m, "deploy")) == 2

    def test_handler(self, ctx):
        m = MockMachine()
        m.do(lambda ctx, *args: from_reader(io.BytesIO(f"Hello, {args[1]}".encode())), "greet")
        assert read(ctx, m, "greet", "World") == "Hello, World"

    def test_records_env_and_input(self, ctx):
        m = MockMachine()
        with new_writer(with_env(ctx, {"A": "1"}), m, "cat") as w:
            w.write(b"in")
            w.write(b"put")
        (call,) = calls(m)
        assert call.args == ["cat"]
        assert call.env == {"A": "1"}
        assert call.got == b"input"

    def test_calls_through_shell(self, ctx):
        m = MockMachine()
        sh = shell(shell(m, "git", "ls"), "git", "ls")
        read(ctx, sh, "git", "status")
        read(ctx, sh, "ls")
        assert [c.args for c in calls(sh, "git")] == [["git", "status"]]
        assert len(calls(sh)) == 2

    def test_calls_on_other_machine(self):
        assert calls(MemMachine()) == []

    def test_platform(self, ctx):
        m = MockMachine()
        m.set_os("darwin")
        m.set_arch("arm64")
        assert get_os(ctx, m) == "darwin"
        assert get_arch(ctx, m) == "arm64"
