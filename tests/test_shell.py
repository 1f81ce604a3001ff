"""Tests for command routing and probing."""

import io
import logging

import pytest

from shell_buffers import (
    CommandError,
    MachineFunc,
    Shell,
    fail,
    from_reader,
    get_arch,
    get_os,
    getenv,
    handle,
    handle_func,
    map_architecture,
    not_found,
    probe_read,
    read,
    shell,
    unshell,
    with_env,
)
from shell_buffers.machines import LocalMachine, MemMachine, MockMachine, calls


class TestShellRouting:
    """Test dispatch by command name."""

    def test_registered_command(self, ctx):
        a = MockMachine()
        a.returns(b"hi\n", "echo")
        sh = Shell(MemMachine()).handle("echo", a)
        assert read(ctx, sh, "echo", "hi") == "hi"
        assert [c.args for c in calls(a)] == [["echo", "hi"]]

    def test_unregistered_command_not_found(self, ctx):
        sh = Shell(MemMachine()).handle("echo", MockMachine())
        with pytest.raises(CommandError) as exc_info:
            read(ctx, sh, "cat", "f")
        assert not_found(exc_info.value)
        assert str(exc_info.value) == "command not found: cat"

    def test_fallback(self, ctx):
        core = MockMachine()
        core.returns(b"meow", "cat")
        sh = Shell(core, fallback=True)
        assert read(ctx, sh, "cat", "f") == "meow"

    def test_no_command(self, ctx):
        with pytest.raises(ValueError, match="no command specified") as exc_info:
            read(ctx, Shell(MemMachine()))
        assert not isinstance(exc_info.value, CommandError)
        assert not not_found(exc_info.value)

    def test_no_command_not_retried_inward(self, ctx):
        with pytest.raises(ValueError):
            probe_read(ctx, Shell(Shell(MemMachine())))

    def test_whitelist(self, ctx):
        sh = shell(MemMachine(), "echo")
        assert read(ctx, sh, "echo", "ok") == "ok"
        with pytest.raises(CommandError):
            read(ctx, sh, "tr", "a", "b")

    def test_handle_overwrites_and_chains(self, ctx):
        first, second = MockMachine(), MockMachine()
        first.returns(b"first", "x")
        second.returns(b"second", "x")
        sh = Shell(MemMachine()).handle("x", first).handle("x", second)
        assert sh.read(ctx, "x") == "second"

    def test_handle_func(self, ctx):
        sh = Shell(MemMachine()).handle_func(
            "greet", lambda ctx, *args: from_reader(io.BytesIO(b"hello " + args[1].encode()))
        )
        assert sh.read(ctx, "greet", "you") == "hello you"

    def test_module_handle_wraps_with_fallback(self, ctx):
        mem = MemMachine()
        mock = MockMachine()
        mock.returns(b"custom", "greet")
        sh = handle(mem, "greet", mock)
        assert isinstance(sh, Shell)
        assert read(ctx, sh, "greet") == "custom"
        assert read(ctx, sh, "echo", "still here") == "still here"

    def test_module_handle_updates_shell(self, ctx):
        sh = Shell(MemMachine())
        assert handle(sh, "echo", sh.unshell()) is sh
        assert handle_func(sh, "nope", lambda ctx, *a: fail(ValueError())) is sh

    def test_unshell(self):
        core = MemMachine()
        sh = Shell(core)
        assert sh.unshell() is core
        assert unshell(sh) is core
        assert unshell(core) is core

    def test_nested_shells(self, ctx):
        inner = shell(MemMachine(), "echo", "tr")
        outer = shell(inner, "echo")
        assert read(ctx, outer, "echo", "deep") == "deep"
        with pytest.raises(CommandError):
            read(ctx, outer, "tr", "a", "b")


class TestShellProbes:
    """Test cached OS, architecture and filesystem lookups."""

    def test_os_and_arch_from_core(self, ctx):
        sh = Shell(MemMachine())
        assert sh.os(ctx) == "linux"
        assert sh.arch(ctx) == "amd64"
        assert get_os(ctx, sh) == "linux"

    def test_probed_once(self, ctx):
        core = MockMachine()
        core.returns(b"Linux\n", "uname", "-s")
        core.returns(b"x86_64\n", "uname", "-m")
        sh = Shell(core)
        assert sh.os(ctx) == "linux"
        assert sh.arch(ctx) == "amd64"
        seen = len(calls(core))
        assert sh.os(ctx) == "linux"
        assert sh.arch(ctx) == "amd64"
        assert len(calls(core)) == seen

    def test_commands_do_not_probe(self, ctx):
        core = MockMachine()
        sh = shell(core, "git")
        sh.do(ctx, "git", "status")
        assert [c.args for c in calls(core)] == [["git", "status"]]

    def test_fs(self):
        mem = MemMachine({"a": b"1"})
        assert Shell(mem).fs() is mem.fs()
        assert Shell(LocalMachine()).fs() is None


class TestProbeRead:
    """Test retrying probes through nested shells."""

    def test_retries_through_two_layers(self, ctx, caplog):
        base = MockMachine()
        base.returns(b"Linux\n", "uname", "-s")
        outer = Shell(Shell(base))
        with caplog.at_level(logging.DEBUG, logger="shell_buffers.probe"):
            assert probe_read(ctx, outer, "uname", "-s") == "Linux"
        retries = [r for r in caplog.records if "retrying" in r.getMessage()]
        assert len(retries) == 2

    def test_no_retry_on_other_errors(self, ctx, caplog):
        base = MachineFunc(lambda ctx, *args: fail(CommandError(code=1)))
        middle = Shell(base).handle("uname", base)
        outer = Shell(middle).handle("uname", middle)
        with caplog.at_level(logging.DEBUG, logger="shell_buffers.probe"):
            with pytest.raises(CommandError) as exc_info:
                probe_read(ctx, outer, "uname", "-s")
        assert exc_info.value.code == 1
        assert not [r for r in caplog.records if "retrying" in r.getMessage()]

    def test_not_found_at_bottom(self, ctx):
        with pytest.raises(CommandError) as exc_info:
            probe_read(ctx, Shell(Shell(MemMachine())), "uname", "-s")
        assert not_found(exc_info.value)


class TestGetOS:
    """Test operating system detection."""

    def test_uname(self, ctx):
        m = MockMachine()
        m.returns(b"Darwin\n", "uname", "-s")
        assert get_os(ctx, m) == "darwin"

    def test_msys(self, ctx):
        m = MockMachine()
        m.returns(b"MSYS_NT-10.0-19045\n", "uname", "-s")
        assert get_os(ctx, m) == "windows"

    def test_cmd_fallback(self, ctx):
        m = MockMachine()
        m.returns(fail(CommandError(code=127)))
        m.returns(b"Microsoft Windows [Version 10.0.19045]\r\n", "cmd", "/c", "ver")
        assert get_os(ctx, m) == "windows"

    def test_unknown(self, ctx):
        m = MockMachine()
        m.returns(fail(CommandError(code=1)))
        assert get_os(ctx, m) == "unknown"

    def test_machine_reported(self, ctx):
        m = MockMachine()
        m.set_os("freebsd")
        assert get_os(ctx, m) == "freebsd"
        assert calls(m) == []


class TestGetArch:
    """Test architecture detection."""

    def test_uname_m(self, ctx):
        m = MockMachine()
        m.set_os("linux")
        m.returns(b"aarch64\n", "uname", "-m")
        assert get_arch(ctx, m) == "arm64"

    def test_darwin_kernel_version(self, ctx):
        m = MockMachine()
        m.set_os("darwin")
        m.returns(b"Darwin Kernel Version 23.0.0: RELEASE_ARM64_T6000\n", "uname", "-v")
        m.returns(b"x86_64\n", "uname", "-m")
        assert get_arch(ctx, m) == "arm64"

    def test_cmd_fallback(self, ctx):
        m = MockMachine()
        m.set_os("windows")
        m.returns(fail(CommandError(LookupError("not here"))))
        m.returns(b"AMD64\r\n", "cmd", "/c", "echo %PROCESSOR_ARCHITECTURE%")
        assert get_arch(ctx, m) == "amd64"

    def test_machine_reported(self, ctx):
        m = MockMachine()
        m.set_arch("riscv64")
        assert get_arch(ctx, m) == "riscv64"

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("x86_64", "amd64"),
            ("AMD64", "amd64"),
            ("aarch64", "arm64"),
            ("i686", "386"),
            ("armv7l", "arm"),
            ("sparc", "unknown"),
        ],
    )
    def test_map_architecture(self, raw, expected):
        assert map_architecture(raw) == expected


class TestGetenv:
    """Test environment lookups."""

    def test_context_wins(self, ctx):
        m = MockMachine()
        assert getenv(with_env(ctx, {"HOME": "/override"}), m, "HOME") == "/override"
        assert calls(m) == []

    def test_printenv(self, ctx):
        m = MockMachine()
        m.set_os("linux")
        m.returns(b"bar\n", "printenv", "FOO")
        assert getenv(ctx, m, "FOO") == "bar"

    def test_windows_powershell(self, ctx):
        m = MockMachine()
        m.set_os("windows")
        m.returns(b"C:\\Users\\me\r\n", "powershell")
        assert getenv(ctx, m, "USERPROFILE") == "C:\\Users\\me"

    def test_unset(self, ctx):
        m = MockMachine()
        m.set_os("linux")
        m.returns(fail(CommandError(code=1)))
        assert getenv(ctx, m, "MISSING") == ""

    def test_through_shell(self, ctx):
        core = MockMachine()
        core.set_os("linux")
        core.returns(b"value\n", "printenv", "KEY")
        assert Shell(core).getenv(ctx, "KEY") == "value"
