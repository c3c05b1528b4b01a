"""Tests for ptyredact.pty (PTYSession and terminal helpers) on a real PTY."""

from __future__ import annotations

import os
import pty
import signal
import termios

import pytest

from ptyredact.pty import (
    PTYSession,
    PTYStartError,
    PTYStatus,
    get_winsize,
    is_terminal,
    raw_mode,
    set_winsize,
)


def _read_all(session: PTYSession) -> bytes:
    chunks = []
    while True:
        data = session.read()
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


def _open_fds() -> int:
    return len(os.listdir("/proc/self/fd"))


@pytest.fixture
def pty_pair():
    master, slave = pty.openpty()
    yield master, slave
    for fd in (master, slave):
        try:
            os.close(fd)
        except OSError:
            pass


# ---------------------------------------------------------------------------
# PTYSession
# ---------------------------------------------------------------------------


class TestPTYSession:
    def test_reads_child_output(self) -> None:
        with PTYSession(command=["sh", "-c", "echo hello"]) as session:
            session.start()
            assert session.alive
            out = _read_all(session)
            assert session.wait() == 0
        assert b"hello" in out
        assert session.status == PTYStatus.EXITED

    def test_child_sees_a_terminal(self) -> None:
        cmd = ["sh", "-c", "test -t 0 && test -t 1 && echo tty"]
        with PTYSession(command=cmd) as s:
            s.start()
            out = _read_all(s)
            assert s.wait() == 0
        assert b"tty" in out

    def test_exit_code(self) -> None:
        with PTYSession(command=["sh", "-c", "exit 7"]) as session:
            session.start()
            _read_all(session)
            assert session.wait() == 7

    def test_killed_by_signal(self) -> None:
        with PTYSession(command=["sh", "-c", "kill -KILL $$"]) as session:
            session.start()
            _read_all(session)
            assert session.wait() == -signal.SIGKILL
        assert session.status == PTYStatus.KILLED

    def test_write_reaches_child(self) -> None:
        with PTYSession(command=["sh", "-c", 'read line; echo "got:$line"']) as s:
            s.start()
            assert s.write(b"ping\n") == 5
            out = _read_all(s)
            assert s.wait() == 0
        assert b"got:ping" in out

    def test_environment_passed_through(self) -> None:
        env = {"PATH": os.environ.get("PATH", "/bin:/usr/bin"), "PTYREDACT_T": "v42"}
        with PTYSession(command=["sh", "-c", "echo $PTYREDACT_T"], env=env) as s:
            s.start()
            out = _read_all(s)
            s.wait()
        assert b"v42" in out

    def test_resize(self) -> None:
        with PTYSession(command=["sh", "-c", "sleep 5"]) as session:
            session.start()
            session.resize(40, 132)
            assert get_winsize(session.fileno()) == (40, 132)
            session.kill(signal.SIGKILL)
            assert session.wait() == -signal.SIGKILL

    def test_inherit_size_from_terminal(self, pty_pair) -> None:
        _, slave = pty_pair
        set_winsize(slave, 33, 99)
        with PTYSession(command=["sh", "-c", "sleep 5"]) as session:
            session.start()
            assert session.inherit_size(slave) is True
            assert get_winsize(session.fileno()) == (33, 99)
            session.kill(signal.SIGKILL)
            session.wait()

    def test_inherit_size_from_pipe_is_noop(self) -> None:
        r, w = os.pipe()
        try:
            with PTYSession(command=["sh", "-c", "true"]) as session:
                session.start()
                assert session.inherit_size(r) is False
                _read_all(session)
                session.wait()
        finally:
            os.close(r)
            os.close(w)

    def test_kill_after_exit_is_noop(self) -> None:
        with PTYSession(command=["true"]) as session:
            session.start()
            _read_all(session)
            session.wait()
            session.kill()

    def test_close_is_idempotent(self) -> None:
        session = PTYSession(command=["true"])
        session.start()
        session.wait()
        session.close()
        session.close()
        assert session.closed
        assert session.fileno() == -1

    def test_missing_binary_raises(self) -> None:
        session = PTYSession(command=["/nonexistent/ptyredact-binary"])
        with pytest.raises(PTYStartError, match="ptyredact-binary"):
            session.start()
        assert session.status == PTYStatus.NEW
        assert session.closed

    @pytest.mark.skipif(not os.path.isdir("/proc/self/fd"), reason="needs procfs")
    def test_failed_start_leaks_nothing(self) -> None:
        before = _open_fds()
        with pytest.raises(PTYStartError):
            PTYSession(command=["/nonexistent/ptyredact-binary"]).start()
        assert _open_fds() == before

    def test_empty_command_raises(self) -> None:
        with pytest.raises(PTYStartError):
            PTYSession(command=[]).start()

    def test_double_start_raises(self) -> None:
        with PTYSession(command=["true"]) as session:
            session.start()
            with pytest.raises(PTYStartError):
                session.start()
            session.wait()

    def test_wait_before_start_raises(self) -> None:
        with pytest.raises(RuntimeError):
            PTYSession(command=["true"]).wait()


# ---------------------------------------------------------------------------
# terminal helpers
# ---------------------------------------------------------------------------


class TestTerminal:
    def test_is_terminal(self, pty_pair) -> None:
        _, slave = pty_pair
        r, w = os.pipe()
        try:
            assert is_terminal(slave)
            assert not is_terminal(r)
        finally:
            os.close(r)
            os.close(w)

    def test_is_terminal_bad_fd(self) -> None:
        assert is_terminal(-1) is False

    def test_winsize_roundtrip(self, pty_pair) -> None:
        master, _ = pty_pair
        set_winsize(master, 24, 80)
        assert get_winsize(master) == (24, 80)

    def test_get_winsize_not_a_tty(self) -> None:
        r, w = os.pipe()
        try:
            with pytest.raises(OSError):
                get_winsize(r)
        finally:
            os.close(r)
            os.close(w)

    def test_raw_mode_on_pipe_is_noop(self) -> None:
        r, w = os.pipe()
        try:
            with raw_mode(r) as active:
                assert active is False
        finally:
            os.close(r)
            os.close(w)

    def test_raw_mode_switches_and_restores(self, pty_pair) -> None:
        _, slave = pty_pair
        original = termios.tcgetattr(slave)
        assert original[3] & termios.ICANON

        with raw_mode(slave) as active:
            assert active is True
            lflag = termios.tcgetattr(slave)[3]
            assert not lflag & termios.ICANON
            assert not lflag & termios.ECHO
            assert not lflag & termios.ISIG

        assert termios.tcgetattr(slave) == original

    def test_raw_mode_restores_on_error(self, pty_pair) -> None:
        _, slave = pty_pair
        original = termios.tcgetattr(slave)
        with pytest.raises(ValueError):
            with raw_mode(slave):
                raise ValueError("boom")
        assert termios.tcgetattr(slave) == original
