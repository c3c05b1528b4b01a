"""PTY session — a child process attached to a pseudo-terminal."""

from __future__ import annotations

import enum
import errno
import fcntl
import logging
import os
import pty
import signal
import subprocess
import termios
from dataclasses import dataclass, field

from ptyredact.pty.terminal import get_winsize, set_winsize

logger = logging.getLogger(__name__)


class PTYStartError(RuntimeError):
    """PTY allocation or child spawn failed. Nothing was left open."""


class PTYStatus(enum.Enum):
    """Lifecycle states for a PTY session."""

    NEW = "new"
    RUNNING = "running"
    EXITED = "exited"  # Process exited on its own
    KILLED = "killed"  # Terminated by a signal


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid() and after stdin was dup'ed to the
    # slave, so fd 0 becomes the controlling terminal of the new session.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


@dataclass
class PTYSession:
    """A child process whose stdin, stdout and stderr are a PTY slave.

    The parent keeps only the master side. Reads return the child's
    combined output, writes feed its input. The read and write directions
    are independent and may be used from different threads.

    Uses subprocess.Popen (not os.fork) so it is safe to start from a
    process that already runs an asyncio event loop.
    """

    command: list[str] = field(default_factory=list)
    env: dict[str, str] | None = None  # None inherits os.environ
    cwd: str | None = None

    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _status: PTYStatus = field(default=PTYStatus.NEW, init=False)

    def start(self) -> None:
        """Allocate the PTY pair and spawn the command on the slave side."""
        if self._status is not PTYStatus.NEW:
            raise PTYStartError("PTY session already started")
        if not self.command:
            raise PTYStartError("No command given")

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise PTYStartError(f"cannot allocate PTY: {e}") from e

        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
                env=self.env if self.env is not None else os.environ,
                cwd=self.cwd,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise PTYStartError(f"{self.command[0]}: {e}") from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        self._master_fd = master_fd
        self._status = PTYStatus.RUNNING
        logger.debug(
            "PTY session started: pid=%d fd=%d cmd=%s (+%d args)",
            self._proc.pid,
            master_fd,
            self.command[0],
            len(self.command) - 1,
        )

    def read(self, size: int = 4096) -> bytes:
        """Read the child's output. Returns ``b""`` at end of stream.

        On Linux the master reports EIO once every slave handle is closed;
        that is treated as end of stream.
        """
        try:
            return os.read(self._master_fd, size)
        except OSError as e:
            if e.errno == errno.EIO:
                return b""
            raise

    def write(self, data: bytes) -> int:
        """Write all of ``data`` to the child's input."""
        view = memoryview(data)
        written = 0
        while written < len(view):
            written += os.write(self._master_fd, view[written:])
        return written

    def resize(self, rows: int, cols: int) -> None:
        set_winsize(self._master_fd, rows, cols)
        logger.debug("PTY resized to %dx%d", rows, cols)

    def inherit_size(self, fd: int) -> bool:
        """Copy the window size of terminal ``fd`` onto the PTY.

        Returns False (and changes nothing) when ``fd`` is not a terminal.
        """
        try:
            rows, cols = get_winsize(fd)
            self.resize(rows, cols)
        except OSError as e:
            logger.debug("Cannot inherit window size from fd %d: %s", fd, e)
            return False
        return True

    def wait(self) -> int:
        """Block until the child terminates and return ``Popen.returncode``.

        A negative value is the number of the signal that killed the child.
        """
        if self._proc is None:
            raise RuntimeError("PTY session was never started")
        code = self._proc.wait()
        self._status = PTYStatus.KILLED if code < 0 else PTYStatus.EXITED
        logger.debug("PTY child %d finished (returncode=%d)", self._proc.pid, code)
        return code

    def kill(self, sig: int = signal.SIGHUP) -> None:
        """Send ``sig`` to the child's whole process group."""
        if self._proc is None or self._proc.returncode is not None:
            return
        try:
            os.killpg(self._proc.pid, sig)
            logger.debug("Sent signal %d to process group %d", sig, self._proc.pid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._proc.pid)

    def close(self) -> None:
        """Close the master side. Safe to call more than once."""
        if self._master_fd < 0:
            return
        fd, self._master_fd = self._master_fd, -1
        try:
            os.close(fd)
        except OSError as e:
            logger.debug("Error closing PTY master %d: %s", fd, e)

    def fileno(self) -> int:
        return self._master_fd

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def status(self) -> PTYStatus:
        return self._status

    @property
    def alive(self) -> bool:
        return self._status == PTYStatus.RUNNING

    @property
    def closed(self) -> bool:
        return self._master_fd < 0

    def __enter__(self) -> PTYSession:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
