"""Session orchestrator — wires the terminal, the PTY and the redactor.

    stdin  ──(input thread)──────────────────────────▶ PTY master
    PTY master ──(reader callback)──▶ RedactingWriter ──▶ stdout

The child's exit, not cancellation, ends the session: once it has been
reaped the output side gets ``drain_timeout`` seconds to reach end of
stream, then everything is torn down and the exit status is reported.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import threading
from typing import Sequence

from ptyredact.config import RedactConfig
from ptyredact.pty.session import PTYSession
from ptyredact.pty.terminal import raw_mode
from ptyredact.redact.filter import RedactingWriter, RedactionSet, Sink

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1

# Termination requests aimed at us are passed on to the child, so the
# session still ends through the normal path and the terminal is restored.
FORWARDED_SIGNALS = (signal.SIGHUP, signal.SIGINT, signal.SIGTERM)


def exit_status(returncode: int) -> int:
    """Map a ``Popen.returncode`` to the status this process exits with.

    Normal exits pass through. Death by signal (negative returncode) maps
    to EXIT_FAILURE rather than leaking the signal number.
    """
    return returncode if returncode >= 0 else EXIT_FAILURE


class FdWriter:
    """Unbuffered writer on a raw file descriptor."""

    def __init__(self, fd: int) -> None:
        self._fd = fd

    def write(self, data: bytes) -> int:
        view = memoryview(data)
        written = 0
        while written < len(view):
            written += os.write(self._fd, view[written:])
        return written


class _OutputPump:
    """Feeds PTY output into the redacting writer from the event loop."""

    def __init__(
        self, session: PTYSession, writer: RedactingWriter, read_size: int
    ) -> None:
        self._session = session
        self._writer = writer
        self._read_size = read_size
        self._loop: asyncio.AbstractEventLoop | None = None
        self._done: asyncio.Event = asyncio.Event()
        self.error: OSError | None = None

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        loop.add_reader(self._session.fileno(), self._on_readable)

    def stop(self) -> None:
        if self._loop is None or self._done.is_set():
            return
        self._loop.remove_reader(self._session.fileno())
        self._done.set()

    async def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait for end of stream. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def _on_readable(self) -> None:
        try:
            data = self._session.read(self._read_size)
        except OSError as e:
            logger.warning("Reading child output failed: %s", e)
            self.stop()
            return

        if not data:
            logger.debug("Child output reached end of stream")
            self.stop()
            return

        try:
            self._writer.write(data)
        except OSError as e:
            # Output is gone; stop the child so wait() returns.
            logger.error("Writing redacted output failed: %s", e)
            self.error = e
            self.stop()
            self._session.kill()


def _copy_input(stdin_fd: int, session: PTYSession, read_size: int) -> None:
    """Copy stdin to the PTY until either side goes away."""
    while True:
        try:
            data = os.read(stdin_fd, read_size)
        except OSError as e:
            logger.debug("stdin read ended: %s", e)
            return
        if not data:
            logger.debug("stdin reached EOF")
            return
        if session.closed:
            return
        try:
            session.write(data)
        except OSError as e:
            logger.debug("PTY write ended: %s", e)
            return


async def _reap_child(
    loop: asyncio.AbstractEventLoop,
    session: PTYSession,
    pump: _OutputPump,
    grace: float,
) -> int:
    """Wait for the child to terminate and return its returncode.

    If the output breaks while the child is still running, the SIGHUP sent
    by the pump gets ``grace`` seconds to work before SIGKILL follows.
    """
    child = loop.run_in_executor(None, session.wait)
    output_closed = asyncio.ensure_future(pump.wait_closed())
    try:
        await asyncio.wait(
            {child, output_closed}, return_when=asyncio.FIRST_COMPLETED
        )
        if pump.error is not None and not child.done():
            done, _ = await asyncio.wait({child}, timeout=grace)
            if not done:
                logger.warning(
                    "Child still running %.1fs after output failed; killing", grace
                )
                session.kill(signal.SIGKILL)
        return await child
    finally:
        output_closed.cancel()


def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop, session: PTYSession, tty_fd: int
) -> list[int]:
    """Hook SIGWINCH to PTY resizing and forward termination signals.

    Returns the signals that were actually installed.
    """
    installed: list[int] = []
    try:
        loop.add_signal_handler(signal.SIGWINCH, session.inherit_size, tty_fd)
        installed.append(signal.SIGWINCH)
        for sig in FORWARDED_SIGNALS:
            loop.add_signal_handler(sig, session.kill, sig)
            installed.append(sig)
    except (RuntimeError, ValueError) as e:
        # Only the main thread may install signal handlers.
        logger.debug("Signal handling disabled: %s", e)
    return installed


async def run_session(
    command: Sequence[str],
    redactions: RedactionSet,
    *,
    config: RedactConfig | None = None,
    stdin_fd: int = 0,
    stdout_fd: int = 1,
    sink: Sink | None = None,
    env: dict[str, str] | None = None,
) -> int:
    """Run ``command`` on a PTY with redacted output and return its exit status.

    Args:
        command: Program and arguments.
        redactions: Secrets to mask in the child's output.
        config: Runtime tuning; defaults apply when omitted.
        stdin_fd: Where keystrokes come from. Raw mode and window size are
            taken from it when it is a terminal.
        stdout_fd: Where redacted output goes.
        sink: Replaces ``stdout_fd`` as the redacted output destination.
        env: Child environment; ``None`` inherits ``os.environ`` unchanged.

    Returns:
        The child's exit code, or EXIT_FAILURE if it was killed by a signal
        or the output could not be delivered.

    Raises:
        PTYStartError: The PTY could not be allocated or the command could
            not be spawned. No resources are left open.
    """
    config = config or RedactConfig()
    loop = asyncio.get_running_loop()

    session = PTYSession(command=list(command), env=env)
    session.start()

    if sink is None:
        sink = FdWriter(stdout_fd)
    writer = RedactingWriter(sink, redactions)
    pump = _OutputPump(session, writer, config.read_size)
    installed: list[int] = []

    try:
        session.inherit_size(stdin_fd)
        installed = _install_signal_handlers(loop, session, stdin_fd)

        with raw_mode(stdin_fd) as is_raw:
            logger.debug(
                "Session running (raw_mode=%s, redactions=%d)", is_raw, len(redactions)
            )
            threading.Thread(
                target=_copy_input,
                args=(stdin_fd, session, config.read_size),
                name="ptyredact-stdin",
                daemon=True,
            ).start()
            pump.start(loop)

            returncode = await _reap_child(loop, session, pump, config.drain_timeout)

            if not await pump.wait_closed(config.drain_timeout):
                logger.debug(
                    "Output still open %.1fs after child exit; closing",
                    config.drain_timeout,
                )
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        pump.stop()
        session.close()

    if writer.pending:
        logger.debug("Dropped %d bytes of unterminated output", len(writer.pending))

    if pump.error is not None:
        return EXIT_FAILURE
    return exit_status(returncode)
