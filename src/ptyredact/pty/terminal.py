"""Controlling-terminal helpers: raw mode and window size."""

from __future__ import annotations

import fcntl
import logging
import os
import struct
import termios
import tty
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)

_WINSIZE_FMT = "HHHH"


def is_terminal(fd: int) -> bool:
    try:
        return os.isatty(fd)
    except OSError:
        return False


def get_winsize(fd: int) -> tuple[int, int]:
    """Return ``(rows, cols)`` of the terminal behind ``fd``.

    Raises OSError (ENOTTY) when ``fd`` is not a terminal.
    """
    packed = fcntl.ioctl(fd, termios.TIOCGWINSZ, b"\x00" * 8)
    rows, cols, _xpix, _ypix = struct.unpack(_WINSIZE_FMT, packed)
    return rows, cols


def set_winsize(fd: int, rows: int, cols: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack(_WINSIZE_FMT, rows, cols, 0, 0))


@contextmanager
def raw_mode(fd: int) -> Iterator[bool]:
    """Put terminal ``fd`` in raw mode for the duration of the block.

    Yields True when raw mode is active. A non-terminal ``fd`` or a failed
    switch yields False and leaves the terminal untouched. The original
    attributes are restored exactly once, however the block exits.
    """
    if not is_terminal(fd):
        yield False
        return

    try:
        saved = termios.tcgetattr(fd)
    except termios.error as e:
        logger.debug("Cannot read terminal attributes of fd %d: %s", fd, e)
        yield False
        return

    try:
        tty.setraw(fd)
    except termios.error as e:
        logger.debug("Raw mode unavailable on fd %d: %s", fd, e)
        termios.tcsetattr(fd, termios.TCSANOW, saved)
        yield False
        return

    logger.debug("Terminal fd %d switched to raw mode", fd)
    try:
        yield True
    finally:
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)
            logger.debug("Terminal fd %d restored", fd)
        except termios.error as e:
            logger.warning("Failed to restore terminal mode: %s", e)
