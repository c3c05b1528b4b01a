"""PTY process management — run a child on a pseudo-terminal.

The child sees a real terminal (colors, line editing, job control) while
the parent owns the master side and decides what reaches the user.
"""

from ptyredact.pty.session import PTYSession, PTYStartError, PTYStatus
from ptyredact.pty.terminal import get_winsize, is_terminal, raw_mode, set_winsize

__all__ = [
    "PTYSession",
    "PTYStartError",
    "PTYStatus",
    "get_winsize",
    "is_terminal",
    "raw_mode",
    "set_winsize",
]
