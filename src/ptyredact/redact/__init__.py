"""Output redaction — line-buffered scrubbing of literal secrets.

Every byte leaving the child's PTY passes through a ``RedactingWriter``
before it reaches the real terminal. Redaction happens per completed line,
so a secret that arrives split across two PTY reads is still caught.
"""

from ptyredact.redact.filter import MASK_BYTE, RedactingWriter, RedactionSet

__all__ = [
    "MASK_BYTE",
    "RedactingWriter",
    "RedactionSet",
]
