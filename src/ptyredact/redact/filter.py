"""Redacting stream filter for PTY output."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable, Iterator, Protocol

MASK_BYTE = b"*"


class Sink(Protocol):
    def write(self, data: bytes, /) -> object: ...


@dataclass(frozen=True)
class RedactionSet:
    """Ordered, immutable collection of literal secrets.

    Secrets are applied in order, so when two entries overlap the earlier
    one wins.
    """

    secrets: tuple[bytes, ...] = ()

    @classmethod
    def parse(cls, spec: str | bytes) -> RedactionSet:
        """Build a set from a newline-delimited string.

        Empty fragments are dropped, so ``""`` yields an empty set. Text is
        encoded with ``os.fsencode``, the inverse of how argv was decoded,
        so secrets that are not valid UTF-8 keep their original bytes.
        """
        raw = os.fsencode(spec) if isinstance(spec, str) else spec
        return cls.from_iterable(raw.split(b"\n"))

    @classmethod
    def from_iterable(cls, secrets: Iterable[str | bytes]) -> RedactionSet:
        entries: list[bytes] = []
        for s in secrets:
            b = os.fsencode(s) if isinstance(s, str) else bytes(s)
            if b:
                entries.append(b)
        return cls(secrets=tuple(entries))

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.secrets)

    def __len__(self) -> int:
        return len(self.secrets)

    def __bool__(self) -> bool:
        return bool(self.secrets)

    def __repr__(self) -> str:
        # Never render the secrets themselves.
        return f"RedactionSet(<{len(self.secrets)} secrets>)"


class RedactingWriter:
    """Line-buffering writer that masks secrets before forwarding.

    Bytes are held in a pending buffer until a newline arrives. Each
    completed line (newline included) has every secret replaced by a run of
    ``*`` of the same length and is then written to ``sink``.

    A trailing line that never receives its newline stays in the buffer
    and is never forwarded, not even at end of stream.
    """

    def __init__(self, sink: Sink, redactions: RedactionSet) -> None:
        self._sink = sink
        self._redactions = redactions
        self._buf = bytearray()
        self._lines_written = 0

    def write(self, data: bytes) -> int:
        """Buffer ``data`` and forward every line it completes.

        Returns ``len(data)``: all bytes are at least buffered. If the sink
        raises, the exception propagates and the line being written is
        dropped from the buffer.
        """
        self._buf += data
        while True:
            idx = self._buf.find(b"\n")
            if idx == -1:
                break
            line = bytes(self._buf[: idx + 1])
            del self._buf[: idx + 1]
            self._sink.write(self.redact_line(line))
            self._lines_written += 1
        return len(data)

    def redact_line(self, line: bytes) -> bytes:
        """Mask every secret in ``line``, applying entries in set order."""
        for secret in self._redactions:
            line = line.replace(secret, MASK_BYTE * len(secret))
        return line

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet forming a complete line."""
        return bytes(self._buf)

    @property
    def lines_written(self) -> int:
        return self._lines_written
