"""Split a worker's output byte stream into protocol lines."""

from __future__ import annotations

__all__ = ["LineFramer"]

_TERMINATOR = ord("\n")


class LineFramer:
    """Accumulate raw chunks and hand back complete, trimmed lines.

    Unterminated trailing data stays buffered until a later chunk completes
    it or :meth:`reset` discards it. The scan offset is remembered between
    calls so a long partial line is never searched twice.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self._buffer = bytearray()
        self._scanned = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet resolved into a line."""

        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        if not chunk:
            return []
        self._buffer.extend(chunk)
        lines: list[str] = []
        start = 0
        index = self._buffer.find(_TERMINATOR, self._scanned)
        while index != -1:
            text = self._buffer[start:index].decode(self.encoding, errors="replace").strip()
            if text:
                lines.append(text)
            start = index + 1
            index = self._buffer.find(_TERMINATOR, start)
        if start:
            del self._buffer[:start]
        self._scanned = len(self._buffer)
        return lines

    def reset(self) -> None:
        self._buffer.clear()
        self._scanned = 0
