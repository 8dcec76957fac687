"""Delimiter buffer for chunked process output.

Output from a child process arrives in reads of arbitrary size, so a
delimiter may be split across two chunks. DelimiterBuffer accumulates
fragments and only hands out text that is closed by a complete
delimiter occurrence; everything after the last occurrence stays
pending until more data arrives.

Example:
    buffer = DelimiterBuffer("~~~")
    buffer.append("first~")
    buffer.is_finish()      # False, only a partial delimiter so far
    buffer.append("~~sec")
    buffer.reset()          # ["first"]
    buffer.to_string()      # "sec"
"""

from __future__ import annotations

__all__ = ["DelimiterBuffer"]


class DelimiterBuffer:
    """Accumulates text and splits it on a fixed delimiter.

    An empty delimiter never matches: the buffer then only accumulates.

    Attributes:
        delimiter: Piece boundary marker, fixed at construction
    """

    def __init__(self, delimiter: str = "") -> None:
        self._delimiter = delimiter
        self._store = ""
        # Offset before which no complete delimiter can start.
        self._scan_from = 0

    @property
    def delimiter(self) -> str:
        """Piece boundary marker."""
        return self._delimiter

    def append(self, fragment: str) -> None:
        """Append a fragment to the pending store."""
        if fragment:
            self._store += fragment

    def is_finish(self) -> bool:
        """Whether the store holds at least one complete delimiter."""
        if not self._delimiter:
            return False

        if self._store.find(self._delimiter, self._scan_from) != -1:
            return True

        # A delimiter straddling the current end may still complete later,
        # so only skip what can no longer be the start of a match.
        self._scan_from = max(0, len(self._store) - len(self._delimiter) + 1)
        return False

    def to_string(self) -> str:
        """Return the pending store verbatim."""
        return self._store

    def reset(self) -> list[str]:
        """Remove and return every delimiter-closed segment.

        Segments are the texts in front of each non-overlapping
        occurrence, scanning left to right. The text after the last
        occurrence stays in the store. Without any occurrence nothing is
        returned and the store is left untouched.

        Returns:
            Completed segments in order (possibly empty strings)
        """
        if not self.is_finish():
            return []

        *segments, tail = self._store.split(self._delimiter)
        self._store = tail
        self._scan_from = 0
        return segments

    def __str__(self) -> str:
        return self._store

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        return (
            f"DelimiterBuffer(delimiter={self._delimiter!r}, "
            f"pending={len(self._store)} chars)"
        )
