"""Per-channel piece extraction.

PieceStream keeps one DelimiterBuffer for stdout and one for stderr and
turns fragment arrivals into piece callbacks. The two channels never
share state; order is only guaranteed within a channel.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .buffer import DelimiterBuffer

__all__ = ["Channel", "Piece", "PieceSink", "PieceStream"]

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    """Output channel of the supervised process."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class Piece:
    """One delimiter-bounded segment of a channel's output.

    Attributes:
        channel: Channel the piece was read from
        text: Piece content without the delimiter
    """

    channel: Channel
    text: str


# Receives (channel, text) for every completed piece
PieceSink = Callable[[Channel, str], None]


class PieceStream:
    """Feeds raw fragments through per-channel delimiter buffers.

    Example:
        pieces = []
        stream = PieceStream("\\n", lambda channel, text: pieces.append(text))
        stream.feed(Channel.STDOUT, "a\\nb")
        # pieces == ["a"], stream.pending(Channel.STDOUT) == "b"
    """

    def __init__(self, delimiter: str, sink: PieceSink) -> None:
        self._delimiter = delimiter
        self._sink = sink
        self._buffers: dict[Channel, DelimiterBuffer] = {
            channel: DelimiterBuffer(delimiter) for channel in Channel
        }

    @property
    def delimiter(self) -> str:
        return self._delimiter

    @property
    def segmented(self) -> bool:
        """False when the empty delimiter disables piece extraction."""
        return bool(self._delimiter)

    def feed(self, channel: Channel, fragment: str) -> int:
        """Append a fragment and emit every piece it completes.

        Args:
            channel: Channel the fragment was read from
            fragment: Decoded text, any size

        Returns:
            Number of pieces emitted for this fragment
        """
        buffer = self._buffers[channel]
        buffer.append(fragment)

        emitted = 0
        while buffer.is_finish():
            for text in buffer.reset():
                self._sink(channel, text)
                emitted += 1

        if emitted:
            logger.debug(f"Emitted {emitted} {channel.value} piece(s)")
        return emitted

    def pending(self, channel: Channel) -> str:
        """Pending tail of a channel (text after the last delimiter)."""
        return self._buffers[channel].to_string()
