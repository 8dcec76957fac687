"""Delegates receiving piece events and outcomes.

A delegate is the only outbound surface of the supervisor:

- on_piece(channel, text) for every completed piece, as soon as it is found
- on_outcome(outcome) exactly once per run, after the last piece of that run

Callbacks run on the event loop thread and should return quickly.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable

from .outcome import Outcome
from .stream import Channel, Piece

__all__ = ["Delegate", "RecordingDelegate", "CallbackDelegate"]

logger = logging.getLogger(__name__)


class Delegate(ABC):
    """Observer of a supervised process."""

    @abstractmethod
    def on_piece(self, channel: Channel, text: str) -> None:
        """Called for each completed piece."""
        ...

    @abstractmethod
    def on_outcome(self, outcome: Outcome) -> None:
        """Called once per run with the terminal outcome."""
        ...


class RecordingDelegate(Delegate):
    """Delegate that keeps everything it receives.

    Useful in tests and for callers that poll instead of reacting.

    Example:
        delegate = RecordingDelegate()
        supervisor = ProcessSupervisor("./plugin.sh", delegate=delegate)
        await supervisor.start()
        outcome = await delegate.wait_for_outcome()
    """

    def __init__(self) -> None:
        self.pieces: list[Piece] = []
        self.outcomes: list[Outcome] = []
        self._outcome_event = asyncio.Event()

    def on_piece(self, channel: Channel, text: str) -> None:
        self.pieces.append(Piece(channel, text))

    def on_outcome(self, outcome: Outcome) -> None:
        self.outcomes.append(outcome)
        self._outcome_event.set()

    @property
    def stdout_pieces(self) -> list[str]:
        return [p.text for p in self.pieces if p.channel is Channel.STDOUT]

    @property
    def stderr_pieces(self) -> list[str]:
        return [p.text for p in self.pieces if p.channel is Channel.STDERR]

    @property
    def last_outcome(self) -> Outcome | None:
        return self.outcomes[-1] if self.outcomes else None

    async def wait_for_outcome(self, count: int = 1) -> Outcome:
        """Wait until at least `count` outcomes were recorded.

        Returns:
            The most recent outcome
        """
        while len(self.outcomes) < count:
            self._outcome_event.clear()
            await self._outcome_event.wait()
        return self.outcomes[-1]

    def clear(self) -> None:
        """Forget recorded pieces and outcomes."""
        self.pieces.clear()
        self.outcomes.clear()
        self._outcome_event.clear()


class CallbackDelegate(Delegate):
    """Adapts plain callables to the Delegate interface."""

    def __init__(
        self,
        on_piece: Callable[[Channel, str], None] | None = None,
        on_outcome: Callable[[Outcome], None] | None = None,
    ) -> None:
        self._on_piece = on_piece
        self._on_outcome = on_outcome

    def on_piece(self, channel: Channel, text: str) -> None:
        if self._on_piece:
            self._on_piece(channel, text)

    def on_outcome(self, outcome: Outcome) -> None:
        if self._on_outcome:
            self._on_outcome(outcome)
