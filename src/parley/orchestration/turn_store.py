"""Ordered transcript of user and assistant turns."""

from __future__ import annotations

import logging
from typing import Iterator, Sequence

from .types import ApiMessage, Turn

LOGGER = logging.getLogger(__name__)

__all__ = ["TurnStore"]


class TurnStore:
    """Owns the transcript; mutated only through append, update and commit.

    Turns are frozen, so readers can hold on to :attr:`turns` snapshots
    without seeing later mutations.
    """

    def __init__(self, turns: Sequence[Turn] | None = None) -> None:
        self._turns: list[Turn] = list(turns or ())
        self._revision = 0

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def revision(self) -> int:
        """Incremented on every mutation; handy for change detection in tests and UIs."""
        return self._revision

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))

    def last(self) -> Turn | None:
        return self._turns[-1] if self._turns else None

    def find(self, turn_id: str) -> Turn | None:
        for turn in self._turns:
            if turn.turn_id == turn_id:
                return turn
        return None

    def open_assistant_turn(self) -> Turn | None:
        """Return the trailing assistant turn if it is still streaming."""
        last = self.last()
        if last is not None and last.is_open:
            return last
        return None

    def append(self, turn: Turn) -> Turn:
        if turn.role == "assistant" and self.open_assistant_turn() is not None:
            # Only one open assistant turn at a time; the engine supersedes first.
            LOGGER.warning("Appending assistant turn %s while another is still open", turn.turn_id)
        self._turns.append(turn)
        self._revision += 1
        return turn

    def update(self, turn_id: str, **changes: object) -> Turn | None:
        """Replace the turn identified by ``turn_id`` with an evolved copy."""
        for index, turn in enumerate(self._turns):
            if turn.turn_id == turn_id:
                updated = turn.evolve(**changes)
                self._turns[index] = updated
                self._revision += 1
                return updated
        LOGGER.debug("TurnStore.update: no turn with id %s", turn_id)
        return None

    def commit(self, turns: Sequence[Turn]) -> None:
        """Install a transcript produced by the reconciler."""
        self._turns = list(turns)
        self._revision += 1

    def history(self) -> list[ApiMessage]:
        """Role/content pairs for every stored turn, as sent to the model."""
        return [turn.to_message() for turn in self._turns]

    def clear(self) -> None:
        self._turns.clear()
        self._revision += 1
