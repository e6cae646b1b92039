"""Completion guard: the single authoritative-send register."""

from __future__ import annotations

import logging

from .types import GuardToken

LOGGER = logging.getLogger(__name__)

__all__ = ["CompletionGuard"]


class CompletionGuard:
    """Single-slot register naming the send whose callbacks may mutate the transcript.

    The guard stands in for a lock: with cooperative scheduling no two
    callbacks run at once, so checking the slot before each mutation is enough
    to keep a superseded send's late chunks out of the transcript.
    """

    __slots__ = ("_active",)

    def __init__(self) -> None:
        self._active: GuardToken | None = None

    @property
    def active(self) -> GuardToken | None:
        return self._active

    def begin(self) -> GuardToken:
        """Mint a new token and make it the active one.

        Callers are responsible for cancelling the previous token's scope
        first; the engine does this before calling ``begin``.
        """
        token = GuardToken.mint()
        if self._active is not None:
            LOGGER.debug("Guard %s superseded by %s", self._active, token)
        self._active = token
        return token

    def is_active(self, token: GuardToken | None) -> bool:
        return token is not None and self._active == token

    def complete(self, token: GuardToken | None) -> bool:
        """Clear the slot if ``token`` is the active one; return whether it was."""
        if token is None or self._active != token:
            return False
        self._active = None
        return True

    def __repr__(self) -> str:
        return f"CompletionGuard(active={self._active})"
