"""Stream reconciler: folds strategy callbacks into the transcript.

:func:`apply_update` is the pure reducer; :class:`StreamReconciler` is the
single entry point that commits its results, flips the session flags and
releases the guard. Callbacks may arrive in any order, from the active send
or from sends that were already superseded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from ..events import ChatStatusChanged, EventBus, LoadingChanged, SendFinished, TurnAppended, TurnUpdated
from ..utils.logging import send_logger
from .cancellation import CancellationController
from .guard import CompletionGuard
from .turn_store import TurnStore
from .types import ChatStatus, GuardToken, SendState, SessionFlags, Turn, TurnStatus, TurnUpdate

LOGGER = logging.getLogger(__name__)

__all__ = [
    "CANCELLED_BY_USER_NOTICE",
    "ReconcileResult",
    "apply_update",
    "merge_content",
    "StreamReconciler",
]

CANCELLED_BY_USER_NOTICE = "[Operation cancelled by user]"
_LATE_CANCEL_MARKERS = ("Operation cancelled by user", "Streaming operation cancelled")
_UNKNOWN_ERROR = "Unknown stream/handler error"
_UNKNOWN_OPERATION_ERROR = "Unknown operation error"


@dataclass(slots=True, frozen=True)
class ReconcileResult:
    """Outcome of applying one update.

    Attributes:
        turns: The transcript after the update (identical object when unchanged).
        changed: Whether ``turns`` differs from the input.
        appended: Whether the change appended a turn rather than replacing one.
        terminal: Whether the update was a terminal signal.
        release_guard: Whether the update's token was active and must be cleared.
        flags: Session flags to install, or None to leave them untouched.
        skipped: Why the update did not touch content, if it did not.
    """

    turns: tuple[Turn, ...]
    changed: bool = False
    appended: bool = False
    terminal: bool = False
    release_guard: bool = False
    flags: SessionFlags | None = None
    skipped: str | None = None


_RESYNC_FLAGS = SessionFlags(loading=False, chat_status=ChatStatus.IDLE)


def merge_content(existing: str, update: TurnUpdate) -> str:
    """Merge ``update`` into ``existing`` content.

    Cancellation appends its notice so partial output survives; errors
    replace content with an ``Error:`` line; everything else is cumulative
    and replaces content wholesale.
    """
    if update.is_error:
        return f"Error: {update.text or _UNKNOWN_ERROR}"
    if update.is_cancelled:
        existing = existing or ""
        return existing + (" " if existing else "") + update.text
    return update.text


def _terminal_flags(update: TurnUpdate) -> SessionFlags:
    if update.is_error or update.is_cancelled:
        return SessionFlags(loading=False, chat_status=ChatStatus.IDLE)
    return SessionFlags(loading=False, chat_status=ChatStatus.DONE)


def _is_late_final_signal(update: TurnUpdate) -> bool:
    bare_finish = update.text == "" and update.is_finished and not update.is_error and not update.is_cancelled
    late_cancel = (update.is_error or update.is_cancelled) and any(
        marker in update.text for marker in _LATE_CANCEL_MARKERS
    )
    return bare_finish or late_cancel


def apply_update(
    turns: Sequence[Turn],
    token: GuardToken | None,
    active_token: GuardToken | None,
    update: TurnUpdate,
) -> ReconcileResult:
    """Apply ``update`` tagged with ``token`` to ``turns``; pure.

    Rules, in order:

    * non-terminal updates from a token other than the active one are dropped;
    * a terminal update from a superseded token (another send is active)
      never touches content but resets the loading flags;
    * with the slot already empty, a bare finish or a cancellation notice for
      a stale token only resynchronizes flags;
    * terminal statuses absorb: a closed assistant turn is never rewritten;
    * with no trailing assistant turn, errors append a fresh error turn and
      everything else is ignored.
    """
    current = tuple(turns)
    is_active = token is not None and token == active_token

    if not update.is_terminal and not is_active:
        return ReconcileResult(current, skipped="stale")

    if update.is_terminal and active_token is not None and not is_active:
        return ReconcileResult(current, terminal=True, flags=_RESYNC_FLAGS, skipped="superseded")

    if update.is_terminal and active_token is None and token is not None and _is_late_final_signal(update):
        return ReconcileResult(current, terminal=True, flags=_RESYNC_FLAGS, skipped="finalized")

    terminal = update.is_terminal
    flags = _terminal_flags(update) if terminal else None
    last = current[-1] if current else None

    if last is None or last.role != "assistant":
        if update.is_error:
            error_turn = Turn(
                role="assistant",
                content=f"Error: {update.text or _UNKNOWN_OPERATION_ERROR}",
                status=TurnStatus.ERROR,
            )
            return ReconcileResult(
                current + (error_turn,),
                changed=True,
                appended=True,
                terminal=True,
                release_guard=is_active,
                flags=flags,
            )
        return ReconcileResult(
            current, terminal=terminal, release_guard=terminal and is_active, flags=flags, skipped="no-assistant-turn"
        )

    if last.status.is_terminal:
        return ReconcileResult(
            current, terminal=terminal, release_guard=terminal and is_active, flags=flags, skipped="absorbed"
        )

    replaced = last.evolve(content=merge_content(last.content, update), status=update.status)
    return ReconcileResult(
        current[:-1] + (replaced,),
        changed=True,
        terminal=terminal,
        release_guard=terminal and is_active,
        flags=flags,
    )


class StreamReconciler:
    """Commits reducer results to the store and keeps the session flags in sync.

    This is the only code path that mutates the assistant turn after the
    placeholder is appended.
    """

    def __init__(
        self,
        store: TurnStore,
        guard: CompletionGuard,
        cancellation: CancellationController,
        bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._guard = guard
        self._cancellation = cancellation
        self._bus = bus or EventBus()
        self._flags = SessionFlags()
        self._state = SendState.IDLE

    @property
    def flags(self) -> SessionFlags:
        return self._flags

    @property
    def state(self) -> SendState:
        return self._state

    def set_loading(self, loading: bool) -> None:
        if self._flags.loading == loading:
            return
        self._flags = SessionFlags(loading=loading, chat_status=self._flags.chat_status)
        self._bus.publish(LoadingChanged(loading=loading))

    def set_chat_status(self, status: ChatStatus) -> None:
        if self._flags.chat_status is status:
            return
        self._flags = SessionFlags(loading=self._flags.loading, chat_status=status)
        self._bus.publish(ChatStatusChanged(status=status))

    def mark_streaming(self) -> None:
        self._state = SendState.STREAMING

    def append(self, turn: Turn) -> Turn:
        self._store.append(turn)
        self._bus.publish(TurnAppended(turn=turn, index=len(self._store) - 1))
        return turn

    def annotate_open_turn(self, auxiliary_display: str) -> Turn | None:
        """Attach display-only text to the open assistant turn, if there still is one."""
        turn = self._store.open_assistant_turn()
        if turn is None:
            return None
        updated = self._store.update(turn.turn_id, auxiliary_display=auxiliary_display)
        if updated is not None:
            self._bus.publish(TurnUpdated(turn=updated, index=len(self._store) - 1))
        return updated

    def apply(self, token: GuardToken | None, update: TurnUpdate) -> ReconcileResult:
        """Apply one update; safe to call from any completion order."""
        log = send_logger(LOGGER, token)
        result = apply_update(self._store.turns, token, self._guard.active, update)

        if result.skipped == "stale":
            log.debug("Guard mismatch (current: %s), skipping non-final update.", self._guard.active)
        elif result.skipped in {"superseded", "finalized"}:
            log.debug("Signal received after operation already finalized. Preserving existing state.")
        elif result.skipped == "no-assistant-turn":
            log.warning("No assistant turn found or last turn is not assistant.")

        if result.changed:
            self._store.commit(result.turns)
            index = len(result.turns) - 1
            event_cls = TurnAppended if result.appended else TurnUpdated
            self._bus.publish(event_cls(turn=result.turns[-1], index=index))

        if result.flags is not None:
            self.set_loading(result.flags.loading)
            self.set_chat_status(result.flags.chat_status)

        if result.release_guard and token is not None:
            log.debug(
                "Final state (Finished: %s, Error: %s, Cancelled: %s). Clearing guard and loading.",
                update.is_finished,
                update.is_error,
                update.is_cancelled,
            )
            self._guard.complete(token)
            self._cancellation.release(token)
            self._state = SendState.from_turn_status(update.status)
            self._bus.publish(SendFinished(token=token.value, state=self._state))

        return result
