"""Core types flowing through the send pipeline.

Turns are frozen; every update replaces the stored instance. Guard tokens are
minted from a process-wide counter so ordering never depends on wall-clock
resolution.
"""

from __future__ import annotations

import itertools
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from functools import total_ordering
from typing import Literal

__all__ = [
    "TurnRole",
    "TurnStatus",
    "ChatStatus",
    "SendState",
    "Turn",
    "GuardToken",
    "TurnUpdate",
    "FragmentKind",
    "ContextFragment",
    "SessionFlags",
    "ApiMessage",
]


def _utcnow() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _new_turn_id() -> str:
    return f"turn-{uuid.uuid4().hex[:8]}"


TurnRole = Literal["user", "assistant"]


class TurnStatus(Enum):
    """Lifecycle of a single turn.

    Values:
        PENDING: Created but nothing received yet.
        STREAMING: Receiving incremental content.
        COMPLETE: Finished successfully.
        ERROR: Finished with an error; content starts with ``"Error: "``.
        CANCELLED: Stopped by the user; partial content is preserved.
    """

    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({TurnStatus.COMPLETE, TurnStatus.ERROR, TurnStatus.CANCELLED})


class ChatStatus(Enum):
    """Activity indicator shown next to the input box."""

    IDLE = "idle"
    THINKING = "thinking"
    SEARCHING = "searching"
    READING = "reading"
    DONE = "done"


class SendState(Enum):
    """Tagged state of the engine's most recent send."""

    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @classmethod
    def from_turn_status(cls, status: TurnStatus) -> "SendState":
        if status is TurnStatus.COMPLETE:
            return cls.COMPLETE
        if status is TurnStatus.ERROR:
            return cls.ERROR
        if status is TurnStatus.CANCELLED:
            return cls.CANCELLED
        return cls.STREAMING


@dataclass(slots=True, frozen=True)
class Turn:
    """One row of the conversation transcript.

    Attributes:
        role: ``user`` or ``assistant``.
        content: Raw text of the turn.
        status: Current lifecycle status.
        created_at: When the turn was created or last replaced.
        auxiliary_display: Extra text shown above the content (e.g. the
            optimized search query); never sent back to the model.
        turn_id: Stable identifier, independent of position.
    """

    role: TurnRole
    content: str = ""
    status: TurnStatus = TurnStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)
    auxiliary_display: str | None = None
    turn_id: str = field(default_factory=_new_turn_id)

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(role="user", content=content, status=TurnStatus.COMPLETE)

    @classmethod
    def assistant_placeholder(cls) -> "Turn":
        return cls(role="assistant", content="", status=TurnStatus.STREAMING)

    @property
    def is_open(self) -> bool:
        """An assistant turn still receiving content."""
        return self.role == "assistant" and not self.status.is_terminal

    def evolve(self, **changes: object) -> "Turn":
        """Return a copy with ``changes`` applied and a fresh timestamp."""
        changes.setdefault("created_at", _utcnow())
        return replace(self, **changes)  # type: ignore[arg-type]

    def to_message(self) -> "ApiMessage":
        return {"role": self.role, "content": self.content or ""}


_TOKEN_COUNTER = itertools.count(1)


@total_ordering
@dataclass(slots=True, frozen=True)
class GuardToken:
    """Opaque identifier for one send invocation; later tokens compare greater."""

    value: int

    @classmethod
    def mint(cls) -> "GuardToken":
        return cls(next(_TOKEN_COUNTER))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, GuardToken):
            return NotImplemented
        return self.value < other.value

    def __str__(self) -> str:
        return str(self.value)


@dataclass(slots=True, frozen=True)
class TurnUpdate:
    """A single callback payload from a strategy, a stage or the stop handler.

    ``text`` is cumulative for streaming/finished updates; for cancellations it
    is the notice appended to existing content; for errors it is the message.
    """

    text: str = ""
    is_finished: bool = False
    is_error: bool = False
    is_cancelled: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.is_finished or self.is_error or self.is_cancelled

    @property
    def status(self) -> TurnStatus:
        # error > cancelled > finished > streaming
        if self.is_error:
            return TurnStatus.ERROR
        if self.is_cancelled:
            return TurnStatus.CANCELLED
        if self.is_finished:
            return TurnStatus.COMPLETE
        return TurnStatus.STREAMING

    @classmethod
    def chunk(cls, text: str) -> "TurnUpdate":
        return cls(text=text)

    @classmethod
    def finished(cls, text: str = "") -> "TurnUpdate":
        return cls(text=text, is_finished=True)

    @classmethod
    def error(cls, message: str) -> "TurnUpdate":
        return cls(text=message, is_finished=True, is_error=True)

    @classmethod
    def cancelled(cls, notice: str) -> "TurnUpdate":
        return cls(text=notice, is_finished=True, is_cancelled=True)


FragmentKind = Literal["persona", "user_profile", "note", "page", "web", "scraped"]


@dataclass(slots=True, frozen=True)
class ContextFragment:
    """A piece of system-prompt text contributed by one pipeline stage."""

    kind: FragmentKind
    text: str

    def __bool__(self) -> bool:
        return bool(self.text)


@dataclass(slots=True, frozen=True)
class SessionFlags:
    """UI flags maintained alongside the transcript."""

    loading: bool = False
    chat_status: ChatStatus = ChatStatus.IDLE


ApiMessage = dict[str, str]
