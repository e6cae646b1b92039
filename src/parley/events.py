"""Event bus carrying transcript and session changes to the UI layer.

The engine never calls into rendering code; it publishes these events and
the UI subscribes to the ones it draws.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

    from .orchestration.types import ChatStatus, SendState, Turn

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events published by the engine."""

    pass


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Transcript Events
# =============================================================================


@dataclass(slots=True)
class TurnAppended(Event):
    """Emitted when a user turn or assistant placeholder is added.

    Attributes:
        turn: The appended turn.
        index: Its position in the transcript.
    """

    turn: Turn
    index: int


@dataclass(slots=True)
class TurnUpdated(Event):
    """Emitted whenever an existing turn is replaced (content, status or display).

    Attributes:
        turn: The new state of the turn.
        index: Its position in the transcript.
    """

    turn: Turn
    index: int


_QUIET_EVENT_TYPES.add(TurnUpdated)


# =============================================================================
# Session Events
# =============================================================================


@dataclass(slots=True)
class LoadingChanged(Event):
    """Emitted when the send button should toggle between send and stop."""

    loading: bool


@dataclass(slots=True)
class ChatStatusChanged(Event):
    """Emitted when the activity indicator changes (thinking, searching...)."""

    status: ChatStatus


@dataclass(slots=True)
class WebContentChanged(Event):
    """Emitted when the web-search context shown to the user changes."""

    content: str


@dataclass(slots=True)
class PageContentChanged(Event):
    """Emitted when the page context fed to the model changes."""

    content: str


@dataclass(slots=True)
class MessageCleared(Event):
    """Emitted once the input box should be emptied after a send starts."""

    pass


@dataclass(slots=True)
class SendStarted(Event):
    """Emitted when a send takes the guard.

    Attributes:
        token: The guard token value of the new send.
        message: The raw user message.
    """

    token: int
    message: str


@dataclass(slots=True)
class SendFinished(Event):
    """Emitted when a send's terminal update has been applied.

    Attributes:
        token: The guard token value of the finished send.
        state: Terminal state of the send.
    """

    token: int
    state: SendState


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Handlers that are bound methods are held weakly so a discarded view
    does not keep receiving events. All operations are expected to run on
    the event loop thread.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler`` for events of exactly ``event_type``."""
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug("Subscribed handler %s to %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                return

    def publish(self, event: E) -> None:
        """Invoke every live handler synchronously, in registration order.

        A handler that raises is logged and does not stop the others.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if not handlers:
            return

        if not is_quiet:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead_indices: list[int] = []
        for i, handler_ref in enumerate(list(handlers)):
            handler = handler_ref.resolve()
            if handler is None:
                dead_indices.append(i)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for i in reversed(dead_indices):
            handlers.pop(i)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Any) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "TurnAppended",
    "TurnUpdated",
    "LoadingChanged",
    "ChatStatusChanged",
    "WebContentChanged",
    "PageContentChanged",
    "MessageCleared",
    "SendStarted",
    "SendFinished",
]
