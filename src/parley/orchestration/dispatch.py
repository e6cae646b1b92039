"""Dispatch selector: route a prepared send to exactly one strategy.

``compute_level`` picks the strategy: ``high`` and ``medium`` run the
multi-step compute strategies, anything else streams directly from the
selected backend. The selector never retries; every strategy reports
through ``emit`` and the reconciler decides what reaches the transcript.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Literal, Sequence

from ..ai.endpoints import resolve_chat_url
from .cancellation import CancellationScope
from .collaborators import AuthContext, ComputeStrategy, StreamingTransport
from .errors import ConfigError
from .types import ApiMessage, TurnUpdate

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import ModelConfig, Settings

LOGGER = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_TEMPERATURE",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_TOP_P",
    "DEFAULT_PRESENCE_PENALTY",
    "StrategyName",
    "DispatchRequest",
    "DispatchSelector",
    "build_messages",
    "build_payload",
    "select_strategy",
]

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 32048
DEFAULT_TOP_P = 1
DEFAULT_PRESENCE_PENALTY = 0

StrategyName = Literal["high", "medium", "direct"]

Emit = Callable[[TurnUpdate], None]


@dataclass(slots=True)
class DispatchRequest:
    """Everything a strategy needs for one send.

    Attributes:
        message: The user's message exactly as typed.
        query: What multi-step strategies work on; the optimized query in web
            mode, otherwise the message.
        history: Prior turns as API messages, oldest first.
        system_prompt: Assembled context; omitted from the payload when empty.
        settings: Snapshot of the user's settings for this send.
        model: The selected model.
        auth: Authorization headers for the model's host, if any.
    """

    message: str
    query: str
    history: Sequence[ApiMessage]
    system_prompt: str
    settings: Settings
    model: ModelConfig
    auth: AuthContext = None
    extra: Dict[str, Any] = field(default_factory=dict)


def select_strategy(compute_level: str | None) -> StrategyName:
    if compute_level == "high":
        return "high"
    if compute_level == "medium":
        return "medium"
    return "direct"


def build_messages(system_prompt: str, history: Sequence[ApiMessage], message: str) -> List[ApiMessage]:
    """System prompt (when present), then history, then the raw user message."""
    messages: List[ApiMessage] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.extend(dict(item) for item in history)
    messages.append({"role": "user", "content": message})
    return messages


def build_payload(request: DispatchRequest) -> Dict[str, Any]:
    settings = request.settings
    return {
        "stream": True,
        "model": settings.selected_model,
        "messages": build_messages(request.system_prompt, request.history, request.message),
        "temperature": _or_default(settings.temperature, DEFAULT_TEMPERATURE),
        "max_tokens": _or_default(settings.max_tokens, DEFAULT_MAX_TOKENS),
        "top_p": _or_default(settings.top_p, DEFAULT_TOP_P),
        "presence_penalty": _or_default(settings.presence_penalty, DEFAULT_PRESENCE_PENALTY),
    }


def _or_default(value: Any, default: Any) -> Any:
    return default if value is None else value


class DispatchSelector:
    """Invokes one of the three interchangeable strategies."""

    def __init__(
        self,
        transport: StreamingTransport,
        medium: ComputeStrategy,
        high: ComputeStrategy,
    ) -> None:
        self._transport = transport
        self._strategies: Dict[str, ComputeStrategy] = {"medium": medium, "high": high}

    async def dispatch(self, request: DispatchRequest, emit: Emit, scope: CancellationScope) -> StrategyName:
        """Run the strategy for ``request.settings.compute_level``.

        Raises:
            ConfigError: Direct streaming with a host that has no endpoint.
            OperationCancelledError: ``scope`` was aborted.
        """
        scope.raise_if_cancelled()
        name = select_strategy(request.settings.compute_level)
        LOGGER.debug("Dispatching via %s strategy (model: %s)", name, request.model.id)

        if name == "direct":
            await self._stream_direct(request, emit, scope)
            return name

        def on_update(text: str, is_finished: bool) -> None:
            emit(TurnUpdate(text=text, is_finished=bool(is_finished)))

        strategy = self._strategies[name]
        await scope.run(
            strategy.run(
                request.query,
                list(request.history),
                request.settings,
                request.model,
                request.auth,
                on_update,
                scope,
            )
        )
        return name

    async def _stream_direct(self, request: DispatchRequest, emit: Emit, scope: CancellationScope) -> None:
        host = request.model.host
        url = resolve_chat_url(request.settings, host)
        if not url:
            raise ConfigError(f"Configuration error: Could not determine API URL for host '{host}'.")

        payload = build_payload(request)

        def on_chunk(text: str, is_finished: bool = False, is_error: bool = False) -> None:
            emit(TurnUpdate(text=text or "", is_finished=bool(is_finished), is_error=bool(is_error)))
            if is_finished or is_error:
                LOGGER.debug("Direct stream finished (error: %s)", bool(is_error))

        await scope.run(self._transport.stream(url, payload, on_chunk, request.auth, host, scope))
