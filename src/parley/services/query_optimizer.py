"""Rewrite a chat message into a web search query using the selected model."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, List, Sequence

from ..ai.client import AIClient, ClientSettings
from ..orchestration.cancellation import CancellationScope
from ..orchestration.collaborators import AuthContext
from ..orchestration.errors import OperationCancelledError, OptimizeError, ParleyError
from ..orchestration.types import ApiMessage

if TYPE_CHECKING:  # pragma: no cover
    from .settings import ModelConfig, Settings

LOGGER = logging.getLogger(__name__)

__all__ = ["ModelQueryOptimizer", "clean_query", "OPTIMIZER_SYSTEM_PROMPT"]

OPTIMIZER_SYSTEM_PROMPT = (
    "You are a search query optimizer. Given the conversation so far and the user's latest "
    "message, write the single best web search query for finding the information the user needs. "
    "Reply with the query only: no explanation, no quotes, no punctuation at the end."
)

# Only the most recent turns matter for disambiguating the query.
_HISTORY_TURNS = 6
_QUOTE_CHARS = "\"'`“”‘’"


def clean_query(text: str) -> str:
    """First non-empty line of the model's answer with surrounding quotes removed."""
    for line in (text or "").splitlines():
        line = line.strip()
        if line:
            return line.strip(_QUOTE_CHARS).strip()
    return ""


class ModelQueryOptimizer:
    """:class:`QueryOptimizer` asking the selected model for a concise query."""

    def __init__(self, *, client_factory: Callable[[ClientSettings], AIClient] | None = None) -> None:
        self._client_factory = client_factory or AIClient

    async def optimize(
        self,
        message: str,
        settings: Settings,
        model: ModelConfig,
        auth: AuthContext,
        scope: CancellationScope,
        history: Sequence[ApiMessage],
    ) -> str:
        scope.raise_if_cancelled()
        messages: List[ApiMessage] = [{"role": "system", "content": OPTIMIZER_SYSTEM_PROMPT}]
        messages.extend(dict(item) for item in list(history)[-_HISTORY_TURNS:] if item.get("content"))
        messages.append({"role": "user", "content": f"Latest message: {message}"})

        try:
            client = self._client_factory(ClientSettings.for_model(settings, model, auth))
        except ParleyError as exc:
            raise OptimizeError(str(exc)) from exc
        try:
            answer = await scope.run(client.complete(messages, temperature=0.0, max_tokens=64))
        except OperationCancelledError:
            raise
        except ParleyError as exc:
            raise OptimizeError(f"Query optimization failed: {exc}") from exc
        finally:
            await client.aclose()

        query = clean_query(answer)
        LOGGER.debug("Optimizer returned %r for %r", query, message)
        return query
