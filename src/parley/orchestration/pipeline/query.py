"""Query stage: rewrite the user's message into a search query (web mode)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Sequence

from ..cancellation import CancellationScope
from ..collaborators import AuthContext, QueryOptimizer
from ..errors import OperationCancelledError
from ..types import ApiMessage

if TYPE_CHECKING:  # pragma: no cover
    from ...services.settings import ModelConfig, Settings

LOGGER = logging.getLogger(__name__)

__all__ = ["QuerySource", "OptimizedQuery", "optimize_query"]

QuerySource = Literal["optimized", "original", "fallback"]


@dataclass(slots=True, frozen=True)
class OptimizedQuery:
    """The query to search with and where it came from.

    Attributes:
        query: Text handed to the web searcher.
        source: ``optimized`` when the model rewrote it, ``original`` when the
            model returned nothing new, ``fallback`` when optimization failed.
    """

    query: str
    source: QuerySource

    @property
    def display(self) -> str:
        """Markdown line shown above the assistant's answer."""
        if self.source == "optimized":
            return f'**Optimized query:** "*{self.query}*"\n\n'
        if self.source == "original":
            return f'**Original query:** "{self.query}"\n\n'
        return f'**Fallback query:** "{self.query}"\n\n'


async def optimize_query(
    message: str,
    optimizer: QueryOptimizer,
    settings: Settings,
    model: ModelConfig,
    auth: AuthContext,
    scope: CancellationScope,
    history: Sequence[ApiMessage],
) -> OptimizedQuery:
    """Ask ``optimizer`` for a better query, falling back to ``message``.

    Optimization failures never abort the send; cancellation does.
    """
    scope.raise_if_cancelled()
    try:
        optimized = await scope.run(optimizer.optimize(message, settings, model, auth, scope, list(history)))
    except OperationCancelledError:
        raise
    except Exception as exc:
        LOGGER.warning("Query optimization failed: %s", exc)
        return OptimizedQuery(message, "fallback")

    if optimized and optimized.strip() and optimized != message:
        LOGGER.debug("Query optimized to: %r", optimized)
        return OptimizedQuery(optimized, "optimized")
    return OptimizedQuery(message, "original")
