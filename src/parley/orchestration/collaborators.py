"""Contracts for the collaborators the send engine drives.

The engine only depends on these protocols. Default implementations live in
:mod:`parley.services` and :mod:`parley.orchestration.compute`; tests
substitute small fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Mapping, Protocol, Sequence, runtime_checkable

from .cancellation import CancellationScope
from .types import ApiMessage

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import ModelConfig, Settings

__all__ = [
    "AuthContext",
    "ChunkCallback",
    "UpdateCallback",
    "Scraper",
    "QueryOptimizer",
    "WebSearcher",
    "StreamingTransport",
    "ComputeStrategy",
    "PageReader",
]

# Headers (``Authorization``) for the selected backend, or None.
AuthContext = Mapping[str, str] | None

# Direct streaming: (cumulative_text, is_finished, is_error)
ChunkCallback = Callable[[str, bool, bool], None]

# Multi-step strategies: (cumulative_text, is_finished)
UpdateCallback = Callable[[str, bool], None]


@runtime_checkable
class Scraper(Protocol):
    """Fetches a URL and returns readable text; raises ``ScrapeError``."""

    async def scrape(self, url: str, scope: CancellationScope) -> str:
        ...


@runtime_checkable
class QueryOptimizer(Protocol):
    """Rewrites a user message into a search query; raises ``OptimizeError``."""

    async def optimize(
        self,
        message: str,
        settings: Settings,
        model: ModelConfig,
        auth: AuthContext,
        scope: CancellationScope,
        history: Sequence[ApiMessage],
    ) -> str:
        ...


@runtime_checkable
class WebSearcher(Protocol):
    """Runs a web search and renders a text summary.

    Raises ``SearchError`` on failure and ``OperationCancelledError`` when
    the scope is aborted.
    """

    async def search(self, query: str, settings: Settings, scope: CancellationScope) -> str:
        ...


@runtime_checkable
class StreamingTransport(Protocol):
    """Streams a chat completion.

    ``on_chunk`` is called zero or more times with ``is_finished=False`` and
    the cumulative text, then exactly once with ``is_finished=True`` (and
    ``is_error=True`` on failure).
    """

    async def stream(
        self,
        url: str,
        payload: Mapping[str, object],
        on_chunk: ChunkCallback,
        auth: AuthContext,
        host: str,
        scope: CancellationScope,
    ) -> None:
        ...


@runtime_checkable
class ComputeStrategy(Protocol):
    """Multi-step execution (medium/high compute) with a single terminal call."""

    async def run(
        self,
        message: str,
        history: Sequence[ApiMessage],
        settings: Settings,
        model: ModelConfig,
        auth: AuthContext,
        on_update: UpdateCallback,
        scope: CancellationScope,
    ) -> None:
        ...


@runtime_checkable
class PageReader(Protocol):
    """Reads the active browser tab; raises ``PageReadError``."""

    async def get_active_tab_content(self, scope: CancellationScope) -> str:
        ...
