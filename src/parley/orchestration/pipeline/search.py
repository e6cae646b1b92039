"""Search stage: fetch web results for the (optimized) query."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..cancellation import CancellationScope
from ..collaborators import WebSearcher
from ..errors import OperationCancelledError, SearchError

if TYPE_CHECKING:  # pragma: no cover
    from ...services.settings import Settings

LOGGER = logging.getLogger(__name__)

__all__ = ["run_search"]


async def run_search(query: str, searcher: WebSearcher, settings: Settings, scope: CancellationScope) -> str:
    """Run the web search.

    Returns:
        The search summary text.

    Raises:
        OperationCancelledError: The scope was aborted before, during or
            right after the search; the stop handler owns the transcript.
        SearchError: Any other failure. Unlike the other stages this ends
            the send.
    """
    scope.raise_if_cancelled()
    try:
        result = await scope.run(searcher.search(query, settings, scope))
    except (OperationCancelledError, asyncio.CancelledError):
        raise
    except SearchError:
        scope.raise_if_cancelled()
        raise
    except Exception as exc:
        scope.raise_if_cancelled()
        raise SearchError(str(exc) or type(exc).__name__) from exc
    return result if isinstance(result, str) else ""
