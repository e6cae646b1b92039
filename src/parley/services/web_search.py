"""Web search providers rendered into one numbered text summary.

Providers are selected by ``Settings.web_mode``:

- ``duckduckgo``: the HTML endpoint, parsed with BeautifulSoup (no key)
- ``brave``: the Brave Search API (``brave_api_key``)
- ``wikipedia``: the MediaWiki search API (no key)
- ``google``: the Custom Search JSON API (``google_api_key`` and ``google_cx``)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..orchestration.cancellation import CancellationScope
from ..orchestration.errors import SearchError

if TYPE_CHECKING:  # pragma: no cover
    from .settings import Settings

LOGGER = logging.getLogger(__name__)

__all__ = ["SearchResult", "WebSearch", "render_results", "SUPPORTED_PROVIDERS"]

DUCKDUCKGO_URL = "https://html.duckduckgo.com/html/"
BRAVE_URL = "https://api.search.brave.com/res/v1/web/search"
WIKIPEDIA_API_URL = "https://en.wikipedia.org/w/api.php"
WIKIPEDIA_ARTICLE_URL = "https://en.wikipedia.org/wiki/"
GOOGLE_URL = "https://www.googleapis.com/customsearch/v1"

_USER_AGENT = "Mozilla/5.0 (compatible; Parley/0.1)"


@dataclass(slots=True, frozen=True)
class SearchResult:
    title: str
    url: str
    snippet: str = ""


def render_results(results: List[SearchResult]) -> str:
    """Numbered summary handed to the model as web context."""
    blocks = []
    for index, result in enumerate(results, 1):
        lines = [f"{index}. {result.title or result.url}"]
        if result.url:
            lines.append(f"URL: {result.url}")
        if result.snippet:
            lines.append(result.snippet)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _strip_html(fragment: str) -> str:
    return BeautifulSoup(fragment or "", "html.parser").get_text(" ", strip=True)


class WebSearch:
    """:class:`WebSearcher` dispatching on ``settings.web_mode``."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        max_results: int = 5,
        timeout: float = 15.0,
        max_attempts: int = 2,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._max_results = max(1, max_results)
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._providers: Dict[str, Callable[[str, "Settings"], Awaitable[List[SearchResult]]]] = {
            "duckduckgo": self._search_duckduckgo,
            "brave": self._search_brave,
            "wikipedia": self._search_wikipedia,
            "google": self._search_google,
        }

    @property
    def providers(self) -> tuple[str, ...]:
        return tuple(self._providers)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                headers={"User-Agent": _USER_AGENT},
            )
        return self._client

    async def search(self, query: str, settings: Settings, scope: CancellationScope) -> str:
        scope.raise_if_cancelled()
        provider = (settings.web_mode or "duckduckgo").lower()
        handler = self._providers.get(provider)
        if handler is None:
            raise SearchError(f"Unsupported web search provider: {settings.web_mode}", provider=provider)

        LOGGER.debug("Searching %s for %r", provider, query)
        try:
            results = await scope.run(handler(query, settings))
        except SearchError:
            raise
        except httpx.HTTPStatusError as exc:
            scope.raise_if_cancelled()
            raise SearchError(
                f"{provider} returned HTTP {exc.response.status_code}", provider=provider
            ) from exc
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            scope.raise_if_cancelled()
            raise SearchError(f"{provider} search failed: {exc}", provider=provider) from exc

        LOGGER.debug("%s returned %d result(s)", provider, len(results))
        return render_results(results[: self._max_results])

    async def _get(self, url: str, *, params: Dict[str, Any], headers: Dict[str, str] | None = None) -> httpx.Response:
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=0.5, max=4),
            retry=retry_if_exception_type((httpx.TransportError,)),
        ):
            with attempt:
                response = await self._get_client().get(url, params=params, headers=headers)
                response.raise_for_status()
        return response

    async def _search_duckduckgo(self, query: str, settings: Settings) -> List[SearchResult]:
        response = await self._get(DUCKDUCKGO_URL, params={"q": query})
        soup = BeautifulSoup(response.text, "html.parser")
        results: List[SearchResult] = []
        for block in soup.select(".result"):
            link = block.select_one("a.result__a")
            if link is None:
                continue
            snippet = block.select_one(".result__snippet")
            results.append(
                SearchResult(
                    title=link.get_text(" ", strip=True),
                    url=str(link.get("href") or ""),
                    snippet=snippet.get_text(" ", strip=True) if snippet else "",
                )
            )
        return results

    async def _search_brave(self, query: str, settings: Settings) -> List[SearchResult]:
        if not settings.brave_api_key:
            raise SearchError("Brave API key is not configured", provider="brave")
        response = await self._get(
            BRAVE_URL,
            params={"q": query, "count": self._max_results},
            headers={"Accept": "application/json", "X-Subscription-Token": settings.brave_api_key},
        )
        items = (response.json().get("web") or {}).get("results") or []
        return [
            SearchResult(
                title=str(item.get("title") or ""),
                url=str(item.get("url") or ""),
                snippet=_strip_html(str(item.get("description") or "")),
            )
            for item in items
        ]

    async def _search_wikipedia(self, query: str, settings: Settings) -> List[SearchResult]:
        response = await self._get(
            WIKIPEDIA_API_URL,
            params={
                "action": "query",
                "list": "search",
                "srsearch": query,
                "srlimit": self._max_results,
                "format": "json",
            },
        )
        items = (response.json().get("query") or {}).get("search") or []
        return [
            SearchResult(
                title=str(item.get("title") or ""),
                url=WIKIPEDIA_ARTICLE_URL + quote(str(item.get("title") or "").replace(" ", "_")),
                snippet=_strip_html(str(item.get("snippet") or "")),
            )
            for item in items
        ]

    async def _search_google(self, query: str, settings: Settings) -> List[SearchResult]:
        if not settings.google_api_key or not settings.google_cx:
            raise SearchError("Google API key or search engine id is not configured", provider="google")
        response = await self._get(
            GOOGLE_URL,
            params={
                "key": settings.google_api_key,
                "cx": settings.google_cx,
                "q": query,
                "num": min(self._max_results, 10),
            },
        )
        items = response.json().get("items") or []
        return [
            SearchResult(
                title=str(item.get("title") or ""),
                url=str(item.get("link") or ""),
                snippet=str(item.get("snippet") or "").strip(),
            )
            for item in items
        ]

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


SUPPORTED_PROVIDERS: tuple[str, ...] = ("duckduckgo", "brave", "wikipedia", "google")
