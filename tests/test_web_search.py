"""Tests for the web search providers."""

from __future__ import annotations

import httpx
import pytest

from parley.orchestration.cancellation import CancellationScope
from parley.orchestration.errors import OperationCancelledError, SearchError
from parley.services.web_search import SearchResult, WebSearch, render_results

from helpers import make_settings

_DUCKDUCKGO_HTML = """
<div class="results">
  <div class="result">
    <h2><a class="result__a" href="https://python.org">Welcome to <b>Python</b></a></h2>
    <a class="result__snippet">The official home of the Python language.</a>
  </div>
  <div class="result">
    <h2><a class="result__a" href="https://docs.python.org">Python docs</a></h2>
  </div>
  <div class="result"><span>ad without link</span></div>
</div>
"""


def _searcher(handler, **kwargs) -> WebSearch:
    return WebSearch(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), **kwargs)


def test_render_results() -> None:
    rendered = render_results(
        [
            SearchResult("First", "https://a.example", "alpha"),
            SearchResult("", "https://b.example"),
        ]
    )

    assert rendered == "1. First\nURL: https://a.example\nalpha\n\n2. https://b.example\nURL: https://b.example"


@pytest.mark.asyncio
async def test_duckduckgo_parses_html_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["q"] == "python"
        return httpx.Response(200, text=_DUCKDUCKGO_HTML)

    text = await _searcher(handler).search("python", make_settings(web_mode="duckduckgo"), CancellationScope())

    assert text.startswith("1. Welcome to Python\nURL: https://python.org\nThe official home")
    assert "2. Python docs\nURL: https://docs.python.org" in text
    assert "3." not in text


@pytest.mark.asyncio
async def test_brave_sends_token_and_reads_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-Subscription-Token"] == "brave-key"
        return httpx.Response(
            200,
            json={"web": {"results": [{"title": "Brave", "url": "https://brave.com", "description": "<strong>Fast</strong> search"}]}},
        )

    settings = make_settings(web_mode="brave", brave_api_key="brave-key")

    text = await _searcher(handler).search("browsers", settings, CancellationScope())

    assert text == "1. Brave\nURL: https://brave.com\nFast search"


@pytest.mark.asyncio
async def test_brave_without_key_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never reached
        return httpx.Response(200, json={})

    with pytest.raises(SearchError) as excinfo:
        await _searcher(handler).search("q", make_settings(web_mode="brave"), CancellationScope())
    assert excinfo.value.provider == "brave"


@pytest.mark.asyncio
async def test_wikipedia_builds_article_urls() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["list"] == "search"
        return httpx.Response(
            200,
            json={"query": {"search": [{"title": "Ada Lovelace", "snippet": 'English <span class="searchmatch">mathematician</span>'}]}},
        )

    text = await _searcher(handler).search("ada", make_settings(web_mode="wikipedia"), CancellationScope())

    assert text == "1. Ada Lovelace\nURL: https://en.wikipedia.org/wiki/Ada_Lovelace\nEnglish mathematician"


@pytest.mark.asyncio
async def test_google_limits_results() -> None:
    items = [{"title": f"Item {i}", "link": f"https://g.example/{i}", "snippet": "s"} for i in range(4)]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["cx"] == "engine"
        return httpx.Response(200, json={"items": items})

    settings = make_settings(web_mode="google", google_api_key="g-key", google_cx="engine")

    text = await _searcher(handler, max_results=2).search("q", settings, CancellationScope())

    assert "2. Item 1" in text
    assert "Item 2" not in text


@pytest.mark.asyncio
async def test_unknown_provider() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never reached
        return httpx.Response(200)

    with pytest.raises(SearchError, match="Unsupported web search provider"):
        await _searcher(handler).search("q", make_settings(web_mode="altavista"), CancellationScope())


@pytest.mark.asyncio
async def test_http_status_becomes_search_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="slow down")

    with pytest.raises(SearchError, match="HTTP 429"):
        await _searcher(handler).search("q", make_settings(web_mode="wikipedia"), CancellationScope())


@pytest.mark.asyncio
async def test_cancelled_scope_rejects_before_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, text="")

    scope = CancellationScope()
    scope.cancel("stopped")

    with pytest.raises(OperationCancelledError):
        await _searcher(handler).search("q", make_settings(), scope)
    assert calls == []


@pytest.mark.asyncio
async def test_snippet_markup_leaves_single_spaces() -> None:
    description = "  Build <strong>fast</strong>   and <em>safe</em> <b>apps</b>\n"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"web": {"results": [{"title": "T", "url": "https://t.example", "description": description}]}},
        )

    settings = make_settings(web_mode="brave", brave_api_key="brave-key")

    text = await _searcher(handler).search("q", settings, CancellationScope())

    assert text.splitlines()[-1] == "Build fast and safe apps"
