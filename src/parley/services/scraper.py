"""Fetch a URL and reduce its HTML to readable text."""

from __future__ import annotations

import logging
import re

import httpx
from bs4 import BeautifulSoup
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..orchestration.cancellation import CancellationScope
from ..orchestration.errors import ScrapeError

LOGGER = logging.getLogger(__name__)

__all__ = ["HttpScraper", "html_to_text"]

_NOISE_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "aside", "form"]
_BLANK_RUNS = re.compile(r"\n\s*\n+")
_USER_AGENT = "Mozilla/5.0 (compatible; Parley/0.1)"


def html_to_text(html: str) -> str:
    """Visible text of ``html`` with scripts, styles and navigation removed."""
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(_NOISE_TAGS):
        tag.decompose()
    text = soup.get_text("\n")
    lines = (line.strip() for line in text.splitlines())
    return _BLANK_RUNS.sub("\n\n", "\n".join(line for line in lines if line)).strip()


class HttpScraper:
    """:class:`Scraper` using ``httpx`` with a short retry on transient failures."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
        max_attempts: int = 2,
        max_chars: int | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._max_chars = max_chars

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                headers={"User-Agent": _USER_AGENT},
            )
        return self._client

    async def scrape(self, url: str, scope: CancellationScope) -> str:
        scope.raise_if_cancelled()
        try:
            async for attempt in AsyncRetrying(
                reraise=True,
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=0.5, max=4),
                retry=retry_if_exception_type((httpx.TransportError,)),
            ):
                with attempt:
                    response = await self._get_client().get(url)
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            scope.raise_if_cancelled()
            raise ScrapeError(f"Failed to fetch {url}: {exc}", url=url) from exc
        scope.raise_if_cancelled()

        content_type = response.headers.get("content-type", "")
        if "html" not in content_type and "xml" not in content_type:
            text = response.text.strip()
        else:
            text = html_to_text(response.text)
        LOGGER.debug("Scraped %s (%d chars)", url, len(text))
        if self._max_chars is not None:
            text = text[: self._max_chars]
        return text

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

