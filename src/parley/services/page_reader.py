"""Default page-reading collaborators: tab info, cached page text and PDF extraction.

The browser integration supplies the active tab and the page string its
content script cached; :func:`build_page_reader` combines them with
:class:`PypdfTextExtractor` into the engine's :class:`PageReader`.
"""

from __future__ import annotations

import asyncio
import io
import logging

import httpx
from pypdf import PdfReader

from ..orchestration.cancellation import CancellationScope
from ..orchestration.errors import PageReadError
from ..orchestration.pipeline.page import ActivePageReader, PageCache, PdfTextExtractor, TabInfo, TabProvider

LOGGER = logging.getLogger(__name__)

__all__ = [
    "EMPTY_PDF_TEXT",
    "StaticTabProvider",
    "InMemoryPageCache",
    "PypdfTextExtractor",
    "build_page_reader",
]

EMPTY_PDF_TEXT = "(No extractable text found in PDF.)"


class StaticTabProvider:
    """Tab provider whose active tab is pushed in by the host application."""

    def __init__(self, tab: TabInfo | None = None) -> None:
        self._tab = tab

    def set_active_tab(self, tab: TabInfo | None) -> None:
        self._tab = tab

    async def active_tab(self) -> TabInfo | None:
        return self._tab


class InMemoryPageCache:
    """Holds the last page string captured by the content script."""

    def __init__(self, page_string: str | None = None) -> None:
        self._page_string = page_string

    def set_page_string(self, page_string: str | None) -> None:
        self._page_string = page_string

    async def get_page_string(self) -> str | None:
        return self._page_string


class PypdfTextExtractor:
    """Download a PDF with ``httpx`` and extract its text with ``pypdf``."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        reader_cls: type | None = None,
        max_pages: int | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._reader_cls = reader_cls or PdfReader
        self._max_pages = max_pages

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def extract(self, url: str, scope: CancellationScope) -> str:
        scope.raise_if_cancelled()
        try:
            response = await self._get_client().get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            scope.raise_if_cancelled()
            raise PageReadError(f"Failed to fetch PDF: {exc}") from exc
        scope.raise_if_cancelled()
        # pypdf parsing is CPU-bound; keep it off the event loop.
        text = await asyncio.to_thread(self.extract_bytes, response.content)
        scope.raise_if_cancelled()
        return text

    def extract_bytes(self, data: bytes) -> str:
        try:
            reader = self._reader_cls(io.BytesIO(data))
        except Exception as exc:
            raise PageReadError(f"Unable to open PDF: {exc}") from exc

        text_chunks: list[str] = []
        pages = list(getattr(reader, "pages", []))
        if self._max_pages is not None:
            pages = pages[: self._max_pages]
        for index, page in enumerate(pages):
            extractor = getattr(page, "extract_text", None)
            if not callable(extractor):
                LOGGER.debug("PDF page %s missing extract_text; skipping.", index)
                continue
            try:
                chunk = str(extractor() or "")
            except Exception as exc:  # pragma: no cover - depends on malformed input
                LOGGER.debug("Failed to extract page %s: %s", index, exc)
                continue
            chunk = chunk.strip()
            if chunk:
                text_chunks.append(chunk)

        text = "\n\n".join(text_chunks).strip()
        return text or EMPTY_PDF_TEXT

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def build_page_reader(
    tabs: TabProvider,
    cache: PageCache,
    pdf_extractor: PdfTextExtractor | None = None,
) -> ActivePageReader:
    return ActivePageReader(tabs, cache, pdf_extractor or PypdfTextExtractor())
