"""Page stage: read the active browser tab (page mode).

PDFs are run through text extraction; ordinary pages come from the page
string the content script cached earlier. Failures never abort the send:
they become an inline error string in the page context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ..cancellation import CancellationScope
from ..collaborators import PageReader
from ..errors import OperationCancelledError, PageReadError

LOGGER = logging.getLogger(__name__)

__all__ = [
    "TabInfo",
    "TabProvider",
    "PageCache",
    "PdfTextExtractor",
    "ActivePageReader",
    "is_pdf_tab",
    "read_page_content",
]

_PDF_MIME_TYPE = "application/pdf"
_INTERNAL_URL_PREFIXES = ("chrome://",)


@dataclass(slots=True, frozen=True)
class TabInfo:
    """What the browser reports about the focused tab."""

    url: str | None
    mime_type: str | None = None


@runtime_checkable
class TabProvider(Protocol):
    async def active_tab(self) -> TabInfo | None:
        ...


@runtime_checkable
class PageCache(Protocol):
    async def get_page_string(self) -> str | None:
        ...


@runtime_checkable
class PdfTextExtractor(Protocol):
    async def extract(self, url: str, scope: CancellationScope) -> str:
        ...


def is_pdf_tab(tab: TabInfo) -> bool:
    url = (tab.url or "").lower()
    return url.endswith(".pdf") or tab.mime_type == _PDF_MIME_TYPE


class ActivePageReader:
    """:class:`PageReader` combining the tab, the page cache and a PDF extractor."""

    def __init__(self, tabs: TabProvider, cache: PageCache, pdf_extractor: PdfTextExtractor) -> None:
        self._tabs = tabs
        self._cache = cache
        self._pdf = pdf_extractor

    async def get_active_tab_content(self, scope: CancellationScope) -> str:
        scope.raise_if_cancelled()
        try:
            tab = await scope.run(self._tabs.active_tab())
        except OperationCancelledError:
            raise
        except Exception as exc:
            raise PageReadError(str(exc) or "Unknown error") from exc

        if tab is None or not tab.url or tab.url.startswith(_INTERNAL_URL_PREFIXES):
            LOGGER.debug("Not fetching page content for URL: %s", tab.url if tab else None)
            return ""

        if is_pdf_tab(tab):
            LOGGER.debug("Detected PDF URL: %s. Attempting to extract text.", tab.url)
            try:
                return await scope.run(self._pdf.extract(tab.url, scope))
            except OperationCancelledError:
                raise
            except Exception as exc:
                LOGGER.warning("Failed to extract text from PDF %s: %s", tab.url, exc)
                return f"Error extracting PDF content: {exc or 'Unknown PDF error'}. Falling back."

        try:
            cached = await scope.run(self._cache.get_page_string())
        except OperationCancelledError:
            raise
        except Exception as exc:
            raise PageReadError(str(exc) or "Unknown error") from exc
        return cached or ""


async def read_page_content(reader: PageReader, scope: CancellationScope) -> str:
    """Return the active page's text, or an inline error string on failure."""
    scope.raise_if_cancelled()
    try:
        content = await scope.run(reader.get_active_tab_content(scope))
    except OperationCancelledError:
        raise
    except Exception as exc:
        LOGGER.warning("Error getting active tab or initial page processing: %s", exc)
        return f"Error accessing page content: {exc or 'Unknown error'}"
    return content if isinstance(content, str) else ""
