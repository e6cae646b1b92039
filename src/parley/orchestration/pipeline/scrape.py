"""Scrape stage: fetch every URL mentioned in the message."""

from __future__ import annotations

import asyncio
import logging
import re

from ..cancellation import CancellationScope
from ..collaborators import Scraper
from ..errors import OperationCancelledError

LOGGER = logging.getLogger(__name__)

__all__ = ["URL_PATTERN", "SCRAPE_ERROR_PLACEHOLDER", "extract_urls", "scrape_urls"]

URL_PATTERN = re.compile(r"(https?://[^\s]+)")

SCRAPE_ERROR_PLACEHOLDER = "[Error scraping one or more URLs]"


def extract_urls(message: str) -> list[str]:
    """Return every http(s) URL in ``message``, in order, duplicates kept."""
    return URL_PATTERN.findall(message or "")


async def scrape_urls(urls: list[str], scraper: Scraper, scope: CancellationScope) -> str:
    """Scrape ``urls`` concurrently and format them as one context block.

    Any single failure replaces the whole block with
    :data:`SCRAPE_ERROR_PLACEHOLDER`; the send carries on. Cancellation
    propagates so the caller can stop without touching the transcript.
    """
    if not urls:
        return ""
    scope.raise_if_cancelled()
    try:
        results = await scope.run(asyncio.gather(*(scraper.scrape(url, scope) for url in urls)))
    except OperationCancelledError:
        raise
    except Exception as exc:
        LOGGER.warning("Scraping %d URL(s) failed: %s", len(urls), exc)
        scope.raise_if_cancelled()
        return SCRAPE_ERROR_PLACEHOLDER
    return "\n\n".join(f"Content from [{url}]:\n{content}" for url, content in zip(urls, results))
