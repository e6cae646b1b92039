"""Pre-processing stages run before dispatch.

Stages, in the order the engine runs them:
- scrape: fetch URLs mentioned in the message
- query: rewrite the message into a search query (web mode)
- search: fetch web results (web mode)
- page: read the active tab (page mode)
- context: truncate fragments and assemble the system prompt
"""

from .context import (
    FRAGMENT_ORDER,
    UNLIMITED_CONTEXT_SENTINEL,
    assemble_system_prompt,
    build_fragments,
    note_fragment,
    page_fragment,
    persona_fragment,
    scraped_fragment,
    truncate_context,
    user_profile_fragment,
    web_fragment,
)
from .page import (
    ActivePageReader,
    PageCache,
    PdfTextExtractor,
    TabInfo,
    TabProvider,
    is_pdf_tab,
    read_page_content,
)
from .query import OptimizedQuery, QuerySource, optimize_query
from .scrape import SCRAPE_ERROR_PLACEHOLDER, URL_PATTERN, extract_urls, scrape_urls
from .search import run_search

__all__ = [
    # scrape.py exports
    "URL_PATTERN",
    "SCRAPE_ERROR_PLACEHOLDER",
    "extract_urls",
    "scrape_urls",
    # query.py exports
    "QuerySource",
    "OptimizedQuery",
    "optimize_query",
    # search.py exports
    "run_search",
    # page.py exports
    "TabInfo",
    "TabProvider",
    "PageCache",
    "PdfTextExtractor",
    "ActivePageReader",
    "is_pdf_tab",
    "read_page_content",
    # context.py exports
    "UNLIMITED_CONTEXT_SENTINEL",
    "FRAGMENT_ORDER",
    "truncate_context",
    "persona_fragment",
    "user_profile_fragment",
    "note_fragment",
    "page_fragment",
    "web_fragment",
    "scraped_fragment",
    "build_fragments",
    "assemble_system_prompt",
]
