"""Default collaborator implementations and settings loading."""

from .ollama import OLLAMA_MODEL_ID, connect_ollama
from .page_reader import InMemoryPageCache, PypdfTextExtractor, StaticTabProvider, build_page_reader
from .query_optimizer import ModelQueryOptimizer
from .scraper import HttpScraper, html_to_text
from .settings import ModelConfig, Settings, apply_overrides, load_settings, redact_secret, redact_settings
from .transport import HttpStreamingTransport
from .web_search import SearchResult, WebSearch, render_results

__all__ = [
    "ModelConfig",
    "Settings",
    "apply_overrides",
    "load_settings",
    "redact_secret",
    "redact_settings",
    "HttpStreamingTransport",
    "HttpScraper",
    "html_to_text",
    "WebSearch",
    "SearchResult",
    "render_results",
    "ModelQueryOptimizer",
    "StaticTabProvider",
    "InMemoryPageCache",
    "PypdfTextExtractor",
    "build_page_reader",
    "OLLAMA_MODEL_ID",
    "connect_ollama",
]
