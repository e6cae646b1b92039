"""Backend host table: chat URLs, OpenAI-compatible base URLs and auth headers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import ModelConfig, Settings

LOGGER = logging.getLogger(__name__)

__all__ = [
    "KNOWN_HOSTS",
    "normalize_api_endpoint",
    "chat_url_table",
    "resolve_chat_url",
    "openai_base_url",
    "get_auth_header",
]

KNOWN_HOSTS: tuple[str, ...] = ("groq", "ollama", "gemini", "lmStudio", "openai", "openrouter", "custom")

_API_KEY_FIELDS: Dict[str, str] = {
    "groq": "groq_api_key",
    "gemini": "gemini_api_key",
    "openai": "openai_api_key",
    "openrouter": "openrouter_api_key",
    "custom": "custom_api_key",
}


def normalize_api_endpoint(endpoint: str | None) -> str:
    """Strip whitespace, trailing slashes and a trailing ``/v1`` segment."""
    url = (endpoint or "").strip().rstrip("/")
    if url.endswith("/v1"):
        url = url[: -len("/v1")]
    return url.rstrip("/")


def chat_url_table(settings: Settings) -> Dict[str, str]:
    """Map every known host to its chat endpoint; empty string when unusable."""
    custom = settings.custom_endpoint
    return {
        "groq": "https://api.groq.com/openai/v1/chat/completions",
        "ollama": f"{settings.ollama_url or ''}/api/chat",
        "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/chat/completions",
        "lmStudio": f"{settings.lm_studio_url or ''}/v1/chat/completions",
        "openai": "https://api.openai.com/v1/chat/completions",
        "openrouter": "https://openrouter.ai/api/v1/chat/completions",
        "custom": f"{normalize_api_endpoint(custom)}/v1/chat/completions" if custom else "",
    }


def resolve_chat_url(settings: Settings, host: str | None) -> str | None:
    """Return the chat URL for ``host``, or None when it cannot be determined."""
    url = chat_url_table(settings).get(host or "")
    return url or None


def openai_base_url(settings: Settings, host: str | None) -> str | None:
    """Base URL for :class:`openai.AsyncOpenAI` talking to ``host``.

    Ollama's native ``/api/chat`` is not OpenAI-compatible, so multi-step
    strategies use its ``/v1`` compatibility layer instead.
    """
    if host == "ollama":
        base = (settings.ollama_url or "").rstrip("/")
        return f"{base}/v1" if base else None
    url = resolve_chat_url(settings, host)
    if not url:
        return None
    return url[: -len("/chat/completions")] if url.endswith("/chat/completions") else url


def get_auth_header(settings: Settings, model: ModelConfig | None) -> Dict[str, str] | None:
    """``Authorization: Bearer`` header for hosts that need an API key."""
    if model is None:
        return None
    field_name = _API_KEY_FIELDS.get(model.host)
    if field_name is None:
        return None
    api_key = getattr(settings, field_name, "") or ""
    if not api_key:
        return None
    return {"Authorization": f"Bearer {api_key}"}
