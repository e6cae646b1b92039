"""Model backend access: endpoint table and the OpenAI-compatible client."""

from .client import AIClient, ClientSettings
from .endpoints import (
    KNOWN_HOSTS,
    chat_url_table,
    get_auth_header,
    normalize_api_endpoint,
    openai_base_url,
    resolve_chat_url,
)

__all__ = [
    "AIClient",
    "ClientSettings",
    "KNOWN_HOSTS",
    "chat_url_table",
    "get_auth_header",
    "normalize_api_endpoint",
    "openai_base_url",
    "resolve_chat_url",
]
