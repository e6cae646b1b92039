"""Settings dataclasses and loading helpers.

Persisting settings is the host application's job; this module only turns
whatever the host stored (camelCase keys from the extension's storage or
snake_case keys from Python callers) into a :class:`Settings` instance and
applies ``PARLEY_*`` environment overrides on top.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Literal, Mapping

__all__ = [
    "ChatMode",
    "ComputeLevel",
    "ModelConfig",
    "Settings",
    "load_settings",
    "apply_overrides",
    "redact_secret",
    "redact_settings",
]

LOGGER = logging.getLogger(__name__)

ChatMode = Literal["chat", "web", "page"]
ComputeLevel = Literal["low", "medium", "high"]

_ENV_OVERRIDES: Mapping[str, str] = {
    "PARLEY_CHAT_MODE": "chat_mode",
    "PARLEY_COMPUTE_LEVEL": "compute_level",
    "PARLEY_SELECTED_MODEL": "selected_model",
    "PARLEY_WEB_MODE": "web_mode",
    "PARLEY_OLLAMA_URL": "ollama_url",
    "PARLEY_LM_STUDIO_URL": "lm_studio_url",
    "PARLEY_CUSTOM_ENDPOINT": "custom_endpoint",
    "PARLEY_GROQ_API_KEY": "groq_api_key",
    "PARLEY_GEMINI_API_KEY": "gemini_api_key",
    "PARLEY_OPENAI_API_KEY": "openai_api_key",
    "PARLEY_OPENROUTER_API_KEY": "openrouter_api_key",
    "PARLEY_CUSTOM_API_KEY": "custom_api_key",
    "PARLEY_BRAVE_API_KEY": "brave_api_key",
    "PARLEY_GOOGLE_API_KEY": "google_api_key",
    "PARLEY_GOOGLE_CX": "google_cx",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "PARLEY_USE_NOTE": "use_note",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "PARLEY_WEB_LIMIT": "web_limit",
    "PARLEY_CONTEXT_LIMIT": "context_limit",
    "PARLEY_MAX_TOKENS": "max_tokens",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "PARLEY_TEMPERATURE": "temperature",
    "PARLEY_TOP_P": "top_p",
    "PARLEY_REQUEST_TIMEOUT": "request_timeout",
}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_SECRET_FIELDS = frozenset(
    {
        "groq_api_key",
        "gemini_api_key",
        "openai_api_key",
        "openrouter_api_key",
        "custom_api_key",
        "brave_api_key",
        "google_api_key",
    }
)

# Keys the browser extension stores that do not follow the camel -> snake rule.
_KEY_ALIASES: Mapping[str, str] = {
    "presencepenalty": "presence_penalty",
    "openAiApiKey": "openai_api_key",
    "openRouterApiKey": "openrouter_api_key",
    "lmStudioUrl": "lm_studio_url",
}
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(slots=True)
class ModelConfig:
    """A model the user can pick, and the backend host serving it."""

    id: str
    host: str = ""
    name: str | None = None
    active: bool = True

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ModelConfig":
        return cls(
            id=str(payload.get("id") or ""),
            host=str(payload.get("host") or ""),
            name=payload.get("name"),
            active=bool(payload.get("active", True)),
        )


@dataclass(slots=True)
class Settings:
    """User-configurable settings consumed by the send engine.

    Sampling fields left as None fall back to the dispatch defaults
    (temperature 0.7, max_tokens 32048, top_p 1, presence_penalty 0).
    """

    chat_mode: str = "chat"
    compute_level: str = "low"
    web_mode: str = "duckduckgo"
    web_limit: int = 60
    context_limit: int = 60
    models: list[ModelConfig] = field(default_factory=list)
    selected_model: str | None = None
    personas: dict[str, str] = field(default_factory=dict)
    persona: str = "default"
    user_name: str = ""
    user_profile: str = ""
    use_note: bool = False
    note_content: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    presence_penalty: float | None = None
    request_timeout: float = 90.0
    ollama_url: str = "http://localhost:11434"
    lm_studio_url: str = "http://localhost:1234"
    custom_endpoint: str = ""
    ollama_connected: bool = False
    ollama_error: str | None = None
    groq_api_key: str = ""
    gemini_api_key: str = ""
    openai_api_key: str = ""
    openrouter_api_key: str = ""
    custom_api_key: str = ""
    brave_api_key: str = ""
    google_api_key: str = ""
    google_cx: str = ""

    @property
    def current_model(self) -> ModelConfig | None:
        """The model whose id matches :attr:`selected_model`, if any."""
        for model in self.models:
            if model.id == self.selected_model:
                return model
        return None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "Settings":
        """Build settings from a stored mapping, accepting camelCase or snake_case keys.

        Unknown keys are ignored.
        """
        allowed = {item.name for item in fields(cls)}
        data: Dict[str, Any] = {}
        for key, value in (payload or {}).items():
            name = _normalize_key(str(key))
            if name not in allowed or value is None:
                continue
            data[name] = value
        if "models" in data:
            data["models"] = [
                item if isinstance(item, ModelConfig) else ModelConfig.from_mapping(item)
                for item in data["models"] or []
            ]
        if "personas" in data:
            data["personas"] = {str(k): str(v) for k, v in dict(data["personas"]).items()}
        return cls(**data)


def _normalize_key(key: str) -> str:
    if key in _KEY_ALIASES:
        return _KEY_ALIASES[key]
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str = "runtime") -> Settings:
    """Return ``settings`` with known, non-None ``overrides`` applied."""
    allowed = {item.name for item in fields(Settings)}
    filtered: Dict[str, Any] = {}
    for key, value in overrides.items():
        name = _normalize_key(key)
        if name not in allowed or value is None:
            continue
        filtered[name] = value
    if filtered:
        LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
        settings = replace(settings, **filtered)
    return settings


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, field_name in _ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is not None:
            overrides[field_name] = value
    for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is not None:
            overrides[field_name] = value.strip().lower() in _TRUE_VALUES
    for env_name, field_name in _INT_ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = int(value, 10)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
    for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = float(value)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
    return overrides


def load_settings(
    payload: Mapping[str, Any] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Build :class:`Settings` from ``payload``, then environment, then ``overrides``."""
    settings = Settings.from_mapping(payload)
    env_values = _env_overrides(os.environ if environ is None else environ)
    if env_values:
        settings = apply_overrides(settings, env_values, source="environment")
    if overrides:
        settings = apply_overrides(settings, overrides)
    LOGGER.debug("Loaded settings: %s", redact_settings(settings))
    return settings


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"


def redact_settings(settings: Settings) -> dict[str, Any]:
    """Settings as a dict with API keys masked, safe for logs."""
    payload: dict[str, Any] = {}
    for item in fields(settings):
        value = getattr(settings, item.name)
        if item.name in _SECRET_FIELDS:
            value = redact_secret(value)
        elif item.name == "models":
            value = [model.id for model in value]
        elif item.name in {"note_content", "user_profile"} and value:
            value = f"<{len(value)} chars>"
        payload[item.name] = value
    return payload
