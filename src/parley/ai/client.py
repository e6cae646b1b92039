"""Async AI client wrapper built around OpenAI-compatible endpoints.

Used by the collaborators that need whole completions (query optimization,
multi-step compute). Direct streaming goes through
:class:`parley.services.transport.HttpStreamingTransport` instead because it
must speak Ollama's native protocol as well.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Sequence, cast

import httpx
from openai import APIConnectionError, APIError, AsyncOpenAI, RateLimitError
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..orchestration.errors import ConfigError, TransportError
from .endpoints import openai_base_url

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import ModelConfig, Settings

LOGGER = logging.getLogger(__name__)

# OpenAI's SDK insists on a key; local servers ignore it.
_PLACEHOLDER_API_KEY = "not-needed"
_DEFAULT_TEMPERATURE = 0.7


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def for_model(
        cls,
        settings: Settings,
        model: ModelConfig,
        auth: Mapping[str, str] | None = None,
    ) -> "ClientSettings":
        """Derive client settings for ``model`` from the user's settings.

        Raises:
            ConfigError: The model's host has no usable endpoint.
        """
        base_url = openai_base_url(settings, model.host)
        if not base_url:
            raise ConfigError(f"Configuration error: Could not determine API URL for host '{model.host}'.")
        return cls(
            base_url=base_url,
            api_key=_bearer_token(auth) or _PLACEHOLDER_API_KEY,
            model=settings.selected_model or model.id,
            request_timeout=settings.request_timeout,
        )


def _bearer_token(auth: Mapping[str, str] | None) -> str | None:
    if not auth:
        return None
    value = auth.get("Authorization") or ""
    if value.lower().startswith("bearer "):
        return value[len("bearer ") :].strip() or None
    return None


class AIClient:
    """Async client for one-shot chat completions with retry semantics."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def complete(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        temperature: float | None = _DEFAULT_TEMPERATURE,
        max_tokens: int | None = None,
        **extra_params: Any,
    ) -> str:
        """Return the full text of one chat completion.

        Raises:
            TransportError: The backend failed after all retries.
        """
        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            temperature=temperature,
            max_tokens=max_tokens,
            extra_params=extra_params,
        )
        LOGGER.debug(
            "Starting chat completion via %s with %s message(s)",
            self._settings.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.chat.completions.create(**payload)
        except (APIError, httpx.HTTPError) as exc:
            raise _transport_error(exc) from exc

        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        return str(getattr(message, "content", None) or "")

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            try:
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            except (TypeError, ValueError) as exc:
                raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        temperature: float | None,
        max_tokens: int | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": list(messages),
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if extra_params:
            payload.update({key: value for key, value in extra_params.items() if value is not None})
        return payload

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


def _transport_error(exc: Exception) -> TransportError:
    status = getattr(exc, "status_code", None)
    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    return TransportError(str(message), status_code=status if isinstance(status, int) else None)


__all__ = ["AIClient", "ClientSettings"]
