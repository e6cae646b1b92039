"""HTTP streaming transport for direct chat completions.

Speaks two wire formats: OpenAI-compatible server-sent events (``data:``
lines, ``[DONE]`` terminator) and Ollama's newline-delimited JSON
(``{"message": {"content": ...}, "done": bool}``).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import httpx

from ..orchestration.cancellation import CancellationScope
from ..orchestration.collaborators import AuthContext, ChunkCallback
from ..orchestration.errors import OperationCancelledError, TransportError

LOGGER = logging.getLogger(__name__)

__all__ = ["HttpStreamingTransport", "parse_sse_line", "parse_ndjson_line"]

_SSE_PREFIX = "data:"
_SSE_DONE = "[DONE]"
_ERROR_BODY_LIMIT = 500


def parse_sse_line(line: str) -> tuple[str, bool]:
    """Return ``(delta, done)`` for one SSE line; non-data lines yield ``("", False)``."""
    line = line.strip()
    if not line.startswith(_SSE_PREFIX):
        return "", False
    data = line[len(_SSE_PREFIX) :].strip()
    if data == _SSE_DONE:
        return "", True
    if not data:
        return "", False
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        LOGGER.debug("Skipping malformed SSE payload: %s", data[:200])
        return "", False
    if not isinstance(payload, dict):
        return "", False
    if payload.get("error"):
        raise TransportError(_error_message(payload["error"]))
    choices = payload.get("choices") or []
    if not choices:
        return "", False
    choice = choices[0] or {}
    delta = choice.get("delta") or {}
    content = delta.get("content") or ""
    return str(content), False


def parse_ndjson_line(line: str) -> tuple[str, bool]:
    """Return ``(delta, done)`` for one Ollama NDJSON line."""
    line = line.strip()
    if not line:
        return "", False
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        LOGGER.debug("Skipping malformed NDJSON line: %s", line[:200])
        return "", False
    if not isinstance(payload, dict):
        return "", False
    if payload.get("error"):
        raise TransportError(_error_message(payload["error"]))
    message = payload.get("message") or {}
    content = message.get("content") or ""
    return str(content), bool(payload.get("done"))


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


class HttpStreamingTransport:
    """:class:`StreamingTransport` backed by :class:`httpx.AsyncClient`.

    ``on_chunk`` always receives the accumulated text, so the reconciler can
    replace the turn's content wholesale.
    """

    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout: float | None = 90.0) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=10.0))
        return self._client

    async def stream(
        self,
        url: str,
        payload: Mapping[str, object],
        on_chunk: ChunkCallback,
        auth: AuthContext,
        host: str,
        scope: CancellationScope,
    ) -> None:
        scope.raise_if_cancelled()
        headers = {"Content-Type": "application/json"}
        if auth:
            headers.update(auth)
        parse = parse_ndjson_line if host == "ollama" else parse_sse_line
        accumulated = ""

        try:
            async with self._get_client().stream("POST", url, json=dict(payload), headers=headers) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"HTTP {response.status_code}: {body[:_ERROR_BODY_LIMIT] or response.reason_phrase}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    scope.raise_if_cancelled()
                    delta, done = parse(line)
                    if delta:
                        accumulated += delta
                        on_chunk(accumulated, False, False)
                    if done:
                        break
        except OperationCancelledError:
            raise
        except (TransportError, httpx.HTTPError) as exc:
            if scope.cancelled:
                raise OperationCancelledError("Streaming operation cancelled") from exc
            message = str(exc) or type(exc).__name__
            LOGGER.warning("Streaming from %s failed: %s", url, message)
            on_chunk(message, True, True)
            return

        scope.raise_if_cancelled()
        LOGGER.debug("Stream from %s host finished. Length: %d", host or "unknown", len(accumulated))
        on_chunk(accumulated, True, False)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
