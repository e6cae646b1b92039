"""Connect a local Ollama server and register it as the selected model."""

from __future__ import annotations

import logging
from dataclasses import replace

import httpx

from .settings import ModelConfig, Settings

LOGGER = logging.getLogger(__name__)

__all__ = ["OLLAMA_MODEL_ID", "OLLAMA_MODEL_NAME", "connect_ollama"]

OLLAMA_MODEL_ID = "ollama_generic"
OLLAMA_MODEL_NAME = "Ollama Model"


async def connect_ollama(
    settings: Settings,
    url: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> Settings:
    """Query ``<url>/api/tags`` and return updated settings.

    On success the generic Ollama model replaces any previous registration
    and becomes the selected model. On failure ``ollama_error`` records why
    and ``ollama_connected`` is cleared; nothing is raised.
    """
    base_url = (url or settings.ollama_url or "http://localhost:11434").rstrip("/")
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=timeout)
    try:
        response = await http.get(f"{base_url}/api/tags")
        if response.is_error:
            try:
                detail = response.json().get("error")
            except ValueError:
                detail = None
            error = str(detail) if detail else f"Connection failed: {response.status_code} {response.reason_phrase}"
            return _failed(settings, error)
        data = response.json()
    except httpx.HTTPError as exc:
        return _failed(settings, str(exc) or "Failed to connect to Ollama")
    except ValueError:
        return _failed(settings, "Unexpected response from Ollama")
    finally:
        if owns_client:
            await http.aclose()

    if isinstance(data, dict) and isinstance(data.get("models"), list):
        models = [model for model in settings.models if model.id != OLLAMA_MODEL_ID]
        models.append(ModelConfig(id=OLLAMA_MODEL_ID, host="ollama", name=OLLAMA_MODEL_NAME, active=True))
        LOGGER.info("Connected to Ollama at %s (%d model(s) available)", base_url, len(data["models"]))
        return replace(
            settings,
            ollama_connected=True,
            ollama_url=base_url,
            ollama_error=None,
            models=models,
            selected_model=OLLAMA_MODEL_ID,
        )
    if isinstance(data, dict) and data.get("error"):
        return _failed(settings, str(data["error"]))
    return _failed(settings, "Unexpected response from Ollama")


def _failed(settings: Settings, error: str) -> Settings:
    LOGGER.warning("Ollama connection failed: %s", error)
    return replace(settings, ollama_connected=False, ollama_error=error)
