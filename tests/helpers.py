"""Fake collaborators shared by the engine and dispatch tests."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Sequence

from parley.orchestration.cancellation import CancellationScope
from parley.services.settings import ModelConfig, Settings


def make_settings(**overrides: Any) -> Settings:
    base: dict[str, Any] = {
        "models": [ModelConfig(id="llama-3", host="groq", name="Llama 3")],
        "selected_model": "llama-3",
        "groq_api_key": "gsk-test",
    }
    base.update(overrides)
    return Settings(**base)


class FakeScraper:
    def __init__(self, pages: Mapping[str, str] | None = None, error: Exception | None = None) -> None:
        self.pages = dict(pages or {})
        self.error = error
        self.calls: list[str] = []

    async def scrape(self, url: str, scope: CancellationScope) -> str:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.pages.get(url, f"text of {url}")


class FakeOptimizer:
    def __init__(self, result: str = "", error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[str, list[dict[str, str]]]] = []

    async def optimize(self, message, settings, model, auth, scope, history) -> str:
        self.calls.append((message, list(history)))
        if self.error is not None:
            raise self.error
        return self.result


class FakeSearcher:
    """Returns ``result``; with ``block`` set it waits until cancelled."""

    def __init__(self, result: str = "", error: Exception | None = None, block: bool = False) -> None:
        self.result = result
        self.error = error
        self.block = block
        self.started = asyncio.Event()
        self.queries: list[str] = []

    async def search(self, query: str, settings: Settings, scope: CancellationScope) -> str:
        self.queries.append(query)
        self.started.set()
        if self.block:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error
        return self.result


class FakeTransport:
    """Emits cumulative chunks, then either finishes or waits for ``release``."""

    def __init__(self, chunks: Sequence[str] = ("Hello", "Hello world"), *, block: bool = False) -> None:
        self.chunks = list(chunks)
        self.block = block
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.calls: list[dict[str, Any]] = []

    async def stream(self, url, payload, on_chunk, auth, host, scope) -> None:
        self.calls.append({"url": url, "payload": payload, "auth": auth, "host": host})
        self.started.set()
        for chunk in self.chunks:
            on_chunk(chunk, False, False)
        if self.block:
            await self.release.wait()
        on_chunk(self.chunks[-1] if self.chunks else "", True, False)


class FakeStrategy:
    """Compute strategy replaying ``(text, is_finished)`` updates."""

    def __init__(self, updates: Sequence[tuple[str, bool]] = (("step 1", False), ("final", True))) -> None:
        self.updates = list(updates)
        self.calls: list[dict[str, Any]] = []

    async def run(self, message, history, settings, model, auth, on_update, scope) -> None:
        self.calls.append({"message": message, "history": list(history), "model": model, "auth": auth})
        for text, finished in self.updates:
            await asyncio.sleep(0)
            on_update(text, finished)


class FakePageReader:
    def __init__(self, content: str = "", error: Exception | None = None) -> None:
        self.content = content
        self.error = error

    async def get_active_tab_content(self, scope: CancellationScope) -> str:
        if self.error is not None:
            raise self.error
        return self.content


async def wait_for(event: asyncio.Event, timeout: float = 1.0) -> None:
    await asyncio.wait_for(event.wait(), timeout)
