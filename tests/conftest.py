"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from parley.events import EventBus
from parley.orchestration.engine import SendEngine

from helpers import (
    FakeOptimizer,
    FakePageReader,
    FakeScraper,
    FakeSearcher,
    FakeStrategy,
    FakeTransport,
    make_settings,
)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def scraper() -> FakeScraper:
    return FakeScraper()


@pytest.fixture
def optimizer() -> FakeOptimizer:
    return FakeOptimizer(result="optimized query")


@pytest.fixture
def searcher() -> FakeSearcher:
    return FakeSearcher(result="1. Result\nURL: https://example.com\nsnippet")


@pytest.fixture
def page_reader() -> FakePageReader:
    return FakePageReader(content="page text")


@pytest.fixture
def medium() -> FakeStrategy:
    return FakeStrategy((("medium progress", False), ("medium answer", True)))


@pytest.fixture
def high() -> FakeStrategy:
    return FakeStrategy((("high progress", False), ("high answer", True)))


@pytest.fixture
def engine(settings, event_bus, transport, scraper, optimizer, searcher, page_reader, medium, high) -> SendEngine:
    return SendEngine(
        settings,
        transport=transport,
        scraper=scraper,
        optimizer=optimizer,
        searcher=searcher,
        page_reader=page_reader,
        medium=medium,
        high=high,
        bus=event_bus,
    )
