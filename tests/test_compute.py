"""Tests for the medium and high compute strategies."""

from __future__ import annotations

from typing import Any

import pytest

from parley.ai.client import ClientSettings
from parley.orchestration.cancellation import CancellationScope
from parley.orchestration.compute import HighComputeStrategy, MediumComputeStrategy, parse_numbered_list
from parley.orchestration.errors import OperationCancelledError, TransportError

from helpers import make_settings


class _ScriptedClient:
    """Replies to ``complete`` calls in order; exceptions in the script are raised."""

    def __init__(self, replies: list[Any], scope: CancellationScope | None = None, cancel_at: int | None = None):
        self.replies = list(replies)
        self.prompts: list[list[dict[str, str]]] = []
        self.closed = False
        self._scope = scope
        self._cancel_at = cancel_at

    async def complete(self, messages, **kwargs: Any) -> str:
        self.prompts.append(list(messages))
        if self._cancel_at is not None and len(self.prompts) == self._cancel_at:
            self._scope.cancel("stopped")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def aclose(self) -> None:
        self.closed = True


class _Factory:
    def __init__(self, client: _ScriptedClient) -> None:
        self.client = client
        self.settings: list[ClientSettings] = []

    def __call__(self, settings: ClientSettings) -> _ScriptedClient:
        self.settings.append(settings)
        return self.client


class _Updates:
    def __init__(self) -> None:
        self.calls: list[tuple[str, bool]] = []

    def __call__(self, text: str, is_finished: bool) -> None:
        self.calls.append((text, is_finished))


@pytest.mark.parametrize(
    ("text", "limit", "expected"),
    [
        ("1. First\n2) Second\n3. Third", 2, ["First", "Second"]),
        ("Intro line\n- alpha\n* beta\n", 5, ["alpha", "beta"]),
        ("just one question", 3, ["just one question"]),
        ("", 3, []),
    ],
)
def test_parse_numbered_list(text: str, limit: int, expected: list[str]) -> None:
    assert parse_numbered_list(text, limit) == expected


async def _run(strategy, scope: CancellationScope | None = None) -> _Updates:
    settings = make_settings()
    updates = _Updates()
    await strategy.run(
        "Compare A and B",
        [{"role": "user", "content": "earlier"}],
        settings,
        settings.current_model,
        {"Authorization": "Bearer gsk-test"},
        updates,
        scope or CancellationScope(),
    )
    return updates


@pytest.mark.asyncio
async def test_medium_decomposes_answers_and_synthesizes() -> None:
    client = _ScriptedClient(["1. What is A?\n2. What is B?", "A is 1", "B is 2", "Final answer"])
    factory = _Factory(client)

    updates = await _run(MediumComputeStrategy(client_factory=factory, max_subquestions=3))

    assert updates.calls == [
        ("Breaking the task into sub-questions...", False),
        ("**Sub-question 1/2:** What is A?\n\n", False),
        ("**Sub-question 1/2:** What is A?\n\n**Sub-question 2/2:** What is B?\n\n", False),
        (
            "**Sub-question 1/2:** What is A?\n\n**Sub-question 2/2:** What is B?\n\nSynthesizing the final answer...",
            False,
        ),
        ("Final answer", True),
    ]
    assert factory.settings[0].api_key == "gsk-test"
    assert client.prompts[0][0] == {"role": "user", "content": "earlier"}
    assert "A is 1" in client.prompts[-1][-1]["content"]
    assert client.closed is True


@pytest.mark.asyncio
async def test_medium_failure_raises_and_closes_client() -> None:
    client = _ScriptedClient(["1. Q", TransportError("HTTP 500: boom")])
    updates = _Updates()
    settings = make_settings()

    with pytest.raises(TransportError):
        await MediumComputeStrategy(client_factory=_Factory(client)).run(
            "task", [], settings, settings.current_model, None, updates, CancellationScope()
        )

    assert all(not finished for _, finished in updates.calls)
    assert client.closed is True


@pytest.mark.asyncio
async def test_medium_cancellation_skips_terminal_update() -> None:
    scope = CancellationScope()
    client = _ScriptedClient(["1. Q", "answer", "final"], scope=scope, cancel_at=2)

    with pytest.raises(OperationCancelledError):
        await _run(MediumComputeStrategy(client_factory=_Factory(client)), scope)

    assert len(client.prompts) == 2
    assert client.closed is True


@pytest.mark.asyncio
async def test_high_plans_stages_and_steps() -> None:
    client = _ScriptedClient(
        ["1. Gather facts", "- look up X\n- look up Y", "X result", "Y result", "stage summary", "Final"]
    )

    updates = await _run(HighComputeStrategy(client_factory=_Factory(client), max_stages=2, max_steps=2))

    stage = "**Stage 1/1:** Gather facts\n\n"
    assert updates.calls == [
        ("Planning stages...", False),
        (stage, False),
        (stage + "- Step 1.1: look up X\n", False),
        (stage + "- Step 1.1: look up X\n- Step 1.2: look up Y\n", False),
        (stage + "- Step 1.1: look up X\n- Step 1.2: look up Y\n\nSynthesizing the final answer...", False),
        ("Final", True),
    ]
    assert "stage summary" in client.prompts[-1][-1]["content"]
    assert [finished for _, finished in updates.calls].count(True) == 1
