"""Tests for cancellation scopes and the controller."""

from __future__ import annotations

import asyncio

import pytest

from parley.orchestration.cancellation import CancellationController, CancellationScope
from parley.orchestration.errors import OperationCancelledError
from parley.orchestration.types import GuardToken


@pytest.mark.asyncio
async def test_run_returns_result_when_not_cancelled() -> None:
    scope = CancellationScope()

    async def _work() -> str:
        await asyncio.sleep(0)
        return "done"

    assert await scope.run(_work()) == "done"


@pytest.mark.asyncio
async def test_run_rejects_promptly_once_cancelled() -> None:
    scope = CancellationScope()
    started = asyncio.Event()
    was_cancelled = False

    async def _slow() -> str:
        nonlocal was_cancelled
        started.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            was_cancelled = True
            raise
        return "never"

    task = asyncio.ensure_future(scope.run(_slow()))
    await started.wait()
    scope.cancel("cancelled by user")

    with pytest.raises(OperationCancelledError):
        await asyncio.wait_for(task, 1.0)
    assert was_cancelled


@pytest.mark.asyncio
async def test_run_on_cancelled_scope_never_starts_the_awaitable() -> None:
    scope = CancellationScope()
    scope.cancel()
    started = False

    async def _work() -> None:
        nonlocal started
        started = True

    with pytest.raises(OperationCancelledError):
        await scope.run(_work())
    assert started is False


@pytest.mark.asyncio
async def test_failure_after_cancel_surfaces_as_cancellation() -> None:
    scope = CancellationScope()

    async def _fails_after_abort() -> None:
        scope.cancel()
        raise RuntimeError("connection reset")

    with pytest.raises(OperationCancelledError):
        await scope.run(_fails_after_abort())


@pytest.mark.asyncio
async def test_failure_without_cancel_propagates() -> None:
    scope = CancellationScope()

    async def _fails() -> None:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await scope.run(_fails())


def test_raise_if_cancelled_and_callbacks() -> None:
    scope = CancellationScope()
    calls: list[str] = []
    scope.add_callback(lambda: calls.append("first"))

    scope.raise_if_cancelled()
    assert scope.cancel("cancelled by user") is True
    assert scope.cancel() is False
    scope.add_callback(lambda: calls.append("late"))

    assert calls == ["first", "late"]
    assert scope.reason == "cancelled by user"
    with pytest.raises(OperationCancelledError, match="Operation cancelled by user"):
        scope.raise_if_cancelled()


def test_controller_open_supersedes_previous_scope() -> None:
    controller = CancellationController()
    first = controller.open(GuardToken(1))
    second = controller.open(GuardToken(2))

    assert first.cancelled
    assert first.reason == "superseded"
    assert not second.cancelled
    assert controller.current is second
    assert controller.scope_for(GuardToken(2)) is second
    assert controller.scope_for(GuardToken(1)) is None


def test_controller_cancel_and_release() -> None:
    controller = CancellationController()
    scope = controller.open(GuardToken(5))

    assert controller.cancel(GuardToken(4)) is False
    assert not scope.cancelled
    assert controller.cancel(GuardToken(5)) is True
    assert scope.cancelled
    assert controller.current is None

    other = controller.open(GuardToken(6))
    assert controller.release(GuardToken(6)) is True
    assert not other.cancelled
    assert controller.release(GuardToken(6)) is False
