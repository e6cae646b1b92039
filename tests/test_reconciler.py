"""Tests for the stream reconciler and its pure reducer."""

from __future__ import annotations

import pytest

from parley.events import EventBus, LoadingChanged, SendFinished, TurnAppended, TurnUpdated
from parley.orchestration.cancellation import CancellationController
from parley.orchestration.guard import CompletionGuard
from parley.orchestration.reconciler import StreamReconciler, apply_update, merge_content
from parley.orchestration.turn_store import TurnStore
from parley.orchestration.types import ChatStatus, GuardToken, SendState, Turn, TurnStatus, TurnUpdate


def _transcript(content: str = "", status: TurnStatus = TurnStatus.STREAMING) -> tuple[Turn, ...]:
    return (Turn.user("hi"), Turn(role="assistant", content=content, status=status))


# =============================================================================
# apply_update
# =============================================================================


class TestApplyUpdate:
    def test_chunk_from_active_token_replaces_content(self) -> None:
        token = GuardToken(1)
        result = apply_update(_transcript("Hel"), token, token, TurnUpdate.chunk("Hello"))

        assert result.changed
        assert result.turns[-1].content == "Hello"
        assert result.turns[-1].status is TurnStatus.STREAMING
        assert result.flags is None
        assert not result.release_guard

    def test_chunk_from_stale_token_is_skipped(self) -> None:
        turns = _transcript("current")
        result = apply_update(turns, GuardToken(1), GuardToken(2), TurnUpdate.chunk("late"))

        assert result.skipped == "stale"
        assert result.turns == turns

    def test_finish_completes_turn_and_releases_guard(self) -> None:
        token = GuardToken(1)
        result = apply_update(_transcript("Hello"), token, token, TurnUpdate.finished("Hello world"))

        assert result.turns[-1].content == "Hello world"
        assert result.turns[-1].status is TurnStatus.COMPLETE
        assert result.release_guard
        assert result.flags is not None
        assert result.flags.loading is False
        assert result.flags.chat_status is ChatStatus.DONE

    def test_error_replaces_content(self) -> None:
        token = GuardToken(1)
        result = apply_update(_transcript("partial"), token, token, TurnUpdate.error("HTTP 500"))

        assert result.turns[-1].content == "Error: HTTP 500"
        assert result.turns[-1].status is TurnStatus.ERROR
        assert result.flags.chat_status is ChatStatus.IDLE

    def test_cancel_appends_notice_to_partial_content(self) -> None:
        token = GuardToken(1)
        update = TurnUpdate.cancelled("[Operation cancelled by user]")
        result = apply_update(_transcript("partial"), token, token, update)

        assert result.turns[-1].content == "partial [Operation cancelled by user]"
        assert result.turns[-1].status is TurnStatus.CANCELLED
        assert result.flags.chat_status is ChatStatus.IDLE

    @pytest.mark.parametrize(
        "status",
        [TurnStatus.COMPLETE, TurnStatus.ERROR, TurnStatus.CANCELLED],
    )
    def test_terminal_turns_absorb_later_updates(self, status: TurnStatus) -> None:
        token = GuardToken(1)
        turns = _transcript("final", status)

        result = apply_update(turns, token, token, TurnUpdate.finished("rewritten"))

        assert result.skipped == "absorbed"
        assert result.turns == turns
        assert result.release_guard

    def test_error_without_assistant_turn_appends_error_turn(self) -> None:
        token = GuardToken(1)
        turns = (Turn.user("hi"),)

        result = apply_update(turns, token, token, TurnUpdate.error(""))

        assert result.appended
        assert len(result.turns) == 2
        assert result.turns[-1].role == "assistant"
        assert result.turns[-1].content == "Error: Unknown operation error"
        assert result.turns[-1].status is TurnStatus.ERROR

    def test_non_error_without_assistant_turn_changes_nothing(self) -> None:
        token = GuardToken(1)
        turns = (Turn.user("hi"),)

        result = apply_update(turns, token, token, TurnUpdate.finished("text"))

        assert not result.changed
        assert result.skipped == "no-assistant-turn"

    def test_superseded_terminal_only_resyncs_flags(self) -> None:
        turns = _transcript("new send")
        result = apply_update(turns, GuardToken(1), GuardToken(2), TurnUpdate.error("late failure"))

        assert result.skipped == "superseded"
        assert result.turns == turns
        assert not result.release_guard
        assert result.flags.loading is False
        assert result.flags.chat_status is ChatStatus.IDLE

    @pytest.mark.parametrize(
        "update",
        [
            TurnUpdate.finished(""),
            TurnUpdate.cancelled("[Operation cancelled by user]"),
            TurnUpdate.error("Streaming operation cancelled"),
        ],
    )
    def test_late_final_signal_with_empty_slot_only_resyncs_flags(self, update: TurnUpdate) -> None:
        turns = _transcript("kept")

        result = apply_update(turns, GuardToken(1), None, update)

        assert result.skipped == "finalized"
        assert result.turns == turns
        assert result.flags.loading is False
        assert result.flags.chat_status is ChatStatus.IDLE


def test_status_priority() -> None:
    assert TurnUpdate(text="x", is_finished=True, is_error=True, is_cancelled=True).status is TurnStatus.ERROR
    assert TurnUpdate(text="x", is_finished=True, is_cancelled=True).status is TurnStatus.CANCELLED
    assert TurnUpdate(text="x", is_finished=True).status is TurnStatus.COMPLETE
    assert TurnUpdate(text="x").status is TurnStatus.STREAMING


def test_merge_content_rules() -> None:
    assert merge_content("", TurnUpdate.cancelled("[stopped]")) == "[stopped]"
    assert merge_content("abc", TurnUpdate.error("")) == "Error: Unknown stream/handler error"
    assert merge_content("abc", TurnUpdate.chunk("abcdef")) == "abcdef"


# =============================================================================
# StreamReconciler
# =============================================================================


@pytest.fixture
def wiring():
    store = TurnStore()
    guard = CompletionGuard()
    cancellation = CancellationController()
    bus = EventBus()
    reconciler = StreamReconciler(store, guard, cancellation, bus)
    return store, guard, cancellation, bus, reconciler


class TestStreamReconciler:
    def test_terminal_update_releases_guard_scope_and_flags(self, wiring) -> None:
        store, guard, cancellation, bus, reconciler = wiring
        finished: list[SendFinished] = []
        bus.subscribe(SendFinished, finished.append)
        token = guard.begin()
        cancellation.open(token)
        reconciler.set_loading(True)
        reconciler.append(Turn.user("hi"))
        reconciler.append(Turn.assistant_placeholder())

        reconciler.apply(token, TurnUpdate.chunk("Hel"))
        reconciler.apply(token, TurnUpdate.finished("Hello"))

        assert store.last().content == "Hello"
        assert guard.active is None
        assert cancellation.current is None
        assert reconciler.flags.loading is False
        assert reconciler.flags.chat_status is ChatStatus.DONE
        assert reconciler.state is SendState.COMPLETE
        assert [event.state for event in finished] == [SendState.COMPLETE]

    def test_duplicate_terminal_is_idempotent(self, wiring) -> None:
        store, guard, _cancellation, bus, reconciler = wiring
        finished: list[SendFinished] = []
        bus.subscribe(SendFinished, finished.append)
        token = guard.begin()
        reconciler.append(Turn.assistant_placeholder())

        reconciler.apply(token, TurnUpdate.finished("answer"))
        revision = store.revision
        reconciler.apply(token, TurnUpdate.finished("answer again"))

        assert store.last().content == "answer"
        assert store.revision == revision
        assert len(finished) == 1

    def test_publishes_append_and_update_events(self, wiring) -> None:
        _store, guard, _cancellation, bus, reconciler = wiring
        appended: list[TurnAppended] = []
        updated: list[TurnUpdated] = []
        loading: list[LoadingChanged] = []
        bus.subscribe(TurnAppended, appended.append)
        bus.subscribe(TurnUpdated, updated.append)
        bus.subscribe(LoadingChanged, loading.append)
        token = guard.begin()

        reconciler.set_loading(True)
        reconciler.append(Turn.assistant_placeholder())
        reconciler.apply(token, TurnUpdate.chunk("a"))
        reconciler.apply(token, TurnUpdate.finished("ab"))

        assert len(appended) == 1
        assert [event.turn.content for event in updated] == ["a", "ab"]
        assert [event.loading for event in loading] == [True, False]

    def test_annotate_open_turn(self, wiring) -> None:
        store, _guard, _cancellation, _bus, reconciler = wiring
        reconciler.append(Turn.assistant_placeholder())

        annotated = reconciler.annotate_open_turn('**Original query:** "q"\n\n')

        assert annotated is not None
        assert store.last().auxiliary_display == '**Original query:** "q"\n\n'
        assert store.last().status is TurnStatus.STREAMING
