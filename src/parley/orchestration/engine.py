"""Send engine: sequences one send from the user's message to the final turn.

The engine owns the transcript, the guard, the cancellation controller and
the reconciler, and drives the collaborators in a fixed order:

1. take the guard (superseding any running send) and open a scope;
2. append the user turn and the assistant placeholder;
3. scrape URLs in the message;
4. web mode: optimize the query, then search;
5. page mode: read the active tab;
6. assemble the system prompt and dispatch.

Every callback from the chosen strategy, and the stop handler, funnels
through :meth:`SendEngine.update_assistant_turn`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Sequence

from ..ai.endpoints import get_auth_header
from ..events import EventBus, MessageCleared, PageContentChanged, SendStarted, WebContentChanged
from ..utils.logging import send_logger
from .cancellation import CancellationController, CancellationScope
from .collaborators import ComputeStrategy, PageReader, QueryOptimizer, Scraper, StreamingTransport, WebSearcher
from .compute import HighComputeStrategy, MediumComputeStrategy
from .dispatch import DispatchRequest, DispatchSelector
from .errors import OperationCancelledError, SearchError
from .guard import CompletionGuard
from .pipeline import (
    assemble_system_prompt,
    build_fragments,
    extract_urls,
    optimize_query,
    read_page_content,
    run_search,
    scrape_urls,
    truncate_context,
)
from .reconciler import CANCELLED_BY_USER_NOTICE, ReconcileResult, StreamReconciler
from .turn_store import TurnStore
from .types import ApiMessage, ChatStatus, GuardToken, SendState, SessionFlags, Turn, TurnUpdate

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

LOGGER = logging.getLogger(__name__)

__all__ = ["SUPERSEDED_NOTICE", "NO_MODEL_MESSAGE", "ABORTED_NOTICE", "SendEngine"]

SUPERSEDED_NOTICE = "[Operation cancelled by a new message]"
NO_MODEL_MESSAGE = "Configuration error: No model selected."
ABORTED_NOTICE = "[Operation cancelled]"


class SendEngine:
    """Runs sends against a single conversation.

    Args:
        settings: User settings; a send without settings is ignored.
        transport: Direct streaming transport.
        scraper: Fetches URLs mentioned in messages.
        optimizer: Rewrites messages into search queries (web mode).
        searcher: Runs web searches (web mode).
        page_reader: Reads the active tab (page mode).
        medium: Strategy for ``compute_level == "medium"``.
        high: Strategy for ``compute_level == "high"``.
        store: Existing transcript to continue, if any.
        bus: Event bus the UI subscribes to.
    """

    def __init__(
        self,
        settings: Settings | None,
        *,
        transport: StreamingTransport,
        scraper: Scraper,
        optimizer: QueryOptimizer,
        searcher: WebSearcher,
        page_reader: PageReader,
        medium: ComputeStrategy | None = None,
        high: ComputeStrategy | None = None,
        store: TurnStore | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._settings = settings
        self._scraper = scraper
        self._optimizer = optimizer
        self._searcher = searcher
        self._page_reader = page_reader
        self._store = store or TurnStore()
        self._bus = bus or EventBus()
        self._guard = CompletionGuard()
        self._cancellation = CancellationController()
        self._reconciler = StreamReconciler(self._store, self._guard, self._cancellation, self._bus)
        self._selector = DispatchSelector(
            transport,
            medium or MediumComputeStrategy(),
            high or HighComputeStrategy(),
        )
        self._web_content = ""
        self._page_content = ""

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------
    @property
    def settings(self) -> Settings | None:
        return self._settings

    def update_settings(self, settings: Settings | None) -> None:
        """Replace the settings used by the next send; a running send keeps its snapshot."""
        self._settings = settings

    @property
    def store(self) -> TurnStore:
        return self._store

    @property
    def turns(self) -> tuple[Turn, ...]:
        return self._store.turns

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def guard(self) -> CompletionGuard:
        return self._guard

    @property
    def cancellation(self) -> CancellationController:
        return self._cancellation

    @property
    def flags(self) -> SessionFlags:
        return self._reconciler.flags

    @property
    def loading(self) -> bool:
        return self._reconciler.flags.loading

    @property
    def chat_status(self) -> ChatStatus:
        return self._reconciler.flags.chat_status

    @property
    def state(self) -> SendState:
        return self._reconciler.state

    @property
    def web_content(self) -> str:
        return self._web_content

    @property
    def page_content(self) -> str:
        return self._page_content

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def update_assistant_turn(
        self,
        token: GuardToken | None,
        text: str,
        is_finished: bool,
        is_error: bool = False,
        is_cancelled: bool = False,
    ) -> ReconcileResult:
        """Single entry point for every update to the assistant turn."""
        update = TurnUpdate(
            text=text or "",
            is_finished=bool(is_finished),
            is_error=bool(is_error),
            is_cancelled=bool(is_cancelled),
        )
        return self._reconciler.apply(token, update)

    def stop(self) -> None:
        """Abort the running send and close its turn as cancelled.

        With nothing running, only the loading flag and status are reset.
        """
        token = self._guard.active
        if token is None:
            LOGGER.debug("[No CallID] Stop requested but no operation in progress.")
            self._reconciler.set_loading(False)
            self._reconciler.set_chat_status(ChatStatus.IDLE)
            return
        send_logger(LOGGER, token).debug("Stop requested.")
        self._cancellation.cancel(token)
        self.update_assistant_turn(token, CANCELLED_BY_USER_NOTICE, True, False, True)

    async def send(self, message: str) -> GuardToken | None:
        """Run one send to completion.

        Returns:
            The guard token of the send, or None when it was ignored (no
            settings or an empty message).
        """
        settings = self._settings
        if settings is None:
            LOGGER.debug("[No CallID] Bailing out: missing settings.")
            self._reconciler.set_loading(False)
            return None
        if not message:
            LOGGER.debug("[No CallID] Bailing out: missing message.")
            return None

        self._supersede_active()
        token = self._guard.begin()
        scope = self._cancellation.open(token)
        log = send_logger(LOGGER, token)
        log.debug("Send started (mode: %s, compute: %s).", settings.chat_mode, settings.compute_level)

        history = self._store.history()
        self._reconciler.set_loading(True)
        self._set_web_content("")
        self._set_page_content("")
        if settings.chat_mode == "web":
            self._reconciler.set_chat_status(ChatStatus.SEARCHING)
        elif settings.chat_mode == "page":
            self._reconciler.set_chat_status(ChatStatus.READING)
        else:
            self._reconciler.set_chat_status(ChatStatus.THINKING)

        self._reconciler.append(Turn.user(message))
        self._reconciler.append(Turn.assistant_placeholder())
        self._reconciler.mark_streaming()
        self._bus.publish(MessageCleared())
        self._bus.publish(SendStarted(token=token.value, message=message))

        try:
            await self._run(token, scope, message, settings, history)
        except asyncio.CancelledError:
            if _task_is_cancelling():
                log.debug("Send task cancelled by the event loop.")
                scope.cancel("task cancelled")
                self._finalize_aborted(token)
                raise
            # Raised inside a collaborator; the send itself was not cancelled.
            log.debug("Collaborator raised CancelledError. Ending send as cancelled.")
            scope.cancel("collaborator cancelled")
            self._finalize_aborted(token)
        except OperationCancelledError:
            log.debug("Send operation was cancelled.")
            self._finalize_aborted(token)
        except Exception as exc:
            if scope.cancelled:
                log.debug("Send operation was aborted. Stop handler is responsible for the transcript.")
                self._finalize_aborted(token)
            else:
                log.error("Error during send operation: %s", exc, exc_info=True)
                self.update_assistant_turn(token, str(exc) or type(exc).__name__, True, True)
        log.debug("Send processing completed.")
        return token

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _supersede_active(self) -> None:
        previous = self._guard.active
        if previous is None:
            return
        send_logger(LOGGER, previous).warning("Another send is starting. Aborting this one.")
        self._cancellation.cancel(previous, reason="superseded")
        self.update_assistant_turn(previous, SUPERSEDED_NOTICE, True, False, True)

    def _finalize_aborted(self, token: GuardToken) -> None:
        """Close an aborted send without surfacing an error.

        A send that still owns the guard closes its own turn as cancelled.
        With the slot empty only the flags are reset; a newer send keeps them.
        """
        if self._guard.is_active(token):
            self.update_assistant_turn(token, ABORTED_NOTICE, True, False, True)
        elif self._guard.active is None:
            self._reconciler.set_loading(False)
            self._reconciler.set_chat_status(ChatStatus.IDLE)
        self._guard.complete(token)
        self._cancellation.release(token)

    def _set_web_content(self, content: str) -> None:
        if content == self._web_content:
            return
        self._web_content = content
        self._bus.publish(WebContentChanged(content=content))

    def _set_page_content(self, content: str) -> None:
        if content == self._page_content:
            return
        self._page_content = content
        self._bus.publish(PageContentChanged(content=content))

    async def _run(
        self,
        token: GuardToken,
        scope: CancellationScope,
        message: str,
        settings: Settings,
        history: Sequence[ApiMessage],
    ) -> None:
        log = send_logger(LOGGER, token)
        reconciler = self._reconciler

        scraped_content = ""
        urls = extract_urls(message)
        if urls:
            reconciler.set_chat_status(ChatStatus.SEARCHING)
            scraped_content = await scrape_urls(urls, self._scraper, scope)
            reconciler.set_chat_status(ChatStatus.THINKING)
            log.debug("Scraped %d URL(s). Length: %d", len(urls), len(scraped_content))

        model = settings.current_model
        if model is None:
            log.error("No current model found.")
            self.update_assistant_turn(token, NO_MODEL_MESSAGE, True, True)
            return
        auth = get_auth_header(settings, model)

        query = message
        web_content = ""
        if settings.chat_mode == "web":
            reconciler.set_chat_status(ChatStatus.THINKING)
            optimized = await optimize_query(message, self._optimizer, settings, model, auth, scope, history)
            query = optimized.query

            reconciler.set_chat_status(ChatStatus.SEARCHING)
            try:
                search_result = await run_search(query, self._searcher, settings, scope)
            except SearchError as exc:
                log.error("Web search failed: %s", exc)
                reconciler.set_chat_status(ChatStatus.IDLE)
                self.update_assistant_turn(token, f"Web Search Failed: {exc}", True, True, False)
                return
            reconciler.set_chat_status(ChatStatus.THINKING)
            log.debug("Web search completed. Length: %d", len(search_result))

            reconciler.annotate_open_turn(optimized.display)
            web_content = truncate_context(search_result, settings.web_limit)
            self._set_web_content(web_content)

        page_content = ""
        if settings.chat_mode == "page":
            reconciler.set_chat_status(ChatStatus.READING)
            raw_page = await read_page_content(self._page_reader, scope)
            page_content = truncate_context(raw_page, settings.context_limit)
            self._set_page_content(page_content)
            reconciler.set_chat_status(ChatStatus.THINKING)
            log.debug("Page content prepared. Length: %d", len(page_content))

        fragments = build_fragments(
            settings,
            page_content=page_content,
            web_content=web_content,
            scraped_content=scraped_content,
        )
        system_prompt = assemble_system_prompt(fragments)
        log.debug(
            "System prompt constructed (%s).",
            ", ".join(fragment.kind for fragment in fragments if fragment) or "empty",
        )

        request = DispatchRequest(
            message=message,
            query=query,
            history=history,
            system_prompt=system_prompt,
            settings=settings,
            model=model,
            auth=auth,
        )

        def emit(update: TurnUpdate) -> None:
            self._reconciler.apply(token, update)

        scope.raise_if_cancelled()
        reconciler.set_chat_status(ChatStatus.THINKING)
        strategy = await self._selector.dispatch(request, emit, scope)
        log.debug("%s strategy returned.", strategy)


def _task_is_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0
