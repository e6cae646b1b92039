"""Cancellation scopes threaded through every suspending call of a send."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from .errors import OperationCancelledError
from .types import GuardToken

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = ["CancellationScope", "CancellationController"]


class CancellationScope:
    """Abort handle owned by exactly one send.

    Stages check the scope on entry and again after every resumption. Wrapping
    an awaitable in :meth:`run` makes it reject promptly once the scope is
    cancelled, even when the underlying I/O would otherwise keep going.
    """

    def __init__(self, token: GuardToken | None = None) -> None:
        self.token = token
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Abort the scope. Returns False when it was already aborted."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:  # pragma: no cover - callbacks belong to collaborators
                LOGGER.debug("Cancellation callback failed", exc_info=True)
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` when the scope is cancelled (immediately if it already is)."""
        if self._event.is_set():
            callback()
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(f"Operation {self._reason or 'cancelled'}")

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the scope is cancelled first.

        Raises:
            OperationCancelledError: If the scope was cancelled before the
                awaitable started, while it was pending, or by the time it
                resumed (regardless of whether it succeeded or failed).
        """
        if self._event.is_set():
            _close_unstarted(awaitable)
            self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task not in done:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                LOGGER.debug("Awaitable failed while being cancelled", exc_info=True)
            self.raise_if_cancelled()

        try:
            result = task.result()
        except OperationCancelledError:
            raise
        except Exception as exc:
            if self._event.is_set():
                raise OperationCancelledError(f"Operation {self._reason or 'cancelled'}") from exc
            raise
        self.raise_if_cancelled()
        return result

    def __repr__(self) -> str:
        return f"CancellationScope(token={self.token}, cancelled={self.cancelled})"


def _close_unstarted(awaitable: Awaitable[object]) -> None:
    if asyncio.isfuture(awaitable):
        awaitable.cancel()
        return
    close = getattr(awaitable, "close", None)
    if callable(close):
        close()


class CancellationController:
    """Owns the scope of the one send that may currently be running."""

    __slots__ = ("_token", "_scope")

    def __init__(self) -> None:
        self._token: GuardToken | None = None
        self._scope: CancellationScope | None = None

    @property
    def current(self) -> CancellationScope | None:
        return self._scope

    def open(self, token: GuardToken) -> CancellationScope:
        """Create the scope for ``token``, aborting any scope it supersedes."""
        if self._scope is not None:
            LOGGER.debug("Scope for %s superseded by %s", self._token, token)
            self._scope.cancel("superseded")
        self._token = token
        self._scope = CancellationScope(token)
        return self._scope

    def scope_for(self, token: GuardToken | None) -> CancellationScope | None:
        if token is not None and token == self._token:
            return self._scope
        return None

    def cancel(self, token: GuardToken | None = None, *, reason: str = "cancelled by user") -> bool:
        """Abort the current scope (only if it belongs to ``token`` when given) and drop it."""
        if self._scope is None:
            return False
        if token is not None and token != self._token:
            return False
        self._scope.cancel(reason)
        self._scope = None
        self._token = None
        return True

    def release(self, token: GuardToken | None) -> bool:
        """Drop the scope for ``token`` without aborting it."""
        if token is None or token != self._token:
            return False
        self._scope = None
        self._token = None
        return True
