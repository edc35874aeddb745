"""Shared publish/subscribe plumbing for the chat stores."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Generic, List, Set, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S")

Listener = Callable[[S], None]
Unsubscribe = Callable[[], None]


class ObservableStore(Generic[S]):
    """
    Holds an immutable state snapshot and pushes every new one to listeners.

    Listeners are plain callables invoked synchronously on the event loop; a
    listener that raises is logged and skipped so one broken view cannot stop
    the others from updating.
    """

    def __init__(self, initial: S) -> None:
        self._state: S = initial
        self._listeners: List[Listener[S]] = []
        self._background: Set[asyncio.Task[None]] = set()

    @property
    def state(self) -> S:
        return self._state

    def subscribe(self, listener: Listener[S]) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: S) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Store listener %r failed", listener)

    def _spawn(self, coro: Awaitable[None]) -> None:
        """Run a fire-and-forget coroutine, keeping a reference until it finishes."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def aclose(self) -> None:
        """Wait for background work started by this store."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


class ViewState(str, Enum):
    """Lifecycle of a store-backed view."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    SENDING = "sending"
    ERROR = "error"
    NOT_FOUND = "not_found"
