"""Subscribe/unsubscribe event delivery for AuthClient lifecycle events.

Subscribers receive an ``AuthEvent``. Sync handlers run inline; async
handlers are scheduled on the running event loop. A failing handler is
logged and never affects the operation that emitted the event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging

from typing import TYPE_CHECKING, Any

from .types import AuthEvent, AuthEventType


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger("easyauth.events")


class EventEmitter:
    """Fan-out of ``AuthEvent`` objects to registered handlers."""

    def __init__(self) -> None:
        self._handlers: list[tuple[AuthEventType | None, Callable[[AuthEvent], Any]]] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(
        self,
        handler: Callable[[AuthEvent], Any],
        event_type: AuthEventType | str | None = None,
    ) -> Callable[[], None]:
        """Register ``handler`` for one event type, or all when omitted.

        Parameters
        ----------
        handler : callable
            Receives the ``AuthEvent``; may be a coroutine function.
        event_type : AuthEventType or str, optional
            Restrict delivery to this event type.

        Returns
        -------
        callable
            Disposer that unsubscribes the handler. Calling it more than
            once is harmless.
        """
        kind = AuthEventType(event_type) if event_type is not None else None
        entry = (kind, handler)
        self._handlers.append(entry)

        def dispose() -> None:
            try:
                self._handlers.remove(entry)
            except ValueError:
                pass

        return dispose

    @property
    def handler_count(self) -> int:
        """Number of live subscriptions."""
        return len(self._handlers)

    def emit(self, event_type: AuthEventType, **data: Any) -> AuthEvent:
        """Deliver a new event to every matching handler.

        Returns
        -------
        AuthEvent
            The event that was delivered.
        """
        event = AuthEvent(type=event_type, data=data)
        for kind, handler in list(self._handlers):
            if kind is not None and kind is not event_type:
                continue
            self._dispatch(handler, event)
        return event

    def _dispatch(self, handler: Callable[[AuthEvent], Any], event: AuthEvent) -> None:
        try:
            result = handler(event)
        except Exception:
            logger.exception("Event handler failed for '%s'", event.type.value)
            return
        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    "Async handler for '%s' needs a running event loop", event.type.value
                )
                if inspect.iscoroutine(result):
                    result.close()
                return
            task = asyncio.ensure_future(result, loop=loop)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event handler failed", exc_info=task.exception())

    def clear(self) -> None:
        """Drop every subscription."""
        self._handlers.clear()
