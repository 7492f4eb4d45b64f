"""
EventBus: named publish/subscribe used by every manager.

Managers expose a bus (`manager.events`) instead of inheriting from a shared emitter base.
Handlers may be plain callables or coroutine functions; coroutines are scheduled on the
running loop and are not awaited by emit(). Delivery iterates over a snapshot, so a handler
may unsubscribe itself (or others) while an event is being delivered.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]

# Strong references to fire-and-forget tasks; asyncio only keeps weak ones.
_background_tasks: set[asyncio.Task] = set()


def _log_task_failure(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)


def spawn(coro: Awaitable[Any], name: str | None = None) -> asyncio.Task:
    """Schedule a coroutine without awaiting it. Failures are logged, never raised."""
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    _background_tasks.add(task)
    task.add_done_callback(_log_task_failure)
    return task


class EventBus:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Handler]] = {}

    def on(self, event: str, handler: Handler) -> Handler:
        self._listeners.setdefault(event, []).append(handler)
        return handler

    def once(self, event: str, handler: Handler) -> Handler:
        """Subscribe for a single delivery. off(event, handler) works with the original handler."""

        def _once(*args: Any) -> Any:
            self.off(event, _once)
            return handler(*args)

        _once.__wrapped__ = handler  # type: ignore[attr-defined]
        return self.on(event, _once)

    def off(self, event: str, handler: Handler) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for registered in listeners:
            if registered == handler or getattr(registered, "__wrapped__", None) == handler:
                listeners.remove(registered)
                break
        if not listeners:
            del self._listeners[event]

    def emit(self, event: str, *args: Any) -> int:
        """Deliver to every current subscriber. Returns how many handlers were invoked."""
        listeners = list(self._listeners.get(event, ()))
        for handler in listeners:
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    spawn(result, name=f"event:{event}")
            except Exception:
                logger.exception("Handler for event %r failed", event)
        return len(listeners)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
