"""
Event bus for canvas synchronization.

The ``CanvasSyncController`` publishes what the UI needs to react to:
cache invalidations, user notifications and drag lifecycle changes.
Subscribers (a websocket fan-out, a cache layer, tests) register handlers.

Example:
    from blockflow.events import EventBus, INVALIDATE

    bus = EventBus()

    @bus.on(INVALIDATE)
    def refetch(event):
        cache.drop(event.key)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from blockflow.logging import get_logger
from blockflow.models import Position

logger = get_logger("events")


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

INVALIDATE = "invalidate"
NOTIFY = "notify"
DRAG_START = "drag_start"
DRAG_END = "drag_end"


@dataclass
class InvalidateEvent:
    """A cached query must be refetched."""

    key: str
    deferred: bool = False  # True when flushed after a drag


@dataclass
class NotifyEvent:
    """A user-facing notification."""

    message: str
    critical: bool = False


@dataclass
class DragStartEvent:
    entity_id: str
    kind: str
    origin: Position | None = None


@dataclass
class DragEndEvent:
    """Emitted when a drag finishes. ``committed`` is False for a cancelled drag."""

    entity_id: str
    kind: str
    position: Position | None
    committed: bool


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

# Handlers can be sync or async.
EventHandler = Callable[..., Any]


@dataclass
class _HandlerEntry:
    """Internal: a registered handler with metadata."""

    event: str
    handler: EventHandler
    priority: int = 0  # lower runs first
    source: str = ""  # who registered it


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------


class EventBus:
    """
    An event bus for canvas events.

    Handlers are called in priority order (lower first). A failing handler
    is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: list[_HandlerEntry] = []
        self._pending: set[asyncio.Task[Any]] = set()

    def on(
        self,
        event: str,
        handler: EventHandler | None = None,
        priority: int = 0,
        source: str = "",
    ) -> Callable[[], None] | Callable[[EventHandler], EventHandler]:
        """
        Subscribe to a canvas event.

        Called with a handler it returns an unsubscribe callable; called
        without one it works as a decorator.
        """
        if handler is not None:
            entry = _HandlerEntry(event=event, handler=handler, priority=priority, source=source)
            self._handlers.append(entry)

            def unsubscribe() -> None:
                if entry in self._handlers:
                    self._handlers.remove(entry)

            return unsubscribe

        def decorator(fn: EventHandler) -> EventHandler:
            self.on(event, fn, priority=priority, source=source)
            return fn

        return decorator

    def _relevant(self, event: str) -> list[_HandlerEntry]:
        return sorted((h for h in self._handlers if h.event == event), key=lambda h: h.priority)

    async def emit(self, event: str, data: Any = None) -> list[Any]:
        """
        Deliver an event to every subscriber and collect non-None results.

        Async handlers are awaited in turn.
        """
        results: list[Any] = []
        for entry in self._relevant(event):
            try:
                result = entry.handler(data)
                if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                    result = await result
                if result is not None:
                    results.append(result)
            except Exception as e:
                logger.warning("Event handler error (event=%s, source=%s): %s", event, entry.source, e)
        return results

    def emit_sync(self, event: str, data: Any = None) -> list[Any]:
        """
        Emit an event from synchronous code.

        Async handlers are scheduled on the running loop when there is one,
        otherwise skipped with a warning.
        """
        results: list[Any] = []
        for entry in self._relevant(event):
            try:
                result = entry.handler(data)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        result.close()
                        logger.warning(
                            "Async handler skipped in sync emit (event=%s, source=%s)",
                            event,
                            entry.source,
                        )
                        continue
                    task = loop.create_task(result)
                    self._pending.add(task)
                    task.add_done_callback(partial(self._task_done, event, entry.source))
                    continue
                if result is not None:
                    results.append(result)
            except Exception as e:
                logger.warning("Event handler error (event=%s, source=%s): %s", event, entry.source, e)
        return results

    def _task_done(self, event: str, source: str, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Event handler error (event=%s, source=%s): %s", event, source, error)

    async def drain(self) -> None:
        """Wait for async handlers scheduled by ``emit_sync``."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def handler_count(self) -> int:
        """Number of live subscriptions."""
        return len(self._handlers)
