"""In-process pub/sub event bus for forkchat state changes."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from functools import partial
from typing import Any

import structlog

Handler = Callable[["ForkchatEvent", dict[str, Any]], None | Awaitable[None]]


class ForkchatEvent(StrEnum):
    """All event types published by forkchat components.

    Typed payload definitions for each event live in
    :mod:`forkchat.events.payloads`.

    State events (``SESSION_*``, ``MESSAGE_*``, ``INCLUSION_CHANGED``,
    ``SETTINGS_UPDATED``, ``UI_UPDATED``) are published by
    :class:`~forkchat.state.AppState` after the mutation is applied, so a
    handler always observes the new state. ``STREAM_*`` events are published by
    :class:`~forkchat.client.ChatClient`.
    """

    # Session lifecycle
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    SESSION_DELETED = "session.deleted"

    # Message lifecycle
    MESSAGE_CREATED = "message.created"
    MESSAGE_UPDATED = "message.updated"
    INCLUSION_CHANGED = "message.inclusion_changed"

    # Settings and view state
    SETTINGS_UPDATED = "settings.updated"
    UI_UPDATED = "ui.updated"

    # Provider streaming
    STREAM_STARTED = "stream.started"
    STREAM_COMPLETED = "stream.completed"
    STREAM_FAILED = "stream.failed"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    Design decisions:
    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled as tasks on the running loop; failures are logged.
    - Handler exceptions are logged but never propagate to the publisher.

    Example::

        bus = EventBus()

        def on_created(event, payload):
            print(f"New {payload['role']} message {payload['message_id']}")

        bus.subscribe(ForkchatEvent.MESSAGE_CREATED, on_created)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[ForkchatEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._logger = logger or structlog.get_logger("forkchat.events")

    def subscribe(self, event: ForkchatEvent, handler: Handler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event: The event type to listen for.
            handler: Callable accepting ``(event, payload)``. May be sync or async.
        """
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for ALL event types."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: ForkchatEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def unsubscribe_all(self, handler: Handler) -> None:
        """Remove a global handler registered with :meth:`subscribe_all`. No-op if not found."""
        try:
            self._global_handlers.remove(handler)
        except ValueError:
            pass

    def publish(self, event: ForkchatEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Sync handlers are called immediately in registration order.
        Async handlers are scheduled as background tasks (non-blocking); the
        bus holds a reference until each finishes.
        Exceptions from any handler are logged and swallowed.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        # No running event loop; drop the coroutine cleanly.
                        result.close()
                        continue
                    task = loop.create_task(result)
                    self._tasks.add(task)
                    task.add_done_callback(partial(self._task_done, event, handler))
            except Exception as exc:
                self._log_handler_error(event, handler, exc)

    @property
    def pending_tasks(self) -> int:
        """Async handler tasks still running."""
        return len(self._tasks)

    def _task_done(self, event: ForkchatEvent, handler: Handler, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log_handler_error(event, handler, exc)

    def _log_handler_error(self, event: ForkchatEvent, handler: Handler, exc: BaseException) -> None:
        self._logger.error(
            "event_handler_error",
            event_type=str(event),
            handler=getattr(handler, "__qualname__", repr(handler)),
            error=str(exc),
        )
