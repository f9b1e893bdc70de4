"""Persistence as an event subscriber: mirror AppState changes into the store."""

from __future__ import annotations

from typing import Any

import structlog

from forkchat.events.bus import EventBus, ForkchatEvent
from forkchat.models.config import SessionDefaults
from forkchat.state import AppState
from forkchat.store.kv import (
    MESSAGES_KEY,
    SESSIONS_KEY,
    SETTINGS_KEY,
    UI_KEY,
    KeyValueStore,
)

_DIRTY_KEYS: dict[ForkchatEvent, tuple[str, ...]] = {
    ForkchatEvent.SESSION_CREATED: (SESSIONS_KEY,),
    ForkchatEvent.SESSION_UPDATED: (SESSIONS_KEY,),
    ForkchatEvent.SESSION_DELETED: (SESSIONS_KEY, MESSAGES_KEY),
    ForkchatEvent.MESSAGE_CREATED: (MESSAGES_KEY,),
    ForkchatEvent.MESSAGE_UPDATED: (MESSAGES_KEY,),
    ForkchatEvent.INCLUSION_CHANGED: (MESSAGES_KEY,),
    ForkchatEvent.SETTINGS_UPDATED: (SETTINGS_KEY,),
    ForkchatEvent.UI_UPDATED: (UI_KEY,),
}


class StateMirror:
    """
    Tracks which collections changed and writes them on :meth:`flush`.

    The handler only marks keys dirty, so state updates stay synchronous and
    a burst of streamed deltas costs one write per flush rather than one per
    chunk.
    """

    def __init__(self, state: AppState, store: KeyValueStore) -> None:
        self._state = state
        self._store = store
        self._dirty: set[str] = set()
        self._attached_to: EventBus | None = None
        self._logger = structlog.get_logger("forkchat.store.mirror")

    @property
    def dirty(self) -> frozenset[str]:
        return frozenset(self._dirty)

    def attach(self) -> None:
        """Subscribe to the state's event bus. Idempotent."""
        if self._attached_to is not None:
            return
        bus = self._state.event_bus
        bus.subscribe_all(self._on_event)
        self._attached_to = bus

    def detach(self) -> None:
        if self._attached_to is None:
            return
        self._attached_to.unsubscribe_all(self._on_event)
        self._attached_to = None

    def _on_event(self, event: ForkchatEvent, payload: dict[str, Any]) -> None:
        self._dirty.update(_DIRTY_KEYS.get(event, ()))

    async def flush(self) -> list[str]:
        """
        Write every dirty collection.

        If a write fails, the keys not yet written stay dirty and the error
        propagates; the next flush retries them.

        Returns:
            The keys written, sorted.
        """
        keys = sorted(self._dirty)
        self._dirty.clear()
        written: list[str] = []
        try:
            for key in keys:
                await self._save(key)
                written.append(key)
        except Exception as exc:
            pending = [k for k in keys if k not in written]
            self._dirty.update(pending)
            self._logger.error("state_flush_failed", pending=pending, error=str(exc))
            raise
        if keys:
            self._logger.debug("state_flushed", keys=keys)
        return keys

    async def _save(self, key: str) -> None:
        if key == SESSIONS_KEY:
            await self._store.save_sessions(self._state.sessions)
        elif key == MESSAGES_KEY:
            await self._store.save_messages(self._state.messages)
        elif key == SETTINGS_KEY:
            await self._store.save_settings(self._state.settings)
        elif key == UI_KEY:
            await self._store.save_ui(self._state.ui)


async def load_state(
    store: KeyValueStore,
    event_bus: EventBus | None = None,
    defaults: SessionDefaults | None = None,
) -> AppState:
    """Build an :class:`AppState` from the store's snapshot."""
    snapshot = await store.load()
    return AppState(
        sessions=snapshot.sessions,
        messages=snapshot.messages,
        settings=snapshot.settings,
        ui=snapshot.ui,
        event_bus=event_bus,
        defaults=defaults,
    )
