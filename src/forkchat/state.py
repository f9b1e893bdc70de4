"""Explicit application state with reducer-style, event-publishing updates."""

from __future__ import annotations

from typing import Any

import structlog
from ulid import ULID

from forkchat.context.cascade import apply_include, toggle_ids
from forkchat.events.bus import EventBus, ForkchatEvent
from forkchat.models.config import (
    SessionDefaults,
    Settings,
    UIState,
    clamp_main_turns_limit,
    clamp_max_tokens,
    clamp_temperature,
)
from forkchat.models.message import Message, Session, now_ms


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (``"msg"``, ``"sess"``, ``"att"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


# ── Exceptions ─────────────────────────────────────────────────────────────────


class StateError(Exception):
    """Base class for application state errors."""


class SessionNotFoundError(StateError):
    """Raised when a session_id does not exist in the state."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id!r}")
        self.session_id = session_id


class MessageNotFoundError(StateError):
    """Raised when a message_id does not exist in the state."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message not found: {message_id!r}")
        self.message_id = message_id


class DuplicateIDError(StateError):
    """Raised when adding a record whose id already exists."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Duplicate ID: {record_id!r}")
        self.record_id = record_id


# ── AppState ───────────────────────────────────────────────────────────────────


class AppState:
    """
    All sessions, messages, settings and view state for one client.

    Every mutation is a synchronous method that replaces the affected records
    (messages are never mutated in place) and then publishes an event. A list
    returned by :attr:`messages` is therefore a stable snapshot that later
    updates do not disturb, which is what the context builder consumes.

    Persistence is not done here; :class:`~forkchat.store.StateMirror`
    subscribes to the bus and writes changed keys.
    """

    def __init__(
        self,
        *,
        sessions: list[Session] | None = None,
        messages: list[Message] | None = None,
        settings: Settings | None = None,
        ui: UIState | None = None,
        event_bus: EventBus | None = None,
        defaults: SessionDefaults | None = None,
    ) -> None:
        self._sessions: list[Session] = list(sessions or [])
        self._messages: list[Message] = list(messages or [])
        self._settings = settings or Settings()
        self._ui = ui or UIState()
        self._bus = event_bus or EventBus()
        self._defaults = defaults or SessionDefaults()
        self._logger = structlog.get_logger("forkchat.state")

    # ── Read access ────────────────────────────────────────────────────────────

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions)

    @property
    def messages(self) -> list[Message]:
        """Snapshot of every message across all sessions, in insertion order."""
        return list(self._messages)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def ui(self) -> UIState:
        return self._ui

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    def get_session(self, session_id: str) -> Session:
        """
        Raises:
            SessionNotFoundError: If no session with this ID exists.
        """
        for s in self._sessions:
            if s.id == session_id:
                return s
        raise SessionNotFoundError(session_id)

    def get_message(self, message_id: str) -> Message:
        """
        Raises:
            MessageNotFoundError: If no message with this ID exists.
        """
        for m in self._messages:
            if m.id == message_id:
                return m
        raise MessageNotFoundError(message_id)

    def session_messages(self, session_id: str) -> list[Message]:
        """Messages of one session, oldest first."""
        return sorted(
            (m for m in self._messages if m.session_id == session_id),
            key=lambda m: m.created_at,
        )

    def active_session(self) -> Session | None:
        """The selected session, falling back to the first one."""
        if self._ui.active_session_id is not None:
            for s in self._sessions:
                if s.id == self._ui.active_session_id:
                    return s
        return self._sessions[0] if self._sessions else None

    # ── Sessions ───────────────────────────────────────────────────────────────

    def create_session(self, title: str | None = None, *, select: bool = True) -> Session:
        """Create a session stamped with the configured defaults and (by default) select it."""
        d = self._defaults
        session = Session(
            id=make_id("sess"),
            title=title or d.title,
            temperature=d.temperature,
            reasoning_effort=d.reasoning_effort,
            main_turns_limit=d.main_turns_limit,
            max_tokens=d.max_tokens,
        )
        self._sessions.append(session)
        self._bus.publish(
            ForkchatEvent.SESSION_CREATED, {"session_id": session.id, "title": session.title}
        )
        if select:
            self._set_ui(active_session_id=session.id)
        self._logger.info("session_created", session_id=session.id)
        return session

    def ensure_session(self) -> Session:
        """Return the active session, creating one if none exist."""
        return self.active_session() or self.create_session()

    def select_session(self, session_id: str) -> None:
        self.get_session(session_id)
        self._set_ui(active_session_id=session_id, active_reply_anchor_id=None)

    def delete_session(self, session_id: str) -> None:
        """
        Delete a session and every message it owns, reply branches included.

        The active session moves to the first remaining one; an open reply
        viewer whose anchor belonged to the deleted session is closed.
        """
        self.get_session(session_id)
        anchor_id = self._ui.active_reply_anchor_id
        anchor_session = next(
            (m.session_id for m in self._messages if m.id == anchor_id), None
        )

        self._sessions = [s for s in self._sessions if s.id != session_id]
        before = len(self._messages)
        self._messages = [m for m in self._messages if m.session_id != session_id]
        deleted = before - len(self._messages)
        self._bus.publish(
            ForkchatEvent.SESSION_DELETED,
            {"session_id": session_id, "deleted_message_count": deleted},
        )

        ui_patch: dict[str, Any] = {}
        if self._ui.active_session_id == session_id:
            ui_patch["active_session_id"] = self._sessions[0].id if self._sessions else None
        if anchor_session == session_id:
            ui_patch["active_reply_anchor_id"] = None
        if ui_patch:
            self._set_ui(**ui_patch)
        self._logger.info("session_deleted", session_id=session_id, deleted_messages=deleted)

    def rename_session(self, session_id: str, title: str) -> Session:
        return self._update_session(session_id, title=title)

    def touch_session(self, session_id: str) -> Session:
        return self._update_session(session_id, last_active_at=now_ms())

    def set_system_prompt(self, session_id: str, prompt: str) -> Session:
        return self._update_session(session_id, system_prompt=prompt)

    def set_temperature(self, session_id: str, temperature: float) -> Session:
        return self._update_session(session_id, temperature=clamp_temperature(temperature))

    def set_reasoning_effort(self, session_id: str, effort: str) -> Session:
        return self._update_session(session_id, reasoning_effort=effort)

    def set_main_turns_limit(self, session_id: str, value: int) -> Session:
        """Clamped to ``[0, 10]`` here; the builder trusts the stored value."""
        return self._update_session(session_id, main_turns_limit=clamp_main_turns_limit(value))

    def set_max_tokens(self, session_id: str, value: int) -> Session:
        """Clamped to ``[1000, 128000]`` here; the builder trusts the stored value."""
        return self._update_session(session_id, max_tokens=clamp_max_tokens(value))

    def _update_session(self, session_id: str, **fields: Any) -> Session:
        current = self.get_session(session_id)
        updated = current.model_copy(update=fields)
        self._sessions = [updated if s.id == session_id else s for s in self._sessions]
        self._bus.publish(
            ForkchatEvent.SESSION_UPDATED, {"session_id": session_id, "fields": sorted(fields)}
        )
        return updated

    # ── Messages ───────────────────────────────────────────────────────────────

    def add_message(self, message: Message) -> Message:
        """
        Raises:
            SessionNotFoundError: If the message's session does not exist.
            DuplicateIDError: If a message with the same id is already present.
        """
        self.get_session(message.session_id)
        if any(m.id == message.id for m in self._messages):
            raise DuplicateIDError(message.id)
        self._messages.append(message)
        self._bus.publish(
            ForkchatEvent.MESSAGE_CREATED,
            {
                "message_id": message.id,
                "session_id": message.session_id,
                "role": message.role,
                "anchor_message_id": message.anchor_message_id,
            },
        )
        return message

    def update_message(self, message_id: str, **patch: Any) -> Message:
        """Replace ``message_id`` with a copy carrying ``patch``."""
        current = self.get_message(message_id)
        updated = current.model_copy(update=patch)
        self._replace_messages({message_id: updated})
        self._bus.publish(
            ForkchatEvent.MESSAGE_UPDATED, {"message_id": message_id, "fields": sorted(patch)}
        )
        return updated

    def append_content(self, message_id: str, delta: str) -> Message:
        """Append a streamed chunk; chunks must be applied in arrival order."""
        current = self.get_message(message_id)
        return self.update_message(message_id, content=current.content + delta)

    def set_include(
        self, message_id: str, include: bool, *, local_only: bool = False
    ) -> set[str]:
        """
        Toggle a message's inclusion flag as one atomic update.

        Disabling cascades to the whole reply subtree unless ``local_only``
        (the modifier-click override) is set. Enabling never cascades.

        Returns:
            The ids whose flag was set.
        """
        self.get_message(message_id)
        ids = toggle_ids(self._messages, message_id, include, local_only=local_only)
        self._messages = apply_include(self._messages, ids, include)
        self._bus.publish(
            ForkchatEvent.INCLUSION_CHANGED,
            {"message_ids": sorted(ids), "include": include, "local_only": local_only},
        )
        self._logger.debug(
            "inclusion_changed", root_id=message_id, include=include, affected=len(ids)
        )
        return ids

    def _replace_messages(self, replacements: dict[str, Message]) -> None:
        self._messages = [replacements.get(m.id, m) for m in self._messages]

    # ── Settings / UI ──────────────────────────────────────────────────────────

    def update_settings(self, **fields: Any) -> Settings:
        """Merge ``fields`` into the settings, re-validating the result."""
        self._settings = Settings.model_validate({**self._settings.model_dump(), **fields})
        self._bus.publish(ForkchatEvent.SETTINGS_UPDATED, {"fields": sorted(fields)})
        return self._settings

    def set_active_reply_anchor(self, anchor_id: str | None) -> None:
        self._set_ui(active_reply_anchor_id=anchor_id)

    def set_reply_viewer_width(self, width: int) -> None:
        self._set_ui(reply_viewer_width=width)

    def set_theme(self, theme: str) -> None:
        self._set_ui(theme=theme)

    def _set_ui(self, **fields: Any) -> None:
        self._ui = UIState.model_validate({**self._ui.model_dump(), **fields})
        self._bus.publish(ForkchatEvent.UI_UPDATED, {"fields": sorted(fields)})
