"""Typed payload definitions for each ForkchatEvent.

Usage example::

    from forkchat.events.bus import EventBus, ForkchatEvent
    from forkchat.events.payloads import InclusionChangedPayload

    def on_toggle(event: ForkchatEvent, payload: InclusionChangedPayload) -> None:
        print(f"{len(payload['message_ids'])} messages now include={payload['include']}")

    bus.subscribe(ForkchatEvent.INCLUSION_CHANGED, on_toggle)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import NotRequired, TypedDict

# ── Session lifecycle ─────────────────────────────────────────────────────────


class SessionCreatedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.SESSION_CREATED`."""

    session_id: str
    title: str


class SessionUpdatedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.SESSION_UPDATED`."""

    session_id: str
    fields: list[str]
    """Names of the session fields that changed."""


class SessionDeletedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.SESSION_DELETED`."""

    session_id: str
    deleted_message_count: int


# ── Message lifecycle ─────────────────────────────────────────────────────────


class MessageCreatedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.MESSAGE_CREATED`."""

    message_id: str
    session_id: str
    role: str
    anchor_message_id: NotRequired[str | None]


class MessageUpdatedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.MESSAGE_UPDATED`.

    Published for every streamed delta as well as for explicit patches.
    """

    message_id: str
    fields: list[str]


class InclusionChangedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.INCLUSION_CHANGED`."""

    message_ids: list[str]
    """Every id whose flag was set in this single update."""
    include: bool
    local_only: bool


# ── Settings / UI ─────────────────────────────────────────────────────────────


class SettingsUpdatedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.SETTINGS_UPDATED`."""

    fields: list[str]


class UIUpdatedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.UI_UPDATED`."""

    fields: list[str]


# ── Streaming ─────────────────────────────────────────────────────────────────


class StreamStartedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.STREAM_STARTED`."""

    composer: str
    """``"main"`` or the reply anchor id."""
    message_id: str
    model: str
    turn_count: int


class StreamCompletedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.STREAM_COMPLETED`."""

    composer: str
    message_id: str
    chars: int


class StreamFailedPayload(TypedDict):
    """Payload for :attr:`ForkchatEvent.STREAM_FAILED`."""

    composer: str
    message_id: str
    error: str
    cancelled: bool
