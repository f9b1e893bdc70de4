"""forkchat event bus."""

from forkchat.events.bus import EventBus, ForkchatEvent, Handler
from forkchat.events.payloads import (
    InclusionChangedPayload,
    MessageCreatedPayload,
    MessageUpdatedPayload,
    SessionCreatedPayload,
    SessionDeletedPayload,
    SessionUpdatedPayload,
    SettingsUpdatedPayload,
    StreamCompletedPayload,
    StreamFailedPayload,
    StreamStartedPayload,
    UIUpdatedPayload,
)

__all__ = [
    "EventBus",
    "ForkchatEvent",
    "Handler",
    "InclusionChangedPayload",
    "MessageCreatedPayload",
    "MessageUpdatedPayload",
    "SessionCreatedPayload",
    "SessionDeletedPayload",
    "SessionUpdatedPayload",
    "SettingsUpdatedPayload",
    "StreamCompletedPayload",
    "StreamFailedPayload",
    "StreamStartedPayload",
    "UIUpdatedPayload",
]
