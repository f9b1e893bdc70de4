"""forkchat data models."""

from forkchat.models.config import (
    AttachmentConfig,
    ContextConfig,
    ForkchatConfig,
    SessionDefaults,
    Settings,
    StoreConfig,
    TransportConfig,
    UIState,
    clamp_main_turns_limit,
    clamp_max_tokens,
    clamp_temperature,
)
from forkchat.models.message import (
    AttachmentKind,
    AttachmentMeta,
    ContentPart,
    ImagePart,
    ImageURL,
    Message,
    Role,
    Session,
    TextPart,
    Turn,
    TurnSegment,
    now_ms,
)

__all__ = [
    # Config
    "AttachmentConfig",
    "ContextConfig",
    "ForkchatConfig",
    "SessionDefaults",
    "Settings",
    "StoreConfig",
    "TransportConfig",
    "UIState",
    "clamp_main_turns_limit",
    "clamp_max_tokens",
    "clamp_temperature",
    # Content parts
    "TextPart",
    "ImagePart",
    "ImageURL",
    "ContentPart",
    # Attachments
    "AttachmentKind",
    "AttachmentMeta",
    # Session & message
    "Role",
    "Session",
    "Message",
    "Turn",
    "TurnSegment",
    "now_ms",
]
