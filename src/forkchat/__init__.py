"""
forkchat — branching-reply chat client with precise context assembly.

Primary entry point::

    from forkchat import ChatClient

    async with ChatClient.open() as client:
        result = await client.send_main("Hello!")
        print(result.text)
"""

from forkchat.client import ChatClient, ComposerBusyError, SendResult, Upload
from forkchat.state import AppState, make_id
from forkchat.models import (
    ForkchatConfig,
    ContextConfig,
    SessionDefaults,
    StoreConfig,
    AttachmentConfig,
    TransportConfig,
    Settings,
    UIState,
    Session,
    Message,
    Turn,
    TextPart,
    ImagePart,
    AttachmentMeta,
)
from forkchat.context import (
    BuiltContext,
    ContextBuilder,
    build_main_context,
    build_reply_context,
)
from forkchat.graph import MessageGraph, MessageGraphCycleError
from forkchat.events.bus import EventBus, ForkchatEvent
from forkchat.providers import LiteLLMTransport, MockTransport, TransportError
from forkchat.tokens import TokenEstimator

__version__ = "0.1.0"

__all__ = [
    # Core
    "ChatClient",
    "ComposerBusyError",
    "SendResult",
    "Upload",
    "AppState",
    "make_id",
    # Config
    "ForkchatConfig",
    "ContextConfig",
    "SessionDefaults",
    "StoreConfig",
    "AttachmentConfig",
    "TransportConfig",
    "Settings",
    "UIState",
    # Models
    "Session",
    "Message",
    "Turn",
    "TextPart",
    "ImagePart",
    "AttachmentMeta",
    # Context
    "BuiltContext",
    "ContextBuilder",
    "build_main_context",
    "build_reply_context",
    "MessageGraph",
    "MessageGraphCycleError",
    # Events
    "EventBus",
    "ForkchatEvent",
    # Providers
    "LiteLLMTransport",
    "MockTransport",
    "TransportError",
    # Tokens
    "TokenEstimator",
]
