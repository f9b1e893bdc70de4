"""forkchat persistence layer."""

from forkchat.store.kv import (
    MESSAGES_KEY,
    SESSIONS_KEY,
    SETTINGS_KEY,
    UI_KEY,
    CorruptBlobError,
    ForkchatStoreError,
    KeyValueStore,
    Snapshot,
    StoreNotInitializedError,
)
from forkchat.store.mirror import StateMirror, load_state

__all__ = [
    "KeyValueStore",
    "StateMirror",
    "Snapshot",
    "load_state",
    "ForkchatStoreError",
    "StoreNotInitializedError",
    "CorruptBlobError",
    "SESSIONS_KEY",
    "MESSAGES_KEY",
    "SETTINGS_KEY",
    "UI_KEY",
]
