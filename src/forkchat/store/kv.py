"""SQLite-backed key-value blob store for forkchat state."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import aiosqlite
import structlog
from pydantic import BaseModel, Field, ValidationError

from forkchat.models.config import Settings, StoreConfig, UIState
from forkchat.models.message import Message, Session

SESSIONS_KEY = "forkchat.sessions"
MESSAGES_KEY = "forkchat.messages"
SETTINGS_KEY = "forkchat.settings"
UI_KEY = "forkchat.ui"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);
"""

# ── Exceptions ─────────────────────────────────────────────────────────────────


class ForkchatStoreError(Exception):
    """Base class for store errors."""


class StoreNotInitializedError(ForkchatStoreError):
    """Raised when the store is used before ``initialize()``."""


class CorruptBlobError(ForkchatStoreError):
    """Raised when a stored blob cannot be decoded into its model."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Corrupt blob for {key!r}: {reason}")
        self.key = key


# ── Snapshot ───────────────────────────────────────────────────────────────────


class Snapshot(BaseModel):
    """Everything ``load()`` returns, already deserialized."""

    sessions: list[Session] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    settings: Settings = Field(default_factory=Settings)
    ui: UIState = Field(default_factory=UIState)


# ── KeyValueStore ──────────────────────────────────────────────────────────────


class KeyValueStore:
    """
    Opaque JSON blobs keyed by name, one row per collection.

    Each save overwrites the whole blob. There are no durability guarantees
    beyond what SQLite gives a single committed write.

    Usage::

        store = KeyValueStore(StoreConfig(db_path="/tmp/forkchat.db"))
        await store.initialize()
        try:
            snapshot = await store.load()
            await store.save_sessions(snapshot.sessions)
        finally:
            await store.close()
    """

    def __init__(self, config: StoreConfig) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._conn: aiosqlite.Connection | None = None
        self._logger = structlog.get_logger("forkchat.store")

    async def initialize(self) -> None:
        """
        Open the database connection and apply the schema.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._conn is not None:
            return
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self._db_path, timeout=self._config.connection_timeout)
        try:
            conn.row_factory = aiosqlite.Row
            if self._config.wal_mode:
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.executescript(_SCHEMA)
            await conn.commit()
        except Exception:
            await conn.close()
            raise
        self._conn = conn
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """Release the database connection. Safe to call twice."""
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreNotInitializedError("Store is not initialized. Call initialize() first.")
        return self._conn

    # ── Raw blobs ──────────────────────────────────────────────────────────────

    async def get_raw(self, key: str) -> Any | None:
        """
        Return the decoded JSON stored under ``key``, or ``None`` if absent.

        Raises:
            CorruptBlobError: If the stored text is not valid JSON.
        """
        conn = self._conn_or_raise()
        async with conn.execute("SELECT value FROM kv WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as exc:
            raise CorruptBlobError(key, str(exc)) from exc

    async def put_raw(self, key: str, value: Any) -> None:
        conn = self._conn_or_raise()
        now = int(time.time() * 1000)
        await conn.execute(
            """
            INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, json.dumps(value), now),
        )
        await conn.commit()

    # ── Typed load/save ────────────────────────────────────────────────────────

    async def load(self) -> Snapshot:
        """
        Load every collection. Missing keys yield empty defaults.

        Raises:
            CorruptBlobError: If a blob does not validate against its model.
        """
        raw_sessions = await self.get_raw(SESSIONS_KEY) or []
        raw_messages = await self.get_raw(MESSAGES_KEY) or []
        raw_settings = await self.get_raw(SETTINGS_KEY) or {}
        raw_ui = await self.get_raw(UI_KEY) or {}
        try:
            snapshot = Snapshot(
                sessions=raw_sessions,
                messages=raw_messages,
                settings=raw_settings,
                ui=raw_ui,
            )
        except ValidationError as exc:
            raise CorruptBlobError("snapshot", str(exc)) from exc
        self._logger.debug(
            "snapshot_loaded",
            sessions=len(snapshot.sessions),
            messages=len(snapshot.messages),
        )
        return snapshot

    async def save_sessions(self, sessions: list[Session]) -> None:
        await self.put_raw(SESSIONS_KEY, [s.model_dump(mode="json") for s in sessions])

    async def save_messages(self, messages: list[Message]) -> None:
        await self.put_raw(MESSAGES_KEY, [m.model_dump(mode="json") for m in messages])

    async def save_settings(self, settings: Settings) -> None:
        await self.put_raw(SETTINGS_KEY, settings.model_dump(mode="json"))

    async def save_ui(self, ui: UIState) -> None:
        await self.put_raw(UI_KEY, ui.model_dump(mode="json"))
