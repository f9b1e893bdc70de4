"""Tests for KeyValueStore, StateMirror and load_state."""

from __future__ import annotations

import pytest

from forkchat.models.config import Settings, StoreConfig, UIState
from forkchat.state import AppState
from forkchat.store import (
    MESSAGES_KEY,
    SESSIONS_KEY,
    SETTINGS_KEY,
    UI_KEY,
    CorruptBlobError,
    KeyValueStore,
    StateMirror,
    StoreNotInitializedError,
    load_state,
)
from tests.conftest import make_message


class TestKeyValueStore:
    async def test_empty_store_loads_defaults(self, store):
        snapshot = await store.load()
        assert snapshot.sessions == []
        assert snapshot.messages == []
        assert snapshot.settings == Settings()
        assert snapshot.ui == UIState()

    async def test_put_raw_overwrites(self, store):
        await store.put_raw("k", {"v": 1})
        await store.put_raw("k", {"v": 2})
        assert await store.get_raw("k") == {"v": 2}
        assert await store.get_raw("missing") is None

    async def test_typed_round_trip(self, store, state):
        session = state.create_session()
        state.add_message(make_message("m1", session_id=session.id, content="hi"))
        await store.save_sessions(state.sessions)
        await store.save_messages(state.messages)
        await store.save_ui(state.ui)

        snapshot = await store.load()
        assert [s.id for s in snapshot.sessions] == [session.id]
        assert snapshot.messages[0].content == "hi"
        assert snapshot.ui.active_session_id == session.id

    async def test_invalid_json_raises_corrupt_blob(self, store):
        conn = store._conn_or_raise()
        await conn.execute(
            "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)", (SESSIONS_KEY, "{nope", 0)
        )
        await conn.commit()
        with pytest.raises(CorruptBlobError) as exc_info:
            await store.load()
        assert exc_info.value.key == SESSIONS_KEY

    async def test_invalid_model_raises_corrupt_blob(self, store):
        await store.put_raw(MESSAGES_KEY, [{"id": "m1"}])
        with pytest.raises(CorruptBlobError):
            await store.load()

    async def test_use_before_initialize_raises(self, tmp_path):
        s = KeyValueStore(StoreConfig(db_path=str(tmp_path / "x.db")))
        with pytest.raises(StoreNotInitializedError):
            await s.get_raw("k")

    async def test_initialize_and_close_are_idempotent(self, tmp_path):
        s = KeyValueStore(StoreConfig(db_path=str(tmp_path / "nested" / "x.db")))
        await s.initialize()
        await s.initialize()
        await s.close()
        await s.close()
        assert (tmp_path / "nested" / "x.db").exists()


class TestStateMirror:
    async def test_marks_keys_from_events(self, store, state):
        mirror = StateMirror(state, store)
        mirror.attach()
        state.create_session()
        assert mirror.dirty == frozenset({SESSIONS_KEY, UI_KEY})

    async def test_flush_writes_and_clears(self, store, state):
        mirror = StateMirror(state, store)
        mirror.attach()
        session = state.create_session()
        state.add_message(make_message("m1", session_id=session.id))
        state.update_settings(default_model="o3")

        written = await mirror.flush()

        assert written == sorted([SESSIONS_KEY, MESSAGES_KEY, SETTINGS_KEY, UI_KEY])
        assert mirror.dirty == frozenset()
        assert await mirror.flush() == []
        snapshot = await store.load()
        assert snapshot.settings.default_model == "o3"
        assert [m.id for m in snapshot.messages] == ["m1"]

    async def test_failed_write_keeps_unwritten_keys_dirty(self, store, state, monkeypatch):
        mirror = StateMirror(state, store)
        mirror.attach()
        session = state.create_session("Kept")
        state.add_message(make_message("m1", session_id=session.id))

        async def failing_save(sessions):
            raise OSError("disk full")

        monkeypatch.setattr(store, "save_sessions", failing_save)
        with pytest.raises(OSError):
            await mirror.flush()
        assert SESSIONS_KEY in mirror.dirty

        monkeypatch.undo()
        written = await mirror.flush()
        assert SESSIONS_KEY in written
        assert mirror.dirty == frozenset()
        snapshot = await store.load()
        assert [s.title for s in snapshot.sessions] == ["Kept"]
        assert [m.id for m in snapshot.messages] == ["m1"]

    async def test_detach_stops_tracking(self, store, state):
        mirror = StateMirror(state, store)
        mirror.attach()
        mirror.attach()
        mirror.detach()
        state.create_session()
        assert mirror.dirty == frozenset()

    async def test_inclusion_change_persists(self, store, state):
        mirror = StateMirror(state, store)
        mirror.attach()
        sid = state.create_session().id
        state.add_message(make_message("a1", "assistant", session_id=sid))
        state.add_message(make_message("r1", session_id=sid, parent_id="a1", anchor="a1"))
        await mirror.flush()

        state.set_include("r1", False)
        assert await mirror.flush() == [MESSAGES_KEY]
        snapshot = await store.load()
        assert {m.id: m.include_in_context for m in snapshot.messages} == {"a1": True, "r1": False}


class TestLoadState:
    async def test_load_state_restores_everything(self, store, state, event_bus):
        mirror = StateMirror(state, store)
        mirror.attach()
        session = state.create_session("Persisted")
        state.add_message(make_message("m1", session_id=session.id))
        await mirror.flush()

        restored = await load_state(store, event_bus=event_bus)
        assert isinstance(restored, AppState)
        assert restored.get_session(session.id).title == "Persisted"
        assert restored.get_message("m1").session_id == session.id
        assert restored.active_session().id == session.id
        assert restored.event_bus is event_bus
