"""Shared fixtures for forkchat tests."""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio

from forkchat.events.bus import EventBus, ForkchatEvent
from forkchat.models.config import AttachmentConfig, ForkchatConfig, StoreConfig
from forkchat.models.message import Message, Session
from forkchat.providers.transport import MockTransport
from forkchat.state import AppState
from forkchat.store.kv import KeyValueStore

_clock = {"t": 1_700_000_000_000}


def _tick() -> int:
    _clock["t"] += 1_000
    return _clock["t"]


@pytest.fixture
def config(tmp_path):
    """ForkchatConfig with a temp database and attachment directory."""
    return ForkchatConfig(
        store=StoreConfig(db_path=str(tmp_path / "test.db")),
        attachments=AttachmentConfig(storage_dir=str(tmp_path / "attachments")),
    )


@pytest_asyncio.fixture
async def store(config):
    """Initialized KeyValueStore backed by a temp SQLite database."""
    s = KeyValueStore(config.store)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ForkchatEvent, dict[str, Any]]] = []

    def _collect(event: ForkchatEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def state(event_bus, config):
    """Empty AppState wired to the collecting event bus."""
    return AppState(event_bus=event_bus, defaults=config.session)


@pytest.fixture
def mock_transport():
    return MockTransport(text="Hello from the mock")


@pytest.fixture
def mock_llm_env(monkeypatch):
    """Select MockTransport through the environment."""
    monkeypatch.setenv("FORKCHAT_MOCK_LLM", "1")


def make_session(
    session_id: str = "sess_TEST01",
    system_prompt: str | None = None,
    main_turns_limit: int | None = None,
    max_tokens: int | None = None,
) -> Session:
    """Helper to create a test Session."""
    return Session(
        id=session_id,
        system_prompt=system_prompt,
        main_turns_limit=main_turns_limit,
        max_tokens=max_tokens,
    )


def make_message(
    msg_id: str,
    role: str = "user",
    session_id: str = "sess_TEST01",
    content: str | None = None,
    parent_id: str | None = None,
    anchor: str | None = None,
    include: bool = True,
    created_at: int | None = None,
) -> Message:
    """
    Helper to create a test Message.

    Content defaults to the id, and timestamps increase on every call so
    creation order is chronological order.
    """
    return Message(
        id=msg_id,
        session_id=session_id,
        role=role,
        content=msg_id if content is None else content,
        parent_id=parent_id,
        anchor_message_id=anchor,
        include_in_context=include,
        created_at=_tick() if created_at is None else created_at,
    )


def make_main_pairs(count: int, session_id: str = "sess_TEST01", prefix: str = "") -> list[Message]:
    """``count`` alternating user/assistant main-line messages: u0, a0, u1, a1, ..."""
    out: list[Message] = []
    for i in range(count):
        out.append(make_message(f"{prefix}u{i}", "user", session_id))
        out.append(make_message(f"{prefix}a{i}", "assistant", session_id))
    return out
