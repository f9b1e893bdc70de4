"""Integration tests for ChatClient."""

from __future__ import annotations

import asyncio

import pytest

from forkchat import ChatClient, ComposerBusyError, Upload
from forkchat.attachments import AttachmentLimitError
from forkchat.events.bus import ForkchatEvent
from forkchat.models.config import ForkchatConfig, StoreConfig
from forkchat.providers.transport import MockTransport, TransportError


async def _emit(on_delta, text: str) -> None:
    result = on_delta(text)
    if asyncio.iscoroutine(result):
        await result


class _FailingTransport:
    """Emits one chunk, then fails."""

    def __init__(self) -> None:
        self.requests = []

    async def stream(self, request, on_delta):
        self.requests.append(request)
        await _emit(on_delta, "partial")
        raise TransportError("rate limited", provider="openai")


class _BlockingTransport:
    """Emits one chunk, then waits until released."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def stream(self, request, on_delta):
        await _emit(on_delta, "half")
        self.started.set()
        await self.release.wait()
        return "half"


@pytest.fixture
async def client(config, mock_transport):
    c = await ChatClient.create(config=config, transport=mock_transport)
    yield c
    await c.close()


class TestLifecycle:
    async def test_create_ensures_a_session(self, client):
        assert len(client.state.sessions) == 1
        assert client.state.active_session() is not None

    async def test_db_path_override(self, tmp_path, mock_transport):
        async with ChatClient.open(db_path=str(tmp_path / "x.db"), transport=mock_transport) as c:
            assert c.config.store.db_path == str(tmp_path / "x.db")

    async def test_db_path_conflict_raises(self, tmp_path):
        cfg = ForkchatConfig(store=StoreConfig(db_path=str(tmp_path / "a.db")))
        with pytest.raises(ValueError, match="not both"):
            await ChatClient.create(config=cfg, db_path=str(tmp_path / "b.db"))

    async def test_state_survives_reopen(self, config):
        async with ChatClient.open(config=config, transport=MockTransport(text="Answer")) as c:
            result = await c.send_main("Question?")
            session_id = c.state.active_session().id

        async with ChatClient.open(config=config, transport=MockTransport()) as c:
            assert c.state.get_message(result.message_id).content == "Answer"
            assert c.state.active_session().id == session_id

    async def test_env_selects_mock_transport(self, config, mock_llm_env):
        async with ChatClient.open(config=config) as c:
            result = await c.send_main("ping")
        assert "[Mock response to: ping]" in result.text


class TestSendMain:
    async def test_stores_user_and_assistant(self, client, mock_transport):
        result = await client.send_main("Hi there")
        assert result.status == "completed"
        assert result.text == "Hello from the mock"
        user = client.state.get_message(result.user_message_id)
        assistant = client.state.get_message(result.message_id)
        assert (user.role, user.content) == ("user", "Hi there")
        assert assistant.role == "assistant"
        assert assistant.model == "gpt-5.2"
        assert assistant.anchor_message_id is None

    async def test_new_user_message_is_last_turn(self, client, mock_transport):
        client.state.set_system_prompt(client.state.active_session().id, "sys")
        await client.send_main("first")
        await client.send_main("second")
        turns = mock_transport.requests[-1].turns
        assert turns[0].role == "system"
        assert [t.content for t in turns[1:]] == [
            "first",
            "Hello from the mock",
            "second",
        ]

    async def test_first_send_titles_session(self, config):
        transport = MockTransport(text="Short Title Here")
        async with ChatClient.open(config=config, transport=transport) as c:
            await c.send_main("What is the meaning of life?")
            assert c.state.active_session().title == "Short Title Here"
            assert len(transport.requests) == 2
            await c.send_main("again")
            assert len(transport.requests) == 3

    async def test_parameters_follow_catalog(self, client, mock_transport):
        session = client.state.active_session()
        client.state.set_temperature(session.id, 0.2)
        client.state.set_reasoning_effort(session.id, "x-high")

        await client.send_main("q", model="claude-opus-4.6")
        claude = mock_transport.requests[0]
        assert claude.temperature == 0.2
        assert claude.reasoning_effort == "high"

        await client.send_main("q", model="kimi-k2.5", web_search=True)
        kimi = mock_transport.requests[-1]
        assert kimi.temperature is None
        assert kimi.reasoning_effort == "enabled"
        assert kimi.web_search is False

    async def test_api_key_from_settings(self, client, mock_transport):
        client.state.update_settings(anthropic_api_key="sk-ant-0123456789")
        await client.send_main("q", model="claude-sonnet-4.6")
        assert mock_transport.requests[0].api_key == "sk-ant-0123456789"

    async def test_on_delta_receives_chunks(self, client):
        seen: list[str] = []
        await client.send_main("q", on_delta=seen.append)
        assert "".join(seen) == "Hello from the mock"

    async def test_stream_events(self, client):
        events: list[ForkchatEvent] = []
        client.event_bus.subscribe(ForkchatEvent.STREAM_STARTED, lambda e, p: events.append(e))
        client.event_bus.subscribe(ForkchatEvent.STREAM_COMPLETED, lambda e, p: events.append(e))
        await client.send_main("q")
        assert events == [ForkchatEvent.STREAM_STARTED, ForkchatEvent.STREAM_COMPLETED]

    async def test_failure_appends_error_marker(self, config):
        failing = _FailingTransport()
        async with ChatClient.open(config=config, transport=failing) as c:
            result = await c.send_main("q")
            assert result.status == "error"
            assert result.error == "rate limited"
            assert c.state.get_message(result.message_id).content == "partial\n\n[Error] rate limited"
            assert not c.busy("main")

    async def test_text_attachment_is_merged(self, client, mock_transport):
        await client.send_main("see file", attachments=[Upload("notes.txt", "text/plain", b"abc")])
        last = mock_transport.requests[0].turns[-1]
        assert isinstance(last.content, list)
        assert last.content[0].text == "see file"
        assert last.content[1].text.startswith("--- file: notes.txt ---")
        user = client.state.get_message(mock_transport.requests[0].turns[-1].message_id)
        assert user.attachments[0].name == "notes.txt"

    async def test_attachment_limit(self, client):
        uploads = [Upload(f"f{i}.txt", "text/plain", b"x") for i in range(6)]
        with pytest.raises(AttachmentLimitError):
            await client.send_main("q", attachments=uploads)
        assert not client.busy("main")


class TestSendReply:
    @pytest.fixture
    async def anchor_id(self, client):
        return (await client.send_main("main question")).message_id

    async def test_reply_creates_excluded_branch_nodes(self, client, anchor_id):
        result = await client.send_reply(anchor_id, "why?")
        user = client.state.get_message(result.user_message_id)
        assistant = client.state.get_message(result.message_id)
        assert (user.anchor_message_id, user.parent_id) == (anchor_id, anchor_id)
        assert (assistant.anchor_message_id, assistant.parent_id) == (anchor_id, user.id)
        assert user.include_in_context is False and assistant.include_in_context is False
        assert client.state.ui.active_reply_anchor_id == anchor_id

    async def test_reply_context_grounds_on_main_line(self, client, mock_transport, anchor_id):
        await client.send_reply(anchor_id, "why?")
        turns = mock_transport.requests[-1].turns
        assert [t.content for t in turns] == ["main question", "Hello from the mock", "why?"]
        assert turns[-1].segment == "branch"

    async def test_followup_attaches_to_last_assistant(self, client, anchor_id):
        first = await client.send_reply(anchor_id, "one")
        second = await client.send_reply(anchor_id, "two")
        assert client.state.get_message(second.user_message_id).parent_id == first.message_id

    async def test_explicit_user_parent_resolves_upward(self, client, anchor_id):
        first = await client.send_reply(anchor_id, "one")
        second = await client.send_reply(anchor_id, "two", parent_id=first.user_message_id)
        assert client.state.get_message(second.user_message_id).parent_id == anchor_id

    async def test_included_branch_turns_reach_reply_context(self, client, mock_transport, anchor_id):
        first = await client.send_reply(anchor_id, "one")
        await client.toggle_include(first.user_message_id, True)
        await client.toggle_include(first.message_id, True)
        await client.send_reply(anchor_id, "two")
        contents = [t.content for t in mock_transport.requests[-1].turns]
        assert contents[-3:] == ["one", "Hello from the mock", "two"]

    async def test_included_branch_reaches_main_context(self, client, anchor_id):
        first = await client.send_reply(anchor_id, "aside")
        assert all(t.segment == "main" for t in client.main_context().turns)
        await client.toggle_include(first.user_message_id, True)
        ctx = client.main_context()
        assert ctx.turns[0].message_id == first.user_message_id

    async def test_disable_cascades_and_persists(self, client, anchor_id):
        first = await client.send_reply(anchor_id, "one")
        await client.toggle_include(first.user_message_id, True)
        await client.toggle_include(first.message_id, True)
        ids = await client.toggle_include(first.user_message_id, False)
        assert ids == {first.user_message_id, first.message_id}
        snapshot = await client._store.load()
        flags = {m.id: m.include_in_context for m in snapshot.messages}
        assert flags[first.message_id] is False

    async def test_anchor_must_be_main_assistant(self, client, anchor_id):
        result = await client.send_reply(anchor_id, "one")
        with pytest.raises(ValueError):
            await client.send_reply(result.message_id, "nested")
        user_id = client.state.session_messages(client.state.active_session().id)[0].id
        with pytest.raises(ValueError):
            await client.send_reply(user_id, "to a user message")


class TestConcurrency:
    async def test_second_send_on_busy_composer_raises(self, config):
        transport = _BlockingTransport()
        async with ChatClient.open(config=config, transport=transport) as c:
            task = asyncio.create_task(c.send_main("slow"))
            await transport.started.wait()
            assert c.busy("main")
            with pytest.raises(ComposerBusyError):
                await c.send_main("again")
            transport.release.set()
            result = await task
            assert result.status == "completed"
            assert not c.busy("main")

    async def test_cancel_keeps_partial_and_marks(self, config):
        transport = _BlockingTransport()
        async with ChatClient.open(config=config, transport=transport) as c:
            task = asyncio.create_task(c.send_main("slow"))
            await transport.started.wait()
            assert c.cancel("main") is True
            result = await task
            assert result.status == "cancelled"
            assert c.state.get_message(result.message_id).content == "half\n\n[Interrupted]"
            assert c.cancel("main") is False

    async def test_composers_are_independent(self, config):
        async with ChatClient.open(config=config, transport=MockTransport(text="ok")) as c:
            anchor = (await c.send_main("q")).message_id

        transport = _BlockingTransport()
        async with ChatClient.open(config=config, transport=transport) as c:
            task = asyncio.create_task(c.send_main("slow"))
            await transport.started.wait()
            assert c.busy("main") and not c.busy(anchor)
            transport.release.set()
            await task
