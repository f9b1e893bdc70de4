"""ChatClient — the primary public API entry point."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from forkchat.attachments.resolver import (
    AttachmentResolver,
    AttachmentStore,
    merge_attachment_parts,
    validate_attachments,
)
from forkchat.context.builder import BuiltContext, ContextBuilder
from forkchat.events.bus import EventBus, ForkchatEvent
from forkchat.graph.index import MessageGraph
from forkchat.models.config import ForkchatConfig, StoreConfig
from forkchat.models.message import AttachmentMeta, Message, Session, Turn
from forkchat.providers.catalog import (
    get_provider_for_model,
    get_reasoning_effort_for_model,
    supports_images,
    supports_reasoning_effort,
    supports_temperature,
    supports_web_search,
)
from forkchat.providers.transport import (
    CancellationToken,
    ProviderTransport,
    StreamCancelledError,
    StreamRequest,
    default_transport,
)
from forkchat.state import AppState, StateError, make_id
from forkchat.store.kv import KeyValueStore
from forkchat.store.mirror import StateMirror, load_state
from forkchat.titles import DEFAULT_TITLE, generate_session_title

MAIN_COMPOSER = "main"
DEFAULT_MODEL = "gpt-5.2"
INTERRUPTED_MARKER = "[Interrupted]"

DeltaHandler = Callable[[str], None | Awaitable[None]]


class ComposerBusyError(StateError):
    """Raised when a composer already has a request in flight."""

    def __init__(self, composer: str) -> None:
        super().__init__(f"Composer {composer!r} already has a request in flight")
        self.composer = composer


@dataclass
class Upload:
    """A file the user attached to an outgoing message."""

    name: str
    mime: str
    data: bytes


@dataclass
class SendResult:
    """Outcome of one send."""

    user_message_id: str
    message_id: str
    """The assistant message that received the stream."""
    text: str
    status: Literal["completed", "cancelled", "error"]
    error: str | None = None
    turns: list[Turn] = field(default_factory=list)
    """The turns that were sent to the provider."""


def _with_marker(content: str, marker: str) -> str:
    return f"\n\n{marker}" if content else marker


class ChatClient:
    """
    A branching chat client: sessions, reply branches and context assembly.

    Usage::

        async with ChatClient.open() as client:
            result = await client.send_main("What is a monad?")
            reply = await client.send_reply(result.message_id, "Explain like I'm five")

    Each composer (``"main"`` or a reply anchor id) allows one request in
    flight. State changes are persisted by a :class:`StateMirror` that is
    flushed after every send and on :meth:`close`.
    """

    def __init__(
        self,
        state: AppState,
        store: KeyValueStore,
        mirror: StateMirror,
        transport: ProviderTransport,
        config: ForkchatConfig,
        attachments: AttachmentResolver,
    ) -> None:
        self._state = state
        self._store = store
        self._mirror = mirror
        self._transport = transport
        self._config = config
        self._attachments = attachments
        self._builder = ContextBuilder(config=config.context)
        self._inflight: dict[str, CancellationToken] = {}
        self._logger = structlog.get_logger("forkchat.client")

    @classmethod
    async def create(
        cls,
        *,
        config: ForkchatConfig | None = None,
        db_path: str | None = None,
        transport: ProviderTransport | None = None,
        event_bus: EventBus | None = None,
    ) -> ChatClient:
        """
        Load persisted state and return a ready client.

        Args:
            config: Client configuration. Defaults to ``ForkchatConfig()``.
            db_path: Override database path (useful for testing). Raises
                ``ValueError`` if ``config.store.db_path`` is also customised.
            transport: Provider transport. Defaults to :func:`default_transport`.
            event_bus: Bus shared with the application state.

        Raises:
            ValueError: If both ``db_path`` and ``config.store.db_path`` are supplied.
            aiosqlite.Error: If the database cannot be initialized.
        """
        cfg = config or ForkchatConfig()
        if db_path is not None:
            if config is not None and cfg.store.db_path != StoreConfig().db_path:
                raise ValueError(
                    "Specify db_path either via db_path= or config.store.db_path, not both."
                )
            cfg = cfg.model_copy(
                update={"store": cfg.store.model_copy(update={"db_path": db_path})}
            )

        store = KeyValueStore(cfg.store)
        await store.initialize()
        state = await load_state(store, event_bus=event_bus, defaults=cfg.session)
        mirror = StateMirror(state, store)
        mirror.attach()
        state.ensure_session()

        resolver = AttachmentResolver(AttachmentStore(cfg.attachments), cfg.attachments)
        client = cls(
            state=state,
            store=store,
            mirror=mirror,
            transport=transport or default_transport(),
            config=cfg,
            attachments=resolver,
        )
        structlog.get_logger("forkchat.client").info(
            "client_opened",
            db_path=cfg.store.db_path,
            sessions=len(state.sessions),
            messages=len(state.messages),
        )
        return client

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        *,
        config: ForkchatConfig | None = None,
        db_path: str | None = None,
        transport: ProviderTransport | None = None,
        event_bus: EventBus | None = None,
    ) -> AsyncGenerator[ChatClient, None]:
        """
        Create a client and use it as an async context manager.

        All parameters are identical to :meth:`create`. Pending state is
        flushed and the database released when the block exits.
        """
        client = await cls.create(
            config=config, db_path=db_path, transport=transport, event_bus=event_bus
        )
        try:
            yield client
        finally:
            await client.close()

    async def close(self) -> None:
        """Cancel in-flight streams, flush pending state and release the database."""
        for composer in list(self._inflight):
            self.cancel(composer)
        await self._mirror.flush()
        self._mirror.detach()
        await self._store.close()
        self._logger.info("client_closed")

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ── Accessors ──────────────────────────────────────────────────────────────

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def event_bus(self) -> EventBus:
        return self._state.event_bus

    @property
    def config(self) -> ForkchatConfig:
        return self._config

    def busy(self, composer: str) -> bool:
        """``True`` while ``composer`` has a request in flight."""
        return composer in self._inflight

    async def flush(self) -> list[str]:
        """Persist every collection changed since the last flush."""
        return await self._mirror.flush()

    # ── Context ────────────────────────────────────────────────────────────────

    def main_context(self, session_id: str | None = None) -> BuiltContext:
        """The context a main send would use right now."""
        session = self._session(session_id)
        return self._builder.build_main(session, self._state.messages)

    def reply_context(self, anchor_id: str, parent_id: str | None = None) -> BuiltContext:
        """The context a send in ``anchor_id``'s branch would use, up to ``parent_id``."""
        anchor = self._state.get_message(anchor_id)
        session = self._state.get_session(anchor.session_id)
        return self._builder.build_reply(
            session,
            self._state.messages,
            anchor_id,
            parent_id,
            main_turns_limit=self._config.context.reply_turns_limit,
        )

    async def toggle_include(
        self, message_id: str, include: bool, *, local_only: bool = False
    ) -> set[str]:
        """Set a branch node's inclusion flag (cascading on disable) and persist it."""
        ids = self._state.set_include(message_id, include, local_only=local_only)
        await self._mirror.flush()
        return ids

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send_main(
        self,
        text: str,
        *,
        model: str | None = None,
        session_id: str | None = None,
        attachments: Sequence[Upload] = (),
        web_search: bool = False,
        on_delta: DeltaHandler | None = None,
    ) -> SendResult:
        """
        Send ``text`` on the main line and stream the assistant's answer.

        The new user message is part of the main window it is built from. The
        first send in an untitled session also generates a title.

        Raises:
            ComposerBusyError: If a main send is already in flight.
            AttachmentLimitError: If ``attachments`` exceed the configured limits.
        """
        session = self._session(session_id)
        model = self._model(model)
        self._reserve(MAIN_COMPOSER)
        try:
            validate_attachments([len(u.data) for u in attachments], self._config.attachments)
            untitled = session.title == DEFAULT_TITLE and not any(
                m.anchor_message_id is None for m in self._state.session_messages(session.id)
            )

            user_id = make_id("msg")
            metas = self._store_uploads(user_id, attachments)
            self._state.add_message(
                Message(
                    id=user_id,
                    session_id=session.id,
                    role="user",
                    content=text,
                    attachments=metas,
                )
            )
            built = self._builder.build_main(session, self._state.messages)
            turns = await self._with_attachments(built.turns, user_id, metas, model)

            assistant = self._state.add_message(
                Message(id=make_id("msg"), session_id=session.id, role="assistant", model=model)
            )
            self._state.touch_session(session.id)
            result = await self._stream(
                MAIN_COMPOSER, session, user_id, assistant.id, turns, model, web_search, on_delta
            )
            if untitled and result.status == "completed":
                await self._generate_title(session.id, text)
        finally:
            self._release(MAIN_COMPOSER)
            await self._mirror.flush()
        return result

    async def send_reply(
        self,
        anchor_id: str,
        text: str,
        *,
        parent_id: str | None = None,
        model: str | None = None,
        attachments: Sequence[Upload] = (),
        web_search: bool = False,
        on_delta: DeltaHandler | None = None,
    ) -> SendResult:
        """
        Send ``text`` inside the reply branch hanging off ``anchor_id``.

        The reply attaches below the nearest assistant at or above
        ``parent_id`` (default: the newest branch node); with none it attaches
        to the anchor itself. New branch messages start excluded from main
        contexts until toggled in.

        Raises:
            MessageNotFoundError: If ``anchor_id`` does not exist.
            ValueError: If ``anchor_id`` is not a main-line assistant message.
            ComposerBusyError: If this branch already has a send in flight.
            AttachmentLimitError: If ``attachments`` exceed the configured limits.
        """
        anchor = self._state.get_message(anchor_id)
        if anchor.is_branch or anchor.role != "assistant":
            raise ValueError(f"Message {anchor_id!r} is not a main-line assistant message")
        session = self._state.get_session(anchor.session_id)
        model = self._model(model)
        self._reserve(anchor_id)
        try:
            validate_attachments([len(u.data) for u in attachments], self._config.attachments)
            graph = MessageGraph(self._state.session_messages(session.id))
            branch = graph.branch(anchor_id)
            start = parent_id if parent_id is not None else (branch[-1].id if branch else None)
            target = graph.resolve_reply_parent(start)
            if target is not None and graph.by_id[target].anchor_message_id != anchor_id:
                target = None
            attach_to = target or anchor_id

            built = self._builder.build_reply(
                session,
                self._state.messages,
                anchor_id,
                attach_to,
                main_turns_limit=self._config.context.reply_turns_limit,
            )

            user_id = make_id("msg")
            metas = self._store_uploads(user_id, attachments)
            self._state.add_message(
                Message(
                    id=user_id,
                    session_id=session.id,
                    role="user",
                    content=text,
                    parent_id=attach_to,
                    anchor_message_id=anchor_id,
                    include_in_context=False,
                    attachments=metas,
                )
            )
            turns = [*built.turns, Turn(role="user", content=text, message_id=user_id, segment="branch")]
            turns = await self._with_attachments(turns, user_id, metas, model)

            assistant = self._state.add_message(
                Message(
                    id=make_id("msg"),
                    session_id=session.id,
                    role="assistant",
                    model=model,
                    parent_id=user_id,
                    anchor_message_id=anchor_id,
                    include_in_context=False,
                )
            )
            self._state.set_active_reply_anchor(anchor_id)
            self._state.touch_session(session.id)
            result = await self._stream(
                anchor_id, session, user_id, assistant.id, turns, model, web_search, on_delta
            )
        finally:
            self._release(anchor_id)
            await self._mirror.flush()
        return result

    def cancel(self, composer: str) -> bool:
        """
        Abort the request in flight on ``composer``.

        Partial content is kept and marked as interrupted.

        Returns:
            ``True`` if a request was cancelled.
        """
        token = self._inflight.get(composer)
        if token is None:
            return False
        token.cancel()
        self._logger.info("stream_cancel_requested", composer=composer)
        return True

    # ── Internals ──────────────────────────────────────────────────────────────

    def _session(self, session_id: str | None) -> Session:
        if session_id is not None:
            return self._state.get_session(session_id)
        return self._state.active_session() or self._state.ensure_session()

    def _model(self, model: str | None) -> str:
        return model or self._state.settings.default_model or DEFAULT_MODEL

    def _reserve(self, composer: str) -> None:
        if composer in self._inflight:
            raise ComposerBusyError(composer)
        self._inflight[composer] = CancellationToken()

    def _release(self, composer: str) -> None:
        self._inflight.pop(composer, None)

    def _store_uploads(self, message_id: str, uploads: Sequence[Upload]) -> list[AttachmentMeta]:
        return [
            self._attachments.add(message_id, make_id("att"), u.name, u.mime, u.data)
            for u in uploads
        ]

    async def _with_attachments(
        self, turns: list[Turn], message_id: str, metas: list[AttachmentMeta], model: str
    ) -> list[Turn]:
        if not metas:
            return turns
        parts = await self._attachments.resolve_message_parts(
            message_id, metas, images=supports_images(model)
        )
        return merge_attachment_parts(turns, message_id, parts)

    def _request(
        self,
        session: Session,
        turns: list[Turn],
        model: str,
        web_search: bool,
        token: CancellationToken,
    ) -> StreamRequest:
        temperature = session.temperature if supports_temperature(model) else None
        effort = (
            get_reasoning_effort_for_model(model, session.reasoning_effort)
            if supports_reasoning_effort(model)
            else None
        )
        return StreamRequest(
            model=model,
            turns=turns,
            temperature=temperature,
            reasoning_effort=effort,
            max_output_tokens=self._config.transport.max_output_tokens,
            web_search=web_search and supports_web_search(model),
            api_key=self._state.settings.api_key_for(get_provider_for_model(model)),
            cancel_token=token,
        )

    async def _stream(
        self,
        composer: str,
        session: Session,
        user_id: str,
        assistant_id: str,
        turns: list[Turn],
        model: str,
        web_search: bool,
        on_delta: DeltaHandler | None,
    ) -> SendResult:
        token = self._inflight[composer]
        request = self._request(session, turns, model, web_search, token)

        async def _on_delta(delta: str) -> None:
            self._state.append_content(assistant_id, delta)
            if on_delta is not None:
                result = on_delta(delta)
                if asyncio.iscoroutine(result):
                    await result

        bus = self._state.event_bus
        bus.publish(
            ForkchatEvent.STREAM_STARTED,
            {"composer": composer, "message_id": assistant_id, "model": model, "turn_count": len(turns)},
        )
        self._logger.info(
            "stream_started", composer=composer, message_id=assistant_id, model=model, turns=len(turns)
        )

        # The token wakes us even while the transport is blocked on the network.
        stream_task = asyncio.ensure_future(self._transport.stream(request, _on_delta))
        cancel_wait = asyncio.ensure_future(token.wait())
        cancelled = False
        try:
            await asyncio.wait({stream_task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()
            if not stream_task.done():
                stream_task.cancel()
                cancelled = True
        if cancelled:
            await asyncio.gather(stream_task, return_exceptions=True)

        error: str | None = None
        if not cancelled:
            exc = stream_task.exception()
            if isinstance(exc, StreamCancelledError):
                cancelled = True
            elif exc is not None:
                error = str(exc) or type(exc).__name__

        content = self._state.get_message(assistant_id).content
        if cancelled:
            self._state.update_message(
                assistant_id, content=content + _with_marker(content, INTERRUPTED_MARKER)
            )
            bus.publish(
                ForkchatEvent.STREAM_FAILED,
                {"composer": composer, "message_id": assistant_id, "error": "cancelled", "cancelled": True},
            )
            self._logger.info("stream_cancelled", composer=composer, message_id=assistant_id)
            status: Literal["completed", "cancelled", "error"] = "cancelled"
        elif error is not None:
            self._state.update_message(
                assistant_id, content=content + _with_marker(content, f"[Error] {error}")
            )
            bus.publish(
                ForkchatEvent.STREAM_FAILED,
                {"composer": composer, "message_id": assistant_id, "error": error, "cancelled": False},
            )
            self._logger.error("stream_failed", composer=composer, message_id=assistant_id, error=error)
            status = "error"
        else:
            bus.publish(
                ForkchatEvent.STREAM_COMPLETED,
                {"composer": composer, "message_id": assistant_id, "chars": len(content)},
            )
            self._logger.debug("stream_completed", composer=composer, message_id=assistant_id, chars=len(content))
            status = "completed"

        return SendResult(
            user_message_id=user_id,
            message_id=assistant_id,
            text=self._state.get_message(assistant_id).content,
            status=status,
            error=error,
            turns=list(turns),
        )

    async def _generate_title(self, session_id: str, question: str) -> None:
        model = self._config.transport.title_model
        title = await generate_session_title(
            self._transport,
            question,
            model,
            api_key=self._state.settings.api_key_for(get_provider_for_model(model)),
            prompt_template=self._config.transport.title_prompt_template,
        )
        if title != DEFAULT_TITLE:
            self._state.rename_session(session_id, title)
