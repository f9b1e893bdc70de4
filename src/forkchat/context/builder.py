"""Context window assembly for main-chat and reply-branch sends."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from forkchat.context.cascade import is_effectively_included
from forkchat.graph.index import MessageGraph
from forkchat.models.config import ContextConfig
from forkchat.models.message import Message, Session, Turn, TurnSegment
from forkchat.tokens.estimator import TokenEstimator

_TRIM_ORDER: tuple[TurnSegment, ...] = ("branch", "main")


@dataclass
class BuiltContext:
    """The assembled turn sequence ready for a provider call."""

    turns: list[Turn]
    token_estimate: int
    max_tokens: int | None
    main_turns_limit: int
    trimmed_message_ids: list[str] = field(default_factory=list)

    @property
    def over_budget(self) -> bool:
        """True when trimming ran out of removable turns (e.g. a huge system prompt)."""
        return bool(self.max_tokens) and self.token_estimate > (self.max_tokens or 0)

    def payload(self) -> list[dict[str, Any]]:
        """Transport-facing ``[{"role", "content"}]`` list with internal ids stripped."""
        return [t.to_payload() for t in self.turns]


def _turn(message: Message, segment: TurnSegment) -> Turn:
    return Turn(role=message.role, content=message.content, message_id=message.id, segment=segment)


def _window(messages: Sequence[Message], pairs: int) -> list[Message]:
    """Trailing ``pairs * 2`` messages. Zero or negative pairs yield nothing."""
    count = max(0, pairs * 2)
    if count == 0:
        return []
    return list(messages[-count:])


class ContextBuilder:
    """
    Assembles the exact turn list sent to the model.

    Invariants:
    1. A non-empty session system prompt is always the first turn and is never trimmed.
    2. Main-line messages need no inclusion flag; only the trailing window of
       ``main_turns_limit`` pairs is eligible, plus the pinned anchor (and its
       question) of a reply context.
    3. Branch messages appear only when effectively included (own flag plus every ancestor).
    4. Over budget, the oldest branch turn goes first; main-line turns are trimmed
       oldest-first only once no branch turns remain.
    5. Trimming stops once no non-system turns remain, even if still over budget.

    Limits resolve in order: explicit argument, session setting, ``ContextConfig``
    default. A ``max_tokens`` of ``0`` disables trimming.
    """

    def __init__(
        self,
        token_estimator: TokenEstimator | None = None,
        config: ContextConfig | None = None,
    ) -> None:
        self._estimator = token_estimator or TokenEstimator()
        self._config = config or ContextConfig()
        self._logger = structlog.get_logger("forkchat.context_builder")

    def build_main(
        self,
        session: Session,
        all_messages: Iterable[Message],
        main_turns_limit: int | None = None,
        max_tokens: int | None = None,
    ) -> BuiltContext:
        """
        Build the context for a main-chat send.

        Effectively-included reply branches are interleaved ahead of the main
        line, anchor by anchor in the anchor's chronological order.

        Args:
            session: The session being sent in.
            all_messages: Full message collection; other sessions are ignored.
            main_turns_limit: Main-line pairs to keep. Falls back to the session
                setting, then ``ContextConfig.main_turns_limit``.
            max_tokens: Approximate budget. Falls back to the session setting,
                then ``ContextConfig.main_max_tokens``.

        Returns:
            BuiltContext with ordered turns and the final token estimate.
        """
        pairs = self._resolve(main_turns_limit, session.main_turns_limit, self._config.main_turns_limit)
        budget = self._resolve(max_tokens, session.max_tokens, self._config.main_max_tokens)
        graph = MessageGraph(m for m in all_messages if m.session_id == session.id)

        turns = self._system_turns(session)

        anchors = sorted(
            graph.branches,
            key=lambda aid: graph.by_id[aid].created_at if aid in graph.by_id else 0,
        )
        for anchor_id in anchors:
            for node in graph.branch(anchor_id):
                if is_effectively_included(node, graph.by_id):
                    turns.append(_turn(node, "branch"))

        for m in _window(graph.main_line(), pairs):
            turns.append(_turn(m, "main"))

        return self._finish("main", session, turns, budget, pairs)

    def build_reply(
        self,
        session: Session,
        all_messages: Iterable[Message],
        anchor_message_id: str,
        parent_id: str | None = None,
        main_turns_limit: int | None = None,
        max_tokens: int | None = None,
    ) -> BuiltContext:
        """
        Build the context for a send inside the reply branch of ``anchor_message_id``.

        The recent main line grounds the branch. When the anchor falls outside
        that window it is pinned right after it, together with the main-line
        user turn that precedes it, as long as both are included. Then
        effectively-included branch nodes follow in chronological order up to
        and including ``parent_id``. The walk stops at ``parent_id`` even when
        that node is itself excluded, so later siblings never leak in.

        Args:
            session: The session being sent in.
            all_messages: Full message collection; other sessions are ignored.
            anchor_message_id: The main-chat assistant message the branch hangs off.
            parent_id: Reply insertion point. ``None`` takes the whole branch;
                the anchor id itself, or an id outside the branch, takes none of it.
            main_turns_limit: Main-line pairs to keep. Falls back to the session
                setting, then ``ContextConfig.reply_turns_limit``.
            max_tokens: Approximate budget. Falls back to the session setting,
                then ``ContextConfig.reply_max_tokens``.

        Returns:
            BuiltContext with ordered turns and the final token estimate.
        """
        pairs = self._resolve(main_turns_limit, session.main_turns_limit, self._config.reply_turns_limit)
        budget = self._resolve(max_tokens, session.max_tokens, self._config.reply_max_tokens)
        graph = MessageGraph(m for m in all_messages if m.session_id == session.id)

        turns = self._system_turns(session)
        main = graph.main_line()
        window = _window(main, pairs)
        for m in window:
            turns.append(_turn(m, "main"))

        in_window = {m.id for m in window}
        for m in self._pinned_anchor(graph, main, anchor_message_id):
            if m.id not in in_window:
                turns.append(_turn(m, "main"))

        for node in self._branch_path(graph, anchor_message_id, parent_id):
            turns.append(_turn(node, "branch"))

        return self._finish("reply", session, turns, budget, pairs, anchor_id=anchor_message_id)

    # ── Internals ──────────────────────────────────────────────────────────────

    @staticmethod
    def _resolve(explicit: int | None, from_session: int | None, default: int) -> int:
        if explicit is not None:
            return explicit
        if from_session is not None:
            return from_session
        return default

    @staticmethod
    def _system_turns(session: Session) -> list[Turn]:
        if session.system_prompt:
            return [Turn(role="system", content=session.system_prompt, segment="system")]
        return []

    @staticmethod
    def _pinned_anchor(
        graph: MessageGraph, main: Sequence[Message], anchor_id: str
    ) -> list[Message]:
        """The anchor and its preceding main-line user turn, each only if included."""
        anchor = graph.by_id.get(anchor_id)
        if anchor is None or anchor.is_branch or not anchor.include_in_context:
            return []
        pinned: list[Message] = []
        asker = next(
            (
                m
                for m in reversed(main)
                if m.role == "user" and m.created_at <= anchor.created_at
            ),
            None,
        )
        if asker is not None and asker.include_in_context:
            pinned.append(asker)
        pinned.append(anchor)
        return pinned

    def _branch_path(
        self, graph: MessageGraph, anchor_id: str, parent_id: str | None
    ) -> list[Message]:
        """Effectively-included branch nodes in order, ending at ``parent_id``."""
        if anchor_id not in graph.by_id:
            self._logger.debug("reply_anchor_missing", anchor_id=anchor_id)
            return []
        members = graph.branch(anchor_id)
        if parent_id is not None and parent_id not in {m.id for m in members}:
            if parent_id != anchor_id:
                self._logger.debug("reply_parent_missing", anchor_id=anchor_id, parent_id=parent_id)
            return []

        path: list[Message] = []
        for node in members:
            if is_effectively_included(node, graph.by_id):
                path.append(node)
            if node.id == parent_id:
                break
        return path

    def _trim(self, turns: list[Turn], max_tokens: int) -> list[str]:
        """Drop turns oldest-first by segment priority until the estimate fits."""
        removed: list[str] = []
        if not max_tokens:
            return removed
        for segment in _TRIM_ORDER:
            while self._estimator.estimate_turns(turns) > max_tokens:
                idx = next((i for i, t in enumerate(turns) if t.segment == segment), None)
                if idx is None:
                    break
                dropped = turns.pop(idx)
                removed.append(dropped.message_id or "")
        return removed

    def _finish(
        self,
        kind: str,
        session: Session,
        turns: list[Turn],
        budget: int,
        pairs: int,
        **log_context: Any,
    ) -> BuiltContext:
        trimmed = self._trim(turns, budget)
        estimate = self._estimator.estimate_turns(turns)
        if trimmed:
            self._logger.info(
                "context_trimmed",
                kind=kind,
                session_id=session.id,
                trimmed_count=len(trimmed),
                max_tokens=budget,
                **log_context,
            )
        self._logger.debug(
            "context_built",
            kind=kind,
            session_id=session.id,
            turn_count=len(turns),
            token_estimate=estimate,
            **log_context,
        )
        return BuiltContext(
            turns=turns,
            token_estimate=estimate,
            max_tokens=budget or None,
            main_turns_limit=pairs,
            trimmed_message_ids=trimmed,
        )


def build_main_context(
    session: Session,
    all_messages: Iterable[Message],
    main_turns_limit: int | None = None,
    max_tokens: int | None = None,
    *,
    config: ContextConfig | None = None,
) -> list[Turn]:
    """Functional form of :meth:`ContextBuilder.build_main`; returns the turns only."""
    builder = ContextBuilder(config=config)
    return builder.build_main(session, all_messages, main_turns_limit, max_tokens).turns


def build_reply_context(
    session: Session,
    all_messages: Iterable[Message],
    anchor_message_id: str,
    parent_id: str | None = None,
    main_turns_limit: int | None = None,
    max_tokens: int | None = None,
    *,
    config: ContextConfig | None = None,
) -> list[Turn]:
    """Functional form of :meth:`ContextBuilder.build_reply`; returns the turns only."""
    builder = ContextBuilder(config=config)
    return builder.build_reply(
        session, all_messages, anchor_message_id, parent_id, main_turns_limit, max_tokens
    ).turns
