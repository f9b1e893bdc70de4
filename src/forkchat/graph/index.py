"""Lookup structures over a flat message collection."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping

from forkchat.models.message import Message

MAX_ANCESTOR_DEPTH = 10_000
"""Upper bound on a parent chain before the graph is declared corrupt."""

MAX_REPLY_PARENT_HOPS = 64
"""Hops allowed when resolving a reply target up to the nearest assistant."""


class MessageGraphCycleError(Exception):
    """Raised when a parent chain loops back on itself or exceeds ``MAX_ANCESTOR_DEPTH``."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Cyclic or runaway parent chain at message {message_id!r}")
        self.message_id = message_id


def _sorted_by_time(messages: Iterable[Message]) -> list[Message]:
    return sorted(messages, key=lambda m: m.created_at)


def index_by_id(messages: Iterable[Message]) -> dict[str, Message]:
    """Map id to message. Duplicate ids are a caller error; the last one wins."""
    return {m.id: m for m in messages}


def children_by_parent(messages: Iterable[Message]) -> dict[str, list[Message]]:
    """Map parent id to its direct children, oldest first."""
    out: dict[str, list[Message]] = {}
    for m in messages:
        if m.parent_id is None:
            continue
        out.setdefault(m.parent_id, []).append(m)
    return {pid: _sorted_by_time(kids) for pid, kids in out.items()}


def by_anchor(messages: Iterable[Message]) -> dict[str, list[Message]]:
    """Map anchor id to every member of its reply branch, oldest first."""
    out: dict[str, list[Message]] = {}
    for m in messages:
        if m.anchor_message_id is None:
            continue
        out.setdefault(m.anchor_message_id, []).append(m)
    return {aid: _sorted_by_time(members) for aid, members in out.items()}


def main_line(messages: Iterable[Message]) -> list[Message]:
    """Messages without an anchor, in chronological order."""
    return _sorted_by_time(m for m in messages if m.anchor_message_id is None)


def descendants(root_id: str, children: Mapping[str, list[Message]]) -> list[Message]:
    """
    Breadth-first list of every transitive child of ``root_id`` (root excluded).

    A visited set keeps malformed cyclic input from looping forever.
    """
    out: list[Message] = []
    seen = {root_id}
    queue = deque(children.get(root_id, []))
    while queue:
        node = queue.popleft()
        if node.id in seen:
            continue
        seen.add(node.id)
        out.append(node)
        queue.extend(children.get(node.id, []))
    return out


def ancestor_chain(node: Message, by_id: Mapping[str, Message]) -> list[Message]:
    """
    Ancestors of ``node``, root first.

    The walk stops quietly at a parent id that is not in ``by_id``.

    Raises:
        MessageGraphCycleError: If the chain revisits a node or runs past
            ``MAX_ANCESTOR_DEPTH``.
    """
    chain: list[Message] = []
    seen = {node.id}
    cur = node
    while cur.parent_id is not None:
        parent = by_id.get(cur.parent_id)
        if parent is None:
            break
        if parent.id in seen or len(chain) >= MAX_ANCESTOR_DEPTH:
            raise MessageGraphCycleError(node.id)
        seen.add(parent.id)
        chain.append(parent)
        cur = parent
    chain.reverse()
    return chain


def resolve_reply_parent(
    parent_id: str | None,
    by_id: Mapping[str, Message],
    max_hops: int = MAX_REPLY_PARENT_HOPS,
) -> str | None:
    """
    Return the id of the nearest assistant at or above ``parent_id``.

    Only assistant nodes are valid reply targets. ``None`` means the reply is
    rootless (it attaches directly to the anchor): the parent was absent, could
    not be found, or no assistant turned up within ``max_hops``.
    """
    cur_id = parent_id
    for _ in range(max_hops):
        if cur_id is None:
            return None
        node = by_id.get(cur_id)
        if node is None:
            return None
        if node.role == "assistant":
            return node.id
        cur_id = node.parent_id
    return None


class MessageGraph:
    """
    A snapshot index over one flat message collection.

    Rebuilt on every context build; nothing is maintained incrementally.
    """

    def __init__(self, messages: Iterable[Message]) -> None:
        self.messages = list(messages)
        self.by_id = index_by_id(self.messages)
        self.children = children_by_parent(self.messages)
        self.branches = by_anchor(self.messages)

    def get(self, message_id: str) -> Message | None:
        return self.by_id.get(message_id)

    def descendants(self, root_id: str) -> list[Message]:
        return descendants(root_id, self.children)

    def ancestors(self, node: Message) -> list[Message]:
        return ancestor_chain(node, self.by_id)

    def branch(self, anchor_id: str) -> list[Message]:
        return self.branches.get(anchor_id, [])

    def main_line(self) -> list[Message]:
        return main_line(self.messages)

    def resolve_reply_parent(self, parent_id: str | None) -> str | None:
        return resolve_reply_parent(parent_id, self.by_id)
