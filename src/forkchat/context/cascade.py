"""Inclusion flags across reply trees.

Disabling a node disables its whole subtree: context built from an included
child under an excluded parent would be incoherent. Enabling is local, so a
single leaf can be sent to the model without reinstating its ancestors.

All operations are pure. Each one computes the full set of affected ids and
applies it as a single update, returning a new message list; untouched
messages are passed through by identity.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from forkchat.graph.index import ancestor_chain, children_by_parent, descendants
from forkchat.models.message import Message


def cascade_ids(messages: Iterable[Message], root_id: str) -> set[str]:
    """``root_id`` plus every transitive descendant."""
    children = children_by_parent(messages)
    return {root_id, *(m.id for m in descendants(root_id, children))}


def toggle_ids(
    messages: Iterable[Message],
    message_id: str,
    include: bool,
    *,
    local_only: bool = False,
) -> set[str]:
    """
    Ids whose flag changes when ``message_id`` is toggled to ``include``.

    ``local_only`` is the modifier-click override: it bypasses the cascade and
    touches only ``message_id`` in either direction.
    """
    if include or local_only:
        return {message_id}
    return cascade_ids(messages, message_id)


def apply_include(
    messages: Sequence[Message], ids: set[str], include: bool
) -> list[Message]:
    """Set ``include_in_context`` on every message in ``ids`` in one pass."""
    return [
        m.model_copy(update={"include_in_context": include}) if m.id in ids else m
        for m in messages
    ]


def disable(messages: Sequence[Message], root_id: str) -> list[Message]:
    """Exclude ``root_id`` and its entire subtree."""
    return apply_include(messages, cascade_ids(messages, root_id), False)


def set_include(
    messages: Sequence[Message],
    message_id: str,
    include: bool,
    *,
    local_only: bool = False,
) -> list[Message]:
    """Cascade on disable, local on enable (or always local with ``local_only``)."""
    ids = toggle_ids(messages, message_id, include, local_only=local_only)
    return apply_include(messages, ids, include)


def is_effectively_included(node: Message, by_id: Mapping[str, Message]) -> bool:
    """
    Whether ``node`` should be pulled into an assembled context.

    Strict policy: the node's own flag and the flag of every ancestor up the
    ``parent_id`` chain must be set. A parent id that cannot be resolved counts
    as a failure; the walk otherwise ends at a node with no parent.

    Raises:
        MessageGraphCycleError: On a cyclic parent chain.
    """
    if not node.include_in_context:
        return False
    chain = ancestor_chain(node, by_id)
    # ancestor_chain stops silently at a miss; a dangling parent fails here.
    top = chain[0] if chain else node
    if top.parent_id is not None:
        return False
    return all(a.include_in_context for a in chain)
