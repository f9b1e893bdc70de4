"""Message graph indexing."""

from forkchat.graph.index import (
    MAX_ANCESTOR_DEPTH,
    MAX_REPLY_PARENT_HOPS,
    MessageGraph,
    MessageGraphCycleError,
    ancestor_chain,
    by_anchor,
    children_by_parent,
    descendants,
    index_by_id,
    main_line,
    resolve_reply_parent,
)

__all__ = [
    "MAX_ANCESTOR_DEPTH",
    "MAX_REPLY_PARENT_HOPS",
    "MessageGraph",
    "MessageGraphCycleError",
    "ancestor_chain",
    "by_anchor",
    "children_by_parent",
    "descendants",
    "index_by_id",
    "main_line",
    "resolve_reply_parent",
]
