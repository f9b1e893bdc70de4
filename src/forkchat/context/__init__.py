"""Inclusion semantics and context assembly."""

from forkchat.context.builder import (
    BuiltContext,
    ContextBuilder,
    build_main_context,
    build_reply_context,
)
from forkchat.context.cascade import (
    apply_include,
    cascade_ids,
    disable,
    is_effectively_included,
    set_include,
    toggle_ids,
)

__all__ = [
    "BuiltContext",
    "ContextBuilder",
    "apply_include",
    "build_main_context",
    "build_reply_context",
    "cascade_ids",
    "disable",
    "is_effectively_included",
    "set_include",
    "toggle_ids",
]
