"""Tests for inclusion toggling and effective inclusion."""

from __future__ import annotations

import pytest

from forkchat.context.cascade import (
    apply_include,
    cascade_ids,
    disable,
    is_effectively_included,
    set_include,
    toggle_ids,
)
from forkchat.graph import MessageGraphCycleError, index_by_id
from tests.conftest import make_message


@pytest.fixture
def tree():
    """Anchor a1; r1 -> r2 -> r3 and r1 -> r2b; unrelated sibling s1 under a1."""
    return [
        make_message("a1", "assistant"),
        make_message("r1", "user", parent_id="a1", anchor="a1"),
        make_message("r2", "assistant", parent_id="r1", anchor="a1"),
        make_message("r3", "user", parent_id="r2", anchor="a1"),
        make_message("r2b", "assistant", parent_id="r1", anchor="a1"),
        make_message("s1", "user", parent_id="a1", anchor="a1"),
    ]


def _flags(messages):
    return {m.id: m.include_in_context for m in messages}


class TestCascade:
    def test_cascade_ids_is_subtree(self, tree):
        assert cascade_ids(tree, "r1") == {"r1", "r2", "r3", "r2b"}

    def test_disable_is_subtree_closed(self, tree):
        """Every descendant is excluded; non-descendants are untouched."""
        flags = _flags(disable(tree, "r1"))
        assert flags == {"a1": True, "r1": False, "r2": False, "r3": False, "r2b": False, "s1": True}

    def test_disable_leaf_only_touches_leaf(self, tree):
        flags = _flags(disable(tree, "r3"))
        assert [k for k, v in flags.items() if not v] == ["r3"]

    def test_enable_is_local(self, tree):
        """Re-enabling a node leaves its excluded descendants excluded."""
        off = disable(tree, "r1")
        flags = _flags(set_include(off, "r1", True))
        assert flags["r1"] is True
        assert flags["r2"] is False and flags["r3"] is False

    def test_local_only_disable_skips_cascade(self, tree):
        assert toggle_ids(tree, "r1", False, local_only=True) == {"r1"}
        flags = _flags(set_include(tree, "r1", False, local_only=True))
        assert flags["r1"] is False
        assert flags["r2"] is True

    def test_apply_include_preserves_untouched_identity(self, tree):
        out = apply_include(tree, {"r2"}, False)
        assert out[0] is tree[0]
        assert out[2] is not tree[2]
        assert tree[2].include_in_context is True

    def test_disable_unknown_id_only_targets_it(self, tree):
        assert cascade_ids(tree, "ghost") == {"ghost"}
        assert _flags(disable(tree, "ghost")) == _flags(tree)


class TestEffectiveInclusion:
    def test_requires_own_flag(self, tree):
        msgs = apply_include(tree, {"r2"}, False)
        idx = index_by_id(msgs)
        assert is_effectively_included(idx["r2"], idx) is False

    def test_requires_every_ancestor(self, tree):
        """A locally-disabled ancestor hides the still-flagged descendants."""
        msgs = set_include(tree, "r1", False, local_only=True)
        idx = index_by_id(msgs)
        assert idx["r3"].include_in_context is True
        assert is_effectively_included(idx["r3"], idx) is False
        assert is_effectively_included(idx["s1"], idx) is True

    def test_excluded_anchor_hides_branch(self, tree):
        msgs = apply_include(tree, {"a1"}, False)
        idx = index_by_id(msgs)
        assert is_effectively_included(idx["r1"], idx) is False

    def test_fully_included_chain(self, tree):
        idx = index_by_id(tree)
        assert all(is_effectively_included(m, idx) for m in tree)

    def test_dangling_parent_fails(self):
        orphan = make_message("o", parent_id="gone", anchor="gone")
        assert is_effectively_included(orphan, index_by_id([orphan])) is False

    def test_dangling_grandparent_fails(self, tree):
        msgs = [m for m in tree if m.id != "a1"]
        idx = index_by_id(msgs)
        assert is_effectively_included(idx["r2"], idx) is False

    def test_cycle_raises(self):
        x = make_message("x", parent_id="y", anchor="a")
        y = make_message("y", parent_id="x", anchor="a")
        with pytest.raises(MessageGraphCycleError):
            is_effectively_included(x, index_by_id([x, y]))
