"""Tests for the recursion controller."""

import pytest

from rlm_orchestration.core.exceptions import DepthExceededError, RecursionLimitError
from rlm_orchestration.core.recursion import RecursionController
from rlm_orchestration.types import Iteration


def make_root(controller, number=1):
    root = Iteration(number=number, input=f"iteration {number}")
    controller.register(root)
    return root


class TestRecursionController:
    """Test depth and budget enforcement."""

    def test_initialization(self):
        ctrl = RecursionController(max_depth=3, max_total_calls=10)
        assert ctrl.max_depth == 3
        assert ctrl.max_total_calls == 10

    def test_enter_links_child(self):
        ctrl = RecursionController()
        root = make_root(ctrl)
        child = ctrl.enter(root, "sub question")

        assert child.depth == 1
        assert child.parent_id == root.id
        assert root.nested_queries == [child]
        assert ctrl.get(child.id) is child

    def test_depth_limit(self):
        ctrl = RecursionController(max_depth=2)
        root = make_root(ctrl)

        child1 = ctrl.enter(root, "child 1")
        child2 = ctrl.enter(child1, "child 2")
        assert child2.depth == 2

        with pytest.raises(DepthExceededError) as exc_info:
            ctrl.enter(child2, "child 3")
        assert "Maximum recursion depth exceeded" in str(exc_info.value)
        assert child2.nested_queries == []

    def test_zero_depth_disables_nesting(self):
        ctrl = RecursionController(max_depth=0)
        with pytest.raises(DepthExceededError):
            ctrl.enter(make_root(ctrl), "anything")

    def test_total_call_limit(self):
        ctrl = RecursionController(max_depth=10, max_total_calls=3)
        root = make_root(ctrl)

        for i in range(3):
            ctrl.enter(root, f"child {i}")

        with pytest.raises(RecursionLimitError):
            ctrl.enter(root, "child 3")
        assert ctrl.get_stats()["rejected_calls"] == 1

    def test_exit_completes_child(self):
        ctrl = RecursionController()
        child = ctrl.enter(make_root(ctrl), "q")
        ctrl.exit(child)
        assert child.completed_at is not None

    def test_reset_clears_counts(self):
        ctrl = RecursionController(max_total_calls=1)
        ctrl.enter(make_root(ctrl), "q")
        ctrl.reset()
        ctrl.enter(make_root(ctrl), "q again")
        assert ctrl.get_stats()["total_calls"] == 1


class TestCallTree:
    """Test call tree inspection."""

    def test_call_tree_shape(self):
        ctrl = RecursionController()
        first = make_root(ctrl, 1)
        a = ctrl.enter(first, "a")
        ctrl.enter(a, "a.1")
        ctrl.enter(first, "b")
        make_root(ctrl, 2)

        tree = ctrl.get_call_tree()
        assert [node["input"] for node in tree] == ["iteration 1", "iteration 2"]
        assert [c["input"] for c in tree[0]["children"]] == ["a", "b"]
        assert tree[0]["children"][0]["children"][0]["input"] == "a.1"
        assert tree[0]["children"][0]["children"][0]["depth"] == 2

    def test_stats(self):
        ctrl = RecursionController(max_depth=3, max_total_calls=50)
        root = make_root(ctrl)
        ctrl.enter(ctrl.enter(root, "a"), "b")

        stats = ctrl.get_stats()
        assert stats["total_calls"] == 2
        assert stats["current_depth"] == 2
        assert stats["tracked_nodes"] == 3
        assert stats["max_calls"] == 50
