"""Tests for execution records and statistics."""

from datetime import timedelta

import pytest

from rlm_orchestration.core.exceptions import (
    ExecutionAbortedError,
    ExecutionFailedError,
    ExecutionTimeoutError,
)
from rlm_orchestration.types import (
    Execution,
    ExecutionStatus,
    Iteration,
    RLMConfig,
    calculate_stats,
    generate_id,
    walk_iterations,
)


def make_execution():
    return Execution(query="q", context="c", max_iterations=5, max_depth=2)


class TestExecutionStatus:
    """Test the status state machine."""

    def test_starts_pending(self):
        assert make_execution().status == ExecutionStatus.PENDING

    def test_forward_transitions(self):
        execution = make_execution()
        execution.transition_to(ExecutionStatus.RUNNING)
        execution.transition_to(ExecutionStatus.COMPLETED)
        assert execution.is_finished
        assert execution.completed_at is not None

    def test_pending_can_fail_directly(self):
        execution = make_execution()
        execution.transition_to(ExecutionStatus.FAILED)
        assert execution.status == ExecutionStatus.FAILED

    def test_terminal_status_is_final(self):
        execution = make_execution()
        execution.transition_to(ExecutionStatus.RUNNING)
        execution.transition_to(ExecutionStatus.TIMEOUT)
        with pytest.raises(ValueError):
            execution.transition_to(ExecutionStatus.RUNNING)
        with pytest.raises(ValueError):
            execution.transition_to(ExecutionStatus.COMPLETED)

    def test_pending_cannot_complete(self):
        with pytest.raises(ValueError):
            make_execution().transition_to(ExecutionStatus.COMPLETED)


class TestRaiseForStatus:
    """Test exception mapping of finished executions."""

    def _finish(self, status, error=None, code=None):
        execution = make_execution()
        execution.transition_to(ExecutionStatus.RUNNING)
        execution.error = error
        execution.error_code = code
        execution.transition_to(status)
        return execution

    def test_completed_does_not_raise(self):
        self._finish(ExecutionStatus.COMPLETED).raise_for_status()

    def test_failed(self):
        execution = self._finish(ExecutionStatus.FAILED, "boom", "TRANSPORT_ERROR")
        with pytest.raises(ExecutionFailedError) as exc_info:
            execution.raise_for_status()
        assert exc_info.value.code == "TRANSPORT_ERROR"

    def test_timeout(self):
        with pytest.raises(ExecutionTimeoutError):
            self._finish(ExecutionStatus.TIMEOUT, "too slow").raise_for_status()

    def test_aborted(self):
        with pytest.raises(ExecutionAbortedError):
            self._finish(ExecutionStatus.ABORTED).raise_for_status()


class TestStats:
    """Test statistics over the iteration tree."""

    def test_empty_execution(self):
        stats = calculate_stats(make_execution())
        assert stats.iteration_count == 0
        assert stats.avg_iteration_ms == 0.0
        assert stats.max_depth_reached == 0

    def test_tree_counts(self):
        execution = make_execution()
        first = Iteration(number=1, input="start")
        first.extracted_code = "x = llm_query('a')"
        child = Iteration(number=1, input="a", depth=1, parent_id=first.id)
        grandchild = Iteration(number=1, input="b", depth=2, parent_id=child.id)
        child.nested_queries.append(grandchild)
        first.nested_queries.append(child)
        second = Iteration(number=2, input="next")
        execution.iterations.extend([first, second])

        for node in (first, second):
            node.completed_at = node.started_at + timedelta(milliseconds=100)

        stats = calculate_stats(execution)
        assert stats.iteration_count == 2
        assert stats.nested_query_count == 2
        assert stats.code_execution_count == 1
        assert stats.max_depth_reached == 2
        assert stats.avg_iteration_ms == pytest.approx(100.0)

    def test_walk_order(self):
        root = Iteration(number=1, input="root")
        a = Iteration(number=1, input="a", depth=1)
        b = Iteration(number=2, input="b", depth=1)
        root.nested_queries.extend([a, b])
        last = Iteration(number=2, input="last")
        assert [n.input for n in walk_iterations([root, last])] == ["root", "a", "b", "last"]

    def test_deep_tree_does_not_recurse(self):
        root = Iteration(number=1, input="0")
        node = root
        for depth in range(1, 3000):
            child = Iteration(number=1, input=str(depth), depth=depth)
            node.nested_queries.append(child)
            node = child
        assert sum(1 for _ in walk_iterations([root])) == 3000


class TestConfig:
    """Test per-orchestrator config."""

    def test_defaults(self):
        config = RLMConfig()
        assert config.max_iterations == 10
        assert config.max_depth == 3
        assert config.iteration_timeout_ms == 30000
        assert config.total_timeout_ms == 300000

    def test_rejects_bad_values(self):
        with pytest.raises(ValueError):
            RLMConfig(max_iterations=0)
        with pytest.raises(ValueError):
            RLMConfig(language="ruby")

    def test_from_settings_overrides(self, monkeypatch):
        monkeypatch.setenv("RLM_MAX_ITERATIONS", "4")
        config = RLMConfig.from_settings(max_depth=1)
        assert config.max_iterations == 4
        assert config.max_depth == 1


def test_generated_ids_are_unique():
    ids = {generate_id("exec") for _ in range(500)}
    assert len(ids) == 500
    assert all(i.startswith("exec_") for i in ids)
