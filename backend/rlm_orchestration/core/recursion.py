"""Recursion controller for nested query depth and limits."""

from typing import Any, Dict, List, Optional

import structlog

from rlm_orchestration.core.exceptions import DepthExceededError, RecursionLimitError
from rlm_orchestration.types import Execution, Iteration, walk_iterations

logger = structlog.get_logger()


class RecursionController:
    """Tracks the iteration tree of the current execution.

    Iterations are indexed by id, so any node can be found and its depth
    checked without walking the tree. Enforces:
    - Recursion depth (child depth may not exceed ``max_depth``)
    - Total nested query count across all branches
    """

    def __init__(self, max_depth: int = 3, max_total_calls: int = 100) -> None:
        """Initialize the recursion controller.

        Args:
            max_depth: Maximum depth of a nested query (0 disables nesting)
            max_total_calls: Maximum nested queries per execution
        """
        self.max_depth = max_depth
        self.max_total_calls = max_total_calls

        self._call_count = 0
        self._rejected_count = 0
        self._nodes: Dict[str, Iteration] = {}
        self._roots: List[Iteration] = []

    def reset(self, execution: Optional[Execution] = None) -> None:
        """Start tracking a new execution."""
        self._call_count = 0
        self._rejected_count = 0
        self._nodes = {}
        self._roots = []
        if execution is not None:
            for node in walk_iterations(execution.iterations):
                self._nodes[node.id] = node
                if node.depth == 0:
                    self._roots.append(node)

    def register(self, iteration: Iteration) -> None:
        """Index a top-level iteration."""
        self._nodes[iteration.id] = iteration
        if iteration.depth == 0:
            self._roots.append(iteration)

    def get(self, iteration_id: str) -> Optional[Iteration]:
        return self._nodes.get(iteration_id)

    def check(self, parent: Iteration) -> None:
        """Raise if a child of ``parent`` would break a limit.

        Raises:
            DepthExceededError: If the child would be deeper than ``max_depth``
            RecursionLimitError: If the nested query budget is used up
        """
        child_depth = parent.depth + 1
        if child_depth > self.max_depth:
            self._rejected_count += 1
            logger.warning(
                "depth_limit_reached",
                parent_id=parent.id,
                current_depth=parent.depth,
                max_depth=self.max_depth,
            )
            raise DepthExceededError(child_depth, self.max_depth)

        if self._call_count >= self.max_total_calls:
            self._rejected_count += 1
            logger.warning(
                "total_call_limit_reached",
                current=self._call_count,
                max=self.max_total_calls,
            )
            raise RecursionLimitError(
                f"Maximum nested queries ({self.max_total_calls}) exceeded"
            )

    def enter(self, parent: Iteration, prompt: str) -> Iteration:
        """Create a child iteration under ``parent`` for a nested query.

        Args:
            parent: Iteration whose code issued the query
            prompt: The nested question

        Returns:
            The new child, already attached to ``parent.nested_queries``
        """
        self.check(parent)

        child = Iteration(
            number=len(parent.nested_queries) + 1,
            input=prompt,
            depth=parent.depth + 1,
            parent_id=parent.id,
        )
        parent.nested_queries.append(child)
        self._nodes[child.id] = child
        self._call_count += 1

        logger.debug(
            "nested_query_entered",
            iteration_id=child.id,
            parent_id=parent.id,
            depth=child.depth,
            total_calls=self._call_count,
        )
        return child

    def exit(self, child: Iteration) -> None:
        """Mark a nested query as finished."""
        child.complete()
        logger.debug(
            "nested_query_exited",
            iteration_id=child.id,
            depth=child.depth,
            duration_ms=child.duration_ms,
        )

    def get_call_tree(self) -> List[Dict[str, Any]]:
        """Get the call tree of the tracked execution.

        Returns:
            One dict per top-level iteration, children nested under ``children``
        """
        trees: List[Dict[str, Any]] = []
        stack = [(root, trees) for root in reversed(self._roots)]

        # Children are pushed in reverse to keep their order.
        while stack:
            node, siblings = stack.pop()
            entry = {
                "id": node.id,
                "depth": node.depth,
                "input": node.input,
                "children": [],
            }
            siblings.append(entry)
            for child in reversed(node.nested_queries):
                stack.append((child, entry["children"]))

        return trees

    def get_stats(self) -> Dict[str, Any]:
        """Get recursion statistics."""
        return {
            "total_calls": self._call_count,
            "rejected_calls": self._rejected_count,
            "max_depth": self.max_depth,
            "max_calls": self.max_total_calls,
            "current_depth": max(
                (node.depth for node in self._nodes.values()),
                default=0,
            ),
            "tracked_nodes": len(self._nodes),
        }
