"""Type definitions for the RLM execution engine."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

CONTEXT_VARIABLE = "context_0"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_id(prefix: str) -> str:
    """Generate a unique identifier of the form ``prefix_<time>_<random>``."""
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = _to_base36(int.from_bytes(os.urandom(6), "big"))[:9]
    return f"{prefix}_{timestamp}_{random_part}"


class ExecutionStatus(str, Enum):
    """Lifecycle states of an execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.TIMEOUT,
        ExecutionStatus.ABORTED,
    }
)

# pending may fail directly when the environment cannot be initialized
_ALLOWED_TRANSITIONS: Dict[ExecutionStatus, frozenset] = {
    ExecutionStatus.PENDING: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.FAILED}),
    ExecutionStatus.RUNNING: _TERMINAL_STATUSES,
}


class RLMEventType(str, Enum):
    """Lifecycle events emitted by the orchestrator."""

    EXECUTION_START = "execution_start"
    EXECUTION_COMPLETE = "execution_complete"
    ITERATION_START = "iteration_start"
    ITERATION_COMPLETE = "iteration_complete"
    CODE_EXTRACTED = "code_extracted"
    REPL_EXECUTING = "repl_executing"
    REPL_RESULT = "repl_result"
    RECURSIVE_QUERY_START = "recursive_query_start"
    RECURSIVE_QUERY_COMPLETE = "recursive_query_complete"
    FINAL_DETECTED = "final_detected"
    ERROR = "error"


@dataclass(frozen=True)
class Final:
    """``FINAL(answer)``: the answer is given inline."""

    answer: str


@dataclass(frozen=True)
class FinalVar:
    """``FINAL_VAR(name)``: the answer lives in a sandbox variable."""

    variable_name: str


FinalResponse = Union[Final, FinalVar]


@dataclass
class REPLError:
    """Structured error raised by sandboxed code."""

    kind: str
    message: str
    line: Optional[int] = None
    traceback: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "line": self.line,
            "traceback": self.traceback,
        }

    def __str__(self) -> str:
        location = f" (line {self.line})" if self.line is not None else ""
        return f"{self.kind}: {self.message}{location}"


@dataclass
class REPLResult:
    """Result from one code execution."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    return_value: Any = None
    duration_ms: float = 0.0
    variables: Optional[Dict[str, Any]] = None
    error: Optional[REPLError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "return_value": self.return_value,
            "duration_ms": self.duration_ms,
            "variables": self.variables,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class Message:
    """One role-tagged transcript entry."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)
    finish_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Iteration:
    """One turn of the loop, or one nested query.

    Nested queries are owned by their parent through ``nested_queries`` so the
    call tree can be inspected and serialized without walking the call stack.
    """

    number: int
    input: str
    depth: int = 0
    parent_id: Optional[str] = None
    id: str = field(default_factory=lambda: generate_id("iter"))
    llm_response: str = ""
    extracted_code: Optional[str] = None
    repl_result: Optional[REPLResult] = None
    nested_queries: List["Iteration"] = field(default_factory=list)
    is_final: bool = False
    final_answer: Optional[str] = None
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    def complete(self) -> None:
        if self.completed_at is None:
            self.completed_at = _now()

    @property
    def duration_ms(self) -> float:
        end = self.completed_at or _now()
        return (end - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the iteration and its nested subtree."""
        return {
            "id": self.id,
            "number": self.number,
            "input": self.input,
            "llm_response": self.llm_response,
            "extracted_code": self.extracted_code,
            "repl_result": self.repl_result.to_dict() if self.repl_result else None,
            "nested_queries": [child.to_dict() for child in self.nested_queries],
            "is_final": self.is_final,
            "final_answer": self.final_answer,
            "depth": self.depth,
            "parent_id": self.parent_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class Execution:
    """One top-level run of the engine."""

    query: str
    context: str
    max_iterations: int
    max_depth: int
    environment_type: str = ""
    language: str = "python"
    id: str = field(default_factory=lambda: generate_id("exec"))
    iterations: List[Iteration] = field(default_factory=list)
    status: ExecutionStatus = ExecutionStatus.PENDING
    final_answer: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    total_llm_calls: int = 0
    total_code_executions: int = 0
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    def transition_to(self, status: ExecutionStatus) -> None:
        """Move the execution forward; backwards or repeated moves raise ``ValueError``."""
        allowed = _ALLOWED_TRANSITIONS.get(self.status, frozenset())
        if status not in allowed:
            raise ValueError(
                f"Illegal status transition: {self.status.value} -> {status.value}"
            )
        self.status = status
        if status.is_terminal:
            self.completed_at = _now()

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_ms(self) -> float:
        end = self.completed_at or _now()
        return (end - self.started_at).total_seconds() * 1000

    def raise_for_status(self) -> None:
        """Raise the matching exception when the execution did not complete."""
        from rlm_orchestration.core.exceptions import (
            ExecutionAbortedError,
            ExecutionFailedError,
            ExecutionTimeoutError,
        )

        if self.status == ExecutionStatus.FAILED:
            raise ExecutionFailedError(self.error or "Execution failed", code=self.error_code)
        if self.status == ExecutionStatus.TIMEOUT:
            raise ExecutionTimeoutError(self.error or "Execution timed out")
        if self.status == ExecutionStatus.ABORTED:
            raise ExecutionAbortedError(self.error or "Execution was stopped")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "context_length": len(self.context),
            "iterations": [it.to_dict() for it in self.iterations],
            "status": self.status.value,
            "final_answer": self.final_answer,
            "error": self.error,
            "error_code": self.error_code,
            "max_iterations": self.max_iterations,
            "max_depth": self.max_depth,
            "total_llm_calls": self.total_llm_calls,
            "total_code_executions": self.total_code_executions,
            "environment_type": self.environment_type,
            "language": self.language,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class RLMEvent:
    """Event delivered to observers."""

    type: RLMEventType
    execution: Execution
    iteration: Optional[Iteration] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)


@dataclass
class RLMConfig:
    """Per-orchestrator configuration."""

    max_iterations: int = 10
    max_depth: int = 3
    iteration_timeout_ms: int = 30000
    total_timeout_ms: int = 300000
    language: str = "python"
    debug: bool = False
    max_nested_queries: int = 100
    max_concurrent_nested_queries: int = 5

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.max_depth < 0:
            raise ValueError("max_depth cannot be negative")
        if self.language not in ("python", "nodejs"):
            raise ValueError(f"Unsupported language: {self.language}")

    @classmethod
    def from_settings(cls, settings: Any = None, **overrides: Any) -> "RLMConfig":
        """Build a config from ``RLMSettings``, applying keyword overrides."""
        if settings is None:
            from rlm_orchestration.config import get_settings

            settings = get_settings()
        values = {
            "max_iterations": settings.max_iterations,
            "max_depth": settings.max_depth,
            "iteration_timeout_ms": settings.iteration_timeout_ms,
            "total_timeout_ms": settings.total_timeout_ms,
            "language": settings.language,
            "debug": settings.debug,
            "max_nested_queries": settings.max_nested_queries,
            "max_concurrent_nested_queries": settings.max_concurrent_nested_queries,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class ExecuteOptions:
    """Optional inputs for a single execution."""

    custom_instructions: Optional[str] = None
    initial_variables: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionStats:
    """Aggregate statistics over an execution's iteration tree."""

    total_duration_ms: float
    iteration_count: int
    nested_query_count: int
    code_execution_count: int
    avg_iteration_ms: float
    max_depth_reached: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_duration_ms": self.total_duration_ms,
            "iteration_count": self.iteration_count,
            "nested_query_count": self.nested_query_count,
            "code_execution_count": self.code_execution_count,
            "avg_iteration_ms": self.avg_iteration_ms,
            "max_depth_reached": self.max_depth_reached,
        }


def walk_iterations(iterations: List[Iteration]) -> Iterator[Iteration]:
    """Yield every iteration of a tree depth-first, without recursion."""
    stack = list(reversed(iterations))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.nested_queries))


def calculate_stats(execution: Execution) -> ExecutionStats:
    """Compute statistics for an execution."""
    end = execution.completed_at or _now()
    total_ms = (end - execution.started_at).total_seconds() * 1000

    nested = 0
    code_runs = 0
    max_depth = 0
    for node in walk_iterations(execution.iterations):
        if node.depth > 0:
            nested += 1
        if node.extracted_code is not None:
            code_runs += 1
        max_depth = max(max_depth, node.depth)

    top_level = len(execution.iterations)
    durations = [it.duration_ms for it in execution.iterations]
    avg = sum(durations) / top_level if top_level else 0.0

    return ExecutionStats(
        total_duration_ms=total_ms,
        iteration_count=top_level,
        nested_query_count=nested,
        code_execution_count=code_runs,
        avg_iteration_ms=avg,
        max_depth_reached=max_depth,
    )
