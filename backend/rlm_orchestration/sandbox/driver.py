"""Shared host side of the out-of-process environments.

Both the subprocess and the Docker environment run ``repl_driver.py`` once
per execution. The host keeps the variables as JSON text, sends them with the
code, and takes the updated set back from the driver's state line.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog

from rlm_orchestration.core.exceptions import (
    RLMError,
    SandboxExecutionError,
    VariableNotFoundError,
)
from rlm_orchestration.sandbox.base import BaseEnvironment, EnvironmentHealthStatus
from rlm_orchestration.sandbox.utils import (
    deserialize_value,
    serialize_value,
    truncate_output,
    validate_variable_name,
)
from rlm_orchestration.types import CONTEXT_VARIABLE, REPLError, REPLResult

logger = structlog.get_logger()

DRIVER_PATH = Path(__file__).with_name("repl_driver.py")

STATE_MARKER = "__RLM_STATE__ "
QUERY_SENTINEL = "LLM_QUERY_CALL: "
BATCHED_QUERY_SENTINEL = "LLM_QUERY_BATCHED_CALL: "
QUERY_RESULT = "LLM_QUERY_RESULT: "
BATCHED_QUERY_RESULT = "LLM_QUERY_BATCHED_RESULT: "


def placeholder(index: int) -> str:
    """Value ``llm_query`` returns inside a deferred run (1-based index)."""
    return f"<pending llm_query #{index}>"


class NestedQueryRecord:
    """One nested-query request seen in driver output, and its answer."""

    def __init__(self, batched: bool, payload: Any) -> None:
        self.batched = batched
        self.payload = payload
        self.answer: Any = None

    def result_line(self) -> str:
        if self.batched:
            return BATCHED_QUERY_RESULT + json.dumps(self.answer, ensure_ascii=False)
        return QUERY_RESULT + str(self.answer)


def parse_request(line: str) -> Optional[NestedQueryRecord]:
    """Turn a sentinel line into a request, or None for ordinary output."""
    if line.startswith(BATCHED_QUERY_SENTINEL):
        return NestedQueryRecord(True, json.loads(line[len(BATCHED_QUERY_SENTINEL):]))
    if line.startswith(QUERY_SENTINEL):
        return NestedQueryRecord(False, json.loads(line[len(QUERY_SENTINEL):]))
    return None


def splice_results(stdout: str, records: List[NestedQueryRecord]) -> str:
    """Replace each sentinel line in ``stdout`` with its answer, in order."""
    if not records:
        return stdout
    pending = iter(records)
    lines = []
    for line in stdout.splitlines(keepends=True):
        stripped = line.rstrip("\n")
        if stripped.startswith((QUERY_SENTINEL, BATCHED_QUERY_SENTINEL)):
            record = next(pending, None)
            if record is not None and record.answer is not None:
                line = record.result_line() + "\n"
        lines.append(line)
    return "".join(lines)


class ScriptDriverEnvironment(BaseEnvironment):
    """Base class for environments that run the driver script out of process."""

    def __init__(self, language: str = "python", output_limit: int = 8192) -> None:
        super().__init__(language)
        self.output_limit = output_limit
        self._variables: Dict[str, str] = {}
        self._execution_count = 0

    async def answer(self, record: NestedQueryRecord) -> Any:
        """Resolve one nested-query request through the registered callbacks.

        Failures come back as inline error text, matching what the
        orchestrator returns for rejected queries.
        """
        try:
            if record.batched:
                record.answer = await self.invoke_batched_recursive_query(
                    [str(p) for p in record.payload]
                )
            else:
                record.answer = await self.invoke_recursive_query(str(record.payload))
        except RLMError as e:
            logger.warning("nested_query_bridge_failed", error=str(e))
            error = f"Error: {e}"
            record.answer = [error] * len(record.payload) if record.batched else error
        return record.answer

    def build_payload(self, code: str, variables: Optional[Dict[str, Any]]) -> str:
        for name, value in (variables or {}).items():
            self._store(name, value)
        encoded = ", ".join(
            f"{json.dumps(name)}: {text}" for name, text in self._variables.items()
        )
        return '{"code": %s, "variables": {%s}}' % (json.dumps(code), encoded)

    def parse_output(self, raw: str) -> Tuple[Optional[Dict[str, Any]], List[NestedQueryRecord], List[str]]:
        """Split driver stdout into its state, requests and stray lines."""
        state = None
        records: List[NestedQueryRecord] = []
        stray: List[str] = []
        for line in raw.splitlines():
            if line.startswith(STATE_MARKER):
                state = json.loads(line[len(STATE_MARKER):])
                continue
            record = parse_request(line)
            if record is not None:
                records.append(record)
            elif line:
                stray.append(line)
        return state, records, stray

    def build_result(
        self,
        state: Optional[Dict[str, Any]],
        records: List[NestedQueryRecord],
        stray: List[str],
        stderr: str,
        duration_ms: float,
        code: str,
    ) -> REPLResult:
        """Turn the driver's final state into a ``REPLResult``.

        Raises:
            SandboxExecutionError: If the driver died without reporting state
        """
        if state is None:
            raise SandboxExecutionError(
                f"{self.environment_type} driver exited without reporting state",
                code=code,
                output=stderr or "\n".join(stray),
            )

        self._variables = {
            name: serialize_value(value) for name, value in state["variables"].items()
        }

        stdout = splice_results(state.get("stdout", ""), records)
        if stray:
            stdout += "\n".join(stray) + "\n"

        return_value = state.get("return_value")
        for index, record in enumerate(records, start=1):
            if return_value == placeholder(index) and not record.batched:
                return_value = record.answer

        error = None
        if state.get("error"):
            error = REPLError(**state["error"])

        return REPLResult(
            success=bool(state["success"]),
            stdout=truncate_output(stdout, self.output_limit),
            stderr=state.get("stderr", "") + stderr,
            return_value=return_value,
            duration_ms=duration_ms,
            variables={
                name: deserialize_value(text)
                for name, text in self._variables.items()
                if name != CONTEXT_VARIABLE
            },
            error=error,
        )

    def _store(self, name: str, value: Any) -> None:
        validate_variable_name(name)
        self._variables[name] = serialize_value(value)

    async def set_variable(self, name: str, value: Any) -> None:
        self._require_session()
        self._store(name, value)

    async def get_variable(self, name: str) -> Any:
        self._require_session()
        if name not in self._variables:
            raise VariableNotFoundError(name)
        return deserialize_value(self._variables[name])

    async def get_variables(self) -> Dict[str, Any]:
        self._require_session()
        return {name: deserialize_value(text) for name, text in self._variables.items()}

    async def clear_context(self) -> None:
        self._require_session()
        self._variables = {}

    async def health_check(self) -> EnvironmentHealthStatus:
        return EnvironmentHealthStatus(
            healthy=self.is_initialized and DRIVER_PATH.exists(),
            session_active=self.is_initialized,
            last_activity_at=self.last_activity_at,
            diagnostics={
                "environment_type": self.environment_type,
                "executions": self._execution_count,
                "variables": len(self._variables),
                "driver": str(DRIVER_PATH),
            },
        )
