"""Execution environment interface for sandboxed code."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from rlm_orchestration.core.exceptions import ConfigurationError, SandboxError
from rlm_orchestration.types import REPLResult

RecursiveQueryCallback = Callable[[str], Awaitable[str]]
BatchedRecursiveQueryCallback = Callable[[List[str]], Awaitable[List[str]]]

SUPPORTED_LANGUAGES = ("python",)


@dataclass
class EnvironmentHealthStatus:
    """Health report of an environment."""

    healthy: bool
    session_active: bool
    last_activity_at: Optional[datetime] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)


class BaseEnvironment(ABC):
    """Abstract interface for code execution environments.

    Implementations provide code execution with varying levels of isolation
    (in-process, subprocess, Docker container). Variables persist across
    ``execute`` calls for the lifetime of a session. Ordinary program errors
    come back as a non-success ``REPLResult``; only infrastructure failures
    raise.
    """

    environment_type: str = "base"

    def __init__(self, language: str = "python") -> None:
        if language not in SUPPORTED_LANGUAGES:
            raise ConfigurationError(
                f"{type(self).__name__} cannot execute {language!r} code"
            )
        self.language = language
        self.session_id: Optional[str] = None
        self.last_activity_at: Optional[datetime] = None
        self._recursive_query_callback: Optional[RecursiveQueryCallback] = None
        self._batched_recursive_query_callback: Optional[BatchedRecursiveQueryCallback] = None

    @property
    def is_initialized(self) -> bool:
        return self.session_id is not None

    def get_environment_type(self) -> str:
        return self.environment_type

    def register_recursive_query_callback(self, callback: RecursiveQueryCallback) -> None:
        """Register the handler behind ``llm_query`` in sandboxed code."""
        self._recursive_query_callback = callback

    def register_batched_recursive_query_callback(
        self, callback: BatchedRecursiveQueryCallback
    ) -> None:
        """Register the handler behind ``llm_query_batched`` in sandboxed code."""
        self._batched_recursive_query_callback = callback

    async def invoke_recursive_query(self, prompt: str) -> str:
        if self._recursive_query_callback is None:
            raise SandboxError("No recursive query callback registered")
        return await self._recursive_query_callback(prompt)

    async def invoke_batched_recursive_query(self, prompts: List[str]) -> List[str]:
        """Answer several prompts, falling back to concurrent single queries."""
        if self._batched_recursive_query_callback is not None:
            return await self._batched_recursive_query_callback(prompts)
        if self._recursive_query_callback is None:
            raise SandboxError("No recursive query callback registered")
        return list(
            await asyncio.gather(*(self._recursive_query_callback(p) for p in prompts))
        )

    def _require_session(self) -> None:
        if not self.is_initialized:
            raise SandboxError(f"{self.environment_type} environment is not initialized")

    @abstractmethod
    async def initialize(self) -> None:
        """Allocate a session.

        Raises:
            InitializationError: If the backend cannot provision a sandbox
        """
        ...

    @abstractmethod
    async def dispose(self) -> None:
        """Release the session. Safe to call more than once."""
        ...

    @abstractmethod
    async def execute(
        self,
        code: str,
        variables: Optional[Dict[str, Any]] = None,
        timeout_ms: Optional[int] = None,
    ) -> REPLResult:
        """Run code in the session.

        Args:
            code: Source code to execute
            variables: Variables to set before running
            timeout_ms: Hard wall-clock limit for this run

        Returns:
            REPLResult describing the run

        Raises:
            SandboxExecutionError: If the sandbox itself failed
        """
        ...

    @abstractmethod
    async def set_variable(self, name: str, value: Any) -> None:
        ...

    @abstractmethod
    async def get_variable(self, name: str) -> Any:
        """Read a variable.

        Raises:
            VariableNotFoundError: If the variable does not exist
        """
        ...

    @abstractmethod
    async def get_variables(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def clear_context(self) -> None:
        """Drop all user variables, keeping the session."""
        ...

    @abstractmethod
    async def health_check(self) -> EnvironmentHealthStatus:
        ...

    async def __aenter__(self) -> "BaseEnvironment":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()
