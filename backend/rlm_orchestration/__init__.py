"""RLM Orchestration - Recursive Language Model execution engine."""

from rlm_orchestration.config import RLMSettings, get_settings
from rlm_orchestration.core.cancellation import CancellationToken
from rlm_orchestration.core.exceptions import (
    ConfigurationError,
    DepthExceededError,
    ExecutionAbortedError,
    ExecutionFailedError,
    ExecutionTimeoutError,
    InitializationError,
    RecursionLimitError,
    RLMError,
    SandboxError,
    SandboxExecutionError,
    TransportError,
    VariableNotFoundError,
)
from rlm_orchestration.core.orchestrator import RLMOrchestrator, create_orchestrator
from rlm_orchestration.core.recursion import RecursionController
from rlm_orchestration.llm.client import LiteLLMClient, MockLLMClient
from rlm_orchestration.llm.interface import LLMClientInterface
from rlm_orchestration.sandbox.base import BaseEnvironment
from rlm_orchestration.sandbox.docker_repl import DockerREPLEnvironment
from rlm_orchestration.sandbox.factory import EnvironmentFactory, create_environment
from rlm_orchestration.sandbox.local_repl import LocalREPLEnvironment
from rlm_orchestration.sandbox.subprocess_repl import SubprocessREPLEnvironment
from rlm_orchestration.trajectory.exporter import TrajectoryExporter
from rlm_orchestration.trajectory.logger import TrajectoryLogger
from rlm_orchestration.types import (
    ExecuteOptions,
    Execution,
    ExecutionStats,
    ExecutionStatus,
    Final,
    FinalVar,
    Iteration,
    REPLResult,
    RLMConfig,
    RLMEvent,
    RLMEventType,
    calculate_stats,
)

__version__ = "0.1.0"

__all__ = [
    # Core components
    "RLMOrchestrator",
    "create_orchestrator",
    "RecursionController",
    "CancellationToken",
    # LLM clients
    "LLMClientInterface",
    "LiteLLMClient",
    "MockLLMClient",
    # Environments
    "BaseEnvironment",
    "LocalREPLEnvironment",
    "SubprocessREPLEnvironment",
    "DockerREPLEnvironment",
    "EnvironmentFactory",
    "create_environment",
    # Trajectory
    "TrajectoryLogger",
    "TrajectoryExporter",
    # Types
    "RLMConfig",
    "ExecuteOptions",
    "Execution",
    "ExecutionStatus",
    "ExecutionStats",
    "Iteration",
    "REPLResult",
    "RLMEvent",
    "RLMEventType",
    "Final",
    "FinalVar",
    "calculate_stats",
    # Settings
    "RLMSettings",
    "get_settings",
    # Errors
    "RLMError",
    "ConfigurationError",
    "InitializationError",
    "TransportError",
    "SandboxError",
    "SandboxExecutionError",
    "VariableNotFoundError",
    "DepthExceededError",
    "RecursionLimitError",
    "ExecutionFailedError",
    "ExecutionTimeoutError",
    "ExecutionAbortedError",
]
