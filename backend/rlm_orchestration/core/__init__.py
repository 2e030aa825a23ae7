"""Core RLM components."""

from rlm_orchestration.core.cancellation import CancellationToken
from rlm_orchestration.core.events import EventBus, EventHandler
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
from rlm_orchestration.core.parser import (
    extract_code_block,
    has_code_block,
    has_final_response,
    parse_final_response,
)
from rlm_orchestration.core.recursion import RecursionController
from rlm_orchestration.core.orchestrator import RLMOrchestrator, create_orchestrator

__all__ = [
    "RLMOrchestrator",
    "create_orchestrator",
    "RecursionController",
    "EventBus",
    "EventHandler",
    "CancellationToken",
    "extract_code_block",
    "parse_final_response",
    "has_code_block",
    "has_final_response",
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
