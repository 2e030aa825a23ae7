"""Custom exceptions for the RLM engine."""

from typing import Optional


class RLMError(Exception):
    """Base exception for RLM errors."""
    pass


class ConfigurationError(RLMError):
    """Raised when configuration is invalid."""
    pass


class InitializationError(RLMError):
    """Raised when an environment cannot provision a session or seed its context."""
    pass


class TransportError(RLMError):
    """Raised when a model call fails."""

    def __init__(self, message: str, provider: str = "", model: str = ""):
        super().__init__(message)
        self.provider = provider
        self.model = model


class SandboxError(RLMError):
    """Raised when a sandbox operation fails."""
    pass


class SandboxExecutionError(SandboxError):
    """Raised when the sandbox infrastructure fails while running code."""

    def __init__(self, message: str, code: str = "", output: str = ""):
        super().__init__(message)
        self.code = code
        self.output = output


class VariableNotFoundError(SandboxError):
    """Raised when a sandbox variable does not exist."""

    def __init__(self, name: str):
        super().__init__(f"Variable not found: {name}")
        self.name = name


class DepthExceededError(RLMError):
    """Raised when a nested query would go past the maximum depth."""

    def __init__(self, depth: int, max_depth: int):
        super().__init__(f"Maximum recursion depth exceeded (max_depth={max_depth})")
        self.depth = depth
        self.max_depth = max_depth


class RecursionLimitError(RLMError):
    """Raised when the total nested query budget is used up."""
    pass


class ExecutionFailedError(RLMError):
    """Raised by ``Execution.raise_for_status`` for failed executions."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ExecutionTimeoutError(RLMError):
    """Raised by ``Execution.raise_for_status`` for timed out executions."""
    pass


class ExecutionAbortedError(RLMError):
    """Raised by ``Execution.raise_for_status`` for stopped executions."""
    pass
