"""Execution environments for model-written code."""

from rlm_orchestration.sandbox.base import (
    BaseEnvironment,
    BatchedRecursiveQueryCallback,
    EnvironmentHealthStatus,
    RecursiveQueryCallback,
)
from rlm_orchestration.sandbox.docker_repl import DockerREPLEnvironment
from rlm_orchestration.sandbox.factory import EnvironmentFactory, create_environment
from rlm_orchestration.sandbox.local_repl import LocalREPLEnvironment
from rlm_orchestration.sandbox.security import SecurityProfile, SecurityProfiles
from rlm_orchestration.sandbox.subprocess_repl import SubprocessREPLEnvironment

__all__ = [
    "BaseEnvironment",
    "EnvironmentHealthStatus",
    "RecursiveQueryCallback",
    "BatchedRecursiveQueryCallback",
    "LocalREPLEnvironment",
    "SubprocessREPLEnvironment",
    "DockerREPLEnvironment",
    "EnvironmentFactory",
    "create_environment",
    "SecurityProfile",
    "SecurityProfiles",
]
