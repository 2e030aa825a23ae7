"""Configuration module for the RLM engine."""

from rlm_orchestration.config.settings import (
    DockerSandboxSettings,
    RLMSettings,
    SandboxSettings,
    get_docker_settings,
    get_sandbox_settings,
    get_settings,
)

__all__ = [
    "RLMSettings",
    "SandboxSettings",
    "DockerSandboxSettings",
    "get_settings",
    "get_sandbox_settings",
    "get_docker_settings",
]
