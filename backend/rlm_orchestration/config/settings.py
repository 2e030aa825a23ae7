"""Configuration settings for the RLM execution engine."""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RLMSettings(BaseSettings):
    """Engine-level settings."""

    model_config = SettingsConfigDict(
        env_prefix="RLM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Loop limits
    max_iterations: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Maximum top-level iterations per execution",
    )
    max_depth: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Maximum recursion depth for llm_query",
    )
    max_nested_queries: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum nested queries per execution",
    )
    max_concurrent_nested_queries: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Concurrency bound for llm_query_batched",
    )

    # Timeout settings (milliseconds)
    iteration_timeout_ms: int = Field(
        default=30000,
        ge=100,
        le=3600000,
        description="Hard timeout for a single code execution",
    )
    total_timeout_ms: int = Field(
        default=300000,
        ge=1000,
        le=86400000,
        description="Total wall-clock budget for one execution",
    )

    # Sandbox settings
    language: str = Field(
        default="python",
        pattern="^(python|nodejs)$",
        description="Sandbox language mode named in the system prompt",
    )
    environment_type: str = Field(
        default="auto",
        pattern="^(auto|local|subprocess|docker)$",
        description="Execution environment: auto, local, subprocess, or docker",
    )
    environment: str = Field(
        default="development",
        pattern="^(development|production)$",
        description="Deployment environment, used by auto environment selection",
    )
    sandbox_output_limit: int = Field(
        default=8192,
        ge=1024,
        le=65536,
        description="Maximum stdout characters kept per execution",
    )
    debug: bool = Field(
        default=False,
        description="Log every model reply and REPL result",
    )

    # LLM settings
    default_model: str = Field(
        default="gpt-5-mini",
        description="Default LLM model (supports any LiteLLM-compatible model)",
    )
    default_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Default temperature for LLM calls",
    )
    default_max_tokens: Optional[int] = Field(
        default=None,
        description="Default max tokens for LLM responses",
    )
    litellm_provider: str = Field(
        default="openai",
        description="LiteLLM provider (openai, anthropic, azure, etc.)",
    )
    litellm_api_base: Optional[str] = Field(
        default=None,
        description="Custom API base URL for LiteLLM",
    )
    litellm_retry_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per LLM call before a transport error is raised",
    )
    llm_timeout: int = Field(
        default=60,
        ge=1,
        le=600,
        description="Timeout for LLM API calls in seconds",
    )

    # Trajectory settings
    log_dir: str = Field(
        default="./logs",
        description="Directory for trajectory logs",
    )
    enable_trajectory_logging: bool = Field(
        default=False,
        description="Attach a trajectory logger to new orchestrators",
    )

    @field_validator("default_model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        """Validate that the model string is not empty."""
        if not v or not v.strip():
            raise ValueError("Model name cannot be empty")
        return v.strip()

    @field_validator("language", "environment_type", "environment", mode="before")
    @classmethod
    def normalize_choice(cls, v: str) -> str:
        """Lower-case enumerated string settings."""
        return v.lower().strip() if isinstance(v, str) else v


class SandboxSettings(BaseSettings):
    """Sandbox-specific settings."""

    model_config = SettingsConfigDict(
        env_prefix="SANDBOX_",
        env_file=".env",
        extra="ignore",
    )

    allowed_modules: List[str] = Field(
        default=[
            "json",
            "re",
            "math",
            "random",
            "datetime",
            "collections",
            "itertools",
            "functools",
            "statistics",
            "string",
            "textwrap",
            "decimal",
            "fractions",
        ],
        description="Modules sandboxed code may import",
    )
    blocked_builtins: List[str] = Field(
        default=[
            "eval",
            "compile",
            "exec",
            "open",
            "input",
            "exit",
            "quit",
            "breakpoint",
        ],
        description="Builtins removed from the sandbox namespace",
    )
    max_code_length: int = Field(
        default=100000,
        ge=1000,
        le=1000000,
        description="Maximum code length in characters",
    )
    python_executable: Optional[str] = Field(
        default=None,
        description="Interpreter for the subprocess environment (defaults to the current one)",
    )


class DockerSandboxSettings(BaseSettings):
    """Docker sandbox-specific settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOCKER_",
        env_file=".env",
        extra="ignore",
    )

    image: str = Field(
        default="python:3.11-slim",
        description="Docker image for sandbox containers",
    )
    memory_limit: str = Field(
        default="512m",
        description="Memory limit for containers (e.g., 512m, 1g)",
    )
    cpu_limit: float = Field(
        default=1.0,
        ge=0.1,
        le=16.0,
        description="CPU limit in cores",
    )
    security_profile: str = Field(
        default="standard",
        pattern="^(strict|standard|development)$",
        description="Security profile: strict, standard, or development",
    )
    network_enabled: bool = Field(
        default=False,
        description="Enable network access in containers",
    )
    auto_cleanup: bool = Field(
        default=True,
        description="Automatically remove containers after execution",
    )

    @field_validator("memory_limit")
    @classmethod
    def validate_memory_limit(cls, v: str) -> str:
        """Validate memory limit format."""
        v = v.lower().strip()
        suffix = "".join(c for c in v if c.isalpha())
        number_part = "".join(c for c in v if c.isdigit())

        if not number_part:
            raise ValueError(f"Memory limit must include a number: {v}")
        if suffix and suffix not in ("b", "k", "m", "g"):
            raise ValueError(f"Invalid memory suffix: {suffix}")
        return v


@lru_cache()
def get_settings() -> RLMSettings:
    """Get cached settings instance.

    Returns:
        RLMSettings instance
    """
    return RLMSettings()


@lru_cache()
def get_sandbox_settings() -> SandboxSettings:
    """Get cached sandbox settings instance."""
    return SandboxSettings()


@lru_cache()
def get_docker_settings() -> DockerSandboxSettings:
    """Get cached Docker sandbox settings instance."""
    return DockerSandboxSettings()
