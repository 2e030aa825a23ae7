"""LLM client module."""

from rlm_orchestration.llm.client import LiteLLMClient, MockLLMClient
from rlm_orchestration.llm.interface import LLMClientInterface
from rlm_orchestration.llm.prompts import (
    build_continuation_message,
    build_error_recovery_prompt,
    build_initial_user_message,
    build_iteration_warning_prompt,
    build_nested_query_prompt,
    build_system_prompt,
)

__all__ = [
    "LLMClientInterface",
    "LiteLLMClient",
    "MockLLMClient",
    "build_system_prompt",
    "build_initial_user_message",
    "build_nested_query_prompt",
    "build_error_recovery_prompt",
    "build_iteration_warning_prompt",
    "build_continuation_message",
]
