"""Pytest configuration and fixtures."""

import os

# Tests run offline: keep litellm from fetching its remote model cost map at import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import pytest

from rlm_orchestration.config import get_docker_settings, get_sandbox_settings, get_settings
from rlm_orchestration.llm.prompts import NESTED_SYSTEM_PROMPT


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached per process; reload them around every test."""
    for getter in (get_settings, get_sandbox_settings, get_docker_settings):
        getter.cache_clear()
    yield
    for getter in (get_settings, get_sandbox_settings, get_docker_settings):
        getter.cache_clear()


@pytest.fixture
def scripted_root():
    """Build a reply function: nested questions get ``nested``, the root follows ``script``."""

    def build(script, nested="nested answer"):
        state = {"turn": 0}

        def reply(messages):
            if messages[0].content == NESTED_SYSTEM_PROMPT:
                return nested
            index = min(state["turn"], len(script) - 1)
            state["turn"] += 1
            return script[index]

        return reply

    return build
