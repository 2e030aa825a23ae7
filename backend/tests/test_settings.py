"""Tests for configuration."""

import pytest
from pydantic import ValidationError

from rlm_orchestration.config import (
    DockerSandboxSettings,
    RLMSettings,
    get_sandbox_settings,
    get_settings,
)


class TestRLMSettings:
    """Test engine settings."""

    def test_defaults(self):
        settings = RLMSettings()
        assert settings.max_iterations == 10
        assert settings.max_depth == 3
        assert settings.environment_type == "auto"
        assert settings.enable_trajectory_logging is False

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("RLM_MAX_DEPTH", "5")
        monkeypatch.setenv("RLM_LANGUAGE", "NodeJS")
        settings = get_settings()
        assert settings.max_depth == 5
        assert settings.language == "nodejs"

    def test_cached(self):
        assert get_settings() is get_settings()

    def test_invalid_language(self):
        with pytest.raises(ValidationError):
            RLMSettings(language="ruby")

    def test_invalid_limits(self):
        with pytest.raises(ValidationError):
            RLMSettings(max_iterations=0)

    def test_empty_model(self):
        with pytest.raises(ValidationError):
            RLMSettings(default_model="   ")


class TestSandboxSettings:
    """Test sandbox settings."""

    def test_default_modules(self):
        settings = get_sandbox_settings()
        assert "json" in settings.allowed_modules
        assert "os" not in settings.allowed_modules
        assert "open" in settings.blocked_builtins

    def test_memory_limit_validation(self):
        assert DockerSandboxSettings(memory_limit="1G").memory_limit == "1g"
        with pytest.raises(ValidationError):
            DockerSandboxSettings(memory_limit="lots")
        with pytest.raises(ValidationError):
            DockerSandboxSettings(memory_limit="512x")
