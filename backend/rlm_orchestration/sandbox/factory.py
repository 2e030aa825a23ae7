"""Environment factory for creating execution environments."""

from typing import Any, List

import structlog

from rlm_orchestration.config import get_settings
from rlm_orchestration.core.exceptions import ConfigurationError
from rlm_orchestration.sandbox.base import BaseEnvironment
from rlm_orchestration.sandbox.docker_repl import DockerREPLEnvironment
from rlm_orchestration.sandbox.local_repl import LocalREPLEnvironment
from rlm_orchestration.sandbox.security import docker_status
from rlm_orchestration.sandbox.subprocess_repl import SubprocessREPLEnvironment

logger = structlog.get_logger()

ENVIRONMENT_TYPES = {
    "local": LocalREPLEnvironment,
    "subprocess": SubprocessREPLEnvironment,
    "docker": DockerREPLEnvironment,
}


class EnvironmentFactory:
    """Factory for execution environments.

    Example:
        ```python
        # Auto-select based on settings and Docker availability
        environment = EnvironmentFactory.create_environment("auto")

        # Force a specific type
        environment = EnvironmentFactory.create_environment(
            "docker", security_profile="strict"
        )
        ```
    """

    @staticmethod
    def create_environment(environment_type: str = "auto", **kwargs: Any) -> BaseEnvironment:
        """Create an environment of the given type.

        Args:
            environment_type: "auto", "local", "subprocess" or "docker"
            **kwargs: Passed to the environment constructor

        Returns:
            BaseEnvironment implementation

        Raises:
            ConfigurationError: If the type is unknown, or Docker was requested
                but is not reachable
        """
        if environment_type == "auto":
            environment_type = EnvironmentFactory._auto_select()
            logger.info("environment_auto_selected", selected_type=environment_type)

        if environment_type not in ENVIRONMENT_TYPES:
            raise ConfigurationError(
                f"Unknown environment type: {environment_type}. "
                f"Available: auto, {', '.join(ENVIRONMENT_TYPES)}"
            )

        if environment_type == "docker":
            available, message = docker_status()
            if not available:
                raise ConfigurationError(
                    f"{message}. Start the Docker daemon or use "
                    "environment_type='subprocess' or 'local'"
                )

        logger.debug("creating_environment", environment_type=environment_type)
        return ENVIRONMENT_TYPES[environment_type](**kwargs)

    @staticmethod
    def _auto_select() -> str:
        """Pick an environment type.

        Selection logic:
        1. RLM_ENVIRONMENT_TYPE, when not "auto"
        2. In production, Docker if reachable, otherwise subprocess
        3. Local otherwise
        """
        settings = get_settings()
        if settings.environment_type != "auto":
            return settings.environment_type

        if settings.environment == "production":
            available, _ = docker_status()
            if available:
                return "docker"
            logger.warning(
                "production_mode_no_docker",
                message="Running in production but Docker not available",
            )
            return "subprocess"

        return "local"

    @staticmethod
    def get_available_types() -> List[str]:
        types = ["auto", "local", "subprocess"]
        if docker_status()[0]:
            types.append("docker")
        return types


def create_environment(environment_type: str = "auto", **kwargs: Any) -> BaseEnvironment:
    """Shorthand for ``EnvironmentFactory.create_environment``."""
    return EnvironmentFactory.create_environment(environment_type, **kwargs)
