"""Docker-based REPL environment for isolated code execution."""

import asyncio
import os
import shutil
import tempfile
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from rlm_orchestration.config import get_docker_settings, get_sandbox_settings, get_settings
from rlm_orchestration.core.exceptions import InitializationError, SandboxExecutionError
from rlm_orchestration.sandbox.driver import DRIVER_PATH, ScriptDriverEnvironment
from rlm_orchestration.sandbox.security import SecurityProfiles
from rlm_orchestration.types import REPLError, REPLResult, generate_id

logger = structlog.get_logger()

_MOUNT_POINT = "/sandbox"


class DockerREPLEnvironment(ScriptDriverEnvironment):
    """Runs each code block in a fresh, hardened Docker container.

    The container has no channel back to the host while it runs, so
    ``llm_query`` returns a placeholder inside the container. After the
    container exits, every recorded request is answered through the
    registered callbacks and the answers are spliced into the reported
    stdout (and the return value, when it was a placeholder).

    Requirements:
        - Docker Engine installed and running
        - User has permissions to run containers
        - `docker` Python SDK installed
    """

    environment_type = "docker"

    def __init__(
        self,
        language: str = "python",
        image: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        memory_limit: Optional[str] = None,
        cpu_limit: Optional[float] = None,
        network_enabled: Optional[bool] = None,
        security_profile: Optional[str] = None,
        auto_cleanup: Optional[bool] = None,
        output_limit: Optional[int] = None,
    ) -> None:
        """Initialize the Docker environment.

        Args:
            language: Only ``python`` is supported
            image: Docker image to use (default from settings)
            timeout_ms: Default execution timeout
            memory_limit: Memory limit (e.g., "512m", "1g")
            cpu_limit: CPU limit in cores (e.g., 1.0, 2.0)
            network_enabled: Whether to enable network access
            security_profile: "strict", "standard" or "development"
            auto_cleanup: Whether to remove containers after execution
            output_limit: Maximum stdout characters kept per execution
        """
        settings = get_settings()
        docker_settings = get_docker_settings()
        super().__init__(language, output_limit or settings.sandbox_output_limit)

        self.image = image or docker_settings.image
        self.timeout_ms = timeout_ms or settings.iteration_timeout_ms
        self.memory_limit = memory_limit or docker_settings.memory_limit
        self.cpu_limit = cpu_limit or docker_settings.cpu_limit
        self.network_enabled = (
            network_enabled if network_enabled is not None else docker_settings.network_enabled
        )
        self.security_profile_name = security_profile or docker_settings.security_profile
        self.auto_cleanup = (
            auto_cleanup if auto_cleanup is not None else docker_settings.auto_cleanup
        )
        self.max_code_length = get_sandbox_settings().max_code_length

        self.security_profile = SecurityProfiles.get_profile(
            self.security_profile_name,
            memory_limit=self.memory_limit,
            cpu_limit=self.cpu_limit,
        )
        self._docker_client: Optional[Any] = None

    def _get_docker_client(self) -> Any:
        """Get or create the Docker client."""
        if self._docker_client is None:
            import docker

            self._docker_client = docker.from_env()
        return self._docker_client

    async def _in_thread(self, func: Any, *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def initialize(self) -> None:
        if self.is_initialized:
            return
        try:
            client = self._get_docker_client()
            await self._in_thread(client.ping)
            try:
                await self._in_thread(client.images.get, self.image)
            except Exception:
                logger.info("docker_pulling_image", image=self.image)
                await self._in_thread(client.images.pull, self.image)
        except Exception as e:
            raise InitializationError(f"Docker not available: {e}") from e

        self._variables = {}
        self.session_id = generate_id("docker")
        logger.info(
            "docker_environment_initialized",
            session_id=self.session_id,
            image=self.image,
            security_profile=self.security_profile_name,
        )

    async def dispose(self) -> None:
        if not self.is_initialized:
            return
        if self._docker_client is not None:
            try:
                await self._in_thread(self._docker_client.close)
            except Exception as e:
                logger.warning("docker_client_close_failed", error=str(e))
            self._docker_client = None
        logger.info(
            "docker_environment_disposed",
            session_id=self.session_id,
            executions=self._execution_count,
        )
        self._variables = {}
        self.session_id = None

    def _prepare_mount(self, payload: str) -> Path:
        temp_path = Path(tempfile.mkdtemp(prefix="rlm-docker-"))
        shutil.copy(DRIVER_PATH, temp_path / DRIVER_PATH.name)
        (temp_path / "payload.json").write_text(payload, encoding="utf-8")
        # the container runs as an unprivileged user
        os.chmod(temp_path, 0o755)
        for child in temp_path.iterdir():
            os.chmod(child, 0o644)
        return temp_path

    def _container_kwargs(self, temp_path: Path) -> Dict[str, Any]:
        kwargs = self.security_profile.to_container_kwargs()
        if self.network_enabled:
            kwargs["network_mode"] = "bridge"
        kwargs.update(
            image=self.image,
            name=f"rlm-sandbox-{uuid.uuid4().hex[:8]}",
            command=[
                "python",
                "-u",
                f"{_MOUNT_POINT}/{DRIVER_PATH.name}",
                f"{_MOUNT_POINT}/payload.json",
            ],
            environment={"RLM_DRIVER_MODE": "deferred", "PYTHONDONTWRITEBYTECODE": "1"},
            volumes={str(temp_path): {"bind": _MOUNT_POINT, "mode": "ro"}},
            working_dir=_MOUNT_POINT,
        )
        return kwargs

    async def execute(
        self,
        code: str,
        variables: Optional[Dict[str, Any]] = None,
        timeout_ms: Optional[int] = None,
    ) -> REPLResult:
        """Execute code in a new container."""
        self._require_session()
        timeout_ms = timeout_ms or self.timeout_ms
        self._execution_count += 1
        self.last_activity_at = datetime.now(timezone.utc)

        if len(code) > self.max_code_length:
            return REPLResult(
                success=False,
                error=REPLError(
                    kind="CodeTooLong",
                    message=f"Code too long: {len(code)} characters (max: {self.max_code_length})",
                ),
            )

        temp_path = self._prepare_mount(self.build_payload(code, variables))
        container = None
        start_time = time.time()

        try:
            client = self._get_docker_client()
            container = await self._in_thread(
                lambda: client.containers.create(**self._container_kwargs(temp_path))
            )
            await self._in_thread(container.start)
            logger.debug("docker_container_started", container_id=container.short_id)

            try:
                status = await asyncio.wait_for(
                    self._in_thread(container.wait),
                    timeout=timeout_ms / 1000,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "docker_execution_timeout",
                    container_id=container.short_id,
                    timeout_ms=timeout_ms,
                )
                await self._in_thread(lambda: container.kill(signal="SIGKILL"))
                return REPLResult(
                    success=False,
                    duration_ms=(time.time() - start_time) * 1000,
                    error=REPLError(
                        kind="TimeoutError",
                        message=f"Code execution timed out after {timeout_ms}ms",
                    ),
                )

            stdout = await self._in_thread(
                lambda: container.logs(stdout=True, stderr=False).decode("utf-8", errors="replace")
            )
            stderr = await self._in_thread(
                lambda: container.logs(stdout=False, stderr=True).decode("utf-8", errors="replace")
            )
        except Exception as e:
            logger.error("docker_execution_error", error=str(e))
            raise SandboxExecutionError(f"Docker execution failed: {e}", code=code) from e
        finally:
            shutil.rmtree(temp_path, ignore_errors=True)
            if container is not None and self.auto_cleanup:
                try:
                    await self._in_thread(lambda: container.remove(force=True))
                except Exception as e:
                    logger.warning("docker_cleanup_error", error=str(e))

        state, records, stray = self.parse_output(stdout)
        for record in records:
            await self.answer(record)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "docker_execution_complete",
            exit_code=status.get("StatusCode", -1),
            nested_queries=len(records),
            duration_ms=duration_ms,
        )
        return self.build_result(state, records, stray, stderr, duration_ms, code)
