"""Subprocess REPL environment: each execution runs in a fresh interpreter."""

import asyncio
import json
import os
import shutil
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from rlm_orchestration.config import get_sandbox_settings, get_settings
from rlm_orchestration.core.exceptions import InitializationError, SandboxExecutionError
from rlm_orchestration.sandbox.driver import (
    DRIVER_PATH,
    STATE_MARKER,
    NestedQueryRecord,
    ScriptDriverEnvironment,
    parse_request,
)
from rlm_orchestration.types import REPLError, REPLResult, generate_id

logger = structlog.get_logger()

# State lines carry every variable, including the whole context
_STREAM_LIMIT = 128 * 1024 * 1024


class SubprocessREPLEnvironment(ScriptDriverEnvironment):
    """Runs each code block in a new Python process.

    Variables are held by the environment and injected into every run, so
    state persists across executions as long as it is JSON-serializable.
    ``llm_query`` blocks inside the child while the host answers it over
    stdin, so nested answers are available to the code that asked.
    """

    environment_type = "subprocess"

    def __init__(
        self,
        language: str = "python",
        python_executable: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        output_limit: Optional[int] = None,
        max_code_length: Optional[int] = None,
    ) -> None:
        """Initialize the subprocess environment.

        Args:
            language: Only ``python`` is supported
            python_executable: Interpreter to run (default: the current one)
            timeout_ms: Default execution timeout
            output_limit: Maximum stdout characters kept per execution
            max_code_length: Maximum code length in characters
        """
        settings = get_settings()
        sandbox_settings = get_sandbox_settings()
        super().__init__(language, output_limit or settings.sandbox_output_limit)

        self.python_executable = (
            python_executable or sandbox_settings.python_executable or sys.executable
        )
        self.timeout_ms = timeout_ms or settings.iteration_timeout_ms
        self.max_code_length = max_code_length or sandbox_settings.max_code_length
        self._active: Optional[asyncio.subprocess.Process] = None

    async def initialize(self) -> None:
        if self.is_initialized:
            return
        resolved = shutil.which(self.python_executable) or (
            self.python_executable if os.path.exists(self.python_executable) else None
        )
        if resolved is None:
            raise InitializationError(
                f"Python interpreter not found: {self.python_executable}"
            )
        if not DRIVER_PATH.exists():
            raise InitializationError(f"Driver script missing: {DRIVER_PATH}")

        self.python_executable = resolved
        self._variables = {}
        self.session_id = generate_id("subprocess")
        logger.info(
            "subprocess_environment_initialized",
            session_id=self.session_id,
            python=self.python_executable,
        )

    async def dispose(self) -> None:
        if not self.is_initialized:
            return
        if self._active is not None and self._active.returncode is None:
            self._active.kill()
            await self._active.wait()
        self._active = None
        logger.info(
            "subprocess_environment_disposed",
            session_id=self.session_id,
            executions=self._execution_count,
        )
        self._variables = {}
        self.session_id = None

    async def _converse(
        self,
        process: asyncio.subprocess.Process,
        records: List[NestedQueryRecord],
        stray: List[str],
    ) -> Optional[Dict[str, Any]]:
        """Read driver output until it exits, answering nested queries."""
        state = None
        while True:
            raw = await process.stdout.readline()
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip("\n")
            if line.startswith(STATE_MARKER):
                state = json.loads(line[len(STATE_MARKER):])
                continue
            record = parse_request(line)
            if record is None:
                if line:
                    stray.append(line)
                continue
            records.append(record)
            answer = await self.answer(record)
            process.stdin.write((json.dumps(answer) + "\n").encode("utf-8"))
            await process.stdin.drain()
        await process.wait()
        return state

    async def execute(
        self,
        code: str,
        variables: Optional[Dict[str, Any]] = None,
        timeout_ms: Optional[int] = None,
    ) -> REPLResult:
        """Execute code in a new interpreter process."""
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

        payload = self.build_payload(code, variables)
        start_time = time.time()

        try:
            process = await asyncio.create_subprocess_exec(
                self.python_executable,
                "-u",
                str(DRIVER_PATH),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except OSError as e:
            raise SandboxExecutionError(f"Failed to start interpreter: {e}", code=code) from e

        self._active = process
        records: List[NestedQueryRecord] = []
        stray: List[str] = []
        stderr_task = asyncio.ensure_future(process.stderr.read())

        try:
            process.stdin.write(payload.encode("utf-8") + b"\n")
            await process.stdin.drain()
            state = await asyncio.wait_for(
                self._converse(process, records, stray),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            stderr_task.cancel()
            logger.warning(
                "subprocess_execution_timeout",
                session_id=self.session_id,
                timeout_ms=timeout_ms,
            )
            return REPLResult(
                success=False,
                stdout="\n".join(stray),
                duration_ms=(time.time() - start_time) * 1000,
                error=REPLError(
                    kind="TimeoutError",
                    message=f"Code execution timed out after {timeout_ms}ms",
                ),
            )
        except (BrokenPipeError, ConnectionResetError) as e:
            await process.wait()
            stderr_task.cancel()
            raise SandboxExecutionError(f"Lost connection to interpreter: {e}", code=code) from e
        finally:
            self._active = None

        stderr = (await stderr_task).decode("utf-8", errors="replace")
        duration_ms = (time.time() - start_time) * 1000

        logger.debug(
            "subprocess_execution_complete",
            session_id=self.session_id,
            exit_code=process.returncode,
            nested_queries=len(records),
            duration_ms=duration_ms,
        )
        return self.build_result(state, records, stray, stderr, duration_ms, code)
