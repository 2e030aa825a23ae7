"""Local REPL environment using RestrictedPython."""

import asyncio
import builtins
import io
import operator
import re
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from RestrictedPython import compile_restricted, limited_builtins, safe_builtins, utility_builtins
from RestrictedPython.Eval import default_guarded_getitem
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)
from RestrictedPython.PrintCollector import PrintCollector

from rlm_orchestration.config import get_sandbox_settings, get_settings
from rlm_orchestration.core.exceptions import SandboxError, VariableNotFoundError
from rlm_orchestration.sandbox.base import BaseEnvironment, EnvironmentHealthStatus
from rlm_orchestration.sandbox.utils import (
    deserialize_value,
    is_json_value,
    serialize_value,
    split_trailing_expression,
    truncate_output,
    validate_variable_name,
)
from rlm_orchestration.types import CONTEXT_VARIABLE, REPLError, REPLResult, generate_id

logger = structlog.get_logger()

_FILENAME = "<inline>"
_LINE_PREFIX = re.compile(r"Line (\d+)")

_INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
    "@=": operator.imatmul,
}

_EXTRA_BUILTINS = (
    "all",
    "any",
    "dict",
    "enumerate",
    "filter",
    "iter",
    "list",
    "map",
    "max",
    "min",
    "next",
    "reversed",
    "set",
    "frozenset",
    "sum",
    "type",
    "hasattr",
    "Exception",
    "ValueError",
    "KeyError",
    "IndexError",
    "TypeError",
    "RuntimeError",
)

_HELPERS = ("llm_query", "llm_query_batched", "peek", "grep")


def _inplacevar(op: str, x: Any, y: Any) -> Any:
    return _INPLACE_OPERATORS[op](x, y)


def _apply(func: Any, *args: Any, **kwargs: Any) -> Any:
    return func(*args, **kwargs)


def _error_line(exc: BaseException) -> Optional[int]:
    if isinstance(exc, SyntaxError):
        return exc.lineno
    frames = [f for f in traceback.extract_tb(exc.__traceback__) if f.filename == _FILENAME]
    return frames[-1].lineno if frames else None


def _describe_compile_error(exc: SyntaxError) -> Tuple[str, Optional[int]]:
    # compile_restricted reports policy violations as a tuple of "Line N: ..." strings
    if isinstance(exc.msg, (tuple, list)):
        message = "; ".join(str(m) for m in exc.msg)
    else:
        message = str(exc.msg or exc)
    match = _LINE_PREFIX.match(message)
    line = int(match.group(1)) if match else exc.lineno
    return message, line


def _make_print_collector(buffer: io.StringIO) -> type:
    class _BufferedPrintCollector(PrintCollector):
        def write(self, text: str) -> None:
            buffer.write(text)

    return _BufferedPrintCollector


class LocalREPLEnvironment(BaseEnvironment):
    """In-process REPL environment using RestrictedPython.

    Code runs in the engine's own process, in a worker thread, against a
    namespace that persists for the session. RestrictedPython transforms
    and limits the code, but this is NOT suitable for untrusted code in
    production. Use the subprocess or Docker environment for that.

    A timed-out run cannot be killed; its thread finishes in the background.
    """

    environment_type = "local"

    def __init__(
        self,
        language: str = "python",
        output_limit: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        allowed_modules: Optional[List[str]] = None,
        blocked_builtins: Optional[List[str]] = None,
        max_code_length: Optional[int] = None,
    ) -> None:
        """Initialize the local REPL environment.

        Args:
            language: Only ``python`` is supported
            output_limit: Maximum stdout characters kept per execution
            timeout_ms: Default execution timeout
            allowed_modules: Modules sandboxed code may import
            blocked_builtins: Builtins removed from the namespace
            max_code_length: Maximum code length in characters
        """
        super().__init__(language)
        settings = get_settings()
        sandbox_settings = get_sandbox_settings()

        self.output_limit = output_limit or settings.sandbox_output_limit
        self.timeout_ms = timeout_ms or settings.iteration_timeout_ms
        self.allowed_modules = set(allowed_modules or sandbox_settings.allowed_modules)
        self.blocked_builtins = set(blocked_builtins or sandbox_settings.blocked_builtins)
        self.max_code_length = max_code_length or sandbox_settings.max_code_length

        self._namespace: Dict[str, Any] = {}
        self._reserved: set = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._execution_count = 0

    async def initialize(self) -> None:
        if self.is_initialized:
            return
        self._loop = asyncio.get_running_loop()
        self._namespace = self._create_namespace()
        self._reserved = set(self._namespace)
        self.session_id = generate_id("local")
        self.last_activity_at = None
        logger.info(
            "local_environment_initialized",
            session_id=self.session_id,
            allowed_modules=len(self.allowed_modules),
        )

    async def dispose(self) -> None:
        if not self.is_initialized:
            return
        logger.info(
            "local_environment_disposed",
            session_id=self.session_id,
            executions=self._execution_count,
        )
        self._namespace = {}
        self._reserved = set()
        self.session_id = None
        self._loop = None

    def _guarded_import(
        self,
        name: str,
        globals: Optional[dict] = None,
        locals: Optional[dict] = None,
        fromlist: tuple = (),
        level: int = 0,
    ) -> Any:
        if level != 0 or name.split(".")[0] not in self.allowed_modules:
            raise ImportError(f"Import of '{name}' is not allowed")
        return builtins.__import__(name, globals, locals, fromlist, level)

    def _create_namespace(self) -> Dict[str, Any]:
        """Create the restricted global namespace for a session."""
        sandbox_builtins = dict(safe_builtins)
        sandbox_builtins.update(limited_builtins)
        sandbox_builtins.update(utility_builtins)
        for name in _EXTRA_BUILTINS:
            sandbox_builtins[name] = getattr(builtins, name)
        sandbox_builtins["getattr"] = safer_getattr
        sandbox_builtins["__import__"] = self._guarded_import
        for name in self.blocked_builtins:
            sandbox_builtins.pop(name, None)

        namespace: Dict[str, Any] = {
            "__builtins__": sandbox_builtins,
            "__name__": "__rlm__",
            "__metaclass__": type,
            "_getattr_": safer_getattr,
            "_getitem_": default_guarded_getitem,
            "_getiter_": iter,
            "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
            "_unpack_sequence_": guarded_unpack_sequence,
            "_write_": full_write_guard,
            "_inplacevar_": _inplacevar,
            "_apply_": _apply,
            "_print_": _make_print_collector(io.StringIO()),
        }

        def llm_query(prompt: str) -> str:
            """Ask the model a nested question and return its answer."""
            return self._call_on_loop(self.invoke_recursive_query(str(prompt)))

        def llm_query_batched(prompts: List[str]) -> List[str]:
            """Ask several nested questions concurrently."""
            return self._call_on_loop(
                self.invoke_batched_recursive_query([str(p) for p in prompts])
            )

        def peek(start: int = 0, end: Optional[int] = None) -> str:
            """Return a slice of the context."""
            return str(namespace.get(CONTEXT_VARIABLE, ""))[start:end]

        def grep(pattern: str) -> List[str]:
            """Return the context lines matching a regex."""
            regex = re.compile(pattern)
            text = str(namespace.get(CONTEXT_VARIABLE, ""))
            return [line for line in text.splitlines() if regex.search(line)]

        namespace.update(
            llm_query=llm_query,
            llm_query_batched=llm_query_batched,
            peek=peek,
            grep=grep,
        )
        return namespace

    def _call_on_loop(self, coro: Any) -> Any:
        # Called from the worker thread; the event loop is idle awaiting it.
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def _user_names(self) -> List[str]:
        return [
            name
            for name in self._namespace
            if name not in self._reserved and not name.startswith("_")
        ]

    def _run(self, body: Any, expression: Any, buffer: io.StringIO) -> Dict[str, Any]:
        collector = _make_print_collector(buffer)
        self._namespace["_print_"] = collector
        # eval-mode code gets no "_print = _print_(...)" prologue
        self._namespace["_print"] = collector(safer_getattr)
        try:
            exec(body, self._namespace)
            value = eval(expression, self._namespace) if expression is not None else None
        except Exception as e:
            return {"exception": e, "traceback": traceback.format_exc()}
        return {"value": value}

    async def execute(
        self,
        code: str,
        variables: Optional[Dict[str, Any]] = None,
        timeout_ms: Optional[int] = None,
    ) -> REPLResult:
        """Execute code with timeout and restrictions."""
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

        for name, value in (variables or {}).items():
            await self.set_variable(name, value)

        start_time = time.time()
        body_source, expression_source = split_trailing_expression(code)
        try:
            body = compile_restricted(body_source, _FILENAME, "exec")
            expression = (
                compile_restricted(expression_source, _FILENAME, "eval")
                if expression_source is not None
                else None
            )
        except SyntaxError as e:
            message, line = _describe_compile_error(e)
            return REPLResult(
                success=False,
                stderr=f"SyntaxError: {message}",
                duration_ms=(time.time() - start_time) * 1000,
                error=REPLError(kind="SyntaxError", message=message, line=line),
            )

        buffer = io.StringIO()
        loop = asyncio.get_running_loop()
        try:
            outcome = await asyncio.wait_for(
                loop.run_in_executor(None, self._run, body, expression, buffer),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "local_execution_timeout",
                session_id=self.session_id,
                timeout_ms=timeout_ms,
            )
            return REPLResult(
                success=False,
                stdout=truncate_output(buffer.getvalue(), self.output_limit),
                duration_ms=(time.time() - start_time) * 1000,
                error=REPLError(
                    kind="TimeoutError",
                    message=f"Code execution timed out after {timeout_ms}ms",
                ),
            )

        duration_ms = (time.time() - start_time) * 1000
        stdout = truncate_output(buffer.getvalue(), self.output_limit)

        if "exception" in outcome:
            exc = outcome["exception"]
            return REPLResult(
                success=False,
                stdout=stdout,
                stderr=outcome["traceback"],
                duration_ms=duration_ms,
                variables=self._snapshot(),
                error=REPLError(
                    kind=type(exc).__name__,
                    message=str(exc),
                    line=_error_line(exc),
                    traceback=outcome["traceback"],
                ),
            )

        value = outcome["value"]
        return REPLResult(
            success=True,
            stdout=stdout,
            return_value=value if is_json_value(value) else repr(value),
            duration_ms=duration_ms,
            variables=self._snapshot(),
        )

    def _snapshot(self) -> Dict[str, Any]:
        return {
            name: self._namespace[name]
            for name in self._user_names()
            if name != CONTEXT_VARIABLE and is_json_value(self._namespace[name])
        }

    async def set_variable(self, name: str, value: Any) -> None:
        self._require_session()
        validate_variable_name(name)
        if name in self._reserved:
            raise SandboxError(f"Cannot overwrite reserved name: {name}")
        self._namespace[name] = deserialize_value(serialize_value(value))

    async def get_variable(self, name: str) -> Any:
        """Read a variable; values that are not JSON count as missing."""
        self._require_session()
        if name in self._reserved or name not in self._namespace:
            raise VariableNotFoundError(name)
        value = self._namespace[name]
        if not is_json_value(value):
            raise VariableNotFoundError(name)
        return value

    async def get_variables(self) -> Dict[str, Any]:
        self._require_session()
        return {
            name: self._namespace[name]
            for name in self._user_names()
            if is_json_value(self._namespace[name])
        }

    async def clear_context(self) -> None:
        self._require_session()
        for name in self._user_names():
            del self._namespace[name]

    async def health_check(self) -> EnvironmentHealthStatus:
        return EnvironmentHealthStatus(
            healthy=self.is_initialized,
            session_active=self.is_initialized,
            last_activity_at=self.last_activity_at,
            diagnostics={
                "environment_type": self.environment_type,
                "executions": self._execution_count,
                "variables": len(self._user_names()) if self.is_initialized else 0,
                "helpers": list(_HELPERS),
            },
        )
