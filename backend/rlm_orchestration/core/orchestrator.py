"""RLM Orchestrator - the iteration loop that drives the model."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import structlog

from rlm_orchestration.config import get_settings
from rlm_orchestration.core.cancellation import CancellationToken
from rlm_orchestration.core.events import EventBus, EventHandler
from rlm_orchestration.core.exceptions import (
    DepthExceededError,
    RecursionLimitError,
    RLMError,
    SandboxExecutionError,
    TransportError,
    VariableNotFoundError,
)
from rlm_orchestration.core.parser import extract_code_block, parse_final_response
from rlm_orchestration.core.recursion import RecursionController
from rlm_orchestration.llm.client import LiteLLMClient
from rlm_orchestration.llm.interface import LLMClientInterface
from rlm_orchestration.llm.prompts import (
    CONTINUE_PROMPT,
    NESTED_SYSTEM_PROMPT,
    build_continuation_message,
    build_error_recovery_prompt,
    build_initial_user_message,
    build_iteration_warning_prompt,
    build_nested_query_prompt,
    build_system_prompt,
)
from rlm_orchestration.sandbox.base import BaseEnvironment
from rlm_orchestration.sandbox.factory import create_environment
from rlm_orchestration.trajectory.logger import TrajectoryLogger
from rlm_orchestration.types import (
    CONTEXT_VARIABLE,
    ExecuteOptions,
    Execution,
    ExecutionStatus,
    Final,
    FinalResponse,
    Iteration,
    LLMResponse,
    Message,
    REPLError,
    REPLResult,
    RLMConfig,
    RLMEvent,
    RLMEventType,
    calculate_stats,
)

logger = structlog.get_logger()

# Iterations at the end of the budget that get the stronger warning prompt
WARNING_WINDOW = 3


class RLMOrchestrator:
    """Coordinates the model, the execution environment and recursion.

    Each call to ``execute``:
    1. Initializes the environment and loads the context into ``context_0``
    2. Asks the model for the next step
    3. Runs any code block the model wrote, answering nested ``llm_query``
       calls from that code with independent model calls
    4. Stops on a FINAL/FINAL_VAR answer, the iteration cap, the total
       timeout or cancellation, and always disposes the environment

    Example:
        ```python
        orchestrator = RLMOrchestrator(environment=LocalREPLEnvironment())
        execution = await orchestrator.execute(
            query="What are the key findings?",
            context="...large document...",
        )
        print(execution.status, execution.final_answer)
        ```
    """

    def __init__(
        self,
        llm_client: Optional[LLMClientInterface] = None,
        environment: Optional[BaseEnvironment] = None,
        config: Optional[RLMConfig] = None,
        recursion_controller: Optional[RecursionController] = None,
        trajectory_logger: Optional[TrajectoryLogger] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            llm_client: Model transport (LiteLLM client if not provided)
            environment: Execution environment (chosen by the factory if not provided)
            config: Loop limits and language (from settings if not provided)
            recursion_controller: Recursion controller (built from config if not provided)
            trajectory_logger: Observer that persists events (from settings if not provided)
        """
        settings = get_settings()

        self.config = config or RLMConfig.from_settings(settings)
        self.llm_client = llm_client or LiteLLMClient()
        self.environment = environment or create_environment(
            settings.environment_type, language=self.config.language
        )
        self.recursion = recursion_controller or RecursionController(
            max_depth=self.config.max_depth,
            max_total_calls=self.config.max_nested_queries,
        )

        self._events = EventBus()
        if trajectory_logger is None and settings.enable_trajectory_logging:
            trajectory_logger = TrajectoryLogger(settings.log_dir)
        self.trajectory_logger = trajectory_logger
        if trajectory_logger is not None:
            self._events.on(trajectory_logger.handle_event)

        self._current: Optional[Execution] = None
        self._active_iteration: Optional[Iteration] = None
        self._token: Optional[CancellationToken] = None
        self._running = False

        logger.info(
            "orchestrator_initialized",
            llm_model=self.llm_client.get_model_name(),
            environment_type=self.environment.get_environment_type(),
            max_iterations=self.config.max_iterations,
            max_depth=self.config.max_depth,
        )

    def on(self, handler: EventHandler) -> None:
        """Register an event observer."""
        self._events.on(handler)

    def off(self, handler: EventHandler) -> None:
        self._events.off(handler)

    def stop(self, reason: Optional[str] = None) -> None:
        """Request cooperative cancellation of the running execution.

        Takes effect at the next iteration boundary.
        """
        if self._token is not None:
            self._token.cancel(reason)
            logger.info("execution_stop_requested", reason=reason)

    def get_current_execution(self) -> Optional[Execution]:
        """The running execution, or the last one after it finished."""
        return self._current

    @property
    def is_running(self) -> bool:
        return self._running

    async def execute(
        self,
        query: str,
        context: str,
        options: Optional[ExecuteOptions] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> Execution:
        """Run the loop on a query with its context.

        Args:
            query: Task for the model
            context: Text loaded into ``context_0``
            options: Custom instructions and extra variables
            cancellation_token: Token polled between iterations

        Returns:
            The finished Execution. Failures, timeouts and cancellation are
            reported through its status; call ``raise_for_status`` to turn
            them into exceptions.

        Raises:
            RLMError: If another execution is already running
        """
        if self._running:
            raise RLMError("An execution is already running on this orchestrator")

        options = options or ExecuteOptions()
        execution = Execution(
            query=query,
            context=context,
            max_iterations=self.config.max_iterations,
            max_depth=self.config.max_depth,
            environment_type=self.environment.get_environment_type(),
            language=self.config.language,
        )
        self._current = execution
        self._token = cancellation_token or CancellationToken()
        self._active_iteration = None
        self._running = True
        self.recursion.reset()

        logger.info(
            "rlm_execution_started",
            execution_id=execution.id,
            query=query[:100],
            context_length=len(context),
        )

        try:
            if not await self._prepare_environment(execution, context, options):
                return execution

            self.environment.register_recursive_query_callback(self.handle_nested_query)
            self.environment.register_batched_recursive_query_callback(self.handle_nested_batch)

            execution.transition_to(ExecutionStatus.RUNNING)
            self._emit(RLMEventType.EXECUTION_START, execution, query=query)

            messages = [
                Message(
                    "system",
                    build_system_prompt(
                        language=self.config.language,
                        custom_instructions=options.custom_instructions,
                        max_iterations=self.config.max_iterations,
                        max_depth=self.config.max_depth,
                    ),
                ),
                Message("user", build_initial_user_message(query, len(context))),
            ]
            await self._run_loop(execution, messages)
            return execution

        except Exception as e:
            logger.error(
                "rlm_execution_failed",
                execution_id=execution.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            if not execution.is_finished:
                self._finish(execution, ExecutionStatus.FAILED, str(e), "INTERNAL_ERROR")
                self._emit(RLMEventType.ERROR, execution, error=str(e), code="INTERNAL_ERROR")
            raise

        finally:
            self._running = False
            self._active_iteration = None
            await self._dispose_environment(execution)
            stats = calculate_stats(execution)
            self._emit(RLMEventType.EXECUTION_COMPLETE, execution, stats=stats.to_dict())
            logger.info(
                "rlm_execution_complete",
                execution_id=execution.id,
                status=execution.status.value,
                iterations=len(execution.iterations),
                llm_calls=execution.total_llm_calls,
                code_executions=execution.total_code_executions,
                duration_ms=stats.total_duration_ms,
            )

    async def _prepare_environment(
        self,
        execution: Execution,
        context: str,
        options: ExecuteOptions,
    ) -> bool:
        """Initialize the environment and seed its variables."""
        try:
            await self.environment.initialize()
            await self.environment.set_variable(CONTEXT_VARIABLE, context)
            for name, value in options.initial_variables.items():
                await self.environment.set_variable(name, value)
        except Exception as e:
            message = f"Failed to initialize environment: {e}"
            logger.error("environment_initialization_failed", execution_id=execution.id, error=str(e))
            self._finish(execution, ExecutionStatus.FAILED, message, "INITIALIZATION_ERROR")
            self._emit(RLMEventType.ERROR, execution, error=message, code="INITIALIZATION_ERROR")
            return False
        return True

    async def _run_loop(self, execution: Execution, messages: List[Message]) -> None:
        max_iterations = self.config.max_iterations

        for number in range(1, max_iterations + 1):
            # measured from execution start, environment setup included
            if execution.duration_ms > self.config.total_timeout_ms:
                self._finish(
                    execution,
                    ExecutionStatus.TIMEOUT,
                    f"Total execution timeout exceeded ({self.config.total_timeout_ms}ms)",
                    "TOTAL_TIMEOUT",
                )
                return

            if self._token.cancelled:
                message = "Execution was stopped"
                if self._token.reason:
                    message = f"{message}: {self._token.reason}"
                self._finish(execution, ExecutionStatus.ABORTED, message, "ABORTED")
                return

            iteration = Iteration(number=number, input=messages[-1].content)
            execution.iterations.append(iteration)
            self.recursion.register(iteration)
            self._active_iteration = iteration
            self._emit(RLMEventType.ITERATION_START, execution, iteration, number=number)

            try:
                response = await self._call_llm(execution, messages)
            except TransportError as e:
                iteration.complete()
                message = f"Model call failed: {e}"
                self._finish(execution, ExecutionStatus.FAILED, message, "TRANSPORT_ERROR")
                self._emit(RLMEventType.ERROR, execution, iteration, error=message, code="TRANSPORT_ERROR")
                return

            iteration.llm_response = response.content
            if self.config.debug:
                logger.debug(
                    "llm_reply",
                    execution_id=execution.id,
                    iteration=number,
                    content=response.content,
                )

            finished = await self._process_reply(execution, iteration, messages)
            iteration.complete()
            self._active_iteration = None
            self._emit(RLMEventType.ITERATION_COMPLETE, execution, iteration, number=number)
            if finished:
                return

        self._finish(
            execution,
            ExecutionStatus.TIMEOUT,
            f"Maximum iterations ({max_iterations}) reached without final answer",
            "MAX_ITERATIONS",
        )

    async def _process_reply(
        self,
        execution: Execution,
        iteration: Iteration,
        messages: List[Message],
    ) -> bool:
        """Act on one model reply. Returns True once the execution completed."""
        reply = iteration.llm_response

        unresolved = None
        directive = parse_final_response(reply)
        if directive is not None:
            answer = await self._resolve_final(directive)
            if answer is not None:
                self._complete(execution, iteration, answer, source="response")
                return True
            unresolved = directive

        code = extract_code_block(reply)
        messages.append(Message("assistant", reply))

        if code is None:
            number = iteration.number
            if number > self.config.max_iterations - WARNING_WINDOW:
                messages.append(
                    Message("user", build_iteration_warning_prompt(number, self.config.max_iterations))
                )
            else:
                messages.append(Message("user", CONTINUE_PROMPT))
            return False

        result = await self._run_code(execution, iteration, code)

        if not result.success:
            error = str(result.error) if result.error else (result.stderr or "Unknown error")
            messages.append(Message("user", build_error_recovery_prompt(error, code)))
            return False

        for candidate in (parse_final_response(result.stdout), unresolved):
            if candidate is None:
                continue
            answer = await self._resolve_final(candidate)
            if answer is not None:
                self._complete(execution, iteration, answer, source="output")
                return True

        messages.append(Message("user", build_continuation_message(result)))
        return False

    async def _run_code(self, execution: Execution, iteration: Iteration, code: str) -> REPLResult:
        iteration.extracted_code = code
        self._emit(RLMEventType.CODE_EXTRACTED, execution, iteration, code=code)
        self._emit(RLMEventType.REPL_EXECUTING, execution, iteration, code=code)
        execution.total_code_executions += 1

        try:
            result = await self.environment.execute(
                code, timeout_ms=self.config.iteration_timeout_ms
            )
        except SandboxExecutionError as e:
            logger.warning("sandbox_execution_failed", execution_id=execution.id, error=str(e))
            result = REPLResult(
                success=False,
                stderr=e.output,
                error=REPLError(kind="SandboxExecutionError", message=str(e)),
            )

        iteration.repl_result = result
        if self.config.debug:
            logger.debug(
                "repl_result",
                execution_id=execution.id,
                iteration=iteration.number,
                success=result.success,
                stdout=result.stdout,
                error=str(result.error) if result.error else None,
            )
        self._emit(RLMEventType.REPL_RESULT, execution, iteration, result=result.to_dict())
        return result

    async def _resolve_final(self, directive: FinalResponse) -> Optional[str]:
        """Turn a directive into the answer text, or None if it cannot be resolved."""
        if isinstance(directive, Final):
            return directive.answer

        try:
            value = await self.environment.get_variable(directive.variable_name)
        except VariableNotFoundError:
            logger.info("final_var_not_found", variable=directive.variable_name)
            return None

        if isinstance(value, str):
            return value
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.info(
                "final_var_not_serializable",
                variable=directive.variable_name,
                error=str(e),
            )
            return None

    def _complete(self, execution: Execution, iteration: Iteration, answer: str, source: str) -> None:
        iteration.is_final = True
        iteration.final_answer = answer
        execution.final_answer = answer
        self._emit(RLMEventType.FINAL_DETECTED, execution, iteration, answer=answer, source=source)
        self._finish(execution, ExecutionStatus.COMPLETED)

    def _finish(
        self,
        execution: Execution,
        status: ExecutionStatus,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        if execution.is_finished:
            return
        execution.error = error
        execution.error_code = error_code
        execution.transition_to(status)

    async def _call_llm(self, execution: Execution, messages: List[Message]) -> LLMResponse:
        """Call the model transport; any failure surfaces as TransportError."""
        execution.total_llm_calls += 1
        try:
            return await self.llm_client.generate(list(messages))
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(str(e), model=self.llm_client.get_model_name()) from e

    async def handle_nested_query(self, prompt: str, parent: Optional[Iteration] = None) -> str:
        """Answer an ``llm_query`` issued by sandboxed code.

        The question runs through a fresh two-message transcript, never the
        parent's. Every failure comes back as an ``Error: ...`` string so the
        calling code can carry on.

        Args:
            prompt: The nested question
            parent: Iteration that issued it (defaults to the running one)

        Returns:
            The model's answer text, or an inline error message
        """
        execution = self._current
        parent = parent or self._active_iteration
        if execution is None or parent is None or execution.is_finished:
            return "Error: llm_query called outside an active iteration"

        try:
            child = self.recursion.enter(parent, prompt)
        except (DepthExceededError, RecursionLimitError) as e:
            return f"Error: {e}"

        self._emit(
            RLMEventType.RECURSIVE_QUERY_START,
            execution,
            child,
            prompt=prompt,
            depth=child.depth,
            parent_id=parent.id,
        )

        transcript = [
            Message("system", NESTED_SYSTEM_PROMPT),
            Message("user", build_nested_query_prompt(prompt)),
        ]
        # replaced once the model answers; kept if the call is cancelled
        answer = "Error: Nested query cancelled"
        try:
            response = await self._call_llm(execution, transcript)
            answer = response.content
        except TransportError as e:
            logger.warning("nested_query_failed", iteration_id=child.id, error=str(e))
            answer = f"Error: {e}"
            self._emit(RLMEventType.ERROR, execution, child, error=str(e), code="NESTED_TRANSPORT_ERROR")
        finally:
            child.llm_response = answer
            child.final_answer = answer
            self.recursion.exit(child)
            self._emit(
                RLMEventType.RECURSIVE_QUERY_COMPLETE,
                execution,
                child,
                response=answer,
                depth=child.depth,
            )
        return answer

    async def handle_nested_batch(
        self,
        prompts: List[str],
        parent: Optional[Iteration] = None,
    ) -> List[str]:
        """Answer an ``llm_query_batched`` call, at most N questions at a time."""
        parent = parent or self._active_iteration
        semaphore = asyncio.Semaphore(self.config.max_concurrent_nested_queries)

        async def bounded(prompt: str) -> str:
            async with semaphore:
                return await self.handle_nested_query(prompt, parent)

        results = await asyncio.gather(*(bounded(p) for p in prompts), return_exceptions=True)

        answers = []
        for prompt, result in zip(prompts, results):
            if isinstance(result, Exception):
                logger.error("nested_batch_item_failed", prompt=prompt[:100], error=str(result))
                answers.append(f"Error: {result}")
            else:
                answers.append(result)
        return answers

    async def _dispose_environment(self, execution: Execution) -> None:
        try:
            await self.environment.dispose()
        except Exception as e:
            logger.warning(
                "environment_dispose_failed",
                execution_id=execution.id,
                error=str(e),
            )

    def _emit(
        self,
        event_type: RLMEventType,
        execution: Execution,
        iteration: Optional[Iteration] = None,
        **data: Any,
    ) -> None:
        self._events.emit(RLMEvent(type=event_type, execution=execution, iteration=iteration, data=data))


def create_orchestrator(
    llm_client: Optional[LLMClientInterface] = None,
    environment: Optional[BaseEnvironment] = None,
    environment_type: Optional[str] = None,
    trajectory_logger: Optional[TrajectoryLogger] = None,
    **config_overrides: Any,
) -> RLMOrchestrator:
    """Build an orchestrator from settings, overriding config fields by keyword.

    Example:
        ```python
        orchestrator = create_orchestrator(environment_type="subprocess", max_iterations=5)
        ```
    """
    config = RLMConfig.from_settings(**config_overrides)
    if environment is None and environment_type is not None:
        environment = create_environment(environment_type, language=config.language)
    return RLMOrchestrator(
        llm_client=llm_client,
        environment=environment,
        config=config,
        trajectory_logger=trajectory_logger,
    )
