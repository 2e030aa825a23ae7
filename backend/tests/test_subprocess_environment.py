"""Tests for the subprocess environment and its driver protocol."""

import pytest

from rlm_orchestration.core.exceptions import InitializationError, VariableNotFoundError
from rlm_orchestration.sandbox.driver import (
    QUERY_RESULT,
    QUERY_SENTINEL,
    NestedQueryRecord,
    parse_request,
    splice_results,
)
from rlm_orchestration.sandbox.subprocess_repl import SubprocessREPLEnvironment


@pytest.fixture
async def environment():
    env = SubprocessREPLEnvironment(timeout_ms=20000)
    await env.initialize()
    yield env
    await env.dispose()


class TestDriverProtocol:
    """Test sentinel parsing and splicing."""

    def test_parse_request(self):
        record = parse_request(QUERY_SENTINEL + '"what?"')
        assert record.batched is False
        assert record.payload == "what?"
        assert parse_request("ordinary output") is None

    def test_splice_results(self):
        record = NestedQueryRecord(False, "what?")
        record.answer = "42"
        stdout = "before\n" + QUERY_SENTINEL + '"what?"\nafter\n'
        assert splice_results(stdout, [record]) == "before\n" + QUERY_RESULT + "42\nafter\n"


class TestSubprocessExecution:
    """Test execution in a child interpreter."""

    @pytest.mark.asyncio
    async def test_simple_execution(self, environment):
        result = await environment.execute("print('hello from child')")
        assert result.success is True
        assert result.stdout.strip() == "hello from child"

    @pytest.mark.asyncio
    async def test_state_persists_between_runs(self, environment):
        await environment.execute("total = 40")
        result = await environment.execute("total += 2\ntotal")
        assert result.return_value == 42
        assert await environment.get_variable("total") == 42

    @pytest.mark.asyncio
    async def test_runtime_error(self, environment):
        result = await environment.execute("raise ValueError('bad input')")
        assert result.success is False
        assert result.error.kind == "ValueError"
        assert "bad input" in result.error.message
        assert "Traceback" in result.stderr

    @pytest.mark.asyncio
    async def test_context_helpers(self, environment):
        await environment.set_variable("context_0", "one\ntwo\nthree")
        result = await environment.execute("print(grep('t'))")
        assert result.stdout.strip() == "['two', 'three']"

    @pytest.mark.asyncio
    async def test_llm_query_round_trip(self, environment):
        prompts = []

        async def answer(prompt):
            prompts.append(prompt)
            return f"echo:{prompt}"

        environment.register_recursive_query_callback(answer)
        result = await environment.execute("r = llm_query('ping')\nprint(r.upper())")

        assert prompts == ["ping"]
        assert "ECHO:PING" in result.stdout
        assert QUERY_RESULT + "echo:ping" in result.stdout
        assert await environment.get_variable("r") == "echo:ping"

    @pytest.mark.asyncio
    async def test_llm_query_batched_round_trip(self, environment):
        async def batch(prompts):
            return [p * 2 for p in prompts]

        environment.register_batched_recursive_query_callback(batch)
        result = await environment.execute("llm_query_batched(['a', 'b'])")
        assert result.return_value == ["aa", "bb"]

    @pytest.mark.asyncio
    async def test_timeout_kills_child(self):
        env = SubprocessREPLEnvironment()
        await env.initialize()
        result = await env.execute("while True:\n    pass", timeout_ms=500)
        assert result.success is False
        assert result.error.kind == "TimeoutError"
        await env.dispose()

    @pytest.mark.asyncio
    async def test_non_json_values_are_dropped(self, environment):
        await environment.execute("import threading\nlock = threading.Lock()\nn = 1")
        with pytest.raises(VariableNotFoundError):
            await environment.get_variable("lock")
        assert await environment.get_variable("n") == 1


class TestSubprocessLifecycle:
    """Test initialization failures."""

    @pytest.mark.asyncio
    async def test_missing_interpreter(self):
        env = SubprocessREPLEnvironment(python_executable="/nonexistent/python")
        with pytest.raises(InitializationError):
            await env.initialize()
