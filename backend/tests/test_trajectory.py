"""Tests for trajectory logging and export."""

import json

import pytest

from rlm_orchestration import (
    LocalREPLEnvironment,
    MockLLMClient,
    RLMConfig,
    RLMEventType,
    RLMOrchestrator,
    TrajectoryExporter,
    TrajectoryLogger,
)
from rlm_orchestration.llm.prompts import NESTED_SYSTEM_PROMPT
from rlm_orchestration.trajectory.logger import serialize_event
from rlm_orchestration.types import Execution, RLMEvent


def nested_then_final(messages):
    if messages[0].content == NESTED_SYSTEM_PROMPT:
        return "sub answer"
    if len(messages) == 2:
        return "```python\nprint(llm_query('sub'))\n```"
    return "FINAL(done)"


async def run_execution(trajectory_logger=None):
    orchestrator = RLMOrchestrator(
        llm_client=MockLLMClient(responses=nested_then_final),
        environment=LocalREPLEnvironment(),
        config=RLMConfig(),
        trajectory_logger=trajectory_logger,
    )
    return await orchestrator.execute("q", "context")


class TestSerializeEvent:
    """Test event records."""

    def test_long_fields_truncated(self):
        execution = Execution(query="q", context="", max_iterations=1, max_depth=1)
        event = RLMEvent(
            type=RLMEventType.REPL_RESULT,
            execution=execution,
            data={"result": {"stdout": "x" * 100}},
        )
        record = serialize_event(event, max_field_length=10)

        assert record["type"] == "repl_result"
        assert record["execution_id"] == execution.id
        assert record["data"]["result"]["stdout"].startswith("x" * 10 + "... [truncated")
        assert "iteration_id" not in record


class TestTrajectoryLogger:
    """Test JSONL persistence."""

    @pytest.mark.asyncio
    async def test_events_written_per_execution(self, tmp_path):
        trajectory_logger = TrajectoryLogger(str(tmp_path))
        execution = await run_execution(trajectory_logger)

        records = trajectory_logger.get_trajectory(execution.id)
        assert (tmp_path / f"{execution.id}.jsonl").exists()
        assert records[0]["type"] == "execution_start"
        assert records[-1]["type"] == "execution_complete"

        nested = [r for r in records if r["type"] == "recursive_query_start"]
        assert nested[0]["depth"] == 1
        assert nested[0]["parent_id"] == execution.iterations[0].id

    def test_unknown_execution(self, tmp_path):
        assert TrajectoryLogger(str(tmp_path)).get_trajectory("exec_missing") == []

    @pytest.mark.asyncio
    async def test_enabled_from_settings(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RLM_ENABLE_TRAJECTORY_LOGGING", "true")
        monkeypatch.setenv("RLM_LOG_DIR", str(tmp_path))
        execution = await run_execution()
        assert (tmp_path / f"{execution.id}.jsonl").exists()


class TestTrajectoryExporter:
    """Test JSON and DOT export."""

    @pytest.mark.asyncio
    async def test_to_json(self):
        execution = await run_execution()
        data = json.loads(TrajectoryExporter().to_json(execution))

        assert data["export_metadata"]["execution_id"] == execution.id
        assert data["execution"]["final_answer"] == "done"
        assert data["execution"]["iterations"][0]["nested_queries"][0]["input"] == "sub"
        assert data["statistics"]["nested_query_count"] == 1

    @pytest.mark.asyncio
    async def test_to_dot(self):
        execution = await run_execution()
        dot = TrajectoryExporter().to_dot(execution)

        assert dot.startswith("digraph Trajectory_")
        assert dot.count("->") == 2
        assert "[style=dashed]" in dot
        assert dot.rstrip().endswith("}")

    def test_to_dot_empty(self):
        execution = Execution(query="q", context="", max_iterations=1, max_depth=1)
        assert TrajectoryExporter().to_dot(execution).startswith("// No iterations")

    @pytest.mark.asyncio
    async def test_save_to_file(self, tmp_path):
        execution = await run_execution()
        exporter = TrajectoryExporter()

        path = exporter.save_to_file(execution, "dot", tmp_path / "run.dot")
        assert path.read_text(encoding="utf-8").startswith("digraph")

        with pytest.raises(ValueError, match="Unknown format"):
            exporter.save_to_file(execution, "html", tmp_path / "run.html")
