"""Trajectory logger for recording RLM execution."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from rlm_orchestration.config import get_settings
from rlm_orchestration.types import RLMEvent, RLMEventType

logger = structlog.get_logger()

DEFAULT_MAX_FIELD_LENGTH = 2000


def _truncate(value: Any, limit: int) -> Any:
    if isinstance(value, str):
        if len(value) > limit:
            return value[:limit] + f"... [truncated {len(value) - limit} chars]"
        return value
    if isinstance(value, dict):
        return {key: _truncate(item, limit) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_truncate(item, limit) for item in value]
    return value


def serialize_event(event: RLMEvent, max_field_length: int = DEFAULT_MAX_FIELD_LENGTH) -> Dict[str, Any]:
    """Flatten an event into a JSON-ready record.

    Long strings in the payload are cut to ``max_field_length`` characters.

    Args:
        event: Event to serialize
        max_field_length: Maximum length for string fields

    Returns:
        Dictionary with the event type, ids and payload
    """
    record: Dict[str, Any] = {
        "timestamp": event.timestamp.isoformat(),
        "type": event.type.value,
        "execution_id": event.execution.id,
        "status": event.execution.status.value,
        "data": _truncate(event.data, max_field_length),
    }
    if event.iteration is not None:
        record["iteration_id"] = event.iteration.id
        record["iteration_number"] = event.iteration.number
        record["depth"] = event.iteration.depth
        record["parent_id"] = event.iteration.parent_id
    return record


class TrajectoryLogger:
    """Logs RLM execution trajectories to JSONL files.

    Register ``handle_event`` as an orchestrator observer. Every event is
    appended to ``<log_dir>/<execution_id>.jsonl`` as it happens.
    """

    def __init__(
        self,
        log_dir: Optional[str] = None,
        max_field_length: int = DEFAULT_MAX_FIELD_LENGTH,
    ) -> None:
        """Initialize the trajectory logger.

        Args:
            log_dir: Directory to save trajectory logs (default from settings)
            max_field_length: Maximum length for string fields in records
        """
        self.log_dir = Path(log_dir or get_settings().log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.max_field_length = max_field_length

        logger.info("trajectory_logger_initialized", log_dir=str(self.log_dir))

    def path_for(self, execution_id: str) -> Path:
        return self.log_dir / f"{execution_id}.jsonl"

    def handle_event(self, event: RLMEvent) -> None:
        """Observer entry point: append one event to its execution's file."""
        record = serialize_event(event, self.max_field_length)
        try:
            with open(self.path_for(event.execution.id), "a", encoding="utf-8") as f:
                f.write(json.dumps(record, default=str, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error(
                "failed_to_write_trajectory_event",
                execution_id=event.execution.id,
                error=str(e),
            )
            return

        if event.type == RLMEventType.EXECUTION_COMPLETE:
            logger.info(
                "trajectory_written",
                execution_id=event.execution.id,
                log_file=str(self.path_for(event.execution.id)),
            )

    def get_trajectory(self, execution_id: str) -> List[Dict[str, Any]]:
        """Read back every recorded event of an execution.

        Args:
            execution_id: Execution ID

        Returns:
            List of event records, oldest first
        """
        log_file = self.path_for(execution_id)
        if not log_file.exists():
            return []

        with open(log_file, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
