"""Trajectory module: persist and export RLM executions."""

from rlm_orchestration.trajectory.exporter import TrajectoryExporter
from rlm_orchestration.trajectory.logger import TrajectoryLogger, serialize_event

__all__ = [
    "TrajectoryExporter",
    "TrajectoryLogger",
    "serialize_event",
]
