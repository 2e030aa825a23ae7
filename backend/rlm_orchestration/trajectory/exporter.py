"""Trajectory export.

Renders a finished execution and its iteration tree as:
- JSON: full data dump with statistics
- DOT: GraphViz diagram of the call tree
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog

from rlm_orchestration.types import Execution, Iteration, calculate_stats, walk_iterations

logger = structlog.get_logger()

EXPORT_VERSION = "1.0.0"

_COLORS = {
    "root": "#3b82f6",
    "code": "#eab308",
    "nested": "#22c55e",
    "final": "#6b7280",
    "error": "#ef4444",
}


def _node_name(node_id: str) -> str:
    return node_id.replace("-", "_").replace(".", "_")


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", " ")


class TrajectoryExporter:
    """Export executions in various formats.

    Example:
        >>> exporter = TrajectoryExporter()
        >>> dot = exporter.to_dot(execution)
        >>> exporter.save_to_file(execution, "json", Path("run.json"))
    """

    def to_json(self, execution: Execution, indent: Optional[int] = 2) -> str:
        """Export an execution as formatted JSON.

        Args:
            execution: Execution to export
            indent: JSON indentation (None for compact)

        Returns:
            JSON string with the execution, its tree and statistics
        """
        export_data = {
            "export_metadata": {
                "version": EXPORT_VERSION,
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "execution_id": execution.id,
            },
            "execution": execution.to_dict(),
            "statistics": calculate_stats(execution).to_dict(),
        }
        return json.dumps(export_data, indent=indent, default=str, ensure_ascii=False)

    def _color(self, node: Iteration) -> str:
        if node.is_final:
            return _COLORS["final"]
        if node.repl_result is not None and not node.repl_result.success:
            return _COLORS["error"]
        if node.depth > 0:
            return _COLORS["nested"]
        if node.extracted_code is not None:
            return _COLORS["code"]
        return _COLORS["root"]

    def to_dot(self, execution: Execution, rankdir: str = "TB") -> str:
        """Export the call tree as GraphViz DOT.

        Top-level iterations are chained in order; nested queries hang off
        the iteration whose code issued them.

        Args:
            execution: Execution to export
            rankdir: Graph direction (TB=top-bottom, LR=left-right)

        Returns:
            DOT format string
        """
        if not execution.iterations:
            return f"// No iterations recorded for execution {execution.id}"

        lines: List[str] = [
            f"digraph Trajectory_{_node_name(execution.id)} {{",
            f"    rankdir={rankdir};",
            '    node [shape=box, style="rounded,filled", fontname="Helvetica"];',
            '    edge [fontname="Helvetica", fontsize=10];',
            "",
        ]

        for node in walk_iterations(execution.iterations):
            if node.depth == 0:
                label_parts = [f"Iteration {node.number}"]
            else:
                label_parts = [f"llm_query (depth {node.depth})", node.input[:40]]
            label_parts.append(f"{node.duration_ms:.0f}ms")
            if node.is_final:
                label_parts.append("FINAL")
            label = "\\n".join(_escape(part) for part in label_parts)
            lines.append(
                f'    "{_node_name(node.id)}" [fillcolor="{self._color(node)}", '
                f'fontcolor="white", label="{label}"];'
            )

        lines.append("")

        previous = None
        for node in execution.iterations:
            if previous is not None:
                lines.append(f'    "{_node_name(previous.id)}" -> "{_node_name(node.id)}";')
            previous = node

        for node in walk_iterations(execution.iterations):
            if node.parent_id:
                lines.append(
                    f'    "{_node_name(node.parent_id)}" -> "{_node_name(node.id)}" [style=dashed];'
                )

        lines.append("}")
        return "\n".join(lines)

    def save_to_file(self, execution: Execution, format: str, output_path: Path) -> Path:
        """Export an execution to a file.

        Args:
            execution: Execution to export
            format: Export format ('json' or 'dot')
            output_path: Path to save file

        Returns:
            Path to saved file

        Raises:
            ValueError: For an unknown format
        """
        output_path = Path(output_path)

        if format == "json":
            content = self.to_json(execution)
        elif format == "dot":
            content = self.to_dot(execution)
        else:
            raise ValueError(f"Unknown format: {format}")

        output_path.write_text(content, encoding="utf-8")

        logger.info(
            "trajectory_exported",
            execution_id=execution.id,
            format=format,
            path=str(output_path),
        )
        return output_path
