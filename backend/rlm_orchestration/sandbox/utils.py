"""Sandbox utilities shared by the execution environments."""

import ast
import json
import re
from typing import Any, Optional, Tuple

from rlm_orchestration.core.exceptions import SandboxError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_variable_name(name: str) -> str:
    """Ensure ``name`` is a plain identifier usable inside the sandbox."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name) or name.startswith("__"):
        raise SandboxError(f"Invalid variable name: {name!r}")
    return name


def serialize_value(value: Any) -> str:
    """Encode a variable for the sandbox boundary.

    Only JSON values cross the boundary (str, int, float, bool, None, and
    lists/dicts of them).

    Raises:
        SandboxError: If the value is not JSON-serializable
    """
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SandboxError(f"Value is not JSON-serializable: {e}") from e


def deserialize_value(payload: str) -> Any:
    return json.loads(payload)


def is_json_value(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def split_trailing_expression(source: str) -> Tuple[str, Optional[str]]:
    """Split code into its statements and a trailing expression, if any.

    ``"x = 1\\nx + 1"`` becomes ``("x = 1\\n", "x + 1")`` so the caller can
    report the value of the last expression, as an interactive REPL would.
    Code that does not parse is returned unchanged so the real compiler
    reports the error.
    """
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return source, None

    if not tree.body or not isinstance(tree.body[-1], ast.Expr):
        return source, None

    last = tree.body[-1]
    expression = ast.get_source_segment(source, last)
    if expression is None:
        return source, None

    lines = source.splitlines(keepends=True)
    # col_offset counts UTF-8 bytes
    head = lines[last.lineno - 1].encode("utf-8")[: last.col_offset].decode("utf-8")
    body = "".join(lines[: last.lineno - 1]) + head
    return body, expression


def truncate_output(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated, total: {len(text)} chars]"

