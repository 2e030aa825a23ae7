"""Parsing of model replies: fenced code blocks and FINAL directives."""

import re
import textwrap
from typing import Optional

from rlm_orchestration.types import Final, FinalResponse, FinalVar

# Opening fence with an optional language tag, a newline, then the body up to
# the next closing fence. Inline `code` never matches.
CODE_BLOCK_PATTERN = re.compile(r"```[\w+#.-]*[ \t]*\r?\n(.*?)```", re.DOTALL)

# The answer stops at the first closing parenthesis, so FINAL(f(x) = 1)
# yields "f(x". Kept for compatibility with existing prompts and transcripts.
FINAL_PATTERN = re.compile(r"FINAL\(([^)]+)\)")
FINAL_VAR_PATTERN = re.compile(r"FINAL_VAR\(\s*([A-Za-z_]\w*)\s*\)")
FINAL_PRESENCE_PATTERN = re.compile(r"FINAL(?:_VAR)?\(")


def _trim_blank_lines(text: str) -> str:
    lines = text.splitlines()
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return textwrap.dedent("\n".join(lines)).rstrip()


def extract_code_block(text: str) -> Optional[str]:
    """Return the body of the first fenced code block, or None.

    Surrounding blank lines and common indentation are removed. Any block
    after the first is ignored.
    """
    match = CODE_BLOCK_PATTERN.search(text)
    if match is None:
        return None
    return _trim_blank_lines(match.group(1))


def parse_final_response(text: str) -> Optional[FinalResponse]:
    """Parse a ``FINAL(...)`` or ``FINAL_VAR(...)`` directive.

    ``FINAL`` takes precedence when both appear. A ``FINAL`` whose argument is
    only whitespace is not a directive.
    """
    match = FINAL_PATTERN.search(text)
    if match is not None:
        answer = match.group(1).strip()
        if answer:
            return Final(answer=answer)

    match = FINAL_VAR_PATTERN.search(text)
    if match is not None:
        return FinalVar(variable_name=match.group(1))

    return None


def has_code_block(text: str) -> bool:
    """Check for a complete fenced code block."""
    return CODE_BLOCK_PATTERN.search(text) is not None


def has_final_response(text: str) -> bool:
    """Check for the start of a FINAL or FINAL_VAR directive."""
    return FINAL_PRESENCE_PATTERN.search(text) is not None
