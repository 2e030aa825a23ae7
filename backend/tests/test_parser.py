"""Tests for reply parsing."""

from rlm_orchestration.core.parser import (
    extract_code_block,
    has_code_block,
    has_final_response,
    parse_final_response,
)
from rlm_orchestration.types import Final, FinalVar


class TestExtractCodeBlock:
    """Test fenced code block extraction."""

    def test_python_block(self):
        text = "Let me look.\n```python\nprint(len(context_0))\n```\nDone."
        assert extract_code_block(text) == "print(len(context_0))"

    def test_untagged_block(self):
        assert extract_code_block("```\nx = 1\n```") == "x = 1"

    def test_first_block_wins(self):
        text = "```python\na = 1\n```\nthen\n```python\nb = 2\n```"
        assert extract_code_block(text) == "a = 1"

    def test_surrounding_blank_lines_and_indent_removed(self):
        text = "```python\n\n    x = 1\n    y = 2\n\n```"
        assert extract_code_block(text) == "x = 1\ny = 2"

    def test_refencing_extracted_code_is_stable(self):
        replies = [
            "Plan:\n```python\n\n    total = 0\n    for x in range(3):\n        total += x\n\n```",
            "```js\nconst n = 1;\n```",
            "```\nprint('a')\n```",
        ]
        for reply in replies:
            code = extract_code_block(reply)
            assert extract_code_block(f"```python\n{code}\n```") == code
            assert extract_code_block(f"```\n\n{code}\n\n```") == code

    def test_inline_code_is_not_a_block(self):
        assert extract_code_block("Use `print(x)` to check.") is None

    def test_unterminated_block(self):
        assert extract_code_block("```python\nx = 1\n") is None

    def test_no_block(self):
        assert extract_code_block("Just prose.") is None
        assert has_code_block("Just prose.") is False
        assert has_code_block("```python\nx = 1\n```") is True


class TestParseFinalResponse:
    """Test FINAL / FINAL_VAR detection."""

    def test_final(self):
        assert parse_final_response("The answer is FINAL(65536)") == Final("65536")

    def test_final_is_trimmed(self):
        assert parse_final_response("FINAL(  Paris  )") == Final("Paris")

    def test_final_var(self):
        assert parse_final_response("FINAL_VAR(summary)") == FinalVar("summary")

    def test_final_var_allows_spaces(self):
        assert parse_final_response("FINAL_VAR( result_1 )") == FinalVar("result_1")

    def test_final_takes_precedence(self):
        text = "FINAL_VAR(summary)\nFINAL(direct)"
        assert parse_final_response(text) == Final("direct")

    def test_answer_stops_at_first_parenthesis(self):
        assert parse_final_response("FINAL(f(x) = 1)") == Final("f(x")

    def test_blank_final_is_ignored(self):
        assert parse_final_response("FINAL(   )") is None

    def test_no_directive(self):
        assert parse_final_response("I need more information.") is None

    def test_presence_check(self):
        assert has_final_response("FINAL(") is True
        assert has_final_response("FINAL_VAR(x)") is True
        assert has_final_response("final answer") is False
