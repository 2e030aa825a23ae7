"""Tests for prompt construction."""

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
from rlm_orchestration.types import REPLResult


class TestSystemPrompt:
    """Test system prompt assembly."""

    def test_python_prompt_describes_helpers(self):
        prompt = build_system_prompt("python")
        for name in ("context_0", "llm_query", "llm_query_batched", "peek", "grep"):
            assert name in prompt
        assert "FINAL_VAR(variable_name)" in prompt
        assert "## Limits" not in prompt

    def test_nodejs_prompt(self):
        prompt = build_system_prompt("nodejs")
        assert "Node.js" in prompt
        assert "```javascript" in prompt

    def test_limits_section(self):
        prompt = build_system_prompt("python", max_iterations=7, max_depth=2)
        assert "## Limits" in prompt
        assert "- Maximum iterations: 7" in prompt
        assert "- Maximum recursion depth for llm_query: 2" in prompt

    def test_only_given_limits_are_listed(self):
        prompt = build_system_prompt("python", max_depth=2)
        assert "Maximum iterations" not in prompt
        assert "Maximum recursion depth for llm_query: 2" in prompt

    def test_custom_instructions_appended(self):
        prompt = build_system_prompt("python", custom_instructions="Answer in French.")
        assert prompt.rstrip().endswith("Answer in French.")
        assert "## Additional Instructions" in prompt


class TestUserMessages:
    """Test user-turn templates."""

    def test_initial_message(self):
        message = build_initial_user_message("Summarize it", 1234)
        assert message.startswith("Task: Summarize it")
        assert "`context_0` (1234 characters)" in message
        assert "FINAL(your answer)" in message

    def test_nested_query_prompt(self):
        message = build_nested_query_prompt("What is 2+2?")
        assert "Question: What is 2+2?" in message
        assert "Do not use FINAL()" in message
        assert NESTED_SYSTEM_PROMPT.endswith("Be concise and direct.")

    def test_nested_prompt_keeps_braces(self):
        message = build_nested_query_prompt("Parse {\"a\": 1}")
        assert "Parse {\"a\": 1}" in message

    def test_error_recovery_prompt(self):
        message = build_error_recovery_prompt("NameError: name 'x' is not defined", "print(x)")
        assert "Error: NameError: name 'x' is not defined" in message
        assert "```\nprint(x)\n```" in message

    def test_error_recovery_keeps_placeholder_text(self):
        message = build_error_recovery_prompt("KeyError: '{code}'", "row['{error}']")
        assert "Error: KeyError: '{code}'" in message
        assert "```\nrow['{error}']\n```" in message

    def test_iteration_warning(self):
        message = build_iteration_warning_prompt(8, 10)
        assert "You have used 8 of 10 allowed iterations" in message
        assert "FINAL_VAR(variable_name)" in message

    def test_continue_prompt(self):
        assert "FINAL(answer)" in CONTINUE_PROMPT


class TestContinuationMessage:
    """Test the summary of a successful execution."""

    def test_output_and_return_value(self):
        result = REPLResult(success=True, stdout="65536\n", return_value=[1, 2])
        message = build_continuation_message(result)
        assert message.startswith("Code executed.")
        assert "**Output:**\n```\n65536\n```" in message
        assert "**Return value:** [1, 2]" in message
        assert "(no output)" not in message

    def test_stderr_is_reported(self):
        result = REPLResult(success=True, stderr="DeprecationWarning: old")
        assert "**Errors:**" in build_continuation_message(result)

    def test_empty_run(self):
        message = build_continuation_message(REPLResult(success=True))
        assert "(no output)" in message
        assert message.endswith("provide FINAL(answer) if you have the answer.")
