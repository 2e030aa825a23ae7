"""Prompt templates for the RLM loop."""

from typing import Any, Optional

from rlm_orchestration.types import CONTEXT_VARIABLE, REPLResult

PYTHON_SYSTEM_PROMPT = f"""You are a Recursive Language Model (RLM) agent with access to a Python REPL environment.

## Your Environment
State persists between code blocks. The following are predefined:

1. **{CONTEXT_VARIABLE}** variable: the context or data you need to analyze.

2. **llm_query(prompt: str) -> str**: ask yourself a sub-question and get the answer back as a string.
   Use it to break a hard task into smaller ones.

3. **llm_query_batched(prompts: list[str]) -> list[str]**: run several sub-questions concurrently.
   Use it for partition and map style work over many chunks.

4. **peek(start: int, end: int) -> str**: return {CONTEXT_VARIABLE}[start:end].

5. **grep(pattern: str) -> list[str]**: return the lines of {CONTEXT_VARIABLE} matching a regex.

## Finishing
When you know the answer, write one of:
- `FINAL(your answer here)` to answer directly
- `FINAL_VAR(variable_name)` when the answer is stored in a REPL variable

## Strategy
1. For large contexts (more than 5000 characters) look at relevant parts with peek() and grep() first
2. Split complex problems into sub-questions with llm_query()
3. Use llm_query_batched() when the same question applies to many chunks
4. Explain your reasoning before each code block
5. Check intermediate results before building on them
6. If code fails, read the error and try a different approach

## Code Format
Write exactly one Python code block per reply:
```python
# your code here
```

## Example
```python
size = len({CONTEXT_VARIABLE})
print(f"Context size: {{size}} characters")

if size > 10000:
    chunks = [{CONTEXT_VARIABLE}[i:i + 5000] for i in range(0, size, 5000)]
    summaries = llm_query_batched([f"Summarize this chunk:\\n{{c}}" for c in chunks])
    summary = llm_query("Merge these summaries:\\n" + "\\n".join(summaries))
else:
    summary = llm_query(f"Summarize this text:\\n{{{CONTEXT_VARIABLE}}}")
print(summary)
```
FINAL_VAR(summary)
"""

NODEJS_SYSTEM_PROMPT = f"""You are a Recursive Language Model (RLM) agent with access to a Node.js REPL environment.

## Your Environment
State persists between code blocks. The following are predefined:

1. **{CONTEXT_VARIABLE}** variable: the context or data you need to analyze.

2. **llm_query(prompt)**: ask yourself a sub-question. Returns a Promise<string>.

3. **llm_query_batched(prompts)**: run several sub-questions concurrently. Returns a Promise<string[]>.

4. **peek(start, end)**: return {CONTEXT_VARIABLE}.slice(start, end).

5. **grep(pattern)**: return the lines of {CONTEXT_VARIABLE} matching a regex, as an array.

## Finishing
When you know the answer, write one of:
- `FINAL(your answer here)` to answer directly
- `FINAL_VAR(variable_name)` when the answer is stored in a REPL variable

## Strategy
1. For large contexts (more than 5000 characters) look at relevant parts with peek() and grep() first
2. Split complex problems into sub-questions with llm_query()
3. Use llm_query_batched() when the same question applies to many chunks
4. Use async/await for llm_query calls
5. Wrap risky code in try/catch

## Code Format
Write exactly one JavaScript code block per reply:
```javascript
// your code here
```
"""

NESTED_SYSTEM_PROMPT = (
    "You are a helpful assistant answering a sub-question. Be concise and direct."
)

NESTED_QUERY_PROMPT = """You are answering a sub-question as part of a larger analysis task.
Answer only the question below. Be concise and direct.
Do not use FINAL() - just provide your answer directly.

Question: {prompt}

Answer:"""

ERROR_RECOVERY_PROMPT = """The previous code execution failed.

Error: {error}

Code that failed:
```
{code}
```

Work out what went wrong and reply with corrected code."""

ITERATION_WARNING_PROMPT = """Note: You have used {current} of {max} allowed iterations.
Move towards a final answer now.
If you already know it, output FINAL(your answer) or FINAL_VAR(variable_name)."""

CONTINUE_PROMPT = (
    "Please write code to continue your analysis, "
    "or provide FINAL(answer) if you have the answer."
)


def build_system_prompt(
    language: str = "python",
    custom_instructions: Optional[str] = None,
    max_iterations: Optional[int] = None,
    max_depth: Optional[int] = None,
) -> str:
    """Build the system prompt for a sandbox language.

    Args:
        language: ``python`` or ``nodejs``
        custom_instructions: Text appended verbatim in its own section
        max_iterations: Iteration limit to advertise, if any
        max_depth: llm_query depth limit to advertise, if any

    Returns:
        System prompt string
    """
    prompt = NODEJS_SYSTEM_PROMPT if language == "nodejs" else PYTHON_SYSTEM_PROMPT

    if max_iterations is not None or max_depth is not None:
        prompt += "\n## Limits\n"
        if max_iterations is not None:
            prompt += f"- Maximum iterations: {max_iterations}\n"
        if max_depth is not None:
            prompt += f"- Maximum recursion depth for llm_query: {max_depth}\n"

    if custom_instructions:
        prompt += f"\n## Additional Instructions\n\n{custom_instructions}\n"

    return prompt


def build_initial_user_message(query: str, context_length: int) -> str:
    """Build the first user turn of an execution."""
    return f"""Task: {query}

The context is loaded in the variable `{CONTEXT_VARIABLE}` ({context_length} characters).

Analyze it and complete the task. Use peek, grep, llm_query and llm_query_batched as needed.

When you have the final answer, output FINAL(your answer) or FINAL_VAR(variable_name)."""


def build_nested_query_prompt(prompt: str) -> str:
    return NESTED_QUERY_PROMPT.replace("{prompt}", prompt)


def build_error_recovery_prompt(error: str, code: str) -> str:
    return ERROR_RECOVERY_PROMPT.format(error=error, code=code)


def build_iteration_warning_prompt(current: int, maximum: int) -> str:
    return ITERATION_WARNING_PROMPT.replace("{current}", str(current)).replace(
        "{max}", str(maximum)
    )


def _format_return_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return repr(value)


def build_continuation_message(result: REPLResult) -> str:
    """Summarize a successful execution for the next model turn.

    Args:
        result: Result of the code that just ran

    Returns:
        User message with stdout, stderr and the return value
    """
    parts = ["Code executed."]
    if result.stdout:
        parts.append(f"**Output:**\n```\n{result.stdout.rstrip()}\n```")
    if result.stderr:
        parts.append(f"**Errors:**\n```\n{result.stderr.rstrip()}\n```")
    if result.return_value is not None:
        parts.append(f"**Return value:** {_format_return_value(result.return_value)}")
    if len(parts) == 1:
        parts.append("(no output)")
    parts.append("Continue your analysis or provide FINAL(answer) if you have the answer.")
    return "\n\n".join(parts)
