"""
Example: Basic RLM Usage

This example runs the engine end to end with a scripted model, so it works
without API keys. Replace MockLLMClient with LiteLLMClient (or leave
llm_client unset) to use a real provider.

Usage:
    python examples/basic_usage.py
"""

import asyncio

from rlm_orchestration import (
    ExecuteOptions,
    LocalREPLEnvironment,
    MockLLMClient,
    RLMConfig,
    RLMEventType,
    RLMOrchestrator,
    TrajectoryExporter,
    calculate_stats,
)
from rlm_orchestration.llm.prompts import NESTED_SYSTEM_PROMPT

DOCUMENT = """Artificial Intelligence (AI) is transforming the world.
Machine learning is a subset of AI that enables computers to learn from data.
Deep learning is a subset of machine learning using neural networks.
Key applications include natural language processing, computer vision and robotics.
The future of AI is promising but requires careful ethical consideration.
"""

ROOT_SCRIPT = [
    """Let me find the lines about applications first.
```python
hits = grep("applications|future")
for line in hits:
    print(line)
```""",
    """Now I'll ask a sub-question about each hit.
```python
summaries = llm_query_batched(["Summarize in five words: " + h for h in hits])
answer = "; ".join(summaries)
print(answer)
```""",
    "FINAL_VAR(answer)",
]


def scripted_model():
    """Replies for the root transcript in order; nested questions get a canned answer."""
    turn = {"n": 0}

    def reply(messages):
        if messages[0].content == NESTED_SYSTEM_PROMPT:
            question = messages[-1].content
            return "applications: NLP, vision, robotics" if "applications" in question else "promising but needs ethics"
        index = min(turn["n"], len(ROOT_SCRIPT) - 1)
        turn["n"] += 1
        return ROOT_SCRIPT[index]

    return reply


async def basic_example():
    """Basic example with a scripted model."""
    print("=" * 60)
    print("Basic RLM Example")
    print("=" * 60)

    orchestrator = RLMOrchestrator(
        llm_client=MockLLMClient(responses=scripted_model()),
        environment=LocalREPLEnvironment(),
        config=RLMConfig(max_iterations=5, max_depth=2),
    )

    def show(event):
        if event.type == RLMEventType.ITERATION_START:
            print(f"-> iteration {event.iteration.number}")
        elif event.type == RLMEventType.RECURSIVE_QUERY_START:
            print(f"   llm_query (depth {event.iteration.depth}): {event.data['prompt'][:50]}")

    orchestrator.on(show)

    execution = await orchestrator.execute(
        query="What are the key points about AI in this document?",
        context=DOCUMENT,
        options=ExecuteOptions(custom_instructions="Keep the answer short."),
    )

    stats = calculate_stats(execution)
    print(f"\nStatus: {execution.status.value}")
    print(f"Answer: {execution.final_answer}")
    print(f"Iterations: {stats.iteration_count}")
    print(f"Nested queries: {stats.nested_query_count}")
    print(f"Model calls: {execution.total_llm_calls}")
    print(f"Duration: {stats.total_duration_ms:.2f}ms")

    print("\nCall tree (GraphViz):")
    print(TrajectoryExporter().to_dot(execution))


async def main():
    await basic_example()


if __name__ == "__main__":
    asyncio.run(main())
