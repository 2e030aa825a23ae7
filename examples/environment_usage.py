"""Example: Execution environments.

Shows the three environments side by side. Variables persist across runs,
and llm_query inside the sandbox reaches the registered callback.

Requirements for the Docker part:
    - Docker Engine installed and running
    - docker Python SDK installed (pip install docker)

Usage:
    python examples/environment_usage.py
"""

import asyncio

from rlm_orchestration import (
    ConfigurationError,
    EnvironmentFactory,
    LocalREPLEnvironment,
    SubprocessREPLEnvironment,
    create_environment,
)
from rlm_orchestration.sandbox.security import SecurityProfiles, docker_status


async def answer(prompt: str) -> str:
    return f"[answer to: {prompt[:40]}]"


CODE = """
import math
total = sum(range(10))
note = llm_query("Is " + str(total) + " a triangular number?")
print("total =", total, "sqrt =", round(math.sqrt(total), 3))
print(note)
"""


async def run_in(environment):
    environment.register_recursive_query_callback(answer)
    async with environment:
        await environment.set_variable("context_0", "example context")
        result = await environment.execute(CODE)
        follow_up = await environment.execute("total * 2")
        print(f"[{environment.get_environment_type()}] success={result.success}")
        print(result.stdout.rstrip())
        print(f"follow-up return value: {follow_up.return_value}")
        if result.error:
            print(f"error: {result.error}")


async def example_local_and_subprocess():
    """Example 1: In-process and subprocess environments."""
    print("\n=== Example 1: Local and Subprocess ===\n")
    await run_in(LocalREPLEnvironment())
    await run_in(SubprocessREPLEnvironment())


async def example_docker():
    """Example 2: Docker environment with a strict profile."""
    print("\n=== Example 2: Docker ===\n")
    available, message = docker_status()
    print(message)
    if not available:
        return

    print(SecurityProfiles.strict().to_container_kwargs())
    await run_in(create_environment("docker", security_profile="strict"))


async def example_factory():
    """Example 3: Factory selection."""
    print("\n=== Example 3: Factory ===\n")
    print(f"Available types: {EnvironmentFactory.get_available_types()}")
    print(f"Auto-selected: {create_environment('auto').get_environment_type()}")
    try:
        create_environment("local", language="nodejs")
    except ConfigurationError as e:
        print(f"nodejs rejected: {e}")


async def main():
    await example_local_and_subprocess()
    await example_docker()
    await example_factory()


if __name__ == "__main__":
    asyncio.run(main())
