"""Executor registry and the built-in executors.

Executors are the opaque computations behind nodes. The engine only knows
ExecutorRegistry.execute(); anything async that takes an ExecutionPayload can
be registered under a reference name.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable

from nodeflow.core.errors import ExecutorNotFoundError
from nodeflow.core.models import ExecutionPayload

logger = logging.getLogger(__name__)

ExecutorFn = Callable[[ExecutionPayload], Awaitable[Any]]

_PROMPT_NOISE = re.compile(r'["{}:,\s]')


async def echo(payload: ExecutionPayload) -> dict[str, Any]:
    """Return the payload unchanged."""
    return payload.model_dump()


async def enhance_prompt(payload: ExecutionPayload) -> str:
    """Flatten the payload into a single prompt string."""
    text = json.dumps(payload.model_dump(), ensure_ascii=False, separators=(",", ":"))
    return f"enhanced: {_PROMPT_NOISE.sub('', text)}"


class ExecutorRegistry:
    """
    Maps executor references to async callables.

    Args:
        delay: Simulated latency (seconds) added after every call
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self._executors: dict[str, ExecutorFn] = {}

    def register(self, executor_ref: str, fn: ExecutorFn) -> None:
        self._executors[executor_ref] = fn

    def names(self) -> list[str]:
        return sorted(self._executors)

    def __contains__(self, executor_ref: object) -> bool:
        return executor_ref in self._executors

    async def execute(self, executor_ref: str, payload: ExecutionPayload) -> Any:
        fn = self._executors.get(executor_ref)
        if fn is None:
            raise ExecutorNotFoundError(f"No executor registered as '{executor_ref}'")
        logger.debug(f"Executing '{executor_ref}'")
        result = await fn(payload)
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        return result


def default_registry(delay: float = 0.0) -> ExecutorRegistry:
    """Registry with the built-in executors."""
    registry = ExecutorRegistry(delay=delay)
    registry.register("echo", echo)
    registry.register("enhance_prompt", enhance_prompt)
    return registry
