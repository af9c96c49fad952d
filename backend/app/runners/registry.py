"""
Adapter registry: maps (endpoint_type, provider) to the async function that runs it.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable

from app.models.pipeline import ENDPOINT_TYPES, StepResult
from app.runners.errors import UnsupportedCombinationError
from app.runners.request import StepRequest

logger = logging.getLogger(__name__)

RunnerFunction = Callable[[StepRequest], Awaitable[StepResult]]

# Filled at import time by the @runner decorator in each adapter module.
_registry: dict[tuple[str, str], RunnerFunction] = {}


def runner(endpoint_type: str, provider: str):
    """
    Decorator that registers an adapter for an endpoint type and provider.

    Usage:
        @runner("Chat", "OpenAI")
        async def run_chat_openai(request: StepRequest) -> StepResult:
            ...
    """
    if endpoint_type not in ENDPOINT_TYPES:
        raise ValueError(f"Cannot register runner for unknown endpoint type: {endpoint_type}")

    def decorator(fn: RunnerFunction) -> RunnerFunction:
        _registry[(endpoint_type, provider)] = fn
        return fn
    return decorator


def get_runner(endpoint_type: str, provider: str) -> RunnerFunction:
    if endpoint_type not in ENDPOINT_TYPES:
        raise UnsupportedCombinationError(f"Unknown endpoint type: {endpoint_type}")

    fn = _registry.get((endpoint_type, provider))
    if fn is None:
        raise UnsupportedCombinationError(
            f"Unknown provider {provider} for endpoint {endpoint_type}"
        )
    return fn


def registered_providers(endpoint_type: str) -> list[str]:
    return sorted(p for (e, p) in _registry if e == endpoint_type)


async def run_prompt(request: StepRequest) -> StepResult:
    """Dispatch a step to the adapter registered for its prompt."""
    prompt = request.prompt
    fn = get_runner(prompt.endpoint_type, prompt.selected_provider)
    logger.debug(
        "Dispatching prompt %s to %s/%s",
        prompt.id,
        prompt.endpoint_type,
        prompt.selected_provider,
    )
    return await fn(request)
