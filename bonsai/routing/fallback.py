"""Fallback chain for resilient routing after the primary selection fails.

The chain walks a fixed, ordered list of named steps and stops at the first
one that succeeds:

1. google-ai-free     Gemini Flash 8B on any Google account
2. google-ai-pro      Gemini Pro on the Google account with most headroom
3. vertex-ai-express  Vertex AI express mode, paid from credits
4. openrouter-free    cheapest free OpenRouter model
5. openrouter-paid    cheapest OpenRouter model for the request complexity

If every step fails, AllProvidersExhaustedError carries the attempted names
so the caller can build the emergency response.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar

import structlog

from bonsai.errors import AllProvidersExhaustedError

log = structlog.get_logger(__name__)

T = TypeVar("T")

FALLBACK_ORDER: tuple[str, ...] = (
    "google-ai-free",
    "google-ai-pro",
    "vertex-ai-express",
    "openrouter-free",
    "openrouter-paid",
)

MAX_FALLBACK_EVENTS = 100


class FallbackChain:
    """Executes named steps in order until one succeeds.

    Each failure is kept as a fallback event for observability.
    """

    def __init__(self, order: Sequence[str] = FALLBACK_ORDER) -> None:
        if not order:
            raise ValueError("FallbackChain requires at least one step")
        self._order = tuple(order)
        self._fallback_events: deque[dict[str, Any]] = deque(maxlen=MAX_FALLBACK_EVENTS)

    @property
    def order(self) -> tuple[str, ...]:
        return self._order

    async def run(
        self,
        steps: Mapping[str, Callable[[], Awaitable[T]]],
    ) -> tuple[T, str, list[str]]:
        """Run the steps in chain order.

        Args:
            steps: Step name to a zero-argument coroutine function. Names missing
                from the mapping are skipped.

        Returns:
            Tuple of (result, step that succeeded, steps that failed before it)

        Raises:
            AllProvidersExhaustedError: If every step failed
        """
        attempted: list[str] = []

        for name in self._order:
            step = steps.get(name)
            if step is None:
                continue
            try:
                log.info("fallback_chain.attempting_step", step=name)
                result = await step()
            except Exception as exc:
                attempted.append(name)
                self._fallback_events.append(
                    {
                        "step": name,
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    }
                )
                log.warning(
                    "fallback_chain.step_failed",
                    step=name,
                    error_type=type(exc).__name__,
                    error_message=str(exc),
                )
                continue

            log.info("fallback_chain.step_succeeded", step=name, failed_before=attempted)
            return result, name, attempted

        log.error("fallback_chain.all_steps_failed", attempted=attempted)
        raise AllProvidersExhaustedError(attempted)

    def get_fallback_events(self) -> list[dict[str, Any]]:
        return list(self._fallback_events)

    def reset_events(self) -> None:
        """Clear fallback event history. Used for testing."""
        self._fallback_events.clear()
