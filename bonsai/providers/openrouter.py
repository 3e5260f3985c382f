"""OpenRouter client and budget-guarded service.

OpenRouter is the catch-all backend: hundreds of models behind one
OpenAI-compatible API. Spend is capped by a SpendingBudget and, unlike the
RoutingEngine budget, a request that would breach it is rejected rather than
downgraded.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from enum import StrEnum
from typing import Any

import structlog

from bonsai.accounting.pricing import OPENROUTER_PRICING, count_tokens
from bonsai.accounting.spending import SpendingBudget
from bonsai.errors import BudgetExceededError
from bonsai.models.routing import Complexity
from bonsai.providers.base import CompletionResult
from bonsai.providers.openai_compat import OpenAICompatibleClient

log = structlog.get_logger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
PROVIDER_NAME = "OpenRouter"
FREE_MODEL_MARKER = "free"


class ModelCategory(StrEnum):
    CHEAP = "cheap"
    BALANCED = "balanced"
    PREMIUM = "premium"
    CODE = "code"
    LONG_CONTEXT = "long_context"


class Specialization(StrEnum):
    CODE = "code"
    LONG_CONTEXT = "long_context"


RECOMMENDED_MODELS: dict[ModelCategory, tuple[str, ...]] = {
    ModelCategory.CHEAP: (
        "meta-llama/llama-3.2-1b-instruct:free",
        "microsoft/phi-3-mini-128k-instruct:free",
        "qwen/qwen-2-7b-instruct:free",
    ),
    ModelCategory.BALANCED: (
        "meta-llama/llama-3.1-8b-instruct:free",
        "mistralai/mistral-7b-instruct:free",
        "google/gemma-7b-it:free",
    ),
    ModelCategory.PREMIUM: (
        "anthropic/claude-3.5-sonnet",
        "openai/gpt-4o-mini",
        "meta-llama/llama-3.1-70b-instruct",
    ),
    ModelCategory.CODE: (
        "codellama/codellama-34b-instruct",
        "microsoft/wizardcoder-python-34b",
        "deepseek/deepseek-coder-33b-instruct",
    ),
    ModelCategory.LONG_CONTEXT: (
        "anthropic/claude-3-haiku",
        "google/gemini-pro-1.5",
        "cohere/command-r-plus",
    ),
}


def is_free_model(model: str) -> bool:
    return FREE_MODEL_MARKER in model


class OpenRouterClient(OpenAICompatibleClient):
    provider_name = PROVIDER_NAME

    def __init__(
        self,
        *,
        api_key: str,
        site_url: str = "https://bons-ai.dev",
        site_name: str = "Bons-AI Platform",
        base_url: str = OPENROUTER_BASE_URL,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("pricing", OPENROUTER_PRICING)
        super().__init__(base_url=base_url, api_key=api_key, **kwargs)
        self._site_url = site_url
        self._site_name = site_name

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["HTTP-Referer"] = self._site_url
        headers["X-Title"] = self._site_name
        return headers

    def _extra_body(self) -> dict[str, Any]:
        return {"route": "fallback"}


class OpenRouterService:
    """Model choice, budget enforcement and usage tracking for OpenRouter."""

    def __init__(self, client: OpenRouterClient, budget: SpendingBudget) -> None:
        self._client = client
        self._budget = budget
        self._braked = False

    @property
    def budget(self) -> SpendingBudget:
        return self._budget

    @property
    def braked(self) -> bool:
        return self._braked

    def models(self, category: ModelCategory) -> tuple[str, ...]:
        """Recommended models for a category; paid tiers collapse to cheap while braked."""
        if self._braked and category in (ModelCategory.BALANCED, ModelCategory.PREMIUM):
            return RECOMMENDED_MODELS[ModelCategory.CHEAP]
        return RECOMMENDED_MODELS[category]

    def cheapest_model(
        self,
        complexity: Complexity = Complexity.MEDIUM,
        specialization: Specialization | None = None,
    ) -> str:
        if specialization == Specialization.CODE:
            return self.models(ModelCategory.CODE)[0]
        if specialization == Specialization.LONG_CONTEXT:
            return self.models(ModelCategory.LONG_CONTEXT)[0]

        match complexity:
            case Complexity.SIMPLE:
                return self.models(ModelCategory.CHEAP)[0]
            case Complexity.MEDIUM:
                return self.models(ModelCategory.BALANCED)[0]
            case Complexity.COMPLEX:
                if self._budget.can_afford_premium():
                    return self.models(ModelCategory.PREMIUM)[2]
                return self.models(ModelCategory.BALANCED)[0]

    def _check_dispatch(self, model: str, prompt: str) -> None:
        if self._braked and not is_free_model(model):
            raise BudgetExceededError(
                f"Emergency brake engaged, paid model {model} refused",
                provider=PROVIDER_NAME,
            )
        estimated_cost = self._client.pricing.estimate(model, prompt)
        if not self._budget.can_afford(estimated_cost):
            raise BudgetExceededError(
                "Request exceeds OpenRouter budget limits",
                provider=PROVIDER_NAME,
            )

    async def call(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_message: str | None = None,
    ) -> CompletionResult:
        """Run a completion after budget checks and record its cost.

        Raises:
            BudgetExceededError: Estimated cost breaches a limit, or a paid model was
                requested while braked
            RateLimitedError: Upstream returned 429
            ProviderUnavailableError: Any other failure
        """
        model = model or self.cheapest_model()
        self._check_dispatch(model, prompt)

        result = await self._client.complete(
            model=model,
            prompt=prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            system_message=system_message,
        )
        await self._budget.record(result.cost)
        return result

    async def stream(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_message: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream content chunks. Budget is checked up front; call record_stream_usage after."""
        model = model or self.cheapest_model()
        self._check_dispatch(model, prompt)
        async for chunk in self._client.stream(
            model=model,
            prompt=prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            system_message=system_message,
        ):
            yield chunk

    async def record_stream_usage(self, model: str, prompt: str, text: str) -> tuple[int, float]:
        """Charge a finished stream. Returns (tokens, cost)."""
        prompt_tokens = count_tokens(prompt)
        completion_tokens = count_tokens(text)
        cost = self._client.pricing.cost(model, prompt_tokens, completion_tokens)
        await self._budget.record(cost)
        return prompt_tokens + completion_tokens, cost

    async def list_models(self) -> list[dict[str, Any]]:
        return await self._client.list_models()

    def usage_stats(self) -> dict[str, Any]:
        stats = self._budget.status()
        stats["braked"] = self._braked
        return stats

    def reset_daily(self) -> None:
        self._budget.reset_daily()

    def reset_monthly(self) -> None:
        self._budget.reset_monthly()

    def emergency_brake(self) -> None:
        if not self._braked:
            self._braked = True
            log.warning("openrouter.emergency_brake", detail="only free models available")

    def release_brake(self) -> None:
        if self._braked:
            self._braked = False
            log.info("openrouter.brake_released")
