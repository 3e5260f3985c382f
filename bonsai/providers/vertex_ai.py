"""Vertex AI client and credit-metered service.

Vertex AI does not return a price, so cost is computed client-side from the
per-model table in ``bonsai.accounting.pricing``. The service checks the
CreditLedger before dispatch and records the spend afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from bonsai.accounting.credits import CreditLedger
from bonsai.accounting.pricing import VERTEX_PRICING, PricingStrategy, count_tokens
from bonsai.errors import CreditsExhaustedError, ProviderUnavailableError
from bonsai.models.routing import Complexity
from bonsai.providers.base import CompletionResult, ProviderClient

log = structlog.get_logger(__name__)

PROVIDER_NAME = "Vertex AI"
DEFAULT_MODEL = "gemini-pro"
# Above this share of credits used, express mode steps down to cheaper models
LOW_CREDIT_USAGE_PCT = 70.0


@dataclass(frozen=True)
class ExpressProfile:
    model: str
    temperature: float
    max_tokens: int


EXPRESS_PROFILES: dict[Complexity, ExpressProfile] = {
    Complexity.SIMPLE: ExpressProfile("text-bison", 0.3, 1024),
    Complexity.MEDIUM: ExpressProfile("gemini-pro", 0.7, 2048),
    Complexity.COMPLEX: ExpressProfile("gemini-ultra", 0.9, 4096),
}


class VertexAIClient(ProviderClient):
    provider_name = PROVIDER_NAME

    def __init__(
        self,
        *,
        project_id: str,
        api_key: str,
        region: str = "us-central1",
        pricing: PricingStrategy = VERTEX_PRICING,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._api_key = api_key
        self.pricing = pricing
        self._base_url = (
            f"https://{region}-aiplatform.googleapis.com/v1/projects/{project_id}"
            f"/locations/{region}/publishers/google/models"
        )

    def estimate_cost(self, prompt: str, model: str = DEFAULT_MODEL) -> float:
        return self.pricing.estimate(model, prompt)

    @staticmethod
    def build_payload(
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_instruction: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generation_config": {
                "temperature": temperature,
                "max_output_tokens": max_tokens,
                "top_p": 0.8,
                "top_k": 40,
            },
        }
        if system_instruction:
            payload["system_instruction"] = {"parts": [{"text": system_instruction}]}
        return payload

    async def generate(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_instruction: str | None = None,
    ) -> CompletionResult:
        data = await self._request_json(
            "POST",
            f"{self._base_url}/{model}:generateContent",
            payload=self.build_payload(
                prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                system_instruction=system_instruction,
            ),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
        )
        return self.parse_response(data, model, prompt)

    def parse_response(self, data: dict[str, Any], model: str, prompt: str) -> CompletionResult:
        try:
            text = data["candidates"][0]["content"]["parts"][0].get("text") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderUnavailableError(
                "Vertex AI response missing candidates",
                provider=self.provider_name,
            ) from exc

        prompt_tokens = count_tokens(prompt)
        usage = data.get("usageMetadata") or {}
        total = int(usage.get("totalTokenCount") or 0)
        if not total:
            total = count_tokens(text + prompt)
        completion_tokens = max(total - prompt_tokens, 0)
        return CompletionResult(
            text=text,
            model=model,
            tokens_used=total,
            prompt_tokens=total - completion_tokens,
            completion_tokens=completion_tokens,
            cost=self.pricing.cost(model, total - completion_tokens, completion_tokens),
        )


class VertexAIService:
    """Vertex AI calls paid from a CreditLedger."""

    def __init__(self, client: VertexAIClient, ledger: CreditLedger) -> None:
        self._client = client
        self._ledger = ledger

    @property
    def ledger(self) -> CreditLedger:
        return self._ledger

    def optimal_model(self, complexity: Complexity) -> str:
        """Model for a complexity, stepping down once credits run low."""
        if self._ledger.balance.usage_percentage > LOW_CREDIT_USAGE_PCT:
            return "gemini-pro" if complexity == Complexity.COMPLEX else "text-bison"
        return EXPRESS_PROFILES[complexity].model

    async def call(
        self,
        prompt: str,
        *,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_instruction: str | None = None,
    ) -> CompletionResult:
        """Dispatch after a credit check and record the actual spend.

        Raises:
            CreditsExhaustedError: Estimated cost exceeds spendable credits
            RateLimitedError: Upstream returned 429
            ProviderUnavailableError: Any other failure
        """
        estimated_cost = self._client.estimate_cost(prompt, model)
        if not self._ledger.has_enough(estimated_cost):
            raise CreditsExhaustedError(
                "Insufficient Vertex AI credits",
                provider=PROVIDER_NAME,
            )

        result = await self._client.generate(
            model=model,
            prompt=prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            system_instruction=system_instruction,
        )
        await self._ledger.record_spend(result.cost)
        return result

    async def call_express(
        self,
        prompt: str,
        complexity: Complexity = Complexity.MEDIUM,
        *,
        system_instruction: str | None = None,
    ) -> CompletionResult:
        profile = EXPRESS_PROFILES[complexity]
        model = self.optimal_model(complexity)
        log.debug("vertex_ai.express_call", complexity=complexity.value, model=model)
        return await self.call(
            prompt,
            model=model,
            temperature=profile.temperature,
            max_tokens=profile.max_tokens,
            system_instruction=system_instruction,
        )

    def credits_status(self) -> dict[str, Any]:
        return self._ledger.status()

    def credit_warnings(self) -> list[str]:
        return self._ledger.warnings()

    def emergency_stop(self) -> None:
        self._ledger.halt()

    def resume(self) -> None:
        self._ledger.resume()
