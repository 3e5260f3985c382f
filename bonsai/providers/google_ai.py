"""Google AI Studio client and account-rotating service.

GoogleAIClient performs one ``generateContent`` call with a given API key.
GoogleAIService owns the ProviderAccountPool: it picks the account with the
most headroom, applies a 60s cool-down on 429, and records the tokens the
client reports.
"""

from __future__ import annotations

from typing import Any

import structlog

from bonsai.accounting.pool import ProviderAccountPool
from bonsai.accounting.pricing import estimate_tokens
from bonsai.errors import ProviderUnavailableError, QuotaExhaustedError, RateLimitedError
from bonsai.providers.base import CompletionResult, ProviderClient

log = structlog.get_logger(__name__)

GOOGLE_AI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
PROVIDER_NAME = "Google AI Studio"

FLASH_LITE_MODEL = "gemini-2.0-flash-exp"
FLASH_8B_MODEL = "gemini-1.5-flash-8b"
PRO_MODEL = "gemini-2.0-flash-thinking-exp"

# Flat per-call reservation for the flash models
FLASH_TOKEN_ESTIMATE = 1000
PRO_MAX_OUTPUT_TOKENS = 32768

ACCOUNT_IDS = ("google-ai-1", "google-ai-2")


class GoogleAIClient(ProviderClient):
    """Stateless wrapper around the Generative Language API."""

    provider_name = PROVIDER_NAME

    def __init__(self, *, base_url: str = GOOGLE_AI_BASE_URL, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._base_url = base_url.rstrip("/")

    @staticmethod
    def build_payload(
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_instruction: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
                "topP": 0.8,
                "topK": 40,
            },
        }
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        return payload

    async def generate(
        self,
        *,
        api_key: str,
        model: str,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_instruction: str | None = None,
    ) -> CompletionResult:
        """Call ``{model}:generateContent``.

        Raises:
            RateLimitedError: Upstream returned 429
            ProviderUnavailableError: Any other failure
        """
        data = await self._request_json(
            "POST",
            f"{self._base_url}/{model}:generateContent",
            payload=self.build_payload(
                prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                system_instruction=system_instruction,
            ),
            headers={"Content-Type": "application/json"},
            params={"key": api_key},
        )
        return self.parse_response(data, model)

    def parse_response(self, data: dict[str, Any], model: str) -> CompletionResult:
        try:
            text = data["candidates"][0]["content"]["parts"][0].get("text") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderUnavailableError(
                "Google AI response missing candidates",
                provider=self.provider_name,
            ) from exc
        usage = data.get("usageMetadata") or {}
        return CompletionResult(
            text=text,
            model=model,
            tokens_used=int(usage.get("totalTokenCount") or 0),
            prompt_tokens=int(usage.get("promptTokenCount") or 0),
            completion_tokens=int(usage.get("candidatesTokenCount") or 0),
        )


class GoogleAIService:
    """Free-tier Google models served through a pool of accounts."""

    def __init__(self, client: GoogleAIClient, pool: ProviderAccountPool) -> None:
        self._client = client
        self._pool = pool

    @property
    def pool(self) -> ProviderAccountPool:
        return self._pool

    async def call_flash_lite(self, prompt: str) -> CompletionResult:
        return await self.generate(
            FLASH_LITE_MODEL,
            prompt,
            estimated_tokens=FLASH_TOKEN_ESTIMATE,
            temperature=0.3,
            max_tokens=8192,
        )

    async def call_flash_8b(self, prompt: str) -> CompletionResult:
        return await self.generate(
            FLASH_8B_MODEL,
            prompt,
            estimated_tokens=FLASH_TOKEN_ESTIMATE,
            temperature=0.5,
        )

    async def call_pro(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = PRO_MAX_OUTPUT_TOKENS,
        account_id: str | None = None,
    ) -> CompletionResult:
        """Call the pro model on the given account, or on the one with most headroom."""
        return await self.generate(
            PRO_MODEL,
            prompt,
            estimated_tokens=estimate_tokens(prompt),
            account_id=account_id,
            temperature=temperature,
            max_tokens=max_tokens,
            system_instruction=system_instruction,
        )

    async def generate(
        self,
        model: str,
        prompt: str,
        *,
        estimated_tokens: int,
        account_id: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_instruction: str | None = None,
    ) -> CompletionResult:
        """Run a call on an eligible account and apply its usage.

        Raises:
            QuotaExhaustedError: No account can serve the estimated tokens
            RateLimitedError: Upstream 429; the account is cooled down first
            ProviderUnavailableError: Any other upstream failure
        """
        if account_id is not None:
            account = self._pool.select_account(account_id, estimated_tokens)
        else:
            account = self._pool.select_best_account(estimated_tokens)
        if account is None:
            raise QuotaExhaustedError(
                "No available Google AI accounts",
                provider=PROVIDER_NAME,
            )

        try:
            result = await self._client.generate(
                api_key=account.api_key,
                model=model,
                prompt=prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                system_instruction=system_instruction,
            )
        except RateLimitedError:
            await self._pool.mark_rate_limited(account.id)
            raise

        await self._pool.record_usage(account.id, result.tokens_used)
        result.account = account.name
        log.info(
            "google_ai.call_done",
            model=model,
            account_id=account.id,
            tokens_used=result.tokens_used,
        )
        return result

    def total_available_quota(self) -> int:
        return self._pool.total_available_quota()

    def account_status(self) -> list[dict[str, Any]]:
        return self._pool.status()

    def emergency_disable(self) -> list[str]:
        return self._pool.disable_paid()

    def enable(self, account_ids: list[str]) -> None:
        self._pool.enable(account_ids)
