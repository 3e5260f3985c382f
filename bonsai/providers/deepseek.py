"""DeepSeek client and service (cost-optimised heavy computation)."""

from __future__ import annotations

from typing import Any

import structlog

from bonsai.accounting.pricing import DEEPSEEK_PRICING
from bonsai.errors import BudgetExceededError
from bonsai.providers.base import CompletionResult
from bonsai.providers.openai_compat import OpenAICompatibleClient

log = structlog.get_logger(__name__)

DEEPSEEK_BASE_URL = "https://api.deepseek.com/v1"
DEEPSEEK_CHAT_MODEL = "deepseek-chat"
PROVIDER_NAME = "DeepSeek"


class DeepSeekClient(OpenAICompatibleClient):
    provider_name = PROVIDER_NAME

    def __init__(self, *, api_key: str, base_url: str = DEEPSEEK_BASE_URL, **kwargs: Any) -> None:
        kwargs.setdefault("pricing", DEEPSEEK_PRICING)
        super().__init__(base_url=base_url, api_key=api_key, **kwargs)


class DeepSeekService:
    """Paid DeepSeek calls; spend is accounted by the RoutingEngine budget."""

    def __init__(self, client: DeepSeekClient, *, model: str = DEEPSEEK_CHAT_MODEL) -> None:
        self._client = client
        self._model = model
        self._halted = False

    @property
    def is_halted(self) -> bool:
        return self._halted

    async def call(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_message: str | None = None,
    ) -> CompletionResult:
        if self._halted:
            raise BudgetExceededError("Emergency brake engaged", provider=PROVIDER_NAME)
        return await self._client.complete(
            model=self._model,
            prompt=prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            system_message=system_message,
        )

    def halt(self) -> None:
        if not self._halted:
            self._halted = True
            log.warning("deepseek.halted")

    def resume(self) -> None:
        self._halted = False
