"""Client for OpenAI-compatible chat completion APIs (OpenRouter, DeepSeek)."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import structlog

from bonsai.accounting.pricing import PricingStrategy
from bonsai.errors import ProviderUnavailableError
from bonsai.providers.base import CompletionResult, ProviderClient, iter_sse_payloads

log = structlog.get_logger(__name__)


class OpenAICompatibleClient(ProviderClient):
    """``POST {base_url}/chat/completions`` with bearer auth.

    Subclasses set provider_name and may add headers or body fields.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        pricing: PricingStrategy,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.pricing = pricing

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _extra_body(self) -> dict[str, Any]:
        return {}

    def build_payload(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_message: str | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if system_message:
            messages.append({"role": "system", "content": system_message})
        messages.append({"role": "user", "content": prompt})
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }
        if not stream:
            payload.update(self._extra_body())
        return payload

    async def complete(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_message: str | None = None,
    ) -> CompletionResult:
        """Run one chat completion.

        Returns:
            CompletionResult with usage and a cost computed by this client's pricing

        Raises:
            RateLimitedError: Upstream returned 429
            ProviderUnavailableError: Any other failure, including a body without choices
        """
        log.debug("provider.completion_request", provider=self.provider_name, model=model)
        data = await self._request_json(
            "POST",
            f"{self._base_url}/chat/completions",
            payload=self.build_payload(
                model=model,
                prompt=prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                system_message=system_message,
            ),
            headers=self._headers(),
        )
        result = self.parse_completion(data, model)
        log.info(
            "provider.completion_done",
            provider=self.provider_name,
            model=result.model,
            total_tokens=result.tokens_used,
            cost=round(result.cost, 6),
        )
        return result

    def parse_completion(self, data: dict[str, Any], model: str) -> CompletionResult:
        try:
            text = data["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderUnavailableError(
                f"{self.provider_name} response missing choices",
                provider=self.provider_name,
            ) from exc

        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("prompt_tokens") or 0)
        completion_tokens = int(usage.get("completion_tokens") or 0)
        total_tokens = int(usage.get("total_tokens") or prompt_tokens + completion_tokens)
        if not prompt_tokens and not completion_tokens:
            # Only a total was reported; price it all as completion
            completion_tokens = total_tokens
        return CompletionResult(
            text=text,
            model=data.get("model") or model,
            tokens_used=total_tokens,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=self.pricing.cost(model, prompt_tokens, completion_tokens),
        )

    async def stream(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        system_message: str | None = None,
    ) -> AsyncIterator[str]:
        """Yield content deltas from a streamed completion."""
        lines = self._stream_lines(
            f"{self._base_url}/chat/completions",
            payload=self.build_payload(
                model=model,
                prompt=prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                system_message=system_message,
                stream=True,
            ),
            headers=self._headers(),
        )
        async with aclosing(lines):
            async for event in iter_sse_payloads(lines):
                try:
                    content = event["choices"][0]["delta"].get("content")
                except (KeyError, IndexError, TypeError, AttributeError):
                    continue
                if content:
                    yield content

    async def list_models(self) -> list[dict[str, Any]]:
        data = await self._request_json(
            "GET",
            f"{self._base_url}/models",
            headers=self._headers(),
        )
        models = data.get("data") or []
        return [model for model in models if isinstance(model, dict)]

