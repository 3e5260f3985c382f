"""Base HTTP client shared by all provider clients.

Handles:
- Lazily created httpx.AsyncClient with a per-call timeout (or an injected one)
- Retry on transport errors via tenacity (HTTP status errors are never retried)
- Classification of failures into the routing error taxonomy
- Server-sent-event line parsing for streaming providers

Clients return usage data in a CompletionResult and never mutate quota or
budget state themselves.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bonsai.errors import ProviderUnavailableError, RateLimitedError

log = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
SSE_DATA_PREFIX = "data: "
SSE_DONE_MARKER = "[DONE]"


@dataclass
class CompletionResult:
    """Outcome of one provider call.

    Attributes:
        text: Assistant text
        model: Upstream model that served the call
        tokens_used: Total tokens to charge against quota
        prompt_tokens: Prompt tokens if reported
        completion_tokens: Completion tokens if reported
        cost: Computed cost from the provider's pricing strategy
        account: Name of the account that served the call, if pooled
    """

    text: str
    model: str
    tokens_used: int
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0
    account: str | None = None


class ProviderClient:
    """Base class for provider HTTP clients."""

    provider_name = "unknown"

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = 2,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize client.

        Args:
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per call on transport errors
            http_client: Shared client; when given, this instance does not close it
        """
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._http = http_client
        self._owns_http = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> ProviderClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        payload: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the decoded JSON body.

        Raises:
            RateLimitedError: Upstream returned 429
            ProviderUnavailableError: Transport failure, timeout, non-2xx or bad JSON
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                reraise=True,
            ):
                with attempt:
                    response = await self._client().request(
                        method,
                        url,
                        json=payload,
                        headers=headers,
                        params=params,
                    )
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                f"{self.provider_name} request timed out",
                provider=self.provider_name,
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(
                f"{self.provider_name} transport error: {exc}",
                provider=self.provider_name,
            ) from exc

        self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError(
                f"{self.provider_name} returned a non-JSON body",
                provider=self.provider_name,
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise ProviderUnavailableError(
                f"{self.provider_name} returned an unexpected body",
                provider=self.provider_name,
                status_code=response.status_code,
            )
        return data

    async def _stream_lines(
        self,
        url: str,
        *,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> AsyncIterator[str]:
        """POST and yield response lines as they arrive.

        The underlying connection is released when the consumer stops
        iterating, so abandoning the generator cancels the stream.
        """
        try:
            async with self._client().stream("POST", url, json=payload, headers=headers) as response:
                if response.is_error:
                    await response.aread()
                    self._raise_for_status(response)
                async for line in response.aiter_lines():
                    yield line
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                f"{self.provider_name} stream timed out",
                provider=self.provider_name,
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(
                f"{self.provider_name} stream transport error: {exc}",
                provider=self.provider_name,
            ) from exc

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code == 429:
            log.warning("provider.rate_limited", provider=self.provider_name)
            raise RateLimitedError(
                f"{self.provider_name} rate limited",
                provider=self.provider_name,
            )
        if response.is_error:
            log.warning(
                "provider.http_error",
                provider=self.provider_name,
                status_code=response.status_code,
            )
            raise ProviderUnavailableError(
                f"{self.provider_name} error: {response.status_code} {_error_message(response)}",
                provider=self.provider_name,
                status_code=response.status_code,
            )


async def iter_sse_payloads(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Decode ``data: {...}`` lines until the ``[DONE]`` marker.

    Lines without the data prefix are ignored and malformed JSON lines are
    skipped so one bad event does not abort the stream.
    """
    async for line in lines:
        if not line.startswith(SSE_DATA_PREFIX):
            continue
        data = line[len(SSE_DATA_PREFIX):].strip()
        if data == SSE_DONE_MARKER:
            return
        try:
            payload = json.loads(data)
        except ValueError:
            log.debug("provider.sse_malformed_line", line=data[:200])
            continue
        if isinstance(payload, dict):
            yield payload


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message", response.reason_phrase))
        if isinstance(error, str):
            return error
    return response.reason_phrase
