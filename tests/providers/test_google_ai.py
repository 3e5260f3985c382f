"""Tests for the Google AI Studio client and account-rotating service."""

from __future__ import annotations

from datetime import timedelta

import httpx
import pytest

from bonsai.accounting.pool import ProviderAccountPool
from bonsai.errors import ProviderUnavailableError, QuotaExhaustedError, RateLimitedError
from bonsai.models.quota import ProviderAccount
from bonsai.providers.google_ai import (
    FLASH_8B_MODEL,
    PRO_MODEL,
    GoogleAIClient,
    GoogleAIService,
)
from tests.conftest import GOOGLE_HOST


@pytest.fixture
def pool(clock) -> ProviderAccountPool:
    accounts = [
        ProviderAccount(id="g1", name="Google 1", api_key="k1", daily_quota=10_000, last_reset=clock()),
        ProviderAccount(id="g2", name="Google 2", api_key="k2", daily_quota=10_000, last_reset=clock()),
    ]
    return ProviderAccountPool("Google AI Studio", accounts, cooldown=timedelta(seconds=60), clock=clock)


@pytest.fixture
def service(http_client, pool) -> GoogleAIService:
    return GoogleAIService(GoogleAIClient(http_client=http_client, max_attempts=1), pool)


class TestGoogleAIClient:
    @pytest.mark.asyncio
    async def test_generate_sends_key_and_parses_usage(self, http_client, upstream) -> None:
        client = GoogleAIClient(http_client=http_client)
        result = await client.generate(
            api_key="secret",
            model=PRO_MODEL,
            prompt="hello",
            system_instruction="be brief",
        )

        assert result.text == "google reply"
        assert result.tokens_used == 42
        assert result.cost == 0.0

        request = upstream.requests[GOOGLE_HOST][0]
        assert request.url.params["key"] == "secret"
        assert request.url.path.endswith(f"{PRO_MODEL}:generateContent")
        body = upstream.payload(GOOGLE_HOST)
        assert body["contents"][0]["parts"][0]["text"] == "hello"
        assert body["systemInstruction"]["parts"][0]["text"] == "be brief"

    @pytest.mark.asyncio
    async def test_missing_candidates_is_unavailable(self, http_client, upstream) -> None:
        upstream.overrides[GOOGLE_HOST] = lambda request: httpx.Response(200, json={"candidates": []})
        client = GoogleAIClient(http_client=http_client)

        with pytest.raises(ProviderUnavailableError):
            await client.generate(api_key="k", model=PRO_MODEL, prompt="hi")

    @pytest.mark.asyncio
    async def test_error_status_carries_upstream_message(self, http_client, upstream) -> None:
        upstream.fail(GOOGLE_HOST, status_code=503)
        client = GoogleAIClient(http_client=http_client)

        with pytest.raises(ProviderUnavailableError, match="upstream down") as exc_info:
            await client.generate(api_key="k", model=PRO_MODEL, prompt="hi")
        assert exc_info.value.status_code == 503


class TestGoogleAIService:
    @pytest.mark.asyncio
    async def test_usage_is_applied_to_selected_account(self, service, pool) -> None:
        pool.get("g1").used_today = 500

        result = await service.call_pro("hello")

        assert result.account == "Google 2"
        assert pool.get("g2").used_today == 42
        assert pool.get("g1").used_today == 500

    @pytest.mark.asyncio
    async def test_pinned_account_is_used(self, service, pool, upstream) -> None:
        await service.call_pro("hello", account_id="g1")

        assert pool.get("g1").used_today == 42
        assert upstream.requests[GOOGLE_HOST][0].url.params["key"] == "k1"

    @pytest.mark.asyncio
    async def test_rate_limit_cools_account_down(self, service, pool, upstream) -> None:
        upstream.fail(GOOGLE_HOST, status_code=429)

        with pytest.raises(RateLimitedError):
            await service.call_flash_8b("hello")

        # g1 was chosen first (tie), so it is now cooling down
        assert pool.get("g1").rate_limit_until is not None
        assert pool.select_best_account(10).id == "g2"

    @pytest.mark.asyncio
    async def test_no_eligible_account_raises_quota_exhausted(self, service, pool, upstream) -> None:
        for account in pool.accounts:
            account.is_active = False

        with pytest.raises(QuotaExhaustedError):
            await service.call_flash_8b("hello")
        assert upstream.calls(GOOGLE_HOST) == 0

    @pytest.mark.asyncio
    async def test_flash_calls_reserve_a_flat_estimate(self, service, pool, upstream) -> None:
        pool.get("g1").used_today = 9_500
        pool.get("g2").used_today = 9_500

        with pytest.raises(QuotaExhaustedError):
            await service.call_flash_8b("tiny")

        pool.get("g2").used_today = 8_000
        result = await service.call_flash_8b("tiny")
        assert result.model == FLASH_8B_MODEL
        assert upstream.payload(GOOGLE_HOST)["generationConfig"]["temperature"] == 0.5

    def test_total_available_quota(self, service, pool) -> None:
        pool.get("g1").used_today = 1_000
        assert service.total_available_quota() == 19_000
