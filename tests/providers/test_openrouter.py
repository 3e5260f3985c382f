"""Tests for the OpenRouter client and budget-guarded service."""

from __future__ import annotations

import httpx
import pytest

from bonsai.accounting.spending import SpendingBudget
from bonsai.errors import BudgetExceededError, ProviderUnavailableError, RateLimitedError
from bonsai.models.routing import Complexity
from bonsai.providers.openrouter import (
    RECOMMENDED_MODELS,
    ModelCategory,
    OpenRouterClient,
    OpenRouterService,
    Specialization,
    is_free_model,
)
from tests.conftest import OPENROUTER_HOST

FREE_MODEL = "meta-llama/llama-3.2-1b-instruct:free"
PAID_MODEL = "openai/gpt-4o-mini"


@pytest.fixture
def budget(clock) -> SpendingBudget:
    return SpendingBudget("openrouter", daily_limit=10.0, monthly_limit=100.0, clock=clock)


@pytest.fixture
def client(http_client) -> OpenRouterClient:
    return OpenRouterClient(api_key="or-key", http_client=http_client, max_attempts=1)


@pytest.fixture
def service(client, budget) -> OpenRouterService:
    return OpenRouterService(client, budget)


class TestOpenRouterClient:
    @pytest.mark.asyncio
    async def test_complete_sends_attribution_headers_and_fallback_route(self, client, upstream) -> None:
        result = await client.complete(model=PAID_MODEL, prompt="hi", system_message="sys")

        assert result.text == "openrouter reply"
        assert result.tokens_used == 30
        assert result.cost == pytest.approx(30 / 1000 * 0.01)

        request = upstream.requests[OPENROUTER_HOST][0]
        assert request.headers["Authorization"] == "Bearer or-key"
        assert request.headers["HTTP-Referer"] == "https://bons-ai.dev"
        assert request.headers["X-Title"] == "Bons-AI Platform"
        body = upstream.payload(OPENROUTER_HOST)
        assert body["route"] == "fallback"
        assert body["messages"][0] == {"role": "system", "content": "sys"}
        assert body["messages"][1] == {"role": "user", "content": "hi"}

    @pytest.mark.asyncio
    async def test_rate_limit_is_classified(self, client, upstream) -> None:
        upstream.fail(OPENROUTER_HOST, status_code=429)

        with pytest.raises(RateLimitedError) as exc_info:
            await client.complete(model=PAID_MODEL, prompt="hi")
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_body_without_choices_is_unavailable(self, client, upstream) -> None:
        upstream.overrides[OPENROUTER_HOST] = lambda request: httpx.Response(200, json={"choices": []})

        with pytest.raises(ProviderUnavailableError):
            await client.complete(model=PAID_MODEL, prompt="hi")

    @pytest.mark.asyncio
    async def test_non_json_body_is_unavailable(self, client, upstream) -> None:
        upstream.overrides[OPENROUTER_HOST] = lambda request: httpx.Response(200, text="<html>")

        with pytest.raises(ProviderUnavailableError, match="non-JSON"):
            await client.complete(model=PAID_MODEL, prompt="hi")

    @pytest.mark.asyncio
    async def test_stream_skips_malformed_events_and_stops_at_done(self, client, upstream) -> None:
        body = (
            b": keep-alive\n\n"
            b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
            b"data: {not json}\n\n"
            b'data: {"choices":[{"delta":{}}]}\n\n'
            b'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
            b"data: [DONE]\n\n"
            b'data: {"choices":[{"delta":{"content":"ignored"}}]}\n\n'
        )
        upstream.overrides[OPENROUTER_HOST] = lambda request: httpx.Response(200, content=body)

        chunks = [chunk async for chunk in client.stream(model=FREE_MODEL, prompt="hi")]

        assert chunks == ["Hel", "lo"]
        assert upstream.payload(OPENROUTER_HOST)["stream"] is True
        assert "route" not in upstream.payload(OPENROUTER_HOST)

    @pytest.mark.asyncio
    async def test_stream_error_status_raises(self, client, upstream) -> None:
        upstream.fail(OPENROUTER_HOST, status_code=502)

        with pytest.raises(ProviderUnavailableError):
            async for _ in client.stream(model=FREE_MODEL, prompt="hi"):
                pass

    @pytest.mark.asyncio
    async def test_list_models(self, client) -> None:
        models = await client.list_models()
        assert models == [{"id": "openai/gpt-4o-mini"}]


class TestModelChoice:
    def test_cheapest_model_by_complexity(self, service) -> None:
        assert service.cheapest_model(Complexity.SIMPLE) == RECOMMENDED_MODELS[ModelCategory.CHEAP][0]
        assert service.cheapest_model(Complexity.MEDIUM) == RECOMMENDED_MODELS[ModelCategory.BALANCED][0]
        assert service.cheapest_model(Complexity.COMPLEX) == RECOMMENDED_MODELS[ModelCategory.PREMIUM][2]

    @pytest.mark.asyncio
    async def test_complex_downgrades_when_premium_unaffordable(self, service, budget) -> None:
        await budget.record(6.0)
        assert service.cheapest_model(Complexity.COMPLEX) == RECOMMENDED_MODELS[ModelCategory.BALANCED][0]

    def test_specialisations(self, service) -> None:
        assert service.cheapest_model(specialization=Specialization.CODE) == (
            "codellama/codellama-34b-instruct"
        )
        assert service.cheapest_model(specialization=Specialization.LONG_CONTEXT) == (
            "anthropic/claude-3-haiku"
        )

    def test_brake_collapses_paid_categories_to_free(self, service) -> None:
        service.emergency_brake()
        assert service.models(ModelCategory.PREMIUM) == RECOMMENDED_MODELS[ModelCategory.CHEAP]
        model = service.cheapest_model(Complexity.COMPLEX)
        assert model == RECOMMENDED_MODELS[ModelCategory.CHEAP][2]
        assert is_free_model(model)


class TestBudgetEnforcement:
    @pytest.mark.asyncio
    async def test_call_records_cost(self, service, budget) -> None:
        result = await service.call("hi", model=PAID_MODEL)
        assert budget.limits.daily_usage == pytest.approx(result.cost)

    @pytest.mark.asyncio
    async def test_over_budget_request_rejected_before_dispatch(self, service, budget, upstream) -> None:
        await budget.record(10.0)

        with pytest.raises(BudgetExceededError):
            await service.call("x" * 4000, model=PAID_MODEL)
        assert upstream.calls(OPENROUTER_HOST) == 0

    @pytest.mark.asyncio
    async def test_free_models_pass_an_exhausted_budget(self, service, budget) -> None:
        await budget.record(10.0)
        result = await service.call("hi", model=FREE_MODEL)
        assert result.cost == 0.0

    @pytest.mark.asyncio
    async def test_brake_refuses_paid_models_only(self, service, upstream) -> None:
        service.emergency_brake()

        with pytest.raises(BudgetExceededError, match="Emergency brake"):
            await service.call("hi", model=PAID_MODEL)
        await service.call("hi", model=FREE_MODEL)
        assert upstream.calls(OPENROUTER_HOST) == 1

        service.release_brake()
        assert service.braked is False

    @pytest.mark.asyncio
    async def test_stream_then_record_usage(self, service, budget) -> None:
        chunks = [chunk async for chunk in service.stream("x" * 40, model=PAID_MODEL)]
        tokens, cost = await service.record_stream_usage(PAID_MODEL, "x" * 40, "".join(chunks))

        assert "".join(chunks) == "Hello, world"
        assert tokens == 10 + 3
        assert budget.limits.daily_usage == pytest.approx(cost)

    def test_usage_stats_include_brake_flag(self, service) -> None:
        stats = service.usage_stats()
        assert stats["braked"] is False
        assert stats["budget_limits"]["daily"] == 10.0
