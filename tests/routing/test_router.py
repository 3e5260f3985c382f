"""Tests for the layered RoutingEngine selection policy."""

from __future__ import annotations

import pytest

from bonsai.accounting.pool import ProviderAccountPool
from bonsai.accounting.spending import SpendingBudget
from bonsai.container import google_accounts
from bonsai.errors import NoModelAvailableError
from bonsai.models.routing import Complexity, RoutingRequest
from bonsai.routing.router import RoutingEngine, default_models


class CreditSwitch:
    def __init__(self) -> None:
        self.has_credits = True

    def __call__(self) -> bool:
        return self.has_credits


@pytest.fixture
def credits() -> CreditSwitch:
    return CreditSwitch()


@pytest.fixture
def pool(fake_settings, clock) -> ProviderAccountPool:
    return ProviderAccountPool("Google AI Studio", google_accounts(fake_settings, clock=clock), clock=clock)


@pytest.fixture
def budget(clock) -> SpendingBudget:
    return SpendingBudget("router", daily_limit=50.0, monthly_limit=500.0, clock=clock)


@pytest.fixture
def router(fake_settings, pool, budget, credits, clock) -> RoutingEngine:
    return RoutingEngine(
        default_models(fake_settings, clock=clock),
        budget=budget,
        account_pool=pool,
        credit_check=credits,
        clock=clock,
    )


def _request(complexity: Complexity = Complexity.MEDIUM, prompt: str = "hi", **kwargs) -> RoutingRequest:
    return RoutingRequest(prompt=prompt, complexity=complexity, **kwargs)


class TestLayers:
    def test_simple_takes_unlimited_free_model(self, router) -> None:
        selection = router.route(_request(Complexity.SIMPLE))

        assert selection.model.id == "gemini-2.0-flash-lite"
        assert selection.model.is_free
        assert selection.estimated_tokens == 2
        assert selection.estimated_cost == 0.0
        assert selection.reasoning == (
            "Selected Gemini 2.0 Flash Lite (free tier) - optimal for simple complexity tasks. "
            "999999 tokens remaining today."
        )

    def test_medium_takes_pro_account_with_most_headroom(self, router, pool) -> None:
        assert router.route(_request()).model.id == "gemini-2.5-pro-account-1"

        pool.get("google-ai-1").used_today = 5_000
        selection = router.route(_request())
        assert selection.model.id == "gemini-2.5-pro-account-2"
        assert selection.quota_remaining == 300_000

    def test_complex_takes_metered_credit_model(self, router) -> None:
        selection = router.route(_request(Complexity.COMPLEX))

        assert selection.model.id == "vertex-express-gemini"
        assert selection.reasoning == (
            "Selected Vertex AI Express (Gemini Pro) (paid) - best performance for complex "
            "complexity. Estimated cost: £0.0010."
        )

    def test_complex_without_credits_takes_heavy_compute_model(self, router, credits) -> None:
        credits.has_credits = False
        assert router.route(_request(Complexity.COMPLEX)).model.id == "deepseek-v3"

    def test_code_studio_takes_heavy_compute_model(self, router, pool) -> None:
        for account in pool.accounts:
            account.is_active = False

        assert router.route(_request(studio="code")).model.id == "deepseek-v3"
        assert router.route(_request()).model.id == "openrouter-cheapest"

    def test_absolute_fallback_is_first_available(self, router) -> None:
        for model_id in ("vertex-express-gemini", "deepseek-v3", "openrouter-cheapest"):
            router.get_model(model_id).is_available = False

        assert router.route(_request(Complexity.COMPLEX)).model.id == "gemini-2.0-flash-lite"


class TestAvailabilityFilter:
    def test_budget_breach_leaves_only_free_models(self, fake_settings, pool, clock) -> None:
        router = RoutingEngine(
            default_models(fake_settings, clock=clock),
            budget=SpendingBudget("router", daily_limit=0.0, monthly_limit=0.0, clock=clock),
            account_pool=pool,
            clock=clock,
        )

        available = router.available_models(2)
        assert all(model.is_free for model in available)
        assert router.route(_request(Complexity.COMPLEX)).model.is_free

    @pytest.mark.asyncio
    async def test_rate_limited_account_is_skipped(self, router, pool) -> None:
        await pool.mark_rate_limited("google-ai-1")
        assert router.route(_request()).model.id == "gemini-2.5-pro-account-2"

    def test_quota_headroom_is_required(self, router, pool) -> None:
        pool.get("google-ai-1").used_today = 299_999
        pool.get("google-ai-2").used_today = 299_999

        # Medium falls through the rotation layer to the catch-all paid model
        assert router.route(_request()).model.id == "openrouter-cheapest"

    def test_nothing_available_raises(self, router) -> None:
        for model in router.models:
            model.is_available = False

        with pytest.raises(NoModelAvailableError):
            router.route(_request())

    def test_duplicate_model_ids_rejected(self, fake_settings, budget, clock) -> None:
        models = default_models(fake_settings, clock=clock)
        with pytest.raises(ValueError, match="Duplicate"):
            RoutingEngine([*models, models[0]], budget=budget)


class TestUsage:
    @pytest.mark.asyncio
    async def test_update_usage_counts_tokens_and_cost(self, router, budget) -> None:
        await router.update_usage("deepseek-v3", 300, 0.5)

        assert router.get_model("deepseek-v3").used_today == 300
        assert budget.limits.daily_usage == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_unknown_model_is_ignored(self, router, budget) -> None:
        await router.update_usage("nope", 300, 0.5)
        assert budget.limits.daily_usage == 0.0

    @pytest.mark.asyncio
    async def test_new_day_resets_model_usage(self, router, clock) -> None:
        await router.update_usage("gemini-2.0-flash-lite", 500, 0.0)
        clock.advance(days=1)
        router.route(_request(Complexity.SIMPLE))

        assert router.get_model("gemini-2.0-flash-lite").used_today == 0

    def test_pro_quota_is_read_from_the_pool(self, router, pool) -> None:
        pool.get("google-ai-2").used_today = 1_234
        model = router.get_model("gemini-2.5-pro-account-2")
        assert router.remaining_quota(model) == 300_000 - 1_234

    @pytest.mark.asyncio
    async def test_cost_monitoring(self, router) -> None:
        await router.update_usage("deepseek-v3", 1000, 0.03)
        report = router.cost_monitoring()

        assert report["paid_usage_cost"] == pytest.approx(1000 * 0.00003)
        assert report["cost_today"] == pytest.approx(0.03)
        assert report["budget_remaining"] == pytest.approx(49.97)


class TestEmergencyBrake:
    def test_brake_disables_paid_models_and_release_restores_them(self, router) -> None:
        router.get_model("deepseek-v3").is_available = False

        disabled = router.emergency_brake()
        assert disabled == ["vertex-express-gemini", "openrouter-cheapest"]
        assert router.is_braked
        assert router.route(_request(Complexity.COMPLEX)).model.is_free

        assert router.release_brake() == disabled
        assert router.get_model("deepseek-v3").is_available is False
        assert router.route(_request(Complexity.COMPLEX)).model.id == "vertex-express-gemini"

    def test_status_lists_models_and_budget(self, router) -> None:
        status = router.status()
        assert [m["id"] for m in status["models"]][0] == "gemini-2.0-flash-lite"
        assert status["budget"]["budget_limits"]["daily"] == 50.0
        assert status["braked"] is False
