"""Tests for daily/monthly spending budgets."""

from __future__ import annotations

import pytest

from bonsai.accounting.spending import SpendingBudget


@pytest.fixture
def budget(clock) -> SpendingBudget:
    return SpendingBudget("test", daily_limit=10.0, monthly_limit=100.0, clock=clock)


class TestSpendingBudget:
    def test_can_afford_up_to_the_limit(self, budget) -> None:
        assert budget.can_afford(10.0) is True
        assert budget.can_afford(10.01) is False

    @pytest.mark.asyncio
    async def test_recorded_spend_counts_against_limits(self, budget) -> None:
        await budget.record(9.0)

        assert budget.can_afford(1.0) is True
        assert budget.can_afford(1.5) is False
        assert budget.limits.remaining_daily == pytest.approx(1.0)
        assert budget.limits.total_usage == pytest.approx(9.0)

    @pytest.mark.asyncio
    async def test_monthly_limit_applies_independently(self, clock) -> None:
        budget = SpendingBudget("test", daily_limit=50.0, monthly_limit=60.0, clock=clock)
        await budget.record(40.0)
        clock.advance(days=1)

        assert budget.limits.daily_usage == 0.0
        assert budget.can_afford(25.0) is False
        assert budget.can_afford(20.0) is True

    @pytest.mark.asyncio
    async def test_premium_needs_half_the_daily_budget_left(self, budget) -> None:
        assert budget.can_afford_premium() is True
        await budget.record(5.0)
        assert budget.can_afford_premium() is False

    @pytest.mark.asyncio
    async def test_manual_resets(self, budget) -> None:
        await budget.record(3.0)
        budget.reset_daily()
        assert budget.limits.daily_usage == 0.0
        assert budget.limits.monthly_usage == pytest.approx(3.0)

        budget.reset_monthly()
        assert budget.limits.monthly_usage == 0.0

    @pytest.mark.asyncio
    async def test_status_reports_utilisation(self, budget) -> None:
        await budget.record(8.0)
        status = budget.status()

        assert status["usage"]["daily"] == pytest.approx(8.0)
        assert status["budget_limits"] == {"daily": 10.0, "monthly": 100.0}
        assert status["remaining_budget"]["daily"] == pytest.approx(2.0)
        assert status["utilization_percentage"]["daily"] == pytest.approx(80.0)
        assert status["utilization_percentage"]["monthly"] == pytest.approx(8.0)

    def test_zero_limit_reports_zero_utilisation(self, clock) -> None:
        budget = SpendingBudget("off", daily_limit=0.0, monthly_limit=0.0, clock=clock)
        assert budget.status()["utilization_percentage"]["daily"] == 0.0
        assert budget.can_afford(0.0) is True
        assert budget.can_afford(0.01) is False
