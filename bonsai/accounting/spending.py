"""Daily/monthly spending ceilings.

Used twice: as the OpenRouter dollar budget (requests that would breach it
are rejected before dispatch) and as the RoutingEngine cost budget (a breach
downgrades routing to free-tier models instead of failing).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from bonsai.models.quota import BudgetLimits, utcnow

log = structlog.get_logger(__name__)


class SpendingBudget:
    """Enforces daily and monthly spend limits with automatic period rollover."""

    # Alert thresholds (fraction of daily limit)
    WARNING_THRESHOLD = 0.80
    CRITICAL_THRESHOLD = 0.95
    # Premium models only while under this fraction of the daily limit
    PREMIUM_HEADROOM = 0.5

    def __init__(
        self,
        name: str,
        *,
        daily_limit: float,
        monthly_limit: float,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._name = name
        self._clock = clock
        now = clock()
        self._limits = BudgetLimits(
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
            last_reset_date=now.strftime("%Y-%m-%d"),
            last_reset_month=now.strftime("%Y-%m"),
        )
        self._lock = asyncio.Lock()

        log.info(
            "spending_budget.initialized",
            budget=name,
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
        )

    @property
    def limits(self) -> BudgetLimits:
        self._maybe_reset_counters()
        return self._limits

    def can_afford(self, estimated_cost: float) -> bool:
        """Check whether a spend fits under both the daily and monthly limit."""
        limits = self.limits
        can_afford = (
            limits.daily_usage + estimated_cost <= limits.daily_limit
            and limits.monthly_usage + estimated_cost <= limits.monthly_limit
        )
        if not can_afford:
            log.warning(
                "spending_budget.budget_exceeded",
                budget=self._name,
                estimated_cost=estimated_cost,
                daily_remaining=limits.remaining_daily,
                monthly_remaining=limits.remaining_monthly,
            )
        return can_afford

    def can_afford_premium(self) -> bool:
        limits = self.limits
        return limits.daily_usage < limits.daily_limit * self.PREMIUM_HEADROOM

    async def record(self, cost: float) -> None:
        """Record actual spend and emit threshold alerts."""
        async with self._lock:
            self._maybe_reset_counters()
            self._limits.daily_usage += cost
            self._limits.monthly_usage += cost
            self._limits.total_usage += cost

        log.info(
            "spending_budget.spend_recorded",
            budget=self._name,
            cost=round(cost, 6),
            daily_used=round(self._limits.daily_usage, 6),
            daily_limit=self._limits.daily_limit,
            monthly_used=round(self._limits.monthly_usage, 6),
        )
        self._check_thresholds()

    def reset_daily(self) -> None:
        log.info("spending_budget.daily_reset", budget=self._name, previous_usage=self._limits.daily_usage)
        self._limits.daily_usage = 0.0
        self._limits.last_reset_date = self._clock().strftime("%Y-%m-%d")

    def reset_monthly(self) -> None:
        log.info(
            "spending_budget.monthly_reset",
            budget=self._name,
            previous_usage=self._limits.monthly_usage,
        )
        self._limits.monthly_usage = 0.0
        self._limits.last_reset_month = self._clock().strftime("%Y-%m")

    def status(self) -> dict[str, Any]:
        limits = self.limits
        return {
            "usage": {
                "daily": limits.daily_usage,
                "monthly": limits.monthly_usage,
                "total": limits.total_usage,
            },
            "budget_limits": {"daily": limits.daily_limit, "monthly": limits.monthly_limit},
            "remaining_budget": {
                "daily": limits.remaining_daily,
                "monthly": limits.remaining_monthly,
            },
            "utilization_percentage": {
                "daily": _percentage(limits.daily_usage, limits.daily_limit),
                "monthly": _percentage(limits.monthly_usage, limits.monthly_limit),
            },
        }

    def _maybe_reset_counters(self) -> None:
        """Reset daily/monthly counters if new period has started."""
        now = self._clock()
        current_date = now.strftime("%Y-%m-%d")
        current_month = now.strftime("%Y-%m")

        if current_date != self._limits.last_reset_date:
            self.reset_daily()
        if current_month != self._limits.last_reset_month:
            self.reset_monthly()

    def _check_thresholds(self) -> None:
        limits = self._limits
        if limits.daily_limit <= 0:
            return
        usage = limits.daily_usage / limits.daily_limit
        if usage >= self.CRITICAL_THRESHOLD:
            log.error(
                "spending_budget.critical_threshold",
                budget=self._name,
                usage_pct=round(usage * 100, 2),
            )
        elif usage >= self.WARNING_THRESHOLD:
            log.warning(
                "spending_budget.warning_threshold",
                budget=self._name,
                usage_pct=round(usage * 100, 2),
            )


def _percentage(used: float, limit: float) -> float:
    return used / limit * 100.0 if limit > 0 else 0.0
