"""Metered credit ledger (Vertex AI style monetary balance)."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from bonsai.models.quota import CreditBalance, utcnow

log = structlog.get_logger(__name__)


class CreditLedger:
    """Tracks spend against a fixed credit balance.

    Daily and monthly spend roll over on calendar boundaries. ``halt()`` is
    the emergency stop: the balance is left intact but no spend is approved
    until ``resume()``.
    """

    USAGE_WARNING_PCT = 80.0
    DAILY_SPEND_WARNING = 10.0
    DAYS_REMAINING_WARNING = 7

    def __init__(
        self,
        total_credits: float,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._clock = clock
        self._balance = CreditBalance(total_credits=total_credits, last_updated=clock())
        self._halted = False
        self._lock = asyncio.Lock()

    @property
    def balance(self) -> CreditBalance:
        self._refresh_periods()
        return self._balance

    @property
    def remaining_credits(self) -> float:
        return self._balance.remaining_credits

    @property
    def available_credits(self) -> float:
        """Credits that may still be spent (zero while halted)."""
        return 0.0 if self._halted else max(self._balance.remaining_credits, 0.0)

    @property
    def is_halted(self) -> bool:
        return self._halted

    def has_enough(self, estimated_cost: float) -> bool:
        self._refresh_periods()
        return not self._halted and self._balance.remaining_credits >= estimated_cost

    def has_credits(self) -> bool:
        """True while a positive balance can be spent."""
        return self.available_credits > 0

    async def record_spend(self, cost: float) -> None:
        async with self._lock:
            self._refresh_periods()
            self._balance.used_credits += cost
            self._balance.daily_spend += cost
            self._balance.monthly_spend += cost

        log.info(
            "credit_ledger.spend_recorded",
            cost=round(cost, 6),
            remaining_credits=round(self._balance.remaining_credits, 4),
            daily_spend=round(self._balance.daily_spend, 4),
        )

    def halt(self) -> None:
        if not self._halted:
            self._halted = True
            log.warning("credit_ledger.halted", remaining_credits=self._balance.remaining_credits)

    def resume(self) -> None:
        if self._halted:
            self._halted = False
            log.info("credit_ledger.resumed", remaining_credits=self._balance.remaining_credits)

    def estimated_days_remaining(self) -> int | None:
        """Whole days of credit left at today's spend rate; None when nothing was spent today."""
        balance = self.balance
        if balance.daily_spend <= 0:
            return None
        return math.floor(balance.remaining_credits / balance.daily_spend)

    def warnings(self) -> list[str]:
        balance = self.balance
        warnings: list[str] = []
        if balance.usage_percentage > self.USAGE_WARNING_PCT:
            warnings.append("Vertex AI credits usage above 80%")
        if balance.daily_spend > self.DAILY_SPEND_WARNING:
            warnings.append("Daily Vertex AI spending above £10")
        days = self.estimated_days_remaining()
        if days is not None and days < self.DAYS_REMAINING_WARNING:
            warnings.append(f"Vertex AI credits will run out in {days} days")
        return warnings

    def status(self) -> dict[str, Any]:
        balance = self.balance
        return {
            "total_credits": balance.total_credits,
            "used_credits": balance.used_credits,
            "remaining_credits": balance.remaining_credits,
            "available_credits": self.available_credits,
            "usage_percentage": balance.usage_percentage,
            "daily_spend": balance.daily_spend,
            "monthly_spend": balance.monthly_spend,
            "estimated_days_remaining": self.estimated_days_remaining(),
            "halted": self._halted,
            "last_updated": balance.last_updated.isoformat(),
        }

    def _refresh_periods(self) -> None:
        """Reset daily/monthly spend if a new period has started."""
        now = self._clock()
        last = self._balance.last_updated
        if now.date() != last.date():
            log.info("credit_ledger.daily_reset", previous_spend=self._balance.daily_spend)
            self._balance.daily_spend = 0.0
        if (now.year, now.month) != (last.year, last.month):
            log.info("credit_ledger.monthly_reset", previous_spend=self._balance.monthly_spend)
            self._balance.monthly_spend = 0.0
        self._balance.last_updated = now
