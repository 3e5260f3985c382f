"""Quota, credit and budget state for routable models and provider accounts.

These are plain in-memory dataclasses. Mutation happens only through the
accounting layer (ProviderAccountPool, CreditLedger, SpendingBudget) and the
RoutingEngine, which own the locking and day/month rollover rules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(UTC)


class Tier(StrEnum):
    """Billing tier of a model or account."""

    FREE = "free"
    PAID = "paid"


class Backend(StrEnum):
    """Which provider service executes calls for a model."""

    GOOGLE_AI = "google_ai"
    VERTEX_AI = "vertex_ai"
    DEEPSEEK = "deepseek"
    OPENROUTER = "openrouter"


@dataclass
class ModelSpec:
    """A callable backend unit known to the RoutingEngine.

    Attributes:
        id: Routing identifier (e.g. "gemini-2.5-pro-account-1")
        name: Display name used in reasoning strings
        provider: Provider display name reported in responses
        tier: Free or paid
        backend: Provider service that executes the call
        cost_per_token: Estimated cost per token, used for budget checks
        daily_quota: Daily token quota for this model
        max_tokens: Maximum output tokens
        capabilities: Declared capability tags (text, reasoning, code, ...)
        upstream_model: Model name sent to the provider API
        account_id: Provider account this model is pinned to, if any
        rotation_group: Models sharing a group are load-balanced by headroom
        used_today: Tokens consumed since last_reset
        last_reset: When used_today was last zeroed
        is_available: False after an emergency brake
    """

    id: str
    name: str
    provider: str
    tier: Tier
    backend: Backend
    cost_per_token: float
    daily_quota: int
    max_tokens: int
    capabilities: frozenset[str] = frozenset()
    upstream_model: str = ""
    account_id: str | None = None
    rotation_group: str | None = None
    used_today: int = 0
    last_reset: datetime = field(default_factory=utcnow)
    is_available: bool = True

    def __post_init__(self) -> None:
        """Validate model spec after initialization."""
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be positive")
        if self.daily_quota < 0:
            raise ValueError("daily_quota cannot be negative")
        if self.cost_per_token < 0:
            raise ValueError("cost_per_token cannot be negative")
        self.tier = Tier(self.tier)
        self.backend = Backend(self.backend)
        self.capabilities = frozenset(self.capabilities)
        if not self.upstream_model:
            self.upstream_model = self.id

    @property
    def is_free(self) -> bool:
        return self.tier == Tier.FREE

    @property
    def remaining_quota(self) -> int:
        return max(self.daily_quota - self.used_today, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "tier": self.tier.value,
            "cost_per_token": self.cost_per_token,
            "daily_quota": self.daily_quota,
            "used_today": self.used_today,
            "remaining_quota": self.remaining_quota,
            "max_tokens": self.max_tokens,
            "capabilities": sorted(self.capabilities),
            "is_available": self.is_available,
            "last_reset": self.last_reset.isoformat(),
        }


@dataclass
class ProviderAccount:
    """One credentialed account of a provider with its own daily quota."""

    id: str
    name: str
    api_key: str = field(repr=False)
    daily_quota: int
    tier: Tier = Tier.FREE
    used_today: int = 0
    last_reset: datetime = field(default_factory=utcnow)
    is_active: bool = True
    rate_limit_until: datetime | None = None

    @property
    def remaining_quota(self) -> int:
        return max(self.daily_quota - self.used_today, 0)

    def is_rate_limited(self, now: datetime) -> bool:
        return self.rate_limit_until is not None and self.rate_limit_until > now


@dataclass
class CreditBalance:
    """Metered monetary balance (GBP). remaining_credits is always derived."""

    total_credits: float
    used_credits: float = 0.0
    daily_spend: float = 0.0
    monthly_spend: float = 0.0
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def remaining_credits(self) -> float:
        return self.total_credits - self.used_credits

    @property
    def usage_percentage(self) -> float:
        if self.total_credits <= 0:
            return 100.0
        return self.used_credits / self.total_credits * 100.0


@dataclass
class BudgetLimits:
    """Daily/monthly spending ceilings and the usage counted against them.

    Attributes:
        daily_limit: Maximum spend per day
        monthly_limit: Maximum spend per month
        daily_usage: Spend recorded today
        monthly_usage: Spend recorded this month
        total_usage: Spend recorded since process start
        last_reset_date: Date of last daily reset (YYYY-MM-DD)
        last_reset_month: Month of last monthly reset (YYYY-MM)
    """

    daily_limit: float
    monthly_limit: float
    daily_usage: float = 0.0
    monthly_usage: float = 0.0
    total_usage: float = 0.0
    last_reset_date: str = ""
    last_reset_month: str = ""

    def __post_init__(self) -> None:
        """Initialize reset markers if not provided."""
        if not self.last_reset_date:
            self.last_reset_date = utcnow().strftime("%Y-%m-%d")
        if not self.last_reset_month:
            self.last_reset_month = utcnow().strftime("%Y-%m")

    @property
    def remaining_daily(self) -> float:
        return self.daily_limit - self.daily_usage

    @property
    def remaining_monthly(self) -> float:
        return self.monthly_limit - self.monthly_usage
