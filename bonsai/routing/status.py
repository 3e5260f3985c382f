"""System health snapshot across providers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from bonsai.models.routing import HealthLevel

# Health thresholds: credits in GBP, quota in tokens
CRITICAL_CREDITS = 50
CRITICAL_QUOTA = 50_000
WARNING_CREDITS = 100
WARNING_QUOTA = 100_000
GOOD_CREDITS = 200
GOOD_QUOTA = 200_000


def classify_health(credits_remaining: float, quota_remaining: int) -> HealthLevel:
    """Overall health from remaining metered credits and free-tier quota.

    Critical needs both to be low; every other level trips on either.
    """
    if credits_remaining < CRITICAL_CREDITS and quota_remaining < CRITICAL_QUOTA:
        return HealthLevel.CRITICAL
    if credits_remaining < WARNING_CREDITS or quota_remaining < WARNING_QUOTA:
        return HealthLevel.WARNING
    if credits_remaining < GOOD_CREDITS or quota_remaining < GOOD_QUOTA:
        return HealthLevel.GOOD
    return HealthLevel.EXCELLENT


@dataclass
class GoogleAIStatus:
    accounts: list[dict[str, Any]]
    total_quota_remaining: int


@dataclass
class VertexAIStatus:
    credits_remaining: float
    daily_spend: float
    is_available: bool


@dataclass
class OpenRouterStatus:
    daily_budget_used: float
    daily_budget_total: float
    is_available: bool


@dataclass
class SystemStatus:
    google_ai: GoogleAIStatus
    vertex_ai: VertexAIStatus
    openrouter: OpenRouterStatus
    overall_health: HealthLevel
    emergency_brake: bool = False
    variants: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["overall_health"] = self.overall_health.value
        return data
