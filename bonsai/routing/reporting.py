"""Usage report and optimisation suggestions built from live engine state."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from bonsai.models.quota import utcnow
from bonsai.models.routing import HealthLevel
from bonsai.providers import google_ai
from bonsai.providers.vertex_ai import PROVIDER_NAME as VERTEX_PROVIDER

if TYPE_CHECKING:
    from bonsai.routing.engine import EnhancedRoutingEngine
    from bonsai.routing.status import SystemStatus

# Providers counted as free-tier in the free-vs-paid ratio
FREE_PROVIDERS = frozenset({google_ai.PROVIDER_NAME, VERTEX_PROVIDER})
# Share of successful requests assumed to have been routed optimally
OPTIMAL_ROUTING_FACTOR = 0.9

VERTEX_USAGE_SUGGESTION_PCT = 80.0
GOOGLE_QUOTA_SUGGESTION = 50_000
OPENROUTER_UTILISATION_SUGGESTION_PCT = 70.0
# Spread remaining credits over this many days
CREDIT_PACING_DAYS = 30


def optimization_suggestions(
    status: SystemStatus,
    vertex: dict[str, Any],
    openrouter: dict[str, Any],
) -> list[str]:
    suggestions: list[str] = []
    if vertex["usage_percentage"] > VERTEX_USAGE_SUGGESTION_PCT:
        suggestions.append("Vertex AI credits running low - consider using more free models")
    if status.google_ai.total_quota_remaining < GOOGLE_QUOTA_SUGGESTION:
        suggestions.append("Google AI quota running low - optimize request frequency")
    if openrouter["utilization_percentage"]["daily"] > OPENROUTER_UTILISATION_SUGGESTION_PCT:
        suggestions.append("OpenRouter daily budget usage high - switch to free alternatives")
    if status.overall_health == HealthLevel.WARNING:
        suggestions.append("System health degraded - consider reducing request complexity")
    if not suggestions:
        suggestions.append("System operating optimally - maintain current usage patterns")
    return suggestions


def free_vs_paid_ratio(provider_usage: dict[str, int]) -> float:
    total = sum(provider_usage.values())
    if not total:
        return 0.0
    free = sum(count for provider, count in provider_usage.items() if provider in FREE_PROVIDERS)
    return free / total * 100


def build_usage_report(
    engine: EnhancedRoutingEngine,
    *,
    detailed: bool = False,
    started_at: datetime | None = None,
) -> dict[str, Any]:
    """Summary, per-provider, optimisation and realtime sections.

    Args:
        engine: Engine whose providers and history are reported
        detailed: Add cost breakdown and quota projections
        started_at: Process start time, for the uptime figure
    """
    now = utcnow()
    accounts = engine.google.account_status()
    vertex = engine.vertex.credits_status()
    openrouter = engine.openrouter.usage_stats()
    status = engine.system_status()
    analytics = engine.analytics()

    quota_used = sum(a["quota_used"] for a in accounts)
    quota_total = sum(a["quota_total"] for a in accounts)

    report: dict[str, Any] = {
        "summary": {
            "total_requests": analytics["total_requests"],
            "success_rate": analytics["success_rate"],
            "average_cost": analytics["average_cost"],
            "total_cost_today": vertex["daily_spend"] + openrouter["usage"]["daily"],
            "free_tokens_used": quota_used,
            "free_quota_remaining": quota_total - quota_used,
        },
        "providers": {
            "google_ai": {
                "accounts": accounts,
                "total_quota_used": quota_used,
                "total_quota_available": quota_total,
                "efficiency": quota_used / quota_total * 100 if quota_total else 0.0,
            },
            "vertex_ai": {
                **vertex,
                "efficiency": vertex["usage_percentage"],
                "warnings": engine.vertex.credit_warnings(),
            },
            "openrouter": {
                **openrouter,
                "efficiency": openrouter["utilization_percentage"]["daily"],
            },
        },
        "optimization": {
            "free_vs_paid_ratio": free_vs_paid_ratio(analytics["provider_usage"]),
            "cost_per_request": analytics["average_cost"],
            "tokens_per_request": analytics["average_tokens"],
            "optimal_routing": analytics["success_rate"] * OPTIMAL_ROUTING_FACTOR,
            "suggested_actions": optimization_suggestions(status, vertex, openrouter),
        },
        "realtime": {
            "active_providers": len(analytics["provider_usage"]),
            "active_variants": len(analytics["variant_usage"]),
            "system_health": status.overall_health.value,
            "emergency_brake": engine.is_braked,
            "timestamp": now.isoformat(),
            "uptime_seconds": (now - started_at).total_seconds() if started_at else None,
        },
    }

    if detailed:
        report["detailed"] = {
            "provider_breakdown": analytics["provider_usage"],
            "variant_breakdown": analytics["variant_usage"],
            "cost_breakdown": _cost_breakdown(vertex, openrouter),
            "quota_projections": _quota_projections(quota_used, quota_total, vertex, now),
        }
    return report


def _cost_breakdown(vertex: dict[str, Any], openrouter: dict[str, Any]) -> dict[str, Any]:
    vertex_today = vertex["daily_spend"]
    openrouter_today = openrouter["usage"]["daily"]
    today = vertex_today + openrouter_today
    return {
        "vertex": {
            "today": vertex_today,
            "month": vertex["monthly_spend"],
            "percentage": vertex_today / today * 100 if today else 0.0,
        },
        "openrouter": {
            "today": openrouter_today,
            "month": openrouter["usage"]["monthly"],
            "percentage": openrouter_today / today * 100 if today else 0.0,
        },
        "total": {
            "today": today,
            "month": vertex["monthly_spend"] + openrouter["usage"]["monthly"],
        },
    }


def _quota_projections(
    quota_used: int,
    quota_total: int,
    vertex: dict[str, Any],
    now: datetime,
) -> dict[str, Any]:
    hours_elapsed = max(now.hour, 1)
    hourly_rate = quota_used / hours_elapsed
    return {
        "google": {
            "projected_daily_usage": min(hourly_rate * 24, quota_total),
            "days_until_exhaustion": (
                (quota_total - quota_used) / (hourly_rate * 24) if hourly_rate > 0 else None
            ),
            "recommended_pacing": quota_total / 24,
        },
        "vertex": {
            "projected_daily_spend": vertex["daily_spend"] * (24 / hours_elapsed),
            "days_until_exhaustion": vertex["estimated_days_remaining"],
            "recommended_daily_limit": vertex["remaining_credits"] / CREDIT_PACING_DAYS,
        },
    }
