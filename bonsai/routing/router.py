"""RoutingEngine - layered model selection against live quota and budget state.

Selection runs in two steps. An availability filter drops models that are
braked, out of quota for the estimated tokens, or (when the cost budget
would be breached) paid. The survivors then go through six layers, first
match wins:

1. simple requests take a free model with an effectively unlimited quota
2. medium requests take the free pro model with the most headroom
3. complex requests take the metered-credit model while credits remain
4. code studio or complex requests take the heavy-compute paid model
5. any request takes the dynamic catch-all paid model
6. otherwise the first model that passed the filter
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from bonsai.accounting.pricing import estimate_tokens
from bonsai.accounting.spending import SpendingBudget
from bonsai.errors import NoModelAvailableError
from bonsai.models.quota import Backend, ModelSpec, ProviderAccount, Tier, utcnow
from bonsai.models.routing import Complexity, RoutingRequest
from bonsai.providers import deepseek, google_ai, openrouter, vertex_ai

if TYPE_CHECKING:
    from bonsai.accounting.pool import ProviderAccountPool
    from bonsai.config import Settings

log = structlog.get_logger(__name__)

# Free models with a daily quota above this count as unlimited
UNLIMITED_QUOTA_THRESHOLD = 500_000
PRO_ROTATION_GROUP = "gemini-pro"
CODE_STUDIO = "code"


@dataclass
class RouteSelection:
    """Outcome of one routing decision.

    Attributes:
        model: Selected model
        estimated_tokens: Token estimate the decision was based on
        estimated_cost: cost_per_token * estimated_tokens
        quota_remaining: Model headroom before the call
        reasoning: Human-readable explanation of the choice
    """

    model: ModelSpec
    estimated_tokens: int
    estimated_cost: float
    quota_remaining: int
    reasoning: str


def default_models(
    settings: Settings,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> list[ModelSpec]:
    """The routable model catalog, in selection order, with usage counted from now."""
    pro_accounts = [
        ModelSpec(
            id=f"gemini-2.5-pro-account-{index}",
            name=f"Gemini 2.5 Pro (Account {index})",
            provider=google_ai.PROVIDER_NAME,
            tier=Tier.FREE,
            backend=Backend.GOOGLE_AI,
            cost_per_token=0.0,
            daily_quota=settings.google_ai_daily_quota,
            max_tokens=google_ai.PRO_MAX_OUTPUT_TOKENS,
            capabilities=frozenset({"text", "reasoning", "code", "analysis", "thinking"}),
            upstream_model=google_ai.PRO_MODEL,
            account_id=account_id,
            rotation_group=PRO_ROTATION_GROUP,
        )
        for index, account_id in enumerate(google_ai.ACCOUNT_IDS, start=1)
    ]
    models = [
        ModelSpec(
            id="gemini-2.0-flash-lite",
            name="Gemini 2.0 Flash Lite",
            provider=google_ai.PROVIDER_NAME,
            tier=Tier.FREE,
            backend=Backend.GOOGLE_AI,
            cost_per_token=0.0,
            daily_quota=999_999,
            max_tokens=8192,
            capabilities=frozenset({"text", "simple-reasoning", "fast-response"}),
            upstream_model=google_ai.FLASH_LITE_MODEL,
        ),
        ModelSpec(
            id="gemini-1.5-flash-8b",
            name="Gemini 1.5 Flash 8B",
            provider=google_ai.PROVIDER_NAME,
            tier=Tier.FREE,
            backend=Backend.GOOGLE_AI,
            cost_per_token=0.0,
            daily_quota=999_999,
            max_tokens=8192,
            capabilities=frozenset({"text", "reasoning", "code", "fast-response"}),
            upstream_model=google_ai.FLASH_8B_MODEL,
        ),
        *pro_accounts,
        ModelSpec(
            id="vertex-express-gemini",
            name="Vertex AI Express (Gemini Pro)",
            provider=vertex_ai.PROVIDER_NAME,
            tier=Tier.PAID,
            backend=Backend.VERTEX_AI,
            cost_per_token=0.0005,
            daily_quota=1_000_000,
            max_tokens=32768,
            capabilities=frozenset({"text", "reasoning", "code", "analysis", "multimodal"}),
            upstream_model=vertex_ai.DEFAULT_MODEL,
        ),
        ModelSpec(
            id="deepseek-v3",
            name="DeepSeek V3",
            provider=deepseek.PROVIDER_NAME,
            tier=Tier.PAID,
            backend=Backend.DEEPSEEK,
            cost_per_token=0.00003,
            daily_quota=2_000_000,
            max_tokens=65536,
            capabilities=frozenset({"text", "reasoning", "code", "math", "heavy-computation"}),
            upstream_model=deepseek.DEEPSEEK_CHAT_MODEL,
        ),
        ModelSpec(
            id="openrouter-cheapest",
            name="OpenRouter (Dynamic)",
            provider=openrouter.PROVIDER_NAME,
            tier=Tier.PAID,
            backend=Backend.OPENROUTER,
            cost_per_token=0.0001,
            daily_quota=5_000_000,
            max_tokens=128000,
            capabilities=frozenset({"text", "reasoning", "code", "fallback"}),
        ),
    ]
    now = clock()
    for model in models:
        model.last_reset = now
    return models


class RoutingEngine:
    """Selects one concrete model for a request.

    Models pinned to a provider account (``account_id``) read their quota,
    activity and rate-limit state from the account pool, so the pool stays the
    single source of truth for per-account usage.
    """

    def __init__(
        self,
        models: Iterable[ModelSpec],
        *,
        budget: SpendingBudget,
        account_pool: ProviderAccountPool | None = None,
        credit_check: Callable[[], bool] = lambda: True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the engine.

        Args:
            models: Routable models in selection order
            budget: Cost budget; a breach restricts routing to free models
            account_pool: Pool backing account-pinned models
            credit_check: Returns True while the metered-credit provider can spend
            clock: Returns the current UTC time; injectable for tests
        """
        self._models: dict[str, ModelSpec] = {}
        for model in models:
            if model.id in self._models:
                raise ValueError(f"Duplicate model id: {model.id}")
            self._models[model.id] = model
        self._budget = budget
        self._pool = account_pool
        self._credit_check = credit_check
        self._clock = clock
        self._braked: list[str] = []
        self._lock = asyncio.Lock()

        log.info(
            "routing_engine.initialized",
            models=list(self._models),
            daily_budget=budget.limits.daily_limit,
        )

    @property
    def budget(self) -> SpendingBudget:
        return self._budget

    @property
    def is_braked(self) -> bool:
        return bool(self._braked)

    @property
    def models(self) -> list[ModelSpec]:
        return list(self._models.values())

    def get_model(self, model_id: str) -> ModelSpec | None:
        return self._models.get(model_id)

    def route(self, request: RoutingRequest) -> RouteSelection:
        """Select the model for a request.

        Raises:
            NoModelAvailableError: If the availability filter leaves nothing
        """
        self.reset_daily_quotas()
        estimated = estimate_tokens(request.prompt)
        available = self.available_models(estimated)
        if not available:
            log.warning(
                "routing_engine.no_model_available",
                complexity=request.complexity.value,
                estimated_tokens=estimated,
            )
            raise NoModelAvailableError("No available models for this request")

        model, layer = self._select(available, request)
        selection = RouteSelection(
            model=model,
            estimated_tokens=estimated,
            estimated_cost=model.cost_per_token * estimated,
            quota_remaining=self.remaining_quota(model),
            reasoning="",
        )
        selection.reasoning = self._reasoning(selection, request.complexity)

        log.info(
            "routing_engine.route_selected",
            model_id=model.id,
            provider=model.provider,
            layer=layer,
            complexity=request.complexity.value,
            studio=request.studio,
            estimated_tokens=estimated,
        )
        return selection

    def available_models(self, estimated_tokens: int) -> list[ModelSpec]:
        """Models that can serve the estimate, in catalog order."""
        return [m for m in self._models.values() if self._is_usable(m, estimated_tokens)]

    def remaining_quota(self, model: ModelSpec) -> int:
        account = self._account_for(model)
        if account is not None:
            return account.remaining_quota
        return model.remaining_quota

    def _select(self, available: list[ModelSpec], request: RoutingRequest) -> tuple[ModelSpec, int]:
        complexity = request.complexity

        if complexity == Complexity.SIMPLE:
            unlimited = [
                m for m in available if m.is_free and m.daily_quota > UNLIMITED_QUOTA_THRESHOLD
            ]
            if unlimited:
                return unlimited[0], 1

        if complexity == Complexity.MEDIUM:
            rotation = [
                m for m in available if m.is_free and m.rotation_group == PRO_ROTATION_GROUP
            ]
            if rotation:
                # max() keeps the first of equal candidates
                return max(rotation, key=self.remaining_quota), 2

        if complexity == Complexity.COMPLEX and self._credit_check():
            metered = _first(available, Backend.VERTEX_AI)
            if metered is not None:
                return metered, 3

        if request.studio == CODE_STUDIO or complexity == Complexity.COMPLEX:
            heavy = _first(available, Backend.DEEPSEEK)
            if heavy is not None:
                return heavy, 4

        catch_all = _first(available, Backend.OPENROUTER)
        if catch_all is not None:
            return catch_all, 5

        return available[0], 6

    def _is_usable(self, model: ModelSpec, estimated_tokens: int) -> bool:
        if not model.is_available:
            return False

        account = self._account_for(model)
        if account is not None:
            if not account.is_active or account.is_rate_limited(self._clock()):
                return False
            if account.used_today + estimated_tokens > account.daily_quota:
                return False
        elif model.used_today + estimated_tokens > model.daily_quota:
            return False

        if model.is_free:
            return True
        # Budget breach downgrades to free models rather than failing
        return self._budget.can_afford(model.cost_per_token * estimated_tokens)

    def _account_for(self, model: ModelSpec) -> ProviderAccount | None:
        if model.account_id is None or self._pool is None:
            return None
        return self._pool.get(model.account_id)

    def _reasoning(self, selection: RouteSelection, complexity: Complexity) -> str:
        model = selection.model
        if model.is_free:
            return (
                f"Selected {model.name} (free tier) - optimal for {complexity.value} complexity "
                f"tasks. {selection.quota_remaining} tokens remaining today."
            )
        return (
            f"Selected {model.name} (paid) - best performance for {complexity.value} complexity. "
            f"Estimated cost: £{selection.estimated_cost:.4f}."
        )

    def reset_daily_quotas(self) -> None:
        """Zero per-model usage for models last reset on an earlier UTC date."""
        now = self._clock()
        for model in self._models.values():
            if model.last_reset.date() != now.date():
                model.used_today = 0
                model.last_reset = now
        if self._pool is not None:
            self._pool.reset_if_new_day()

    def reset_usage(self) -> None:
        """Zero per-model usage immediately (manual daily reset)."""
        now = self._clock()
        for model in self._models.values():
            model.used_today = 0
            model.last_reset = now
        log.info("routing_engine.usage_reset")

    async def update_usage(self, model_id: str, tokens_used: int, cost: float) -> None:
        """Apply a completed call to the model's quota and the cost budget."""
        model = self._models.get(model_id)
        if model is None:
            log.warning("routing_engine.unknown_model", model_id=model_id)
            return

        async with self._lock:
            model.used_today += tokens_used
        await self._budget.record(cost)

    def emergency_brake(self) -> list[str]:
        """Mark every paid model unavailable. Returns the ids disabled by this call."""
        disabled = []
        for model in self._models.values():
            if model.tier == Tier.PAID and model.is_available:
                model.is_available = False
                disabled.append(model.id)
        self._braked.extend(disabled)
        if disabled:
            log.warning("routing_engine.emergency_brake", disabled=disabled)
        return disabled

    def release_brake(self) -> list[str]:
        """Re-enable exactly the models the brake disabled."""
        released = list(self._braked)
        for model_id in released:
            self._models[model_id].is_available = True
        self._braked.clear()
        if released:
            log.info("routing_engine.brake_released", enabled=released)
        return released

    def status(self) -> dict[str, Any]:
        self.reset_daily_quotas()
        models = []
        for model in self._models.values():
            entry = model.to_dict()
            entry["remaining_quota"] = self.remaining_quota(model)
            models.append(entry)
        return {
            "models": models,
            "budget": self._budget.status(),
            "braked": self.is_braked,
        }

    def cost_monitoring(self) -> dict[str, float]:
        self.reset_daily_quotas()
        free = [m for m in self._models.values() if m.is_free]
        paid = [m for m in self._models.values() if not m.is_free]
        limits = self._budget.limits
        return {
            "free_tokens_used": sum(m.used_today for m in free),
            "free_quota_remaining": sum(self.remaining_quota(m) for m in free),
            "paid_usage_cost": sum(m.used_today * m.cost_per_token for m in paid),
            "cost_today": limits.daily_usage,
            "budget_remaining": limits.remaining_daily,
            "cost_this_month": limits.monthly_usage,
            "monthly_budget_remaining": limits.remaining_monthly,
        }


def _first(models: list[ModelSpec], backend: Backend) -> ModelSpec | None:
    return next((m for m in models if m.backend == backend), None)
