"""Explicit construction of the routing stack.

Every component is built here from Settings and handed to the next one, so
tests and the application lifespan own exactly one instance of each and no
module holds process-wide state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx
import structlog

from bonsai.accounting.credits import CreditLedger
from bonsai.accounting.pool import ProviderAccountPool
from bonsai.accounting.spending import SpendingBudget
from bonsai.config import Settings
from bonsai.models.quota import Backend, ProviderAccount, utcnow
from bonsai.providers import google_ai
from bonsai.providers.deepseek import DeepSeekClient, DeepSeekService
from bonsai.providers.google_ai import GoogleAIClient, GoogleAIService
from bonsai.providers.openrouter import OpenRouterClient, OpenRouterService
from bonsai.providers.vertex_ai import VertexAIClient, VertexAIService
from bonsai.routing.engine import EnhancedRoutingEngine
from bonsai.routing.history import RoutingHistory
from bonsai.routing.router import RoutingEngine, default_models
from bonsai.variants import VariantCatalog

log = structlog.get_logger(__name__)


@dataclass
class Container:
    """The wired engine plus the HTTP client it was built on."""

    settings: Settings
    engine: EnhancedRoutingEngine
    http_client: httpx.AsyncClient
    owns_http_client: bool
    started_at: datetime

    async def aclose(self) -> None:
        if self.owns_http_client:
            await self.http_client.aclose()
        log.info("container.closed")


def google_accounts(settings: Settings, *, clock: Callable[[], datetime] = utcnow) -> list[ProviderAccount]:
    """One free-tier account per configured key slot. Empty keys start inactive."""
    keys = (settings.google_ai_studio_key_1, settings.google_ai_studio_key_2)
    accounts = []
    for index, (account_id, key) in enumerate(zip(google_ai.ACCOUNT_IDS, keys, strict=True), start=1):
        api_key = key.get_secret_value()
        accounts.append(
            ProviderAccount(
                id=account_id,
                name=f"Google AI Studio {index}",
                api_key=api_key,
                daily_quota=settings.google_ai_daily_quota,
                last_reset=clock(),
                is_active=bool(api_key),
            )
        )
    return accounts


def build_container(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> Container:
    """Build every provider, ledger and engine from settings.

    Args:
        settings: Application settings
        http_client: Shared client for all providers; created (and later
            closed by Container.aclose) when omitted
        clock: Returns the current UTC time; injectable for tests
    """
    owns_http_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.provider_timeout_seconds),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
    client_kwargs = {
        "timeout": settings.provider_timeout_seconds,
        "max_attempts": settings.provider_max_attempts,
        "http_client": http_client,
    }

    pool = ProviderAccountPool(
        google_ai.PROVIDER_NAME,
        google_accounts(settings, clock=clock),
        cooldown=timedelta(seconds=settings.rate_limit_cooldown_seconds),
        clock=clock,
    )
    google = GoogleAIService(GoogleAIClient(**client_kwargs), pool)

    ledger = CreditLedger(settings.vertex_total_credits, clock=clock)
    vertex = VertexAIService(
        VertexAIClient(
            project_id=settings.google_cloud_project_id,
            api_key=settings.google_cloud_api_key.get_secret_value(),
            region=settings.google_cloud_region,
            **client_kwargs,
        ),
        ledger,
    )

    openrouter = OpenRouterService(
        OpenRouterClient(
            api_key=settings.openrouter_api_key.get_secret_value(),
            site_url=settings.openrouter_site_url,
            site_name=settings.openrouter_site_name,
            **client_kwargs,
        ),
        SpendingBudget(
            "openrouter",
            daily_limit=settings.openrouter_daily_budget,
            monthly_limit=settings.openrouter_monthly_budget,
            clock=clock,
        ),
    )

    deepseek = DeepSeekService(
        DeepSeekClient(api_key=settings.deepseek_api_key.get_secret_value(), **client_kwargs)
    )

    router = RoutingEngine(
        default_models(settings, clock=clock),
        budget=SpendingBudget(
            "router",
            daily_limit=settings.router_daily_budget,
            monthly_limit=settings.router_monthly_budget,
            clock=clock,
        ),
        account_pool=pool,
        credit_check=ledger.has_credits,
        clock=clock,
    )

    # Paid models whose provider has no credential never pass the availability filter
    configured = set(settings.configured_providers)
    for model in router.models:
        if model.backend.value not in configured and model.backend != Backend.GOOGLE_AI:
            model.is_available = False
            log.info("container.model_unconfigured", model_id=model.id, backend=model.backend.value)

    engine = EnhancedRoutingEngine(
        router=router,
        catalog=VariantCatalog(),
        google=google,
        vertex=vertex,
        openrouter=openrouter,
        deepseek=deepseek,
        history=RoutingHistory(settings.routing_history_size, window=settings.analytics_window),
    )

    log.info(
        "container.built",
        configured_providers=settings.configured_providers,
        owns_http_client=owns_http_client,
    )
    return Container(
        settings=settings,
        engine=engine,
        http_client=http_client,
        owns_http_client=owns_http_client,
        started_at=clock(),
    )
