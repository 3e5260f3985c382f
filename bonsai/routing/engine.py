"""EnhancedRoutingEngine - the entry point the HTTP layer calls.

Routing moves through PRIMARY, then each FALLBACK step, then EMERGENCY:

- PRIMARY: RoutingEngine picks a model from live quota and budget state and
  the call is dispatched to that model's provider service.
- FALLBACK: on any primary failure, the fixed FallbackChain is walked until
  one provider answers.
- EMERGENCY: when every step fails, a fixed apology is returned. ``route``
  never raises for a known variant.

Every finished top-level call lands in the bounded RoutingHistory that backs
analytics. History writes are best-effort.
"""

from __future__ import annotations

import dataclasses
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from functools import partial
from typing import Any

import structlog

from bonsai.errors import AllProvidersExhaustedError
from bonsai.models.quota import Backend, ModelSpec
from bonsai.models.routing import (
    Complexity,
    RoutingHistoryEntry,
    RoutingRequest,
    RoutingResponse,
)
from bonsai.providers import google_ai
from bonsai.providers.base import CompletionResult
from bonsai.providers.deepseek import DeepSeekService
from bonsai.providers.google_ai import GoogleAIService
from bonsai.providers.openrouter import PROVIDER_NAME as OPENROUTER_PROVIDER
from bonsai.providers.openrouter import OpenRouterService
from bonsai.providers.vertex_ai import PROVIDER_NAME as VERTEX_PROVIDER
from bonsai.providers.vertex_ai import VertexAIService
from bonsai.routing.fallback import FallbackChain
from bonsai.routing.history import RoutingHistory
from bonsai.routing.router import RoutingEngine
from bonsai.routing.status import (
    GoogleAIStatus,
    OpenRouterStatus,
    SystemStatus,
    VertexAIStatus,
    classify_health,
)
from bonsai.variants import PRIME_VARIANT_ID, Variant, VariantCatalog

log = structlog.get_logger(__name__)

EMERGENCY_PROVIDER = "system-fallback"
EMERGENCY_VARIANT = "emergency"
EMERGENCY_MESSAGE = (
    "I apologize, but I'm experiencing technical difficulties with all AI services. "
    'The request "{prompt}" couldn\'t be processed. Please try again in a few minutes '
    "or contact support if the issue persists."
)

COLLABORATION_PROVIDER = "AI Variants"
SYNTHESIS_TEMPLATE = (
    "Synthesize the following responses from different AI specialists:\n\n"
    "{responses}\n\n"
    "Original request: {prompt}\n\n"
    "Provide a coherent, comprehensive response that combines the best insights from each "
    "specialist."
)
VARIANT_RETRY_PREFIX = "The {name} variant encountered an error. Please handle this request: "

COMPLEXITY_TEMPERATURE: dict[Complexity, float] = {
    Complexity.SIMPLE: 0.3,
    Complexity.MEDIUM: 0.7,
    Complexity.COMPLEX: 0.9,
}

# Prompt length bounds used to infer complexity for variant routing
COMPLEX_PROMPT_CHARS = 1000
SIMPLE_PROMPT_CHARS = 100


def temperature_for(complexity: Complexity) -> float:
    return COMPLEXITY_TEMPERATURE[complexity]


def infer_complexity(prompt: str, requires_reasoning: bool = False) -> Complexity:
    if requires_reasoning or len(prompt) > COMPLEX_PROMPT_CHARS:
        return Complexity.COMPLEX
    if len(prompt) < SIMPLE_PROMPT_CHARS:
        return Complexity.SIMPLE
    return Complexity.MEDIUM


class RouteStream:
    """Async iterable of text chunks for one streamed request.

    ``result`` is set to the final RoutingResponse once the stream has been
    fully consumed. It stays None if the consumer stops early.
    """

    def __init__(
        self,
        engine: EnhancedRoutingEngine,
        request: RoutingRequest,
        variant: Variant,
    ) -> None:
        self._engine = engine
        self._request = request
        self._variant = variant
        self.result: RoutingResponse | None = None

    def __aiter__(self) -> AsyncIterator[str]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[str]:
        engine = self._engine
        request = self._request
        service = engine.openrouter
        model = service.cheapest_model(request.complexity)
        prompt = engine.catalog.build_prompt(self._variant, request)
        parts: list[str] = []

        try:
            stream = service.stream(
                prompt,
                model=model,
                temperature=temperature_for(request.complexity),
                max_tokens=request.max_tokens or self._variant.max_tokens,
                system_message=self._variant.system_prompt,
            )
            async with aclosing(stream):
                async for chunk in stream:
                    parts.append(chunk)
                    yield chunk
        except Exception as exc:
            log.warning(
                "enhanced_router.stream_failed",
                model=model,
                error_type=type(exc).__name__,
                error=str(exc),
                chunks_sent=len(parts),
            )
            response = await engine.route(dataclasses.replace(request, streaming=False))
            yield response.response
            self.result = response
            return

        text = "".join(parts)
        tokens, cost = await service.record_stream_usage(model, prompt, text)
        self.result = RoutingResponse(
            response=text,
            variant=self._variant.id,
            model=model,
            provider=OPENROUTER_PROVIDER,
            reasoning="Streaming response via OpenRouter",
            tokens_used=tokens,
            cost=cost,
            quota_remaining=service.budget.limits.remaining_daily,
        )
        engine.record(request, self.result, success=True)


class EnhancedRoutingEngine:
    """Fallback orchestration, streaming, collaboration and health reporting.

    All collaborators are injected; ``bonsai.container.build_container`` wires
    the production set.
    """

    def __init__(
        self,
        *,
        router: RoutingEngine,
        catalog: VariantCatalog,
        google: GoogleAIService,
        vertex: VertexAIService,
        openrouter: OpenRouterService,
        deepseek: DeepSeekService,
        history: RoutingHistory | None = None,
        fallback_chain: FallbackChain | None = None,
    ) -> None:
        self._router = router
        self._catalog = catalog
        self._google = google
        self._vertex = vertex
        self._openrouter = openrouter
        self._deepseek = deepseek
        self._history = history if history is not None else RoutingHistory()
        self._fallback = fallback_chain if fallback_chain is not None else FallbackChain()
        self._braked = False
        self._brake_disabled_accounts: list[str] = []

    @property
    def router(self) -> RoutingEngine:
        return self._router

    @property
    def catalog(self) -> VariantCatalog:
        return self._catalog

    @property
    def google(self) -> GoogleAIService:
        return self._google

    @property
    def vertex(self) -> VertexAIService:
        return self._vertex

    @property
    def openrouter(self) -> OpenRouterService:
        return self._openrouter

    @property
    def history(self) -> RoutingHistory:
        return self._history

    @property
    def fallback_chain(self) -> FallbackChain:
        return self._fallback

    @property
    def is_braked(self) -> bool:
        return self._braked

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #
    async def route(self, request: RoutingRequest) -> RoutingResponse:
        """Route one request to a provider, falling back and finally apologising.

        Raises:
            UnknownVariantError: If ``request.variant`` names no catalog entry
        """
        if request.collaboration:
            return await self.route_collaboration(request)

        variant = self._resolve_variant(request)
        prompt = self._catalog.build_prompt(variant, request)

        try:
            response = await self._route_primary(request, variant, prompt)
        except Exception as exc:
            log.warning(
                "enhanced_router.primary_failed",
                variant=variant.id,
                complexity=request.complexity.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        else:
            self.record(request, response, success=True)
            return response

        try:
            response, step, failed = await self._fallback.run(
                self._fallback_steps(request, variant, prompt)
            )
        except AllProvidersExhaustedError as exc:
            response = self._emergency_response(request, exc.attempted)
            self.record(request, response, success=False)
            return response

        response.fallbacks_used = failed
        log.info("enhanced_router.fallback_succeeded", step=step, failed_before=failed)
        self.record(request, response, success=True)
        return response

    async def _route_primary(
        self,
        request: RoutingRequest,
        variant: Variant,
        prompt: str,
    ) -> RoutingResponse:
        selection = self._router.route(request)
        model = selection.model
        result = await self._dispatch(
            model,
            prompt,
            system=variant.system_prompt,
            temperature=temperature_for(request.complexity),
            max_tokens=min(request.max_tokens or variant.max_tokens, model.max_tokens),
            complexity=request.complexity,
        )
        await self._router.update_usage(model.id, result.tokens_used, result.cost)
        return RoutingResponse(
            response=result.text,
            variant=variant.id,
            model=model.id,
            provider=model.provider,
            reasoning=selection.reasoning,
            tokens_used=result.tokens_used,
            cost=result.cost,
            quota_remaining=self._quota_remaining(model),
            collaboration_suggestions=self._catalog.suggest_collaboration(variant.id, request.prompt),
            next_steps=self._catalog.next_steps(variant.id),
        )

    async def _dispatch(
        self,
        model: ModelSpec,
        prompt: str,
        *,
        system: str,
        temperature: float,
        max_tokens: int,
        complexity: Complexity,
    ) -> CompletionResult:
        """Send a prompt to the provider service behind a model."""
        match model.backend:
            case Backend.GOOGLE_AI:
                if model.account_id is not None:
                    return await self._google.call_pro(
                        prompt,
                        system_instruction=system,
                        temperature=temperature,
                        max_tokens=max_tokens,
                        account_id=model.account_id,
                    )
                return await self._google.generate(
                    model.upstream_model,
                    prompt,
                    estimated_tokens=google_ai.FLASH_TOKEN_ESTIMATE,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    system_instruction=system,
                )
            case Backend.VERTEX_AI:
                return await self._vertex.call(
                    prompt,
                    model=self._vertex.optimal_model(complexity),
                    temperature=temperature,
                    max_tokens=max_tokens,
                    system_instruction=system,
                )
            case Backend.DEEPSEEK:
                return await self._deepseek.call(
                    prompt,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    system_message=system,
                )
            case Backend.OPENROUTER:
                return await self._openrouter.call(
                    prompt,
                    model=self._openrouter.cheapest_model(complexity),
                    temperature=temperature,
                    max_tokens=max_tokens,
                    system_message=system,
                )

    def _quota_remaining(self, model: ModelSpec) -> float:
        match model.backend:
            case Backend.GOOGLE_AI:
                return float(self._router.remaining_quota(model))
            case Backend.VERTEX_AI:
                return self._vertex.ledger.remaining_credits
            case Backend.OPENROUTER:
                return self._openrouter.budget.limits.remaining_daily
            case Backend.DEEPSEEK:
                return self._router.budget.limits.remaining_daily

    # ------------------------------------------------------------------ #
    # Fallback steps
    # ------------------------------------------------------------------ #
    def _fallback_steps(
        self,
        request: RoutingRequest,
        variant: Variant,
        prompt: str,
    ) -> dict[str, Callable[[], Awaitable[RoutingResponse]]]:
        return {
            "google-ai-free": partial(self._fallback_google_free, variant, prompt),
            "google-ai-pro": partial(self._fallback_google_pro, request, variant, prompt),
            "vertex-ai-express": partial(self._fallback_vertex, request, variant, prompt),
            "openrouter-free": partial(self._fallback_openrouter, request, variant, prompt, False),
            "openrouter-paid": partial(self._fallback_openrouter, request, variant, prompt, True),
        }

    async def _fallback_google_free(self, variant: Variant, prompt: str) -> RoutingResponse:
        result = await self._google.call_flash_8b(prompt)
        return RoutingResponse(
            response=result.text,
            variant=variant.id,
            model=google_ai.FLASH_8B_MODEL,
            provider=google_ai.PROVIDER_NAME,
            reasoning="Fallback to free Flash 8B model",
            tokens_used=result.tokens_used,
            quota_remaining=self._google.total_available_quota(),
        )

    async def _fallback_google_pro(
        self,
        request: RoutingRequest,
        variant: Variant,
        prompt: str,
    ) -> RoutingResponse:
        result = await self._google.call_pro(
            prompt,
            system_instruction=variant.system_prompt,
            temperature=temperature_for(request.complexity),
        )
        remaining = self._google.total_available_quota()
        return RoutingResponse(
            response=result.text,
            variant=variant.id,
            model=google_ai.PRO_MODEL,
            provider=google_ai.PROVIDER_NAME,
            reasoning=f"Fallback to Google AI Studio Pro ({result.account}), {remaining} tokens remaining",
            tokens_used=result.tokens_used,
            quota_remaining=remaining,
        )

    async def _fallback_vertex(
        self,
        request: RoutingRequest,
        variant: Variant,
        prompt: str,
    ) -> RoutingResponse:
        result = await self._vertex.call_express(
            prompt,
            request.complexity,
            system_instruction=variant.system_prompt,
        )
        remaining = self._vertex.ledger.remaining_credits
        return RoutingResponse(
            response=result.text,
            variant=variant.id,
            model=result.model,
            provider=VERTEX_PROVIDER,
            reasoning=f"Fallback to Vertex AI Express, £{remaining:.2f} credits remaining",
            tokens_used=result.tokens_used,
            cost=result.cost,
            quota_remaining=remaining,
        )

    async def _fallback_openrouter(
        self,
        request: RoutingRequest,
        variant: Variant,
        prompt: str,
        paid: bool,
    ) -> RoutingResponse:
        if paid:
            model = self._openrouter.cheapest_model(request.complexity)
            temperature = temperature_for(request.complexity)
        else:
            model = self._openrouter.cheapest_model(Complexity.SIMPLE)
            temperature = 0.7
        result = await self._openrouter.call(
            prompt,
            model=model,
            temperature=temperature,
            system_message=variant.system_prompt,
        )
        return RoutingResponse(
            response=result.text,
            variant=variant.id,
            model=result.model,
            provider=OPENROUTER_PROVIDER,
            reasoning=f"Fallback to OpenRouter {'paid' if paid else 'free'} model",
            tokens_used=result.tokens_used,
            cost=result.cost,
            quota_remaining=self._openrouter.budget.limits.remaining_daily,
        )

    def _emergency_response(self, request: RoutingRequest, attempted: list[str]) -> RoutingResponse:
        log.error("enhanced_router.emergency_response", attempted=attempted)
        return RoutingResponse(
            response=EMERGENCY_MESSAGE.format(prompt=request.prompt),
            variant=EMERGENCY_VARIANT,
            model=EMERGENCY_PROVIDER,
            provider=EMERGENCY_PROVIDER,
            reasoning=f"All services failed. Attempted: {', '.join(attempted)}",
            fallbacks_used=list(attempted),
        )

    # ------------------------------------------------------------------ #
    # Streaming
    # ------------------------------------------------------------------ #
    def stream_route(self, request: RoutingRequest) -> RouteStream:
        """Stream a response through OpenRouter.

        The variant is resolved eagerly so an unknown id raises here rather
        than on first iteration.
        """
        return RouteStream(self, request, self._resolve_variant(request))

    # ------------------------------------------------------------------ #
    # Variants and collaboration
    # ------------------------------------------------------------------ #
    async def route_to_variant(
        self,
        variant_id: str,
        request: RoutingRequest,
        *,
        requires_reasoning: bool = False,
    ) -> RoutingResponse:
        """Route a request as a specific variant.

        A failing specialist hands the request to prime once, with the prompt
        prefixed to say which variant failed.

        Raises:
            UnknownVariantError: If the id is not in the catalog
            Exception: Whatever prime raised, when prime itself fails
        """
        variant = self._catalog.get(variant_id)
        complexity = infer_complexity(request.prompt, requires_reasoning)
        variant_request = dataclasses.replace(
            request,
            complexity=complexity,
            studio=variant.id,
            variant=variant.id,
        )

        try:
            selection = self._router.route(variant_request)
            result = await self._dispatch(
                selection.model,
                self._catalog.build_prompt(variant, request),
                system=variant.system_prompt,
                temperature=variant.temperature,
                max_tokens=min(variant.max_tokens, selection.model.max_tokens),
                complexity=complexity,
            )
            await self._router.update_usage(selection.model.id, result.tokens_used, result.cost)
        except Exception as exc:
            if variant.id == PRIME_VARIANT_ID:
                raise
            log.warning(
                "enhanced_router.variant_failed",
                variant=variant.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            retry = dataclasses.replace(
                request,
                prompt=VARIANT_RETRY_PREFIX.format(name=variant.name) + request.prompt,
            )
            return await self.route_to_variant(
                PRIME_VARIANT_ID,
                retry,
                requires_reasoning=requires_reasoning,
            )

        if requires_reasoning and variant.id == PRIME_VARIANT_ID:
            reasoning = f"Selected {variant.name} based on request complexity and capabilities required."
        else:
            reasoning = selection.reasoning

        return RoutingResponse(
            response=result.text,
            variant=variant.id,
            model=selection.model.id,
            provider=selection.model.provider,
            reasoning=reasoning,
            tokens_used=result.tokens_used,
            cost=result.cost,
            quota_remaining=self._quota_remaining(selection.model),
            collaboration_suggestions=self._catalog.suggest_collaboration(variant.id, request.prompt),
            next_steps=self._catalog.next_steps(variant.id),
        )

    async def route_collaboration(self, request: RoutingRequest) -> RoutingResponse:
        """Ask several variants, then have prime synthesize their answers.

        Failed participants are left out of the synthesis and of the totals.
        If the synthesis itself fails, the request is routed normally.
        """
        members = self._catalog.collaborators(request.prompt, request.complexity)
        requires_reasoning = request.complexity == Complexity.COMPLEX
        contributions: list[RoutingResponse] = []

        try:
            for variant_id in members:
                try:
                    contributions.append(
                        await self.route_to_variant(
                            variant_id,
                            request,
                            requires_reasoning=requires_reasoning,
                        )
                    )
                except Exception as exc:
                    log.warning(
                        "enhanced_router.collaborator_failed",
                        variant=variant_id,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )

            synthesis_prompt = SYNTHESIS_TEMPLATE.format(
                responses="\n\n".join(
                    f"{self._catalog.get(c.variant).name}: {c.response}" for c in contributions
                ),
                prompt=request.prompt,
            )
            synthesis = await self.route_to_variant(
                PRIME_VARIANT_ID,
                RoutingRequest(prompt=synthesis_prompt, context=request.context),
            )
        except Exception as exc:
            log.warning(
                "enhanced_router.collaboration_failed",
                members=members,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return await self.route(dataclasses.replace(request, collaboration=False))

        parts = [*contributions, synthesis]
        suggestions = [
            s for c in contributions for s in c.collaboration_suggestions if s not in members
        ]
        next_steps = [step for c in contributions for step in c.next_steps]
        response = RoutingResponse(
            response=synthesis.response,
            variant=f"Collaboration: {', '.join(members)}",
            model=synthesis.model,
            provider=COLLABORATION_PROVIDER,
            reasoning=f"Collaborated between {len(members)} specialists",
            tokens_used=sum(p.tokens_used for p in parts),
            cost=sum(p.cost for p in parts),
            quota_remaining=synthesis.quota_remaining,
            collaboration_suggestions=list(dict.fromkeys(suggestions)),
            next_steps=list(dict.fromkeys(next_steps)),
        )
        self.record(request, response, success=True)
        return response

    # ------------------------------------------------------------------ #
    # Status, analytics, brake
    # ------------------------------------------------------------------ #
    def system_status(self) -> SystemStatus:
        accounts = [
            {
                "name": account["name"],
                "quota_used": account["quota_used"],
                "quota_total": account["quota_total"],
                "is_available": account["is_active"] and not account["is_rate_limited"],
            }
            for account in self._google.account_status()
        ]
        quota_remaining = self._google.total_available_quota()
        ledger = self._vertex.ledger
        limits = self._openrouter.budget.limits

        return SystemStatus(
            google_ai=GoogleAIStatus(accounts=accounts, total_quota_remaining=quota_remaining),
            vertex_ai=VertexAIStatus(
                credits_remaining=ledger.remaining_credits,
                daily_spend=ledger.balance.daily_spend,
                is_available=ledger.has_credits(),
            ),
            openrouter=OpenRouterStatus(
                daily_budget_used=limits.daily_usage,
                daily_budget_total=limits.daily_limit,
                is_available=limits.remaining_daily > 0,
            ),
            overall_health=classify_health(ledger.remaining_credits, quota_remaining),
            emergency_brake=self._braked,
            variants=self._catalog.status(),
        )

    def analytics(self) -> dict[str, Any]:
        return self._history.analytics()

    def record(self, request: RoutingRequest, response: RoutingResponse, *, success: bool) -> None:
        """Append to routing history; never raises."""
        try:
            self._history.append(
                RoutingHistoryEntry(request=request, response=response, success=success)
            )
        except Exception as exc:
            log.warning("enhanced_router.history_failed", error=str(exc))

    def emergency_brake(self) -> None:
        """Disable every paid avenue across all providers. Idempotent."""
        self._router.emergency_brake()
        self._brake_disabled_accounts.extend(self._google.emergency_disable())
        self._vertex.emergency_stop()
        self._openrouter.emergency_brake()
        self._deepseek.halt()
        if not self._braked:
            self._braked = True
            log.warning("enhanced_router.emergency_brake_activated")

    def release_brake(self) -> None:
        """Undo emergency_brake, re-enabling exactly what it disabled."""
        self._router.release_brake()
        self._google.enable(self._brake_disabled_accounts)
        self._brake_disabled_accounts.clear()
        self._vertex.resume()
        self._openrouter.release_brake()
        self._deepseek.resume()
        if self._braked:
            self._braked = False
            log.info("enhanced_router.emergency_brake_released")

    def reset_daily_usage(self) -> None:
        self._openrouter.reset_daily()
        self._router.reset_usage()
        self._router.budget.reset_daily()
        log.info("enhanced_router.daily_usage_reset")

    def _resolve_variant(self, request: RoutingRequest) -> Variant:
        variant_id = request.variant or self._catalog.classify(request.prompt)
        return self._catalog.get(variant_id)
