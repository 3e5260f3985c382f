"""Routing error taxonomy.

Provider failures are raised as ProviderError subclasses and converted into
"try the next fallback" signals by the enhanced routing engine. Only
UnknownVariantError is meant to reach callers of ``route``.
"""

from __future__ import annotations


class RoutingError(Exception):
    """Base exception for all routing failures."""


class ProviderError(RoutingError):
    """A single provider invocation failed."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "unknown",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class QuotaExhaustedError(ProviderError):
    """No account or model has headroom for the estimated token count."""


class CreditsExhaustedError(QuotaExhaustedError):
    """Metered credit balance cannot cover the estimated cost."""


class RateLimitedError(ProviderError):
    """Upstream returned HTTP 429."""

    def __init__(self, message: str, *, provider: str = "unknown") -> None:
        super().__init__(message, provider=provider, status_code=429)


class BudgetExceededError(ProviderError):
    """Request would breach a daily or monthly spending ceiling."""


class ProviderUnavailableError(ProviderError):
    """Network, timeout, HTTP or parse failure not caused by quota or rate limiting."""


class NoModelAvailableError(RoutingError):
    """The availability filter left no model to route to."""


class AllProvidersExhaustedError(RoutingError):
    """Every step of the fallback chain failed."""

    def __init__(self, attempted: list[str]) -> None:
        super().__init__(f"All providers failed: {', '.join(attempted)}")
        self.attempted = list(attempted)


class UnknownVariantError(RoutingError):
    """Requested variant id is not in the catalog."""

    def __init__(self, variant_id: str) -> None:
        super().__init__(f"Unknown variant: {variant_id}")
        self.variant_id = variant_id
