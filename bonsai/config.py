"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (or a .env file in dev).
Provider credentials, quotas, budgets and routing limits live here so the
rest of the package receives them through explicit construction.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_json: bool | None = Field(
        default=None,
        description="Emit JSON logs. Defaults to True in production, False elsewhere.",
    )
    log_level: str = "INFO"
    cors_allowed_origins: list[str] = Field(
        default=["http://localhost:5173", "http://localhost:3000"],
        description="Allowed CORS origins. In production, set to actual frontend URLs.",
    )

    # ------------------------------------------------------------------ #
    # Google AI Studio (free tier, one key per account)
    # ------------------------------------------------------------------ #
    google_ai_studio_key_1: SecretStr = Field(
        default=SecretStr(""),
        description="API key for Google AI Studio account 1",
    )
    google_ai_studio_key_2: SecretStr = Field(
        default=SecretStr(""),
        description="API key for Google AI Studio account 2",
    )
    google_ai_daily_quota: int = Field(
        default=300_000,
        ge=0,
        description="Daily token quota per Google AI Studio account",
    )

    # ------------------------------------------------------------------ #
    # Vertex AI (metered credits)
    # ------------------------------------------------------------------ #
    google_cloud_project_id: str = ""
    google_cloud_region: str = "us-central1"
    google_cloud_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer credential for Vertex AI requests",
    )
    vertex_total_credits: float = Field(
        default=240.0,
        ge=0,
        description="Total Vertex AI credit balance in GBP",
    )

    # ------------------------------------------------------------------ #
    # OpenRouter (dollar budget)
    # ------------------------------------------------------------------ #
    openrouter_api_key: SecretStr = Field(default=SecretStr(""))
    openrouter_site_url: str = "https://bons-ai.dev"
    openrouter_site_name: str = "Bons-AI Platform"
    openrouter_daily_budget: float = Field(default=10.0, ge=0)
    openrouter_monthly_budget: float = Field(default=100.0, ge=0)

    # ------------------------------------------------------------------ #
    # DeepSeek
    # ------------------------------------------------------------------ #
    deepseek_api_key: SecretStr = Field(default=SecretStr(""))

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #
    router_daily_budget: float = Field(
        default=50.0,
        ge=0,
        description="Daily cost ceiling across paid models before routing downgrades to free tier",
    )
    router_monthly_budget: float = Field(default=500.0, ge=0)
    provider_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-call HTTP timeout for provider requests",
    )
    provider_max_attempts: int = Field(
        default=2,
        ge=1,
        description="Attempts per provider call on transport errors (429 is never retried)",
    )
    rate_limit_cooldown_seconds: int = Field(default=60, ge=0)
    routing_history_size: int = Field(default=100, ge=1)
    analytics_window: int = Field(default=50, ge=1)

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _validate_production_credentials(self) -> Settings:
        """Refuse to start in production without any provider credential.

        Every routing avenue would end in the emergency response, which is
        a misconfiguration rather than a degraded state.
        """
        if self.environment != Environment.PROD:
            return self

        if not self.configured_providers:
            raise RuntimeError(
                "PRODUCTION STARTUP BLOCKED -- No provider credentials configured. "
                "Set at least one of GOOGLE_AI_STUDIO_KEY_1, GOOGLE_AI_STUDIO_KEY_2, "
                "GOOGLE_CLOUD_API_KEY, OPENROUTER_API_KEY or DEEPSEEK_API_KEY."
            )
        return self

    @property
    def configured_providers(self) -> list[str]:
        providers: list[str] = []
        if (
            self.google_ai_studio_key_1.get_secret_value()
            or self.google_ai_studio_key_2.get_secret_value()
        ):
            providers.append("google_ai")
        if self.google_cloud_api_key.get_secret_value() and self.google_cloud_project_id:
            providers.append("vertex_ai")
        if self.openrouter_api_key.get_secret_value():
            providers.append("openrouter")
        if self.deepseek_api_key.get_secret_value():
            providers.append("deepseek")
        return providers

    @property
    def json_logs(self) -> bool:
        return self.is_prod if self.log_json is None else self.log_json

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    Use FastAPI dependency injection via Depends(get_settings) in endpoints,
    or call directly in non-request contexts (startup, scripts).
    """
    return Settings()
