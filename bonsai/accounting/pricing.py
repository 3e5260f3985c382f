"""Token estimation and per-provider pricing strategies.

Every paid provider prices calls differently: DeepSeek bills prompt and
completion tokens at separate per-million rates, Vertex AI uses a per-model
table per 1K tokens, and OpenRouter is approximated by model category. All
three share the PricingStrategy interface so clients and budget checks do
not care which one they hold.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

CHARS_PER_TOKEN = 4
RESPONSE_TOKEN_MULTIPLIER = 2


def estimate_tokens(prompt: str) -> int:
    """Estimate prompt plus response tokens for quota accounting.

    One token per four characters, doubled to approximate the response.
    Quota bookkeeping across the router depends on this exact formula.
    """
    return math.ceil(len(prompt) / CHARS_PER_TOKEN) * RESPONSE_TOKEN_MULTIPLIER


def count_tokens(text: str) -> int:
    """Rough token count for text already produced (no response doubling)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class PricingStrategy(ABC):
    """Computes call cost for a provider."""

    @abstractmethod
    def cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        """Cost of a completed call."""

    def estimate(self, model: str, prompt: str) -> float:
        """Cost estimate before dispatch, splitting estimated tokens evenly."""
        tokens = estimate_tokens(prompt)
        prompt_share = tokens // 2
        return self.cost(model, prompt_share, tokens - prompt_share)


class FreePricing(PricingStrategy):
    def cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        return 0.0


@dataclass(frozen=True)
class SplitRatePricing(PricingStrategy):
    """Separate prompt/completion rates quoted per million tokens."""

    input_per_million: float
    output_per_million: float

    def cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        return (
            prompt_tokens * self.input_per_million
            + completion_tokens * self.output_per_million
        ) / 1_000_000


@dataclass(frozen=True)
class PerThousandTablePricing(PricingStrategy):
    """Flat per-1K-token rate looked up by exact model name."""

    rates: Mapping[str, float]
    default_rate: float

    def rate_for(self, model: str) -> float:
        return self.rates.get(model, self.default_rate)

    def cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens + completion_tokens) / 1000 * self.rate_for(model)


@dataclass(frozen=True)
class CategoryPricing(PricingStrategy):
    """Per-1K-token rate chosen by the first substring rule matching the model name."""

    rules: tuple[tuple[str, float], ...]
    default_rate: float = field(default=0.001)

    def rate_for(self, model: str) -> float:
        for marker, rate in self.rules:
            if marker in model:
                return rate
        return self.default_rate

    def cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens + completion_tokens) / 1000 * self.rate_for(model)


# ------------------------------------------------------------------ #
# Published price constants
# ------------------------------------------------------------------ #

DEEPSEEK_INPUT_PER_MILLION = 0.14
DEEPSEEK_OUTPUT_PER_MILLION = 0.28

# GBP per 1K tokens
VERTEX_RATES_PER_1K: Mapping[str, float] = MappingProxyType(
    {
        "gemini-pro": 0.0005,
        "gemini-pro-vision": 0.0025,
        "gemini-ultra": 0.008,
        "text-bison": 0.0003,
        "chat-bison": 0.0003,
    }
)
VERTEX_DEFAULT_RATE_PER_1K = 0.0005

# Checked in order; "free" must win over the family markers
OPENROUTER_CATEGORY_RATES_PER_1K: tuple[tuple[str, float], ...] = (
    ("free", 0.0),
    ("gpt-4", 0.01),
    ("claude", 0.008),
    ("llama", 0.0002),
)
OPENROUTER_DEFAULT_RATE_PER_1K = 0.001

FREE_PRICING = FreePricing()
DEEPSEEK_PRICING = SplitRatePricing(
    input_per_million=DEEPSEEK_INPUT_PER_MILLION,
    output_per_million=DEEPSEEK_OUTPUT_PER_MILLION,
)
VERTEX_PRICING = PerThousandTablePricing(
    rates=VERTEX_RATES_PER_1K,
    default_rate=VERTEX_DEFAULT_RATE_PER_1K,
)
OPENROUTER_PRICING = CategoryPricing(
    rules=OPENROUTER_CATEGORY_RATES_PER_1K,
    default_rate=OPENROUTER_DEFAULT_RATE_PER_1K,
)
