"""Request, response and history types exchanged with the routing engines."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class Complexity(StrEnum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class Urgency(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CostPriority(StrEnum):
    FREE = "free"
    BALANCED = "balanced"
    PREMIUM = "premium"


class HealthLevel(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class ChatTurn:
    role: str
    content: str


@dataclass
class RoutingRequest:
    """A single routing request.

    String values for complexity and urgency are coerced to their enums so
    callers (and the API layer) can pass plain strings.
    """

    prompt: str
    complexity: Complexity = Complexity.MEDIUM
    studio: str | None = None
    variant: str | None = None
    user_preference: str | None = None
    context: str | None = None
    previous_messages: list[ChatTurn] = field(default_factory=list)
    urgency: Urgency = Urgency.MEDIUM
    collaboration: bool = False
    streaming: bool = False
    max_tokens: int | None = None

    def __post_init__(self) -> None:
        self.complexity = Complexity(self.complexity)
        self.urgency = Urgency(self.urgency)
        if self.max_tokens is not None and self.max_tokens < 1:
            raise ValueError("max_tokens must be positive")


@dataclass
class RoutingResponse:
    """Normalized result of a routing call, whichever provider served it."""

    response: str
    variant: str
    model: str
    provider: str
    reasoning: str
    tokens_used: int = 0
    cost: float = 0.0
    quota_remaining: float = 0.0
    fallbacks_used: list[str] = field(default_factory=list)
    collaboration_suggestions: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RoutingHistoryEntry:
    request: RoutingRequest
    response: RoutingResponse
    success: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
