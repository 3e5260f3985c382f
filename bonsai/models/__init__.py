"""Domain data model shared by the accounting, provider and routing layers."""

from bonsai.models.quota import (
    Backend,
    BudgetLimits,
    CreditBalance,
    ModelSpec,
    ProviderAccount,
    Tier,
)
from bonsai.models.routing import (
    ChatTurn,
    Complexity,
    CostPriority,
    HealthLevel,
    RoutingHistoryEntry,
    RoutingRequest,
    RoutingResponse,
    Urgency,
)

__all__ = [
    "Backend",
    "BudgetLimits",
    "ChatTurn",
    "Complexity",
    "CostPriority",
    "CreditBalance",
    "HealthLevel",
    "ModelSpec",
    "ProviderAccount",
    "RoutingHistoryEntry",
    "RoutingRequest",
    "RoutingResponse",
    "Tier",
    "Urgency",
]
