"""Model selection, fallback orchestration and routing analytics."""

from bonsai.routing.engine import EnhancedRoutingEngine, RouteStream
from bonsai.routing.fallback import FALLBACK_ORDER, FallbackChain
from bonsai.routing.history import RoutingHistory
from bonsai.routing.router import RouteSelection, RoutingEngine, default_models
from bonsai.routing.status import SystemStatus, classify_health

__all__ = [
    "FALLBACK_ORDER",
    "EnhancedRoutingEngine",
    "FallbackChain",
    "RouteSelection",
    "RouteStream",
    "RoutingEngine",
    "RoutingHistory",
    "SystemStatus",
    "classify_health",
    "default_models",
]
