"""Health check endpoints.

/health/live   - Liveness probe: is the process up?
/health/ready  - Readiness probe: is any provider configured, and how healthy is the fleet?

These are public endpoints - no auth required.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from bonsai.api.dependencies import get_container
from bonsai.container import Container
from bonsai.models.quota import utcnow

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict:
    """Liveness probe - always returns 200 if the process is running."""
    return {"status": "ok", "timestamp": utcnow().isoformat()}


@router.get("/ready")
async def readiness(container: Container = Depends(get_container)) -> dict[str, Any]:
    providers = container.settings.configured_providers
    health = container.engine.system_status().overall_health
    is_ready = bool(providers)
    return {
        "status": "ready" if is_ready else "not_ready",
        "providers": providers,
        "health": health.value,
        "timestamp": utcnow().isoformat(),
    }
