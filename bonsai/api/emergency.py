"""Emergency brake: stop all paid usage across providers."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from bonsai.api.dependencies import get_engine
from bonsai.models.quota import utcnow
from bonsai.routing.engine import EnhancedRoutingEngine

router = APIRouter(prefix="/emergency-brake", tags=["emergency"])


def _brake_state(engine: EnhancedRoutingEngine) -> dict[str, Any]:
    return {
        "emergency_brake": engine.is_braked,
        "status": engine.system_status().to_dict(),
        "timestamp": utcnow().isoformat(),
    }


@router.get("")
async def brake_status(engine: EnhancedRoutingEngine = Depends(get_engine)) -> dict[str, Any]:
    return _brake_state(engine)


@router.post("")
async def activate_brake(engine: EnhancedRoutingEngine = Depends(get_engine)) -> dict[str, Any]:
    engine.emergency_brake()
    return _brake_state(engine)


@router.delete("")
async def release_brake(engine: EnhancedRoutingEngine = Depends(get_engine)) -> dict[str, Any]:
    engine.release_brake()
    return _brake_state(engine)
