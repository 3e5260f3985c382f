"""Usage reporting and operator actions."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from bonsai.api.dependencies import get_container
from bonsai.api.schemas import UsageAction, UsageActionBody
from bonsai.container import Container
from bonsai.models.quota import utcnow
from bonsai.routing.reporting import build_usage_report

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("", summary="Usage report across providers")
async def usage_report(
    detailed: bool = Query(default=False),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    return build_usage_report(container.engine, detailed=detailed, started_at=container.started_at)


@router.post("", summary="Run an operator action")
async def usage_action(
    body: UsageActionBody,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    engine = container.engine
    try:
        action = UsageAction(body.action)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown action: {body.action}",
        ) from exc

    log.info("usage.action", action=action.value)
    timestamp = utcnow().isoformat()
    match action:
        case UsageAction.RESET_DAILY:
            engine.reset_daily_usage()
            return {"success": True, "message": "Daily usage reset", "timestamp": timestamp}
        case UsageAction.EMERGENCY_BRAKE:
            engine.emergency_brake()
            return {"success": True, "message": "Emergency brake activated", "timestamp": timestamp}
        case UsageAction.RELEASE_BRAKE:
            engine.release_brake()
            return {"success": True, "message": "Emergency brake released", "timestamp": timestamp}
        case UsageAction.HEALTH_CHECK:
            return {
                "success": True,
                "health": engine.system_status().to_dict(),
                "timestamp": timestamp,
            }
