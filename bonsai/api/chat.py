"""Chat endpoints.

POST /chat         - route one prompt (or a collaboration) and return the response
POST /chat/stream  - stream the response as Server-Sent Events
GET  /chat/status  - provider health plus routing analytics
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from bonsai.api.dependencies import get_engine
from bonsai.api.schemas import ChatRequestBody
from bonsai.api.streaming import sse_response
from bonsai.errors import UnknownVariantError
from bonsai.routing.engine import EnhancedRoutingEngine

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


def _open_stream(engine: EnhancedRoutingEngine, body: ChatRequestBody) -> StreamingResponse:
    try:
        stream = engine.stream_route(body.to_routing_request())
    except UnknownVariantError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return sse_response(stream)


@router.post(
    "",
    summary="Route a prompt to the best available model",
    response_model=None,
)
async def chat(
    body: ChatRequestBody,
    engine: EnhancedRoutingEngine = Depends(get_engine),
) -> dict[str, Any] | StreamingResponse:
    if body.streaming and not body.collaboration_mode:
        return _open_stream(engine, body)

    request = body.to_routing_request()
    try:
        if body.collaboration_mode:
            response = await engine.route_collaboration(request)
        else:
            response = await engine.route(request)
    except UnknownVariantError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    log.info(
        "chat.routed",
        variant=response.variant,
        provider=response.provider,
        model=response.model,
        fallbacks=len(response.fallbacks_used),
    )
    return response.to_dict()


@router.post("/stream", summary="Stream a routed response as SSE")
async def chat_stream(
    body: ChatRequestBody,
    engine: EnhancedRoutingEngine = Depends(get_engine),
) -> StreamingResponse:
    return _open_stream(engine, body)


@router.get("/status", summary="Provider health and routing analytics")
async def chat_status(engine: EnhancedRoutingEngine = Depends(get_engine)) -> dict[str, Any]:
    return {
        "status": engine.system_status().to_dict(),
        "analytics": engine.analytics(),
    }
