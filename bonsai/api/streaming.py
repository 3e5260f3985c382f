"""Server-Sent Events rendering of a RouteStream.

Event sequence:
    data: {"type": "chunk", "content": "..."}      (zero or more)
    data: {"type": "complete", "metadata": {...}}
    data: [DONE]

A failure mid-stream emits ``{"type": "error", "error": "..."}`` followed by
``[DONE]``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Any

import structlog
from fastapi.responses import StreamingResponse

from bonsai.routing.engine import RouteStream

log = structlog.get_logger(__name__)

DONE_EVENT = "data: [DONE]\n\n"


def format_event(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def sse_events(stream: RouteStream) -> AsyncGenerator[str, None]:
    try:
        async for chunk in stream:
            yield format_event({"type": "chunk", "content": chunk})
        metadata = stream.result.to_dict() if stream.result is not None else {}
        metadata.pop("response", None)
        yield format_event({"type": "complete", "metadata": metadata})
    except asyncio.CancelledError:
        log.info("sse.cancelled")
        raise
    except Exception as exc:
        log.error("sse.stream_failed", error_type=type(exc).__name__, error=str(exc))
        yield format_event({"type": "error", "error": str(exc)})
    yield DONE_EVENT


def sse_response(stream: RouteStream) -> StreamingResponse:
    return StreamingResponse(
        sse_events(stream),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
