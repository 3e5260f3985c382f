"""Structured logging configuration.

Configures structlog with JSON output in production and a console renderer
in development. Every log line carries the request id bound by
RequestIdMiddleware, so a routing decision, its fallbacks and the provider
calls behind it can be correlated.

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "logger": "bonsai.routing.router",
        "event": "routing_engine.route_selected",
        "request_id": "req_789...",
        "model_id": "gemini-2.0-flash-lite",
        "estimated_tokens": 4
    }
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Event keys whose values are credentials and must never be rendered
SECRET_KEYS = frozenset({"api_key", "key", "authorization", "token"})
REDACTED = "***"


def redact_secrets(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    for name in SECRET_KEYS.intersection(event_dict):
        event_dict[name] = REDACTED
    return event_dict


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Set up structlog and the stdlib root logger.

    httpx is held at WARNING because its request lines include the full
    URL, and Google AI Studio carries the API key in the query string.

    Args:
        json_logs: Render JSON lines instead of the coloured console format
        log_level: Minimum level name for the root logger
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Request ID Middleware
# ------------------------------------------------------------------ #


class RequestIdMiddleware:
    """ASGI middleware that binds a request id into structlog contextvars.

    The id is echoed back in the ``x-request-id`` response header. An
    incoming ``x-request-id`` header is reused so upstream proxies can
    correlate their own logs.
    """

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _incoming_request_id(scope) or f"req_{uuid.uuid4().hex[:16]}"

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        async def send_with_request_id(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_request_id)


def _incoming_request_id(scope: dict[str, Any]) -> str | None:
    for name, value in scope.get("headers", []):
        if name == b"x-request-id" and value:
            # Cap length so a hostile header cannot bloat every log line
            return value.decode("latin-1")[:64]
    return None
