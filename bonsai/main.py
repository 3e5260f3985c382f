"""FastAPI application entrypoint.

Startup builds the routing container (providers, ledgers, engines) from
settings and stores it on ``app.state``; shutdown closes the shared HTTP
client.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bonsai.api.router import api_v1_router, public_router
from bonsai.config import get_settings
from bonsai.container import build_container
from bonsai.errors import UnknownVariantError
from bonsai.telemetry.logging import RequestIdMiddleware, configure_logging

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings = get_settings()

    # Configure structured logging first (before any log calls)
    configure_logging(
        json_logs=settings.json_logs,
        log_level="DEBUG" if settings.debug else settings.log_level,
    )

    log.info(
        "app.starting",
        environment=settings.environment,
        providers=settings.configured_providers,
    )

    container = build_container(settings)
    app.state.container = container

    log.info("app.ready")
    yield

    await container.aclose()
    log.info("app.shutdown")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    app = FastAPI(
        title="Bons-AI Router",
        description="Quota-aware routing of prompts across Google AI Studio, Vertex AI, DeepSeek and OpenRouter.",
        version="0.1.0",
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )

    # Middleware (last added = first executed)
    cors_origins = ["*"] if settings.is_dev else settings.cors_allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.is_prod,
        allow_methods=["*"],
        allow_headers=["Authorization", "Content-Type", "x-request-id"],
        expose_headers=["x-request-id"],
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(public_router)
    app.include_router(api_v1_router)

    @app.exception_handler(UnknownVariantError)
    async def unknown_variant_handler(request: Request, exc: UnknownVariantError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            "app.unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
