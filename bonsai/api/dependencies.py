"""FastAPI dependencies resolving the container built at startup."""

from __future__ import annotations

from fastapi import Request

from bonsai.container import Container
from bonsai.routing.engine import EnhancedRoutingEngine


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_engine(request: Request) -> EnhancedRoutingEngine:
    return get_container(request).engine
