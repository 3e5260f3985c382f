"""Route aggregation.

Probes stay at the root so orchestrators can reach them without a version
prefix; everything that touches routing state lives under /api/v1.
"""

from __future__ import annotations

from fastapi import APIRouter

from bonsai.api import chat, emergency, health, usage

public_router = APIRouter()
public_router.include_router(health.router)

api_v1_router = APIRouter(prefix="/api/v1")
for module in (chat, usage, emergency):
    api_v1_router.include_router(module.router)
