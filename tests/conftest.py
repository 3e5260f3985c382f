"""
Shared test fixtures for pytest.

Provides common fakes for all test modules:
- fake_settings: Test configuration with every provider credential set
- clock: Mutable UTC clock injected wherever time matters
- upstream: Scriptable fake of every provider HTTP API (httpx.MockTransport)
- http_client: httpx.AsyncClient routed to the fake upstream
- container / engine: The full routing stack wired against the fake upstream
- test_app / client: FastAPI app and ASGI client backed by that container
"""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
from fastapi import FastAPI

from bonsai.config import Environment, Settings, get_settings
from bonsai.container import Container, build_container
from bonsai.routing.engine import EnhancedRoutingEngine

GOOGLE_HOST = "generativelanguage.googleapis.com"
VERTEX_HOST = "us-central1-aiplatform.googleapis.com"
OPENROUTER_HOST = "openrouter.ai"
DEEPSEEK_HOST = "api.deepseek.com"


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ------------------------------------------------------------------ #
# Time
# ------------------------------------------------------------------ #

class FakeClock:
    """Callable returning a settable UTC time."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


# ------------------------------------------------------------------ #
# Fake provider APIs
# ------------------------------------------------------------------ #

def google_body(text: str = "google reply", total: int = 42) -> dict[str, Any]:
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}}],
        "usageMetadata": {
            "promptTokenCount": total // 2,
            "candidatesTokenCount": total - total // 2,
            "totalTokenCount": total,
        },
    }


def chat_body(text: str, model: str, prompt_tokens: int, completion_tokens: int) -> dict[str, Any]:
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


def sse_body(chunks: list[str]) -> bytes:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": chunk}}]}) for chunk in chunks
    ]
    lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


class FakeUpstream:
    """Answers provider requests by host.

    ``failures[host]`` holds a status code to return instead of a normal
    answer; ``overrides[host]`` replaces the handler for that host entirely.
    Every request is kept in ``requests[host]``.
    """

    def __init__(self) -> None:
        self.failures: dict[str, int] = {}
        self.overrides: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: dict[str, list[httpx.Request]] = defaultdict(list)
        self.stream_chunks = ["Hello", ", ", "world"]

    def fail(self, *hosts: str, status_code: int = 500) -> None:
        for host in hosts:
            self.failures[host] = status_code

    def fail_all(self, status_code: int = 500) -> None:
        self.fail(GOOGLE_HOST, VERTEX_HOST, OPENROUTER_HOST, DEEPSEEK_HOST, status_code=status_code)

    def recover(self, *hosts: str) -> None:
        for host in hosts:
            self.failures.pop(host, None)

    def calls(self, host: str) -> int:
        return len(self.requests[host])

    def payload(self, host: str, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[host][index].content)

    def handle(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.requests[host].append(request)
        if host in self.overrides:
            return self.overrides[host](request)
        if host in self.failures:
            return httpx.Response(self.failures[host], json={"error": {"message": "upstream down"}})

        if host == GOOGLE_HOST:
            return httpx.Response(200, json=google_body())
        if host == VERTEX_HOST:
            return httpx.Response(200, json=google_body("vertex reply", 100))
        if host == OPENROUTER_HOST:
            if request.method == "GET":
                return httpx.Response(200, json={"data": [{"id": "openai/gpt-4o-mini"}]})
            body = json.loads(request.content)
            if body.get("stream"):
                return httpx.Response(
                    200,
                    content=sse_body(self.stream_chunks),
                    headers={"content-type": "text/event-stream"},
                )
            return httpx.Response(200, json=chat_body("openrouter reply", body["model"], 10, 20))
        if host == DEEPSEEK_HOST:
            return httpx.Response(200, json=chat_body("deepseek reply", "deepseek-chat", 100, 200))
        return httpx.Response(404)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
async def http_client(upstream: FakeUpstream) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handle)) as client:
        yield client


# ------------------------------------------------------------------ #
# Settings & App Fixtures
# ------------------------------------------------------------------ #

@pytest.fixture
def fake_settings() -> Settings:
    """Test environment settings with every provider configured."""
    return Settings(
        _env_file=None,
        environment=Environment.TEST,
        google_ai_studio_key_1="google-key-1",
        google_ai_studio_key_2="google-key-2",
        google_ai_daily_quota=300_000,
        google_cloud_project_id="bonsai-test",
        google_cloud_api_key="vertex-key",
        vertex_total_credits=240.0,
        openrouter_api_key="openrouter-key",
        deepseek_api_key="deepseek-key",
        provider_max_attempts=1,
    )


@pytest.fixture
def container(
    fake_settings: Settings,
    http_client: httpx.AsyncClient,
    clock: FakeClock,
) -> Container:
    return build_container(fake_settings, http_client=http_client, clock=clock)


@pytest.fixture
def engine(container: Container) -> EnhancedRoutingEngine:
    return container.engine


@pytest.fixture
def test_app(
    fake_settings: Settings,
    container: Container,
    monkeypatch: pytest.MonkeyPatch,
) -> FastAPI:
    """FastAPI app whose dependencies resolve to the test container.

    ASGITransport does not run the lifespan, so the container is installed
    through dependency overrides instead of being built at startup.
    """
    from bonsai.api.dependencies import get_container, get_engine
    from bonsai.main import create_app

    get_settings.cache_clear()
    monkeypatch.setattr("bonsai.main.get_settings", lambda: fake_settings)

    app = create_app()
    app.dependency_overrides[get_container] = lambda: container
    app.dependency_overrides[get_engine] = lambda: container.engine
    return app


@pytest.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client for testing the FastAPI application."""
    transport = httpx.ASGITransport(app=test_app)  # type: ignore[arg-type]
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
    ) as ac:
        yield ac
