"""Tests for the chat API endpoints."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from bonsai.models.routing import RoutingResponse
from tests.conftest import GOOGLE_HOST, OPENROUTER_HOST


def _events(body: str) -> list:
    events = []
    for block in body.strip().split("\n\n"):
        data = block.removeprefix("data: ")
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


class TestChatEndpoint:
    """Test POST /api/v1/chat."""

    @pytest.mark.asyncio
    async def test_chat_returns_routed_response(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/chat", json={"message": "hi"})

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "google reply"
        assert data["provider"] == "Google AI Studio"
        assert data["model"] == "gemini-2.5-pro-account-1"
        assert data["variant"] == "prime"
        assert data["tokens_used"] == 42
        assert data["fallbacks_used"] == []
        assert set(data) >= {"reasoning", "cost", "quota_remaining", "collaboration_suggestions", "next_steps"}

    @pytest.mark.asyncio
    async def test_chat_passes_request_fields_through(self, client, engine, monkeypatch) -> None:
        route = AsyncMock(
            return_value=RoutingResponse(
                response="ok",
                variant="code",
                model="deepseek-v3",
                provider="DeepSeek",
                reasoning="mocked",
            )
        )
        monkeypatch.setattr(engine, "route", route)

        response = await client.post(
            "/api/v1/chat",
            json={
                "message": "refactor",
                "complexity": "complex",
                "studio": "code",
                "variant": "code",
                "context": "legacy module",
                "urgency": "high",
                "previous_messages": [{"role": "user", "content": "earlier"}],
                "max_tokens": 512,
            },
        )

        assert response.status_code == 200
        assert response.json()["reasoning"] == "mocked"
        request = route.await_args.args[0]
        assert request.prompt == "refactor"
        assert request.complexity.value == "complex"
        assert request.studio == "code"
        assert request.context == "legacy module"
        assert request.urgency.value == "high"
        assert request.previous_messages[0].content == "earlier"
        assert request.max_tokens == 512

    @pytest.mark.asyncio
    async def test_chat_unknown_variant_returns_404(self, client) -> None:
        response = await client.post("/api/v1/chat", json={"message": "hi", "variant": "astrologer"})

        assert response.status_code == 404
        assert response.json()["detail"] == "Unknown variant: astrologer"

    @pytest.mark.asyncio
    async def test_chat_rejects_empty_message(self, client) -> None:
        response = await client.post("/api/v1/chat", json={"message": ""})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_chat_rejects_unknown_complexity(self, client) -> None:
        response = await client.post("/api/v1/chat", json={"message": "hi", "complexity": "extreme"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_collaboration_mode(self, client, upstream) -> None:
        response = await client.post(
            "/api/v1/chat",
            json={"message": "research this", "collaboration_mode": True, "streaming": True},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "AI Variants"
        assert data["variant"] == "Collaboration: prime, research"
        assert upstream.calls(GOOGLE_HOST) == 3

    @pytest.mark.asyncio
    async def test_all_providers_down_still_answers(self, client, upstream) -> None:
        upstream.fail_all()

        response = await client.post("/api/v1/chat", json={"message": "hi"})

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "system-fallback"
        assert len(data["fallbacks_used"]) == 5


class TestChatStreaming:
    """Test SSE responses from /api/v1/chat/stream and streaming /api/v1/chat."""

    @pytest.mark.asyncio
    async def test_stream_emits_chunks_complete_and_done(self, client, upstream) -> None:
        response = await client.post("/api/v1/chat/stream", json={"message": "hi"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"

        events = _events(response.text)
        assert events[:3] == [
            {"type": "chunk", "content": "Hello"},
            {"type": "chunk", "content": ", "},
            {"type": "chunk", "content": "world"},
        ]
        complete = events[3]
        assert complete["type"] == "complete"
        assert complete["metadata"]["provider"] == "OpenRouter"
        assert "response" not in complete["metadata"]
        assert events[4] == "[DONE]"
        assert upstream.calls(OPENROUTER_HOST) == 1

    @pytest.mark.asyncio
    async def test_streaming_flag_on_chat_streams(self, client) -> None:
        response = await client.post("/api/v1/chat", json={"message": "hi", "streaming": True})

        assert response.headers["content-type"].startswith("text/event-stream")
        assert _events(response.text)[-1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_stream_falls_back_to_single_chunk(self, client, upstream) -> None:
        upstream.fail(OPENROUTER_HOST)

        response = await client.post("/api/v1/chat/stream", json={"message": "hi"})

        events = _events(response.text)
        assert events[0] == {"type": "chunk", "content": "google reply"}
        assert events[1]["metadata"]["provider"] == "Google AI Studio"
        assert events[2] == "[DONE]"

    @pytest.mark.asyncio
    async def test_stream_unknown_variant_returns_404(self, client) -> None:
        response = await client.post(
            "/api/v1/chat/stream", json={"message": "hi", "variant": "astrologer"}
        )
        assert response.status_code == 404


class TestChatStatus:
    @pytest.mark.asyncio
    async def test_status_reports_health_and_analytics(self, client) -> None:
        await client.post("/api/v1/chat", json={"message": "hi"})

        response = await client.get("/api/v1/chat/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"]["overall_health"] == "excellent"
        assert data["status"]["emergency_brake"] is False
        assert len(data["status"]["variants"]) == 8
        assert data["analytics"]["total_requests"] == 1
        assert data["analytics"]["provider_usage"] == {"Google AI Studio": 1}
