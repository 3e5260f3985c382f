"""Tests for the DeepSeek client and service."""

from __future__ import annotations

import pytest

from bonsai.errors import BudgetExceededError
from bonsai.providers.deepseek import DeepSeekClient, DeepSeekService
from tests.conftest import DEEPSEEK_HOST


@pytest.fixture
def service(http_client) -> DeepSeekService:
    return DeepSeekService(DeepSeekClient(api_key="ds-key", http_client=http_client))


class TestDeepSeekService:
    @pytest.mark.asyncio
    async def test_call_prices_prompt_and_completion_separately(self, service, upstream) -> None:
        result = await service.call("solve this", system_message="You are precise")

        assert result.text == "deepseek reply"
        assert result.tokens_used == 300
        assert result.cost == pytest.approx((100 * 0.14 + 200 * 0.28) / 1_000_000)

        body = upstream.payload(DEEPSEEK_HOST)
        assert body["model"] == "deepseek-chat"
        assert "route" not in body
        assert upstream.requests[DEEPSEEK_HOST][0].url.path == "/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_halted_service_refuses_calls(self, service, upstream) -> None:
        service.halt()

        with pytest.raises(BudgetExceededError):
            await service.call("hi")
        assert upstream.calls(DEEPSEEK_HOST) == 0

        service.resume()
        assert service.is_halted is False
        await service.call("hi")
        assert upstream.calls(DEEPSEEK_HOST) == 1
