"""Tests for the assistant gateway client."""

import json

import httpx
import pytest

from linescout.config import GatewayConfig
from linescout.errors import UpstreamError
from linescout.services.ai_gateway import AIGateway, ChatTurn

CONFIG = GatewayConfig(base_url="http://gateway.test/")


def _gateway(handler) -> AIGateway:
    return AIGateway(CONFIG, transport=httpx.MockTransport(handler))


class TestChat:
    @pytest.mark.asyncio
    async def test_json_reply(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"reply": "  Here are three suppliers. "})

        history = [ChatTurn("user", "hi"), ChatTurn("assistant", "hello")]
        reply = await _gateway(handler).chat("c-1", "find suppliers", history)

        assert reply == "Here are three suppliers."
        assert seen["path"] == "/webhook/linescout-chat"
        assert seen["body"]["sessionId"] == "c-1"
        assert seen["body"]["messages"][1] == {"role": "assistant", "content": "hello"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [{"text": "ok"}, {"output": "ok"}, [{"output": "ok"}]],
    )
    async def test_alternate_json_keys(self, body) -> None:
        reply = await _gateway(lambda r: httpx.Response(200, json=body)).chat("c-1", "x")
        assert reply == "ok"

    @pytest.mark.asyncio
    async def test_plain_text_reply(self) -> None:
        reply = await _gateway(lambda r: httpx.Response(200, text="plain answer")).chat("c-1", "x")
        assert reply == "plain answer"

    @pytest.mark.asyncio
    async def test_history_is_capped(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"reply": "ok"})

        history = [ChatTurn("user", str(i)) for i in range(40)]
        await _gateway(handler).chat("c-1", "x", history)

        assert len(seen["body"]["messages"]) == 30
        assert seen["body"]["messages"][0]["content"] == "10"

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        with pytest.raises(UpstreamError, match=r"HTTP 503") as exc_info:
            await _gateway(lambda r: httpx.Response(503)).chat("c-1", "x")
        assert exc_info.value.error_code == "E-4003"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_empty_reply(self) -> None:
        with pytest.raises(UpstreamError, match="no message text"):
            await _gateway(lambda r: httpx.Response(200, json={"reply": "  "})).chat("c-1", "x")

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamError, match="unavailable"):
            await _gateway(handler).chat("c-1", "x")

    @pytest.mark.asyncio
    async def test_not_configured(self) -> None:
        with pytest.raises(UpstreamError, match="not configured"):
            await AIGateway(GatewayConfig()).chat("c-1", "x")


class TestNotifyEvent:
    @pytest.mark.asyncio
    async def test_delivered(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        assert await _gateway(handler).notify_event("ping", {"id": 1}) is True
        assert seen["path"] == "/webhook/linescout-events"
        assert seen["body"] == {"event": "ping", "id": 1}

    @pytest.mark.asyncio
    async def test_failures_return_false(self) -> None:
        assert await _gateway(lambda r: httpx.Response(500)).notify_event("ping", {}) is False
        assert await AIGateway(GatewayConfig()).notify_event("ping", {}) is False
