"""Tests for mail and push notifications."""

import json
import smtplib

import httpx
import pytest

from linescout.config import MailConfig, PushConfig
from linescout.errors import UpstreamError
from linescout.services.notifications import Notifier


class TestSendMail:
    @pytest.mark.asyncio
    async def test_unconfigured_mail_is_skipped(self) -> None:
        notifier = Notifier(MailConfig(), PushConfig())
        assert await notifier.send_mail("ada@example.com", "Hi", "Body") is False

    @pytest.mark.asyncio
    async def test_unconfigured_critical_mail_raises(self) -> None:
        notifier = Notifier(MailConfig(), PushConfig())
        with pytest.raises(UpstreamError, match="not configured"):
            await notifier.send_mail("ada@example.com", "Code", "123456", critical=True)

    @pytest.mark.asyncio
    async def test_delivers_through_relay(self, monkeypatch: pytest.MonkeyPatch) -> None:
        sent = []
        notifier = Notifier(MailConfig(host="smtp.test"), PushConfig())
        monkeypatch.setattr(notifier, "_deliver_mail", sent.append)

        assert await notifier.send_mail("ada@example.com", "Receipt", "Paid", html="<b>Paid</b>")
        assert sent[0]["To"] == "ada@example.com"
        assert sent[0]["Subject"] == "Receipt"

    @pytest.mark.asyncio
    async def test_relay_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        notifier = Notifier(MailConfig(host="smtp.test"), PushConfig())

        def refuse(message) -> None:
            raise smtplib.SMTPException("relay down")

        monkeypatch.setattr(notifier, "_deliver_mail", refuse)
        assert await notifier.send_mail("ada@example.com", "Receipt", "Paid") is False
        with pytest.raises(UpstreamError, match="Failed to send email"):
            await notifier.send_mail("ada@example.com", "Code", "1", critical=True)


class TestSendPush:
    @pytest.mark.asyncio
    async def test_posts_one_message_per_token(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": []})

        notifier = Notifier(MailConfig(), PushConfig(), transport=httpx.MockTransport(handler))
        assert await notifier.send_push(["tok1", "", "tok2"], "Shipped", "On its way") is True
        assert [m["to"] for m in seen["body"]] == ["tok1", "tok2"]

    @pytest.mark.asyncio
    async def test_errors_are_swallowed(self) -> None:
        transport = httpx.MockTransport(lambda r: httpx.Response(500))
        notifier = Notifier(MailConfig(), PushConfig(), transport=transport)
        assert await notifier.send_push(["tok1"], "t", "b") is False

    @pytest.mark.asyncio
    async def test_disabled_or_no_tokens(self) -> None:
        assert await Notifier(MailConfig(), PushConfig()).send_push([], "t", "b") is False
        disabled = Notifier(MailConfig(), PushConfig(enabled=False))
        assert await disabled.send_push(["tok1"], "t", "b") is False
