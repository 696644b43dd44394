"""Client for the n8n workflows behind the LineScout assistant.

The chat workflow is an opaque text-producing function: it receives the
session id, the new message and recent history, and answers with the reply
as plain text (or JSON carrying ``reply``/``text``/``output``). A non-2xx
status or an empty reply is an upstream failure.

The events workflow receives fire-and-forget notifications such as
``handoff.status_changed``.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from linescout.config import GatewayConfig
from linescout.errors import UpstreamError

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 30


@dataclass(frozen=True)
class ChatTurn:
    """One prior message sent as context."""

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def _extract_reply(response: httpx.Response) -> str:
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = response.json()
        except ValueError:
            return ""
        if isinstance(body, str):
            return body.strip()
        if isinstance(body, list) and body:
            body = body[0]
        if isinstance(body, dict):
            for key in ("reply", "text", "output", "message"):
                value = body.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return ""
    return response.text.strip()


class AIGateway:
    """Async client for the chat and events webhooks.

    Args:
        config: Gateway base URL, paths and timeout.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        config: GatewayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self._config.base_url:
            raise UpstreamError(
                "n8n", "AI gateway is not configured.", error_code="E-4003"
            )
        return httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        )

    async def chat(
        self, session_id: str, message: str, history: list[ChatTurn] | None = None
    ) -> str:
        """Ask the assistant for a reply.

        Raises:
            UpstreamError: On transport errors, non-2xx status, or an empty reply.
        """
        payload = {
            "sessionId": session_id,
            "message": message,
            "messages": [turn.to_dict() for turn in (history or [])[-HISTORY_LIMIT:]],
        }
        async with self._client() as client:
            try:
                response = await client.post(self._config.chat_path, json=payload)
            except httpx.HTTPError as e:
                logger.error("AI gateway request for %s failed: %s", session_id, e)
                raise UpstreamError(
                    "n8n", "LineScout is unavailable right now.", error_code="E-4003"
                ) from e

        if response.status_code >= 400:
            logger.error("AI gateway returned %s for %s", response.status_code, session_id)
            raise UpstreamError(
                "n8n",
                f"LineScout error (HTTP {response.status_code})",
                error_code="E-4003",
            )
        reply = _extract_reply(response)
        if not reply:
            logger.error("AI gateway returned an empty reply for %s", session_id)
            raise UpstreamError(
                "n8n",
                "LineScout replied, but no message text was returned.",
                error_code="E-4003",
            )
        return reply

    async def notify_event(self, event: str, payload: dict[str, Any]) -> bool:
        """Post a best-effort event. Failures are logged and reported as False."""
        if not self._config.base_url:
            logger.info("AI gateway not configured; dropped event %s", event)
            return False
        try:
            async with self._client() as client:
                response = await client.post(
                    self._config.events_path, json={"event": event, **payload}
                )
        except httpx.HTTPError as e:
            logger.warning("Event %s could not be delivered: %s", event, e)
            return False
        if response.status_code >= 400:
            logger.warning("Event %s rejected with HTTP %s", event, response.status_code)
            return False
        return True
