"""Best-effort outbound notifications: SMTP mail and Expo push.

Notifications are sent after the triggering transaction has committed.
Failures are logged and reported as ``False`` rather than raised, except
for mail sent with ``critical=True`` (sign-in codes and similar), where the
caller needs to know delivery failed.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Any

import httpx

from linescout.config import MailConfig, PushConfig
from linescout.errors import UpstreamError

logger = logging.getLogger(__name__)


class Notifier:
    """Sends mail and push notifications.

    Attributes:
        mail: SMTP settings. Mail is skipped when no host is configured.
        push: Expo push settings.
    """

    def __init__(
        self,
        mail: MailConfig,
        push: PushConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.mail = mail
        self.push = push
        self._transport = transport

    def _deliver_mail(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.mail.host, self.mail.port, timeout=20) as smtp:
            if self.mail.use_tls:
                smtp.starttls()
            if self.mail.username:
                smtp.login(self.mail.username, self.mail.password)
            smtp.send_message(message)

    async def send_mail(
        self,
        to: str,
        subject: str,
        text: str,
        html: str | None = None,
        critical: bool = False,
    ) -> bool:
        """Send one message.

        Returns:
            True if the relay accepted the message.

        Raises:
            UpstreamError: Only when ``critical`` and delivery failed.
        """
        if not self.mail.host:
            if critical:
                raise UpstreamError("smtp", "Mail is not configured.", error_code="E-4004")
            logger.info("Mail not configured; skipped '%s' to %s", subject, to)
            return False

        message = EmailMessage()
        message["From"] = self.mail.from_address
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        if html:
            message.add_alternative(html, subtype="html")

        try:
            await asyncio.to_thread(self._deliver_mail, message)
        except (smtplib.SMTPException, OSError) as e:
            if critical:
                logger.error("Mail '%s' to %s failed: %s", subject, to, e)
                raise UpstreamError(
                    "smtp", "Failed to send email.", error_code="E-4004"
                ) from e
            logger.warning("Mail '%s' to %s failed: %s", subject, to, e)
            return False
        return True

    async def send_push(
        self,
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """Send an Expo push to each token. Errors are logged and swallowed."""
        tokens = [t for t in tokens if t]
        if not tokens or not self.push.enabled:
            return False
        messages = [
            {"to": token, "sound": "default", "title": title, "body": body, "data": data or {}}
            for token in tokens
        ]
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(self.push.url, json=messages)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Expo push to %d device(s) failed: %s", len(tokens), e)
            return False
        return True
