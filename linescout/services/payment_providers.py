"""Paystack and PayPal clients for quote payments.

Thin async httpx wrappers exposing only what the payment-intent tracker
needs: start a checkout, confirm a payment, and authenticate webhooks.
Only a provider "success" (Paystack) or "COMPLETED" (PayPal) response is
reported as a successful payment.

Example usage:
    async with PaystackClient(config.paystack) as paystack:
        result = await paystack.verify("LSQ_12_1718000000000")
        if result.success:
            ...
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from linescout.config import PayPalConfig, PaystackConfig
from linescout.errors import LineScoutError, UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    """Where to send the payer, and the reference to verify afterwards."""

    reference: str
    redirect_url: str | None


@dataclass
class PaymentConfirmation:
    """Provider's view of a payment.

    Attributes:
        success: True only for a settled payment.
        reference: Provider reference (Paystack reference or PayPal order id).
        amount_minor: Amount settled, in minor units.
        currency: ISO currency code.
        status: Raw provider status string.
        raw: Full provider payload for logging.
    """

    success: bool
    reference: str
    amount_minor: int
    currency: str
    status: str
    raw: dict[str, Any] = field(default_factory=dict)


def to_minor_units(value: Any) -> int:
    """Convert a major-unit amount ("12.50") to minor units (1250)."""
    try:
        return int((Decimal(str(value)) * 100).to_integral_value())
    except (InvalidOperation, ValueError):
        return 0


def from_minor_units(amount_minor: int) -> str:
    """Render minor units as a two-decimal major-unit string."""
    return f"{Decimal(amount_minor) / 100:.2f}"


def verify_paystack_signature(secret_key: str, raw_body: bytes, signature: str | None) -> bool:
    """Check the ``x-paystack-signature`` header (HMAC-SHA512 of the raw body)."""
    if not secret_key or not signature:
        return False
    expected = hmac.new(secret_key.encode(), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature.strip())


class PaystackClient:
    """Paystack transaction API client."""

    provider = "paystack"

    def __init__(
        self,
        config: PaystackConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "PaystackClient":
        if not self._config.secret_key:
            raise LineScoutError.from_code("E-5002", provider="Paystack")
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {self._config.secret_key}",
                "Accept": "application/json",
            },
            timeout=30.0,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if self._client is None:
            raise RuntimeError("PaystackClient used outside 'async with'")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Paystack %s %s failed: %s", method, path, e)
            raise UpstreamError(self.provider, f"Paystack request failed: {e}") from e
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("status"):
            message = str(body.get("message") or f"Paystack returned {response.status_code}")
            logger.error("Paystack %s %s rejected: %s", method, path, message)
            raise UpstreamError(self.provider, message)
        return body

    async def initialize(
        self,
        *,
        email: str,
        amount_minor: int,
        reference: str,
        currency: str = "NGN",
        callback_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CheckoutSession:
        """Start a hosted checkout for ``amount_minor`` (kobo)."""
        payload: dict[str, Any] = {
            "email": email,
            "amount": amount_minor,
            "reference": reference,
            "currency": currency,
        }
        if callback_url or self._config.callback_url:
            payload["callback_url"] = callback_url or self._config.callback_url
        if metadata:
            payload["metadata"] = metadata
        body = await self._request("POST", "/transaction/initialize", json=payload)
        data = body.get("data") or {}
        return CheckoutSession(
            reference=str(data.get("reference") or reference),
            redirect_url=data.get("authorization_url"),
        )

    async def verify(self, reference: str) -> PaymentConfirmation:
        """Look up a transaction; success requires data.status == 'success'."""
        body = await self._request("GET", f"/transaction/verify/{reference}")
        data = body.get("data") or {}
        status = str(data.get("status") or "")
        return PaymentConfirmation(
            success=bool(body.get("status")) and status == "success",
            reference=str(data.get("reference") or reference),
            amount_minor=int(data.get("amount") or 0),
            currency=str(data.get("currency") or "NGN"),
            status=status,
            raw=body,
        )


class PayPalClient:
    """PayPal Orders v2 API client."""

    provider = "paypal"

    def __init__(
        self,
        config: PayPalConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._access_token: str | None = None

    async def __aenter__(self) -> "PayPalClient":
        if not self._config.client_id or not self._config.client_secret:
            raise LineScoutError.from_code("E-5002", provider="PayPal")
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=30.0,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _token(self) -> str:
        if self._access_token:
            return self._access_token
        body = await self._send(
            "POST",
            "/v1/oauth2/token",
            auth=(self._config.client_id, self._config.client_secret),
            data={"grant_type": "client_credentials"},
        )
        token = body.get("access_token")
        if not token:
            raise UpstreamError(self.provider, "PayPal auth failed")
        self._access_token = str(token)
        return self._access_token

    async def _send(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if self._client is None:
            raise RuntimeError("PayPalClient used outside 'async with'")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("PayPal %s %s failed: %s", method, path, e)
            raise UpstreamError(self.provider, f"PayPal request failed: {e}") from e
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            message = str(
                body.get("message")
                or body.get("error_description")
                or f"PayPal returned {response.status_code}"
            )
            logger.error("PayPal %s %s rejected: %s", method, path, message)
            raise UpstreamError(self.provider, message)
        return body

    async def _authorized(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        token = await self._token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        return await self._send(method, path, headers=headers, **kwargs)

    async def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        custom_id: str | None = None,
        description: str | None = None,
    ) -> CheckoutSession:
        """Create a CAPTURE order; the order id is the provider reference."""
        unit: dict[str, Any] = {
            "amount": {"currency_code": currency, "value": from_minor_units(amount_minor)}
        }
        if custom_id:
            unit["custom_id"] = custom_id
        if description:
            unit["description"] = description
        body = await self._authorized(
            "POST",
            "/v2/checkout/orders",
            json={
                "intent": "CAPTURE",
                "purchase_units": [unit],
                "application_context": {
                    "return_url": self._config.return_url,
                    "cancel_url": self._config.cancel_url,
                },
            },
        )
        order_id = body.get("id")
        if not order_id:
            raise UpstreamError(self.provider, "PayPal create order failed")
        approve = next(
            (link.get("href") for link in body.get("links") or [] if link.get("rel") == "approve"),
            None,
        )
        return CheckoutSession(reference=str(order_id), redirect_url=approve)

    async def capture_order(self, order_id: str) -> PaymentConfirmation:
        """Capture an approved order; success requires status COMPLETED."""
        body = await self._authorized("POST", f"/v2/checkout/orders/{order_id}/capture")
        return self.confirmation_from_order(order_id, body)

    @staticmethod
    def confirmation_from_order(order_id: str, body: dict[str, Any]) -> PaymentConfirmation:
        """Read amount and status from an order or capture payload."""
        status = str(body.get("status") or "").upper()
        units = body.get("purchase_units") or []
        captures = ((units[0].get("payments") or {}).get("captures") or []) if units else []
        amount = (captures[0].get("amount") or {}) if captures else {}
        return PaymentConfirmation(
            success=status == "COMPLETED",
            reference=order_id,
            amount_minor=to_minor_units(amount.get("value", 0)),
            currency=str(amount.get("currency_code") or "USD"),
            status=status,
            raw=body,
        )

    async def verify_webhook_signature(
        self, headers: dict[str, str | None], event: dict[str, Any]
    ) -> bool:
        """Ask PayPal whether a webhook delivery is authentic."""
        if not self._config.webhook_id:
            raise LineScoutError.from_code("E-5002", provider="PayPal webhook")
        body = await self._authorized(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            json={
                "webhook_id": self._config.webhook_id,
                "transmission_id": headers.get("paypal-transmission-id"),
                "transmission_time": headers.get("paypal-transmission-time"),
                "cert_url": headers.get("paypal-cert-url"),
                "auth_algo": headers.get("paypal-auth-algo"),
                "transmission_sig": headers.get("paypal-transmission-sig"),
                "webhook_event": event,
            },
        )
        return str(body.get("verification_status") or "").upper() == "SUCCESS"
