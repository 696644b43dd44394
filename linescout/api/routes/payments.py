"""Quote payment routes: checkout, provider verification and webhooks.

Client verification calls and provider webhooks share one idempotent
settlement path (``QuotePaymentService.apply_confirmation``). A reference
that is already paid short-circuits before the provider is contacted, so
retries never reach the ledger twice.
"""

import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from linescout.api.deps import (
    get_app_config,
    get_notifier,
    get_optional_user,
    get_paypal,
    get_paystack,
    get_platform_settings,
)
from linescout.api.schemas import PayPalVerifyRequest, PaystackVerifyRequest, QuotePayRequest
from linescout.config import LineScoutConfig
from linescout.db.connection import get_db
from linescout.db.models import PaymentProvider, QuotePaymentStatus, User
from linescout.errors import (
    AuthenticationError,
    LineScoutError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from linescout.services.notifications import Notifier
from linescout.services.payment_providers import (
    PaymentConfirmation,
    PayPalClient,
    PaystackClient,
    from_minor_units,
    to_minor_units,
    verify_paystack_signature,
)
from linescout.services.quote_payment_service import (
    QuotePaymentService,
    VerificationResult,
    make_reference,
)
from linescout.services.settings_service import PlatformSettings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


def get_quote_payment_service(
    db: Session = Depends(get_db),
    settings: PlatformSettings = Depends(get_platform_settings),
) -> QuotePaymentService:
    """Dependency to get QuotePaymentService instance."""
    return QuotePaymentService(db, settings)


async def _send_receipt(
    svc: QuotePaymentService,
    notifier: Notifier,
    user_id: int | None,
    amount_minor: int,
    currency: str,
) -> None:
    """Best-effort "Payment received" mail after the payment committed."""
    user = svc.db.get(User, user_id) if user_id else None
    if user is None:
        return
    await notifier.send_mail(
        user.email,
        "Payment received",
        f"We received your payment of {currency} {from_minor_units(amount_minor)}. "
        "Thank you for sourcing with LineScout.",
    )


async def _settle(
    svc: QuotePaymentService,
    notifier: Notifier,
    confirmation: PaymentConfirmation,
    provider: str,
) -> VerificationResult:
    result = svc.apply_confirmation(confirmation, provider)
    if not result.already_processed:
        payment = svc.find_by_reference(confirmation.reference)
        await _send_receipt(svc, notifier, payment.user_id, payment.amount_minor, payment.currency)
    return result


# =========================================================================
# Checkout
# =========================================================================


@router.post("/quotes/{token}/pay")
async def pay_quote(
    token: str,
    body: QuotePayRequest,
    user: User | None = Depends(get_optional_user),
    svc: QuotePaymentService = Depends(get_quote_payment_service),
    paystack: PaystackClient = Depends(get_paystack),
    paypal: PayPalClient = Depends(get_paypal),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    """Pay what is due on a quote, optionally from the wallet first.

    Returns a provider redirect for any remainder, or ``remaining: 0`` when
    the wallet covered everything.
    """
    quote = svc.get_quote_by_token(token)
    purpose = body.purpose
    required = svc.amount_due(quote, purpose)

    wallet_applied = 0
    if body.use_wallet:
        if user is None:
            raise AuthenticationError("Sign in to use wallet")
        applied = svc.pay_from_wallet(quote, purpose, user, required)
        wallet_applied = applied.applied_minor
        if wallet_applied:
            await _send_receipt(svc, notifier, user.id, wallet_applied, quote.currency)
    remaining = required - wallet_applied
    if remaining <= 0:
        return {"ok": True, "wallet_applied": wallet_applied, "remaining": 0}

    email = (body.email or (user.email if user else "") or "").strip()
    if not email:
        raise ValidationError("Customer email is required to complete payment")
    user_id = user.id if user else None

    # The pending row exists before the provider is contacted; the PayPal
    # row swaps its local reference for the order id once the order exists.
    reference = make_reference(quote.id)
    payment = svc.create_pending(
        quote, purpose, body.provider, remaining, reference, user_id=user_id
    )
    try:
        if body.provider == PaymentProvider.paystack.value:
            async with paystack as client:
                checkout = await client.initialize(
                    email=email,
                    amount_minor=remaining,
                    reference=reference,
                    currency=quote.currency,
                    metadata={"quote_id": quote.id, "purpose": purpose},
                )
        else:
            async with paypal as client:
                checkout = await client.create_order(
                    amount_minor=remaining,
                    currency=quote.currency,
                    custom_id=f"quote:{quote.id}:{purpose}:{payment.id}",
                    description=f"LineScout quote {quote.id}",
                )
            svc.set_reference(payment, checkout.reference)
    except (UpstreamError, LineScoutError):
        svc.mark_failed(payment)
        raise

    return {
        "ok": True,
        "provider": body.provider,
        "reference": checkout.reference,
        "redirect_url": checkout.redirect_url,
        "wallet_applied": wallet_applied,
        "remaining": remaining,
    }


# =========================================================================
# Verification
# =========================================================================


@router.post("/payments/paystack/verify")
async def verify_paystack(
    body: PaystackVerifyRequest,
    svc: QuotePaymentService = Depends(get_quote_payment_service),
    paystack: PaystackClient = Depends(get_paystack),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    payment = svc.find_by_reference(body.reference)
    if payment.status == QuotePaymentStatus.paid.value:
        return svc.result_for(payment).to_dict()
    async with paystack as client:
        confirmation = await client.verify(body.reference)
    result = await _settle(svc, notifier, confirmation, PaymentProvider.paystack.value)
    return result.to_dict()


@router.post("/payments/paypal/verify")
async def verify_paypal(
    body: PayPalVerifyRequest,
    svc: QuotePaymentService = Depends(get_quote_payment_service),
    paypal: PayPalClient = Depends(get_paypal),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    """Capture an approved PayPal order and settle it.

    An order settled earlier (by a webhook or a previous call) is answered
    from the database, since PayPal refuses to capture it twice.
    """
    payment = svc.find_by_reference(body.order_id)
    if payment.status == QuotePaymentStatus.paid.value:
        return svc.result_for(payment).to_dict()
    async with paypal as client:
        confirmation = await client.capture_order(body.order_id)
    result = await _settle(svc, notifier, confirmation, PaymentProvider.paypal.value)
    return result.to_dict()


# =========================================================================
# Webhooks
# =========================================================================


@router.post("/webhooks/paystack")
async def paystack_webhook(
    request: Request,
    config: LineScoutConfig = Depends(get_app_config),
    svc: QuotePaymentService = Depends(get_quote_payment_service),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    raw = await request.body()
    signature = request.headers.get("x-paystack-signature")
    if not verify_paystack_signature(config.paystack.secret_key, raw, signature):
        raise AuthenticationError("Invalid signature")
    try:
        event = json.loads(raw or b"{}")
    except ValueError:
        raise ValidationError("Invalid JSON") from None

    if event.get("event") != "charge.success":
        return {"ok": True, "ignored": True}
    data = event.get("data") or {}
    reference = str(data.get("reference") or "")
    confirmation = PaymentConfirmation(
        success=str(data.get("status") or "") == "success",
        reference=reference,
        amount_minor=int(data.get("amount") or 0),
        currency=str(data.get("currency") or "NGN"),
        status=str(data.get("status") or ""),
        raw=event,
    )
    try:
        result = await _settle(svc, notifier, confirmation, PaymentProvider.paystack.value)
    except NotFoundError:
        logger.info("Paystack webhook for unknown reference %s ignored", reference)
        return {"ok": True, "ignored": True}
    return result.to_dict()


@router.post("/webhooks/paypal")
async def paypal_webhook(
    request: Request,
    svc: QuotePaymentService = Depends(get_quote_payment_service),
    paypal: PayPalClient = Depends(get_paypal),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    try:
        event = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON") from None

    headers = {key.lower(): value for key, value in request.headers.items()}
    async with paypal as client:
        authentic = await client.verify_webhook_signature(headers, event)
    if not authentic:
        raise AuthenticationError("Invalid signature")

    if event.get("event_type") != "PAYMENT.CAPTURE.COMPLETED":
        return {"ok": True, "ignored": True}
    resource = event.get("resource") or {}
    order_id = str(
        ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")
        or ""
    )
    amount = resource.get("amount") or {}
    confirmation = PaymentConfirmation(
        success=str(resource.get("status") or "").upper() == "COMPLETED",
        reference=order_id,
        amount_minor=to_minor_units(amount.get("value", 0)),
        currency=str(amount.get("currency_code") or "USD"),
        status=str(resource.get("status") or ""),
        raw=event,
    )
    try:
        result = await _settle(svc, notifier, confirmation, PaymentProvider.paypal.value)
    except NotFoundError:
        logger.info("PayPal webhook for unknown order %s ignored", order_id)
        return {"ok": True, "ignored": True}
    return result.to_dict()
