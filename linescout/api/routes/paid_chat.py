"""Paid chat routes: sourcing-fee checkout, verification and bootstrap.

Verification settles through ``PaidChatService.apply_confirmation``; a
reference that is already paid is answered from the database before the
provider is contacted.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from linescout.api.deps import (
    get_app_config,
    get_current_user,
    get_notifier,
    get_paypal,
    get_paystack,
)
from linescout.api.schemas import (
    ConversationResponse,
    PaidChatCheckoutRequest,
    PayPalVerifyRequest,
    PaystackVerifyRequest,
)
from linescout.config import LineScoutConfig
from linescout.db.connection import get_db
from linescout.db.models import PaymentProvider, QuotePaymentStatus, User
from linescout.errors import ForbiddenError, LineScoutError, UpstreamError
from linescout.services.notifications import Notifier
from linescout.services.paid_chat_service import PaidChatResult, PaidChatService
from linescout.services.payment_providers import (
    PaymentConfirmation,
    PayPalClient,
    PaystackClient,
    from_minor_units,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/paid-chat", tags=["paid-chat"])


def get_paid_chat_service(
    db: Session = Depends(get_db),
    config: LineScoutConfig = Depends(get_app_config),
) -> PaidChatService:
    """Dependency to get PaidChatService instance."""
    return PaidChatService(db, config.sourcing_fee)


async def _settle(
    svc: PaidChatService,
    notifier: Notifier,
    user: User,
    confirmation: PaymentConfirmation,
    provider: str,
) -> PaidChatResult:
    result = svc.apply_confirmation(confirmation, user.id, provider)
    if not result.already_processed:
        payment = svc.find_by_reference(confirmation.reference)
        await notifier.send_mail(
            user.email,
            "Your paid sourcing project is active",
            f"We received your payment of {payment.currency} "
            f"{from_minor_units(payment.amount_minor)}. Your sourcing specialist "
            "will reply inside the paid chat in the LineScout app.",
        )
    return result


def _answer_if_settled(svc: PaidChatService, user: User, reference: str) -> dict | None:
    payment = svc.find_by_reference(reference)
    if payment.user_id != user.id:
        raise ForbiddenError("Payment does not belong to this account.")
    if payment.status == QuotePaymentStatus.paid.value:
        return svc.result_for(payment).to_dict()
    return None


@router.post("/checkout")
async def checkout(
    body: PaidChatCheckoutRequest,
    user: User = Depends(get_current_user),
    svc: PaidChatService = Depends(get_paid_chat_service),
    paystack: PaystackClient = Depends(get_paystack),
    paypal: PayPalClient = Depends(get_paypal),
) -> dict:
    """Start a sourcing-fee checkout for a route.

    Fails with 409 while the route already has an active paid project.
    """
    payment = svc.start(
        user.id,
        body.route_type,
        body.provider,
        source_conversation_id=body.source_conversation_id,
    )
    try:
        if body.provider == PaymentProvider.paystack.value:
            async with paystack as client:
                session = await client.initialize(
                    email=user.email,
                    amount_minor=payment.amount_minor,
                    reference=payment.provider_ref,
                    currency=payment.currency,
                    metadata={
                        "purpose": "sourcing",
                        "user_id": user.id,
                        "route_type": payment.route_type,
                        "source_conversation_id": payment.source_conversation_id,
                    },
                )
        else:
            async with paypal as client:
                session = await client.create_order(
                    amount_minor=payment.amount_minor,
                    currency=payment.currency,
                    custom_id=f"sourcing:{payment.id}",
                    description="LineScout sourcing project",
                )
            svc.set_reference(payment, session.reference)
    except (UpstreamError, LineScoutError):
        svc.mark_failed(payment)
        raise

    return {
        "ok": True,
        "provider": body.provider,
        "reference": payment.provider_ref,
        "redirect_url": session.redirect_url,
        "conversation_id": payment.conversation_id,
        "amount_minor": payment.amount_minor,
        "currency": payment.currency,
    }


@router.post("/paystack/verify")
async def verify_paystack(
    body: PaystackVerifyRequest,
    user: User = Depends(get_current_user),
    svc: PaidChatService = Depends(get_paid_chat_service),
    paystack: PaystackClient = Depends(get_paystack),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    settled = _answer_if_settled(svc, user, body.reference)
    if settled is not None:
        return settled
    async with paystack as client:
        confirmation = await client.verify(body.reference)
    result = await _settle(svc, notifier, user, confirmation, PaymentProvider.paystack.value)
    return result.to_dict()


@router.post("/paypal/verify")
async def verify_paypal(
    body: PayPalVerifyRequest,
    user: User = Depends(get_current_user),
    svc: PaidChatService = Depends(get_paid_chat_service),
    paypal: PayPalClient = Depends(get_paypal),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    settled = _answer_if_settled(svc, user, body.order_id)
    if settled is not None:
        return settled
    async with paypal as client:
        confirmation = await client.capture_order(body.order_id)
    result = await _settle(svc, notifier, user, confirmation, PaymentProvider.paypal.value)
    return result.to_dict()


@router.get("")
def get_paid_chat(
    handoff_id: int = Query(..., gt=0),
    user: User = Depends(get_current_user),
    svc: PaidChatService = Depends(get_paid_chat_service),
) -> dict:
    """Conversation of the user's paid project for ``handoff_id``."""
    conversation = svc.get_paid_chat(user.id, handoff_id)
    return {"ok": True, "conversation": ConversationResponse.model_validate(conversation)}
