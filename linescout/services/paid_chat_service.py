"""Sourcing-fee checkout that upgrades a conversation to paid chat.

A customer pays the sourcing fee from one of their conversations. The
primary conversation for that route is upgraded in place: settling the
payment creates a pending handoff, links it to the conversation and moves
the conversation to ``paid_human`` with ``payment_status=paid`` in one
transaction. The primary stays unique per route, so a route carries at
most one active paid project; once that project is cancelled the same
conversation can be upgraded again for a new one.

Settlement is keyed on the provider reference and happens exactly once.
Verifying a reference that was already settled returns the stored result.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from linescout.config import SourcingFeeConfig
from linescout.db.models import (
    ChatMode,
    Conversation,
    ConversationPaymentStatus,
    Handoff,
    HandoffStatus,
    PaymentProvider,
    ProjectStatus,
    QuotePaymentStatus,
    SourcingPayment,
    to_iso,
    utc_now_iso,
)
from linescout.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PaymentNotCompletedError,
    ValidationError,
)
from linescout.services import access_tier
from linescout.services.conversation_service import (
    ConversationService,
    validate_route_type,
)
from linescout.services.payment_providers import PaymentConfirmation

logger = logging.getLogger(__name__)

CHECKOUT_PROVIDERS = (PaymentProvider.paystack.value, PaymentProvider.paypal.value)


def make_sourcing_reference(user_id: int, now_ms: int | None = None) -> str:
    """Local reference for a sourcing checkout: LSS_<user id>_<epoch ms>_<hex>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"LSS_{user_id}_{now_ms}_{secrets.token_hex(3)}"


def has_active_paid_project(conversation: Conversation) -> bool:
    return (
        conversation.chat_mode == ChatMode.paid_human.value
        and conversation.payment_status == ConversationPaymentStatus.paid.value
        and conversation.project_status == ProjectStatus.active.value
    )


@dataclass(frozen=True)
class PaidChatResult:
    """Conversation and handoff a settled sourcing payment unlocked."""

    conversation_id: int
    handoff_id: int | None
    reference: str
    status: str = QuotePaymentStatus.paid.value
    already_processed: bool = False

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "status": self.status,
            "conversation_id": self.conversation_id,
            "handoff_id": self.handoff_id,
            "reference": self.reference,
            "already_processed": self.already_processed,
        }


class PaidChatService:
    """Starts and settles sourcing-fee payments.

    Attributes:
        db: SQLAlchemy session for database operations.
        fee: Price of a paid project per provider.
    """

    def __init__(self, db: Session, fee: SourcingFeeConfig | None = None) -> None:
        self.db = db
        self.fee = fee or SourcingFeeConfig()

    # =========================================================================
    # Lookups
    # =========================================================================

    def find_by_reference(self, provider_ref: str, lock: bool = False) -> SourcingPayment:
        stmt = select(SourcingPayment).where(SourcingPayment.provider_ref == provider_ref)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        payment = self.db.execute(stmt).scalar_one_or_none()
        if payment is None:
            raise NotFoundError("Payment record", provider_ref)
        return payment

    def get_paid_chat(self, user_id: int, handoff_id: int) -> Conversation:
        """The user's conversation linked to ``handoff_id``."""
        conversation = self.db.execute(
            select(Conversation)
            .where(
                Conversation.user_id == user_id,
                Conversation.handoff_id == handoff_id,
                Conversation.chat_mode == ChatMode.paid_human.value,
            )
            .limit(1)
        ).scalar_one_or_none()
        if conversation is None:
            raise NotFoundError("Paid chat", handoff_id)
        return conversation

    def result_for(
        self, payment: SourcingPayment, already_processed: bool = True
    ) -> PaidChatResult:
        return PaidChatResult(
            conversation_id=payment.conversation_id,
            handoff_id=payment.handoff_id,
            reference=payment.provider_ref,
            status=payment.status,
            already_processed=already_processed,
        )

    def fee_for(self, provider: str) -> tuple[int, str]:
        """(amount in minor units, currency) charged through ``provider``."""
        if provider == PaymentProvider.paypal.value:
            return self.fee.paypal_amount_minor, self.fee.paypal_currency
        return self.fee.paystack_amount_minor, self.fee.paystack_currency

    # =========================================================================
    # Checkout
    # =========================================================================

    def start(
        self,
        user_id: int,
        route_type: str,
        provider: str,
        source_conversation_id: int | None = None,
    ) -> SourcingPayment:
        """Record a pending sourcing payment for the route's primary conversation.

        Raises:
            ValidationError: On an unknown provider or a source conversation
                from another route.
            ConflictError: If the route already has an active paid project.
        """
        if provider not in CHECKOUT_PROVIDERS:
            raise ValidationError(f"Invalid provider: {provider}")
        route_type = validate_route_type(route_type)
        conversations = ConversationService(self.db)
        if source_conversation_id is not None:
            source = conversations.get_owned_conversation(user_id, source_conversation_id)
            if source.route_type != route_type:
                raise ValidationError("Source conversation belongs to another route")

        primary = conversations.ensure_primary_conversation(user_id, route_type)
        if has_active_paid_project(primary):
            raise ConflictError("A paid project is already active for this route.")

        amount_minor, currency = self.fee_for(provider)
        payment = SourcingPayment(
            user_id=user_id,
            route_type=route_type,
            conversation_id=primary.id,
            source_conversation_id=source_conversation_id,
            provider=provider,
            status=QuotePaymentStatus.pending.value,
            amount_minor=amount_minor,
            currency=currency,
            provider_ref=make_sourcing_reference(user_id),
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        logger.info(
            "Pending %s sourcing payment %s for user %s (%s): %d %s",
            provider, payment.provider_ref, user_id, route_type, amount_minor, currency,
        )
        return payment

    def set_reference(self, payment: SourcingPayment, provider_ref: str) -> SourcingPayment:
        payment.provider_ref = provider_ref
        self.db.commit()
        self.db.refresh(payment)
        return payment

    def mark_failed(self, payment: SourcingPayment) -> None:
        self.db.execute(
            update(SourcingPayment)
            .where(
                SourcingPayment.id == payment.id,
                SourcingPayment.status == QuotePaymentStatus.pending.value,
            )
            .values(status=QuotePaymentStatus.failed.value)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    # =========================================================================
    # Settlement
    # =========================================================================

    def apply_confirmation(
        self,
        confirmation: PaymentConfirmation,
        user_id: int,
        provider: str,
        now: datetime | None = None,
    ) -> PaidChatResult:
        """Settle a confirmed sourcing payment and open the paid chat.

        Raises:
            PaymentNotCompletedError: If the provider did not report success.
            NotFoundError: If no payment was recorded for the reference.
            ForbiddenError: If the payment belongs to another user.
            ValidationError: If less than the recorded fee was paid.
            ConflictError: If the conversation gained an active paid project
                after checkout started.
        """
        if not confirmation.success:
            raise PaymentNotCompletedError(provider, confirmation.status)

        payment = self.find_by_reference(confirmation.reference, lock=True)
        if payment.user_id != user_id:
            raise ForbiddenError("Payment does not belong to this account.")
        if payment.status == QuotePaymentStatus.paid.value:
            return self.result_for(payment)
        if confirmation.amount_minor and confirmation.amount_minor < payment.amount_minor:
            logger.error(
                "Sourcing payment %s underpaid: %d < %d",
                payment.provider_ref, confirmation.amount_minor, payment.amount_minor,
            )
            raise ValidationError("Paid amount is less than the sourcing fee.")

        conversation = ConversationService(self.db).get_conversation(
            payment.conversation_id, lock=True
        )
        if has_active_paid_project(conversation):
            self.db.rollback()
            logger.error(
                "Sourcing payment %s confirmed but conversation %s already has project %s",
                payment.provider_ref, conversation.id, conversation.handoff_id,
            )
            raise ConflictError("A paid project is already active for this route.")

        paid_at = to_iso(now) if now else utc_now_iso()
        try:
            flipped = self.db.execute(
                update(SourcingPayment)
                .where(
                    SourcingPayment.id == payment.id,
                    SourcingPayment.status != QuotePaymentStatus.paid.value,
                )
                .values(status=QuotePaymentStatus.paid.value, paid_at=paid_at)
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount != 1:
                self.db.rollback()
                return self.result_for(self.find_by_reference(confirmation.reference))

            context = "Created from in-app sourcing payment."
            if payment.source_conversation_id:
                context += f"\nSource conversation: {payment.source_conversation_id}"
            handoff = Handoff(
                user_id=payment.user_id,
                route_type=payment.route_type,
                context=context,
                status=HandoffStatus.pending.value,
            )
            self.db.add(handoff)
            self.db.flush()

            access_tier.PAID_HUMAN.apply_to(conversation)
            conversation.payment_status = ConversationPaymentStatus.paid.value
            conversation.project_status = ProjectStatus.active.value
            conversation.handoff_id = handoff.id
            conversation.assigned_agent_id = None
            payment.handoff_id = handoff.id
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Sourcing payment %s settled concurrently; returning stored result",
                confirmation.reference,
            )
            return self.result_for(self.find_by_reference(confirmation.reference))
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(payment)
        logger.info(
            "Sourcing payment %s (%s) paid: conversation %s now paid_human, handoff %s",
            payment.provider_ref, provider, conversation.id, handoff.id,
        )
        return self.result_for(payment, already_processed=False)
