"""Tests for the sourcing-fee checkout that unlocks paid chat."""

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from linescout.config import SourcingFeeConfig
from linescout.db.models import (
    Agent,
    ChatMode,
    Conversation,
    ConversationKind,
    Handoff,
    ProjectStatus,
    SourcingPayment,
    User,
)
from linescout.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PaymentNotCompletedError,
    ValidationError,
)
from linescout.services.conversation_service import ConversationService
from linescout.services.handoff_service import HandoffService
from linescout.services.paid_chat_service import PaidChatService, make_sourcing_reference
from linescout.services.payment_providers import PaymentConfirmation
from tests.factories import NOW, make_conversation

FEE = SourcingFeeConfig(paystack_amount_minor=1_000_000, paypal_amount_minor=5_000)


@pytest.fixture
def svc(test_db: Session) -> PaidChatService:
    return PaidChatService(test_db, FEE)


def _confirmation(
    reference: str, amount_minor: int = 1_000_000, success: bool = True
) -> PaymentConfirmation:
    return PaymentConfirmation(
        success=success,
        reference=reference,
        amount_minor=amount_minor,
        currency="NGN",
        status="success" if success else "abandoned",
    )


def _settle(svc: PaidChatService, user: User, route_type: str = "machine_sourcing"):
    payment = svc.start(user.id, route_type, "paystack")
    return svc.apply_confirmation(_confirmation(payment.provider_ref), user.id, "paystack")


class TestStart:
    def test_reference_format(self) -> None:
        reference = make_sourcing_reference(7, now_ms=1718000000000)
        assert reference.startswith("LSS_7_1718000000000_")

    def test_records_pending_payment_on_primary(
        self, svc: PaidChatService, test_db: Session, user: User
    ) -> None:
        payment = svc.start(user.id, "white_label", "paystack")

        primary = ConversationService(test_db).get_primary(user.id, "white_label")
        assert payment.conversation_id == primary.id
        assert payment.status == "pending"
        assert (payment.amount_minor, payment.currency) == (1_000_000, "NGN")
        assert primary.chat_mode == ChatMode.ai_only.value

    def test_paypal_uses_its_own_price(self, svc: PaidChatService, user: User) -> None:
        payment = svc.start(user.id, "machine_sourcing", "paypal")
        assert (payment.amount_minor, payment.currency) == (5_000, "GBP")

    def test_unknown_provider(self, svc: PaidChatService, user: User) -> None:
        with pytest.raises(ValidationError, match="Invalid provider"):
            svc.start(user.id, "machine_sourcing", "wallet")

    def test_source_from_other_route_rejected(
        self, svc: PaidChatService, test_db: Session, user: User
    ) -> None:
        source = make_conversation(test_db, user, route_type="white_label")
        with pytest.raises(ValidationError):
            svc.start(user.id, "machine_sourcing", "paystack", source_conversation_id=source.id)

    def test_active_paid_project_blocks_checkout(self, svc: PaidChatService, user: User) -> None:
        _settle(svc, user)
        with pytest.raises(ConflictError):
            svc.start(user.id, "machine_sourcing", "paystack")


class TestApplyConfirmation:
    def test_upgrades_primary_and_links_handoff(
        self, svc: PaidChatService, test_db: Session, user: User
    ) -> None:
        primary = ConversationService(test_db).ensure_primary_conversation(
            user.id, "machine_sourcing"
        )
        result = _settle(svc, user)

        assert result.already_processed is False
        assert result.conversation_id == primary.id
        test_db.refresh(primary)
        assert primary.conversation_kind == ConversationKind.primary.value
        assert primary.chat_mode == ChatMode.paid_human.value
        assert primary.payment_status == "paid"
        assert primary.handoff_id == result.handoff_id

        handoff = test_db.get(Handoff, result.handoff_id)
        assert handoff.status == "pending"
        assert handoff.user_id == user.id
        assert handoff.route_type == "machine_sourcing"

    def test_second_confirmation_returns_stored_result(
        self, svc: PaidChatService, test_db: Session, user: User
    ) -> None:
        payment = svc.start(user.id, "machine_sourcing", "paystack")
        first = svc.apply_confirmation(_confirmation(payment.provider_ref), user.id, "paystack")
        again = svc.apply_confirmation(_confirmation(payment.provider_ref), user.id, "paystack")

        assert again.already_processed is True
        assert again.handoff_id == first.handoff_id
        handoffs = test_db.execute(select(Handoff)).scalars().all()
        assert len(handoffs) == 1

    def test_claimed_agent_can_reply_after_upgrade(
        self, svc: PaidChatService, test_db: Session, user: User, agent: Agent
    ) -> None:
        result = _settle(svc, user)
        HandoffService(test_db).claim_handoff(result.handoff_id, agent, now=NOW)

        message = ConversationService(test_db).send_agent_message(
            agent, result.conversation_id, "Hello, I'll be sourcing this for you.", now=NOW
        )
        assert message.sender_type == "agent"
        conversation = test_db.get(Conversation, result.conversation_id)
        assert conversation.assigned_agent_id == agent.id

    def test_unsuccessful_payment(self, svc: PaidChatService, user: User) -> None:
        payment = svc.start(user.id, "machine_sourcing", "paystack")
        with pytest.raises(PaymentNotCompletedError):
            svc.apply_confirmation(
                _confirmation(payment.provider_ref, success=False), user.id, "paystack"
            )
        assert svc.find_by_reference(payment.provider_ref).status == "pending"

    def test_underpayment_rejected(
        self, svc: PaidChatService, test_db: Session, user: User
    ) -> None:
        payment = svc.start(user.id, "machine_sourcing", "paystack")
        with pytest.raises(ValidationError, match="less than the sourcing fee"):
            svc.apply_confirmation(
                _confirmation(payment.provider_ref, amount_minor=1_000), user.id, "paystack"
            )
        test_db.rollback()
        assert svc.find_by_reference(payment.provider_ref).status == "pending"
        assert test_db.execute(select(Handoff)).scalars().all() == []

    def test_other_users_payment_forbidden(
        self, svc: PaidChatService, user: User, other_user: User
    ) -> None:
        payment = svc.start(user.id, "machine_sourcing", "paystack")
        with pytest.raises(ForbiddenError):
            svc.apply_confirmation(_confirmation(payment.provider_ref), other_user.id, "paystack")

    def test_unknown_reference(self, svc: PaidChatService, user: User) -> None:
        with pytest.raises(NotFoundError):
            svc.apply_confirmation(_confirmation("LSS_missing"), user.id, "paystack")

    def test_cancelled_project_can_be_replaced(
        self, svc: PaidChatService, test_db: Session, user: User
    ) -> None:
        first = _settle(svc, user)
        HandoffService(test_db).update_status(
            first.handoff_id, "cancelled", cancel_reason="Customer changed plans", now=NOW
        )

        second = _settle(svc, user)
        assert second.conversation_id == first.conversation_id
        assert second.handoff_id != first.handoff_id
        conversation = test_db.get(Conversation, second.conversation_id)
        assert conversation.project_status == ProjectStatus.active.value
        assert conversation.handoff_id == second.handoff_id
        assert conversation.assigned_agent_id is None


class TestGetPaidChat:
    def test_lookup_by_handoff(self, svc: PaidChatService, user: User) -> None:
        result = _settle(svc, user)
        assert svc.get_paid_chat(user.id, result.handoff_id).id == result.conversation_id

    def test_other_users_handoff_not_found(
        self, svc: PaidChatService, user: User, other_user: User
    ) -> None:
        result = _settle(svc, user)
        with pytest.raises(NotFoundError):
            svc.get_paid_chat(other_user.id, result.handoff_id)

    def test_sourcing_payments_recorded(
        self, svc: PaidChatService, test_db: Session, user: User
    ) -> None:
        result = _settle(svc, user)
        stored = test_db.execute(select(SourcingPayment)).scalar_one()
        assert stored.status == "paid"
        assert stored.paid_at
        assert stored.handoff_id == result.handoff_id
