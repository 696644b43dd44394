"""Tests for user and agent payout workflows."""

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from linescout.db.models import Agent, OwnerType, User, WalletTransaction
from linescout.errors import (
    ForbiddenError,
    InsufficientBalanceError,
    NotFoundError,
    PayoutNotPendingError,
    ValidationError,
)
from linescout.services.payout_service import PayoutService
from linescout.services.settings_service import PlatformSettings
from tests.factories import NOW, add_payout_account, fund_wallet

FIVE_THOUSAND_NAIRA = 500_000


@pytest.fixture
def payouts(test_db: Session, settings: PlatformSettings) -> PayoutService:
    return PayoutService(test_db, settings)


class TestUserPayouts:
    """User requests hold funds; rejection refunds them."""

    def test_request_then_reject_refunds(
        self, payouts: PayoutService, test_db: Session, user: User, admin: Agent
    ) -> None:
        wallet = fund_wallet(test_db, OwnerType.user, user.id, FIVE_THOUSAND_NAIRA)
        add_payout_account(test_db, OwnerType.user, user.id)

        request = payouts.request_user_payout(user.id, FIVE_THOUSAND_NAIRA)
        assert request.status == "pending"
        assert request.account_number == "0123456789"
        test_db.refresh(wallet)
        assert wallet.balance_minor == 0

        rejected = payouts.reject_user_payout(request.id, admin, now=NOW)
        assert rejected.status == "rejected"
        assert rejected.decided_by == admin.id
        test_db.refresh(wallet)
        assert wallet.balance_minor == FIVE_THOUSAND_NAIRA

        refund = test_db.execute(
            select(WalletTransaction).where(
                WalletTransaction.reference_type == "user_payout_reject"
            )
        ).scalar_one()
        assert refund.type == "credit"
        assert refund.reason == "User payout rejected"
        assert refund.amount_minor == FIVE_THOUSAND_NAIRA

    def test_reject_with_reason(
        self, payouts: PayoutService, test_db: Session, user: User, admin: Agent
    ) -> None:
        fund_wallet(test_db, OwnerType.user, user.id, 1_000)
        add_payout_account(test_db, OwnerType.user, user.id)
        request = payouts.request_user_payout(user.id, 1_000)

        rejected = payouts.reject_user_payout(request.id, admin, reason="Account name mismatch")

        assert rejected.rejection_reason == "Account name mismatch"
        refund = test_db.execute(
            select(WalletTransaction).where(WalletTransaction.type == "credit")
            .order_by(WalletTransaction.id.desc())
        ).scalars().first()
        assert refund.reason == "Account name mismatch"

    def test_reject_twice_rejected(
        self, payouts: PayoutService, test_db: Session, user: User, admin: Agent
    ) -> None:
        fund_wallet(test_db, OwnerType.user, user.id, 1_000)
        add_payout_account(test_db, OwnerType.user, user.id)
        request = payouts.request_user_payout(user.id, 1_000)
        payouts.reject_user_payout(request.id, admin)
        with pytest.raises(ValidationError, match="Only pending"):
            payouts.reject_user_payout(request.id, admin)

    def test_approve_then_pay(
        self, payouts: PayoutService, test_db: Session, user: User, admin: Agent
    ) -> None:
        wallet = fund_wallet(test_db, OwnerType.user, user.id, 2_000)
        add_payout_account(test_db, OwnerType.user, user.id)
        request = payouts.request_user_payout(user.id, 1_500)

        with pytest.raises(ValidationError, match="Only approved"):
            payouts.mark_user_payout_paid(request.id, admin)
        payouts.approve_user_payout(request.id, admin, now=NOW)
        paid = payouts.mark_user_payout_paid(request.id, admin, now=NOW)

        assert paid.status == "paid"
        test_db.refresh(wallet)
        assert wallet.balance_minor == 500

    def test_requires_bank_account(
        self, payouts: PayoutService, test_db: Session, user: User
    ) -> None:
        fund_wallet(test_db, OwnerType.user, user.id, 1_000)
        with pytest.raises(ValidationError, match="bank account"):
            payouts.request_user_payout(user.id, 500)

    def test_unverified_account_keeps_funds(
        self, payouts: PayoutService, test_db: Session, user: User
    ) -> None:
        wallet = fund_wallet(test_db, OwnerType.user, user.id, FIVE_THOUSAND_NAIRA)
        add_payout_account(test_db, OwnerType.user, user.id, verified=False)
        with pytest.raises(ValidationError, match="Verify your payout bank account"):
            payouts.request_user_payout(user.id, FIVE_THOUSAND_NAIRA)
        test_db.refresh(wallet)
        assert wallet.balance_minor == FIVE_THOUSAND_NAIRA
        assert payouts.list_user_payouts(user.id) == []

    def test_insufficient_balance(
        self, payouts: PayoutService, test_db: Session, user: User
    ) -> None:
        fund_wallet(test_db, OwnerType.user, user.id, 1_000)
        add_payout_account(test_db, OwnerType.user, user.id)
        with pytest.raises(InsufficientBalanceError):
            payouts.request_user_payout(user.id, 1_001)
        assert payouts.list_user_payouts(user.id) == []

    def test_invalid_amount(self, payouts: PayoutService, user: User) -> None:
        with pytest.raises(ValidationError, match="Invalid amount"):
            payouts.request_user_payout(user.id, 0)

    def test_unknown_request(self, payouts: PayoutService, admin: Agent) -> None:
        with pytest.raises(NotFoundError):
            payouts.approve_user_payout(404, admin)


class TestAgentPayouts:
    """Agent requests debit the wallet only when paid."""

    def test_request_approve_pay(
        self, payouts: PayoutService, test_db: Session, agent: Agent, admin: Agent
    ) -> None:
        wallet = fund_wallet(test_db, OwnerType.agent, agent.id, 50_000)
        add_payout_account(test_db, OwnerType.agent, agent.id)

        request = payouts.request_agent_payout(agent, 20_000, note="March")
        assert request.requested_note == "March"
        test_db.refresh(wallet)
        assert wallet.balance_minor == 50_000

        payouts.decide_agent_payout(request.id, admin, "approve", now=NOW)
        paid = payouts.mark_agent_payout_paid(request.id, admin, now=NOW)

        assert paid.status == "paid"
        test_db.refresh(wallet)
        assert wallet.balance_minor == 30_000

    def test_below_minimum(self, payouts: PayoutService, test_db: Session, agent: Agent) -> None:
        add_payout_account(test_db, OwnerType.agent, agent.id)
        with pytest.raises(ValidationError, match="Minimum payout") as exc_info:
            payouts.request_agent_payout(agent, 9_999)
        assert exc_info.value.to_payload()["min_amount_minor"] == 10_000

    def test_unverified_account(
        self, payouts: PayoutService, test_db: Session, agent: Agent
    ) -> None:
        add_payout_account(test_db, OwnerType.agent, agent.id, verified=False)
        with pytest.raises(ValidationError, match="Verify your payout bank account"):
            payouts.request_agent_payout(agent, 20_000)

    def test_admin_cannot_request(self, payouts: PayoutService, admin: Agent) -> None:
        with pytest.raises(ForbiddenError):
            payouts.request_agent_payout(admin, 20_000)

    def test_reject_requires_note(
        self, payouts: PayoutService, test_db: Session, agent: Agent, admin: Agent
    ) -> None:
        add_payout_account(test_db, OwnerType.agent, agent.id)
        request = payouts.request_agent_payout(agent, 20_000)
        with pytest.raises(ValidationError, match="requires a reason"):
            payouts.decide_agent_payout(request.id, admin, "reject")

        rejected = payouts.decide_agent_payout(request.id, admin, "reject", admin_note="Dup")
        assert rejected.status == "rejected"
        assert rejected.admin_note == "Dup"

    def test_decided_request_conflicts(
        self, payouts: PayoutService, test_db: Session, agent: Agent, admin: Agent
    ) -> None:
        add_payout_account(test_db, OwnerType.agent, agent.id)
        request = payouts.request_agent_payout(agent, 20_000)
        payouts.decide_agent_payout(request.id, admin, "approve")
        with pytest.raises(PayoutNotPendingError):
            payouts.decide_agent_payout(request.id, admin, "approve")

    def test_pay_without_funds_keeps_approved(
        self, payouts: PayoutService, test_db: Session, agent: Agent, admin: Agent
    ) -> None:
        fund_wallet(test_db, OwnerType.agent, agent.id, 5_000)
        add_payout_account(test_db, OwnerType.agent, agent.id)
        request = payouts.request_agent_payout(agent, 20_000)
        payouts.decide_agent_payout(request.id, admin, "approve")

        with pytest.raises(InsufficientBalanceError):
            payouts.mark_agent_payout_paid(request.id, admin)
        test_db.refresh(request)
        assert request.status == "approved"

    def test_mark_failed(
        self, payouts: PayoutService, test_db: Session, agent: Agent, admin: Agent
    ) -> None:
        add_payout_account(test_db, OwnerType.agent, agent.id)
        request = payouts.request_agent_payout(agent, 20_000)
        with pytest.raises(PayoutNotPendingError):
            payouts.mark_agent_payout_failed(request.id, admin)
        payouts.decide_agent_payout(request.id, admin, "approve")
        failed = payouts.mark_agent_payout_failed(request.id, admin, admin_note="Bank bounced")
        assert failed.status == "failed"
        assert failed.admin_note == "Bank bounced"


class TestAdminAdjust:
    def test_credit_and_debit(self, payouts: PayoutService, user: User, admin: Agent) -> None:
        wallet, tx = payouts.admin_adjust(admin, "user", user.id, "credit", 7_000, "Goodwill")
        assert wallet.balance_minor == 7_000
        assert tx.reason == "Goodwill"

        wallet, _ = payouts.admin_adjust(admin, "user", user.id, "debit", 2_000, "Correction")
        assert wallet.balance_minor == 5_000

    def test_overdraw_rejected(self, payouts: PayoutService, user: User, admin: Agent) -> None:
        with pytest.raises(InsufficientBalanceError):
            payouts.admin_adjust(admin, "user", user.id, "debit", 1, "Oops")

    @pytest.mark.parametrize(
        "owner_type, tx_type, amount, reason, message",
        [
            ("bank", "credit", 100, "x", "Invalid owner_type"),
            ("user", "refund", 100, "x", "Invalid owner_type"),
            ("user", "credit", 0, "x", "Invalid amount"),
            ("user", "credit", 100, "  ", "Reason is required"),
        ],
    )
    def test_validation(
        self,
        payouts: PayoutService,
        user: User,
        admin: Agent,
        owner_type: str,
        tx_type: str,
        amount: int,
        reason: str,
        message: str,
    ) -> None:
        with pytest.raises(ValidationError, match=message):
            payouts.admin_adjust(admin, owner_type, user.id, tx_type, amount, reason)
