"""Payout request workflow for users and agents.

User requests hold funds: the wallet is debited when the request is
created, and rejecting the request credits the amount back. Agent requests
hold nothing; the agent wallet is debited only when an admin marks the
payout paid.

    pending -> approved | rejected
    approved -> paid | failed

Decisions lock the request row (SELECT ... FOR UPDATE) before checking its
status, so two admins cannot decide the same request twice.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from linescout.db.models import (
    Agent,
    AgentPayoutRequest,
    OwnerType,
    PayoutAccount,
    PayoutStatus,
    TransactionType,
    UserPayoutRequest,
    Wallet,
    WalletTransaction,
    to_iso,
)
from linescout.errors import (
    ForbiddenError,
    InsufficientBalanceError,
    NotFoundError,
    PayoutNotPendingError,
    ValidationError,
)
from linescout.services.settings_service import PlatformSettings
from linescout.services.wallet_service import WalletService

logger = logging.getLogger(__name__)

USER_PAYOUT_REQUEST_REF = "user_payout_request"
USER_PAYOUT_REJECT_REF = "user_payout_reject"
AGENT_PAYOUT_REF = "agent_payout"


def _stamp(now: datetime | None) -> str:
    return to_iso(now or datetime.now(UTC))


class PayoutService:
    """Creates payout requests and applies admin decisions.

    Every method commits on success and rolls back on failure.

    Attributes:
        db: SQLAlchemy session for database operations.
        settings: Platform settings snapshot (minimum agent payout).
    """

    def __init__(self, db: Session, settings: PlatformSettings | None = None) -> None:
        self.db = db
        self.settings = settings or PlatformSettings()
        self.wallets = WalletService(db)

    def _payout_account(self, owner_type: OwnerType, owner_id: int) -> PayoutAccount | None:
        return self.db.execute(
            select(PayoutAccount).where(
                PayoutAccount.owner_type == owner_type.value,
                PayoutAccount.owner_id == owner_id,
            )
        ).scalar_one_or_none()

    # =========================================================================
    # User payouts
    # =========================================================================

    def request_user_payout(self, user_id: int, amount_minor: int) -> UserPayoutRequest:
        """Create a user payout request and hold its amount.

        Raises:
            ValidationError: If the amount is not positive, there is no verified
                bank account or no wallet.
            InsufficientBalanceError: If the wallet cannot cover the amount.
        """
        if not isinstance(amount_minor, int) or amount_minor <= 0:
            raise ValidationError("Invalid amount")
        account = self._payout_account(OwnerType.user, user_id)
        if account is None:
            raise ValidationError("Add your bank account first.")
        if not account.is_verified:
            raise ValidationError("Verify your payout bank account first.")
        wallet = self.wallets.get_wallet(OwnerType.user, user_id, lock=True)
        if wallet is None:
            raise ValidationError("Wallet not found.")
        if wallet.balance_minor < amount_minor:
            raise InsufficientBalanceError()

        try:
            request = UserPayoutRequest(
                user_id=user_id,
                amount_minor=amount_minor,
                currency=wallet.currency,
                status=PayoutStatus.pending.value,
                bank_code=account.bank_code,
                account_number=account.account_number,
                account_name=account.account_name,
            )
            self.db.add(request)
            self.db.flush()
            self.wallets.debit(
                wallet,
                amount_minor,
                "User payout request",
                reference_type=USER_PAYOUT_REQUEST_REF,
                reference_id=str(request.id),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(request)
        logger.info(
            "User %s requested payout %s of %d", user_id, request.id, amount_minor
        )
        return request

    def list_user_payouts(self, user_id: int) -> list[UserPayoutRequest]:
        return list(
            self.db.execute(
                select(UserPayoutRequest)
                .where(UserPayoutRequest.user_id == user_id)
                .order_by(UserPayoutRequest.id.desc())
            ).scalars()
        )

    def _lock_user_request(self, request_id: int) -> UserPayoutRequest:
        request = self.db.execute(
            select(UserPayoutRequest)
            .where(UserPayoutRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise NotFoundError("Payout request", request_id)
        return request

    def approve_user_payout(
        self, request_id: int, admin: Agent, now: datetime | None = None
    ) -> UserPayoutRequest:
        request = self._lock_user_request(request_id)
        if request.status != PayoutStatus.pending.value:
            self.db.rollback()
            raise ValidationError("Only pending requests can be approved")
        request.status = PayoutStatus.approved.value
        request.decided_by = admin.id
        request.approved_at = _stamp(now)
        self.db.commit()
        logger.info("Admin %s approved user payout %s", admin.id, request_id)
        return request

    def reject_user_payout(
        self,
        request_id: int,
        admin: Agent,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> UserPayoutRequest:
        """Reject a pending user payout and credit the held amount back.

        Raises:
            ValidationError: If the request is not pending.
        """
        reason = (reason or "").strip() or None
        request = self._lock_user_request(request_id)
        if request.status != PayoutStatus.pending.value:
            self.db.rollback()
            raise ValidationError("Only pending requests can be rejected")

        try:
            wallet = self.wallets.get_or_create_wallet(
                OwnerType.user, request.user_id, currency=request.currency
            )
            self.wallets.credit(
                wallet,
                request.amount_minor,
                reason or "User payout rejected",
                reference_type=USER_PAYOUT_REJECT_REF,
                reference_id=str(request.id),
            )
            request.status = PayoutStatus.rejected.value
            request.rejection_reason = reason or "Rejected"
            request.decided_by = admin.id
            request.rejected_at = _stamp(now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            "Admin %s rejected user payout %s; refunded %d",
            admin.id, request_id, request.amount_minor,
        )
        return request

    def mark_user_payout_paid(
        self, request_id: int, admin: Agent, now: datetime | None = None
    ) -> UserPayoutRequest:
        """Record that an approved user payout was sent. Funds were held at request time."""
        request = self._lock_user_request(request_id)
        if request.status != PayoutStatus.approved.value:
            self.db.rollback()
            raise ValidationError("Only approved requests can be marked paid")
        request.status = PayoutStatus.paid.value
        request.paid_at = _stamp(now)
        self.db.commit()
        logger.info("Admin %s marked user payout %s paid", admin.id, request_id)
        return request

    # =========================================================================
    # Agent payouts
    # =========================================================================

    def request_agent_payout(
        self, agent: Agent, amount_minor: int, note: str | None = None
    ) -> AgentPayoutRequest:
        """Create an agent payout request. The wallet is not debited yet.

        Raises:
            ForbiddenError: If the caller is not a sourcing agent.
            ValidationError: If the amount is below the minimum or the bank
                account is not verified.
        """
        if agent.role != "agent":
            raise ForbiddenError("Only agents can request payouts.")
        if not isinstance(amount_minor, int) or amount_minor <= 0:
            raise ValidationError("Invalid amount")
        minimum = self.settings.min_agent_payout_minor
        if amount_minor < minimum:
            raise ValidationError(
                f"Minimum payout is {minimum / 100:,.2f}.", min_amount_minor=minimum
            )
        account = self._payout_account(OwnerType.agent, agent.id)
        if account is None or not account.is_verified:
            raise ValidationError("Verify your payout bank account first.")

        wallet = self.wallets.get_wallet(OwnerType.agent, agent.id)
        currency = wallet.currency if wallet else "NGN"
        request = AgentPayoutRequest(
            agent_id=agent.id,
            amount_minor=amount_minor,
            currency=currency,
            status=PayoutStatus.pending.value,
            requested_note=(note or "").strip() or None,
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)
        logger.info(
            "Agent %s requested payout %s of %d", agent.id, request.id, amount_minor
        )
        return request

    def _lock_agent_request(self, request_id: int) -> AgentPayoutRequest:
        request = self.db.execute(
            select(AgentPayoutRequest)
            .where(AgentPayoutRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise NotFoundError("Payout request", request_id)
        return request

    def decide_agent_payout(
        self,
        request_id: int,
        admin: Agent,
        action: str,
        admin_note: str | None = None,
        now: datetime | None = None,
    ) -> AgentPayoutRequest:
        """Approve or reject a pending agent payout.

        Raises:
            ValidationError: If the action is unknown or a rejection has no note.
            PayoutNotPendingError: If the request was already decided.
        """
        if action not in ("approve", "reject"):
            raise ValidationError("Invalid action")
        admin_note = (admin_note or "").strip() or None
        if action == "reject" and not admin_note:
            raise ValidationError("Rejection requires a reason")

        request = self._lock_agent_request(request_id)
        if request.status != PayoutStatus.pending.value:
            status = request.status
            self.db.rollback()
            raise PayoutNotPendingError(f"Cannot {action} a {status} request")

        stamp = _stamp(now)
        if action == "approve":
            request.status = PayoutStatus.approved.value
            request.approved_at = stamp
        else:
            request.status = PayoutStatus.rejected.value
            request.rejected_at = stamp
        request.admin_note = admin_note
        request.decided_by = admin.id
        self.db.commit()
        logger.info("Admin %s set agent payout %s to %s", admin.id, request_id, request.status)
        return request

    def mark_agent_payout_paid(
        self, request_id: int, admin: Agent, now: datetime | None = None
    ) -> AgentPayoutRequest:
        """Debit the agent wallet and mark an approved payout paid.

        Raises:
            PayoutNotPendingError: If the request is not approved.
            InsufficientBalanceError: If the agent wallet cannot cover it.
        """
        request = self._lock_agent_request(request_id)
        if request.status != PayoutStatus.approved.value:
            status = request.status
            self.db.rollback()
            raise PayoutNotPendingError(f"Cannot pay a {status} request")
        try:
            wallet = self.wallets.get_wallet(OwnerType.agent, request.agent_id, lock=True)
            if wallet is None:
                raise InsufficientBalanceError()
            self.wallets.debit(
                wallet,
                request.amount_minor,
                "Agent payout",
                reference_type=AGENT_PAYOUT_REF,
                reference_id=str(request.id),
            )
            request.status = PayoutStatus.paid.value
            request.paid_at = _stamp(now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Admin %s paid agent payout %s", admin.id, request_id)
        return request

    def mark_agent_payout_failed(
        self,
        request_id: int,
        admin: Agent,
        admin_note: str | None = None,
        now: datetime | None = None,
    ) -> AgentPayoutRequest:
        request = self._lock_agent_request(request_id)
        if request.status != PayoutStatus.approved.value:
            status = request.status
            self.db.rollback()
            raise PayoutNotPendingError(f"Cannot fail a {status} request")
        request.status = PayoutStatus.failed.value
        request.failed_at = _stamp(now)
        if admin_note and admin_note.strip():
            request.admin_note = admin_note.strip()
        self.db.commit()
        logger.info("Admin %s marked agent payout %s failed", admin.id, request_id)
        return request

    # =========================================================================
    # Admin adjustments
    # =========================================================================

    def admin_adjust(
        self,
        admin: Agent,
        owner_type: str,
        owner_id: int,
        tx_type: str,
        amount_minor: int,
        reason: str,
    ) -> tuple[Wallet, WalletTransaction]:
        """Credit or debit a wallet by hand, with a mandatory reason.

        Raises:
            ValidationError: On an unknown owner or transaction type, a
                non-positive amount, or an empty reason.
            InsufficientBalanceError: If a debit would overdraw the wallet.
        """
        try:
            owner = OwnerType(owner_type)
            kind = TransactionType(tx_type)
        except ValueError:
            raise ValidationError("Invalid owner_type or type") from None
        if not isinstance(amount_minor, int) or amount_minor <= 0:
            raise ValidationError("Invalid amount")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Reason is required")

        try:
            wallet = self.wallets.get_or_create_wallet(owner, owner_id)
            meta = {"admin_id": admin.id}
            if kind == TransactionType.credit:
                tx = self.wallets.credit(wallet, amount_minor, reason, meta=meta)
            else:
                tx = self.wallets.debit(wallet, amount_minor, reason, meta=meta)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            "Admin %s %sed %s wallet %s by %d: %s",
            admin.id, kind.value, owner.value, wallet.id, amount_minor, reason,
        )
        return wallet, tx
