"""Ledger primitives: wallets and their append-only transactions.

Every balance change is a WalletTransaction insert plus a balance update in
the caller's transaction, so a wallet's balance always equals the signed sum
of its transactions. Services never commit; the caller owns the transaction
boundary and rolls back on any failure.

Example:
    svc = WalletService(db)
    wallet = svc.get_or_create_wallet(OwnerType.agent, agent.id)
    svc.credit(wallet, 2500, "agent_quote_commission",
               reference_type="quote_payment_commission", reference_id="42")
    db.commit()
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from linescout.db.models import (
    OwnerType,
    TransactionType,
    Wallet,
    WalletTransaction,
)
from linescout.errors import InsufficientBalanceError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of comparing a wallet balance to its ledger."""

    wallet_id: int
    balance_minor: int
    ledger_minor: int

    @property
    def drift_minor(self) -> int:
        return self.balance_minor - self.ledger_minor

    @property
    def is_consistent(self) -> bool:
        return self.drift_minor == 0


class WalletService:
    """Wallet lookups and balance-changing ledger postings.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # =========================================================================
    # Wallet lookups
    # =========================================================================

    def get_wallet(
        self, owner_type: OwnerType | str, owner_id: int, lock: bool = False
    ) -> Wallet | None:
        """Return the owner's wallet, optionally locked FOR UPDATE."""
        stmt = select(Wallet).where(
            Wallet.owner_type == OwnerType(owner_type).value,
            Wallet.owner_id == owner_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_or_create_wallet(
        self, owner_type: OwnerType | str, owner_id: int, currency: str = "NGN"
    ) -> Wallet:
        """Return the owner's wallet, creating an empty one if absent."""
        wallet = self.get_wallet(owner_type, owner_id, lock=True)
        if wallet is None:
            wallet = Wallet(
                owner_type=OwnerType(owner_type).value,
                owner_id=owner_id,
                currency=currency,
                balance_minor=0,
            )
            self.db.add(wallet)
            self.db.flush()
            logger.info(
                "Created %s wallet %s for owner %s", wallet.owner_type, wallet.id, owner_id
            )
        return wallet

    def has_reference(self, reference_type: str, reference_id: str) -> bool:
        """Return True if a transaction with this reference was already booked."""
        found = self.db.execute(
            select(WalletTransaction.id)
            .where(
                WalletTransaction.reference_type == reference_type,
                WalletTransaction.reference_id == reference_id,
            )
            .limit(1)
        ).first()
        return found is not None

    def list_transactions(self, wallet: Wallet, limit: int = 50) -> list[WalletTransaction]:
        """Most recent transactions first."""
        return list(
            self.db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.wallet_id == wallet.id)
                .order_by(WalletTransaction.id.desc())
                .limit(limit)
            ).scalars()
        )

    # =========================================================================
    # Postings
    # =========================================================================

    def credit(
        self,
        wallet: Wallet,
        amount_minor: int,
        reason: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> WalletTransaction:
        """Append a credit and raise the balance by the same amount."""
        return self._post(
            wallet, TransactionType.credit, amount_minor, reason,
            reference_type, reference_id, meta,
        )

    def debit(
        self,
        wallet: Wallet,
        amount_minor: int,
        reason: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> WalletTransaction:
        """Append a debit and lower the balance by the same amount.

        The balance check and decrement are a single conditional UPDATE, so
        two concurrent debits cannot both pass against the same funds.

        Raises:
            InsufficientBalanceError: If the balance does not cover the amount.
        """
        return self._post(
            wallet, TransactionType.debit, amount_minor, reason,
            reference_type, reference_id, meta,
        )

    def _post(
        self,
        wallet: Wallet,
        tx_type: TransactionType,
        amount_minor: int,
        reason: str,
        reference_type: str | None,
        reference_id: str | None,
        meta: dict[str, Any] | None,
    ) -> WalletTransaction:
        if amount_minor <= 0:
            raise ValidationError("Amount must be greater than zero.")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for wallet transactions.")

        self.db.flush()
        stmt = update(Wallet).where(Wallet.id == wallet.id)
        if tx_type == TransactionType.debit:
            stmt = stmt.where(Wallet.balance_minor >= amount_minor).values(
                balance_minor=Wallet.balance_minor - amount_minor
            )
        else:
            stmt = stmt.values(balance_minor=Wallet.balance_minor + amount_minor)
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            raise InsufficientBalanceError()

        tx = WalletTransaction(
            wallet_id=wallet.id,
            type=tx_type.value,
            amount_minor=amount_minor,
            currency=wallet.currency,
            reason=reason.strip(),
            reference_type=reference_type,
            reference_id=reference_id,
            meta_json=json.dumps(meta, sort_keys=True) if meta else None,
        )
        self.db.add(tx)
        # Surfaces a duplicate (reference_type, reference_id) as IntegrityError
        self.db.flush()
        self.db.refresh(wallet)
        logger.info(
            "Wallet %s %s %d (%s) ref=%s:%s balance=%d",
            wallet.id, tx_type.value, amount_minor, reason,
            reference_type, reference_id, wallet.balance_minor,
        )
        return tx

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def ledger_sum(self, wallet: Wallet) -> int:
        """Signed sum of the wallet's transactions (credits minus debits)."""
        credits = self.db.execute(
            select(func.coalesce(func.sum(WalletTransaction.amount_minor), 0)).where(
                WalletTransaction.wallet_id == wallet.id,
                WalletTransaction.type == TransactionType.credit.value,
            )
        ).scalar_one()
        debits = self.db.execute(
            select(func.coalesce(func.sum(WalletTransaction.amount_minor), 0)).where(
                WalletTransaction.wallet_id == wallet.id,
                WalletTransaction.type == TransactionType.debit.value,
            )
        ).scalar_one()
        return int(credits) - int(debits)

    def reconcile(self, wallet: Wallet, fix: bool = False) -> ReconcileResult:
        """Compare balance to the ledger; with ``fix`` reset the balance to it."""
        self.db.flush()
        self.db.refresh(wallet)
        result = ReconcileResult(
            wallet_id=wallet.id,
            balance_minor=wallet.balance_minor,
            ledger_minor=self.ledger_sum(wallet),
        )
        if not result.is_consistent:
            logger.warning(
                "Wallet %s drift: balance=%d ledger=%d",
                wallet.id, result.balance_minor, result.ledger_minor,
            )
            if fix:
                wallet.balance_minor = result.ledger_minor
                self.db.flush()
        return result

    def reconcile_all(self, fix: bool = False) -> list[ReconcileResult]:
        wallets = self.db.execute(select(Wallet).order_by(Wallet.id)).scalars().all()
        return [self.reconcile(w, fix=fix) for w in wallets]
