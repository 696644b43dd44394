"""Payment-intent tracker for quote payments.

One QuotePayment row is recorded per attempted payment. A row moves from
pending to paid exactly once; settling it also records the matching
handoff payment and credits the assigned agent's commission in the same
transaction. Re-verifying an already-paid reference returns the original
result without touching the ledger.

Example:
    svc = QuotePaymentService(db, settings)
    payment = svc.find_by_reference(reference)
    if payment.status != "paid":
        confirmation = await paystack.verify(reference)
        result = svc.apply_confirmation(confirmation, "paystack")
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from linescout.db.models import (
    Handoff,
    HandoffPayment,
    HandoffPaymentPurpose,
    HandoffStatus,
    OwnerType,
    PaymentProvider,
    Quote,
    QuotePayment,
    QuotePaymentPurpose,
    QuotePaymentStatus,
    User,
    to_iso,
    utc_now_iso,
)
from linescout.errors import (
    NotFoundError,
    PaymentNotCompletedError,
    ValidationError,
)
from linescout.services.commission import CommissionResult, credit_agent_commission
from linescout.services.payment_providers import PaymentConfirmation
from linescout.services.settings_service import PlatformSettings
from linescout.services.wallet_service import WalletService

logger = logging.getLogger(__name__)

PRODUCT_PURPOSES = (
    QuotePaymentPurpose.deposit.value,
    QuotePaymentPurpose.product_balance.value,
    QuotePaymentPurpose.full_product_payment.value,
)

WALLET_PAYMENT_REFERENCE_TYPE = "quote_payment"


def handoff_purpose_for(purpose: str) -> str:
    """Map a quote-payment purpose to the handoff ledger purpose."""
    if purpose == QuotePaymentPurpose.deposit.value:
        return HandoffPaymentPurpose.downpayment.value
    if purpose == QuotePaymentPurpose.shipping_payment.value:
        return HandoffPaymentPurpose.shipping_payment.value
    return HandoffPaymentPurpose.full_payment.value


def make_reference(quote_id: int, now_ms: int | None = None) -> str:
    """Provider reference for a Paystack checkout: LSQ_<quote id>_<epoch ms>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"LSQ_{quote_id}_{now_ms}"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying a quote payment.

    ``already_processed`` is True when the payment had been settled by an
    earlier call; the other fields are identical either way.
    """

    quote_id: int
    handoff_id: int | None
    token: str
    status: str = QuotePaymentStatus.paid.value
    already_processed: bool = False
    commission: CommissionResult | None = None

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "status": self.status,
            "quote_id": self.quote_id,
            "handoff_id": self.handoff_id,
            "token": self.token,
        }


@dataclass(frozen=True)
class WalletApplication:
    """Portion of a quote payment covered by the payer's wallet."""

    applied_minor: int
    payment: QuotePayment | None = None


class QuotePaymentService:
    """Creates, settles and looks up quote payments.

    Settling methods commit their own transaction and roll back on failure.

    Attributes:
        db: SQLAlchemy session for database operations.
        settings: Platform settings snapshot used for commission.
    """

    def __init__(self, db: Session, settings: PlatformSettings) -> None:
        self.db = db
        self.settings = settings

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_quote_by_token(self, token: str) -> Quote:
        token = (token or "").strip()
        if not token:
            raise ValidationError("Invalid token")
        quote = self.db.execute(select(Quote).where(Quote.token == token)).scalar_one_or_none()
        if quote is None:
            raise NotFoundError("Quote", token)
        return quote

    def find_by_reference(self, provider_ref: str, lock: bool = False) -> QuotePayment:
        """Return the payment created at initiation time for this reference.

        Raises:
            NotFoundError: If no payment was recorded for the reference.
        """
        stmt = select(QuotePayment).where(QuotePayment.provider_ref == provider_ref)
        if lock:
            stmt = stmt.with_for_update()
        payment = self.db.execute(stmt).scalar_one_or_none()
        if payment is None:
            raise NotFoundError("Payment record", provider_ref)
        return payment

    def result_for(
        self, payment: QuotePayment, already_processed: bool = True
    ) -> VerificationResult:
        token = self.db.execute(
            select(Quote.token).where(Quote.id == payment.quote_id)
        ).scalar_one_or_none()
        return VerificationResult(
            quote_id=payment.quote_id,
            handoff_id=payment.handoff_id or None,
            token=token or "",
            status=payment.status,
            already_processed=already_processed,
        )

    def paid_totals(self, quote: Quote) -> tuple[int, int]:
        """(product paid, shipping paid) in minor units across settled payments."""
        rows = self.db.execute(
            select(QuotePayment.purpose, func.coalesce(func.sum(QuotePayment.amount_minor), 0))
            .where(
                QuotePayment.quote_id == quote.id,
                QuotePayment.status == QuotePaymentStatus.paid.value,
            )
            .group_by(QuotePayment.purpose)
        ).all()
        product = sum(int(total) for purpose, total in rows if purpose in PRODUCT_PURPOSES)
        shipping = sum(
            int(total)
            for purpose, total in rows
            if purpose == QuotePaymentPurpose.shipping_payment.value
        )
        return product, shipping

    def amount_due(self, quote: Quote, purpose: str) -> int:
        """Outstanding amount for ``purpose``, in minor units.

        Raises:
            ValidationError: If the purpose is not payable right now.
        """
        try:
            purpose = QuotePaymentPurpose(purpose).value
        except ValueError:
            raise ValidationError(f"Invalid purpose: {purpose}") from None

        product_paid, shipping_paid = self.paid_totals(quote)
        if purpose == QuotePaymentPurpose.deposit.value:
            if (quote.deposit_percent or 0) <= 0:
                raise ValidationError("Deposit is not enabled for this quote")
            percent = max(0.0, min(100.0, float(quote.deposit_percent)))
            deposit = round(quote.product_total_minor * percent / 100)
            if product_paid >= deposit:
                raise ValidationError("Deposit already paid")
            required = deposit - product_paid
        elif purpose == QuotePaymentPurpose.shipping_payment.value:
            handoff_status = self.db.execute(
                select(Handoff.status).where(Handoff.id == quote.handoff_id)
            ).scalar_one_or_none()
            if handoff_status != HandoffStatus.shipped.value:
                raise ValidationError(
                    "Shipping payment is available only after the project is shipped."
                )
            if product_paid < quote.product_total_minor:
                raise ValidationError("Product must be fully paid before shipping payment")
            required = quote.shipping_total_minor - shipping_paid
        else:
            required = quote.product_total_minor - product_paid

        if required <= 0:
            raise ValidationError("Nothing due for this payment")
        return required

    # =========================================================================
    # Initiation
    # =========================================================================

    def create_pending(
        self,
        quote: Quote,
        purpose: str,
        method: PaymentProvider | str,
        amount_minor: int,
        provider_ref: str,
        user_id: int | None = None,
        currency: str | None = None,
    ) -> QuotePayment:
        """Record a pending payment before the payer is sent to the provider."""
        payment = QuotePayment(
            quote_id=quote.id,
            handoff_id=quote.handoff_id,
            user_id=user_id or quote.user_id,
            purpose=purpose,
            method=PaymentProvider(method).value,
            status=QuotePaymentStatus.pending.value,
            amount_minor=amount_minor,
            currency=currency or quote.currency,
            provider_ref=provider_ref,
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        logger.info(
            "Pending %s quote payment %s (%s) for quote %s: %d",
            payment.method, payment.id, provider_ref, quote.id, amount_minor,
        )
        return payment

    def set_reference(self, payment: QuotePayment, provider_ref: str) -> QuotePayment:
        """Replace the local reference with the one the provider issued."""
        payment.provider_ref = provider_ref
        self.db.commit()
        self.db.refresh(payment)
        return payment

    def mark_failed(self, payment: QuotePayment) -> None:
        """Flag a pending payment whose checkout could not be started."""
        self.db.execute(
            update(QuotePayment)
            .where(
                QuotePayment.id == payment.id,
                QuotePayment.status == QuotePaymentStatus.pending.value,
            )
            .values(status=QuotePaymentStatus.failed.value)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def pay_from_wallet(
        self, quote: Quote, purpose: str, user: User, required_minor: int
    ) -> WalletApplication:
        """Cover as much of ``required_minor`` as the user's wallet allows.

        The wallet debit, the immediately-paid wallet QuotePayment, the
        handoff payment and the commission are committed together.

        Raises:
            ValidationError: If the user has no wallet.
        """
        wallets = WalletService(self.db)
        wallet = wallets.get_wallet(OwnerType.user, user.id, lock=True)
        if wallet is None:
            raise ValidationError("Wallet not found")
        applied = min(wallet.balance_minor, required_minor)
        if applied <= 0:
            return WalletApplication(applied_minor=0)

        try:
            payment = QuotePayment(
                quote_id=quote.id,
                handoff_id=quote.handoff_id,
                user_id=user.id,
                purpose=purpose,
                method=PaymentProvider.wallet.value,
                status=QuotePaymentStatus.paid.value,
                amount_minor=applied,
                currency=wallet.currency,
                provider_ref=None,
                paid_at=utc_now_iso(),
            )
            self.db.add(payment)
            self.db.flush()
            wallets.debit(
                wallet,
                applied,
                "Quote payment",
                reference_type=WALLET_PAYMENT_REFERENCE_TYPE,
                reference_id=str(payment.id),
                meta={"quote_id": quote.id, "purpose": purpose},
            )
            self._record_settlement(payment, applied, wallet.currency, "Quote payment (wallet)")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(payment)
        logger.info("Applied %d from wallet %s to quote %s", applied, wallet.id, quote.id)
        return WalletApplication(applied_minor=applied, payment=payment)

    # =========================================================================
    # Settlement
    # =========================================================================

    def _record_settlement(
        self, payment: QuotePayment, amount_minor: int, currency: str, note: str
    ) -> CommissionResult | None:
        if not payment.handoff_id:
            return None
        self.db.add(
            HandoffPayment(
                handoff_id=payment.handoff_id,
                quote_payment_id=payment.id,
                amount_minor=amount_minor,
                currency=currency,
                purpose=handoff_purpose_for(payment.purpose),
                note=note,
                paid_at=payment.paid_at or utc_now_iso(),
            )
        )
        self.db.flush()
        return credit_agent_commission(
            self.db,
            quote_payment_id=payment.id,
            quote_id=payment.quote_id,
            handoff_id=payment.handoff_id,
            amount_minor=amount_minor,
            currency=currency,
            purpose=payment.purpose,
            settings=self.settings,
        )

    def apply_confirmation(
        self,
        confirmation: PaymentConfirmation,
        provider: str,
        now: datetime | None = None,
    ) -> VerificationResult:
        """Settle the payment a provider confirmed, exactly once.

        The pending -> paid flip is a conditional UPDATE; whoever loses a
        race (or hits the unique ledger references) rolls back and returns
        the already-settled result.

        Raises:
            PaymentNotCompletedError: If the provider did not report success.
            NotFoundError: If no payment was recorded for the reference.
        """
        if not confirmation.success:
            raise PaymentNotCompletedError(provider, confirmation.status)

        payment = self.find_by_reference(confirmation.reference, lock=True)
        if payment.status == QuotePaymentStatus.paid.value:
            return self.result_for(payment)

        paid_at = to_iso(now) if now else utc_now_iso()
        amount = confirmation.amount_minor or payment.amount_minor
        currency = confirmation.currency or payment.currency
        if currency != payment.currency:
            logger.warning(
                "Quote payment %s settled in %s, expected %s",
                payment.id, currency, payment.currency,
            )

        try:
            flipped = self.db.execute(
                update(QuotePayment)
                .where(
                    QuotePayment.id == payment.id,
                    QuotePayment.status != QuotePaymentStatus.paid.value,
                )
                .values(status=QuotePaymentStatus.paid.value, paid_at=paid_at)
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount != 1:
                self.db.rollback()
                return self.result_for(self.find_by_reference(confirmation.reference))
            self.db.refresh(payment)
            commission = self._record_settlement(
                payment, amount, currency, f"Quote payment ({provider})"
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Quote payment %s settled concurrently; returning stored result",
                confirmation.reference,
            )
            return self.result_for(self.find_by_reference(confirmation.reference))
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Quote payment %s (%s) paid: %d %s", payment.id, provider, amount, currency
        )
        result = self.result_for(payment, already_processed=False)
        return VerificationResult(
            quote_id=result.quote_id,
            handoff_id=result.handoff_id,
            token=result.token,
            status=result.status,
            already_processed=False,
            commission=commission,
        )
