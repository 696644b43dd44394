"""Agent commission crediting for paid quote payments.

A commission is owed once per quote payment, to the agent most recently
assigned to a conversation linked to the payment's handoff. Crediting is
idempotent: a transaction with reference
``quote_payment_commission:<payment id>`` is booked at most once, enforced
by a pre-check and by the unique reference index on wallet transactions.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from linescout.db.models import (
    Conversation,
    OwnerType,
    Quote,
    QuotePaymentPurpose,
)
from linescout.services.settings_service import PlatformSettings
from linescout.services.wallet_service import WalletService

logger = logging.getLogger(__name__)

COMMISSION_REFERENCE_TYPE = "quote_payment_commission"
COMMISSION_REASON = "agent_quote_commission"


@dataclass(frozen=True)
class CommissionResult:
    """What happened when a commission was requested.

    Attributes:
        credited: True only when a new transaction was booked.
        skipped_reason: Why nothing was booked (None when credited).
        agent_id: Agent who received the commission.
        percent: Percent applied.
        amount_minor: Commission amount in minor units.
    """

    credited: bool
    skipped_reason: str | None = None
    agent_id: int | None = None
    percent: float | None = None
    amount_minor: int = 0


def compute_commission(amount_minor: int, percent: float) -> int:
    """Commission in minor units, rounded half-up to the nearest minor unit."""
    value = Decimal(amount_minor) * Decimal(str(percent)) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def resolve_assigned_agent(db: Session, handoff_id: int) -> int | None:
    """Agent on the most recent handoff conversation that has one assigned."""
    return db.execute(
        select(Conversation.assigned_agent_id)
        .where(
            Conversation.handoff_id == handoff_id,
            Conversation.assigned_agent_id.is_not(None),
        )
        .order_by(Conversation.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def credit_agent_commission(
    db: Session,
    *,
    quote_payment_id: int | None,
    quote_id: int | None,
    handoff_id: int | None,
    amount_minor: int,
    currency: str,
    purpose: str,
    settings: PlatformSettings,
) -> CommissionResult:
    """Credit the assigned agent's commission for one paid quote payment.

    Runs inside the caller's transaction and never commits. Every skip is a
    silent no-op reported through ``skipped_reason``.
    """
    if not quote_payment_id or not quote_id or not handoff_id:
        return CommissionResult(credited=False, skipped_reason="missing_reference")
    if amount_minor <= 0:
        return CommissionResult(credited=False, skipped_reason="non_positive_amount")
    if purpose == QuotePaymentPurpose.shipping_payment.value:
        return CommissionResult(credited=False, skipped_reason="shipping_payment")

    wallets = WalletService(db)
    reference_id = str(quote_payment_id)
    if wallets.has_reference(COMMISSION_REFERENCE_TYPE, reference_id):
        return CommissionResult(credited=False, skipped_reason="already_credited")

    agent_id = resolve_assigned_agent(db, handoff_id)
    if agent_id is None:
        return CommissionResult(credited=False, skipped_reason="no_assigned_agent")

    quote_percent = db.execute(
        select(Quote.agent_percent).where(Quote.id == quote_id)
    ).scalar_one_or_none()
    percent = float(quote_percent or 0)
    if percent <= 0:
        percent = float(settings.agent_percent or 0)
    if percent <= 0:
        return CommissionResult(
            credited=False, skipped_reason="no_commission_percent", agent_id=agent_id
        )

    commission = compute_commission(amount_minor, percent)
    if commission <= 0:
        return CommissionResult(
            credited=False,
            skipped_reason="rounds_to_zero",
            agent_id=agent_id,
            percent=percent,
        )

    wallet = wallets.get_or_create_wallet(OwnerType.agent, agent_id, currency=currency)
    wallets.credit(
        wallet,
        commission,
        COMMISSION_REASON,
        reference_type=COMMISSION_REFERENCE_TYPE,
        reference_id=reference_id,
        meta={
            "quote_id": quote_id,
            "handoff_id": handoff_id,
            "payment_id": quote_payment_id,
            "percent": percent,
            "purpose": purpose,
            "base_amount_minor": amount_minor,
        },
    )
    logger.info(
        "Credited commission %d to agent %s for quote payment %s (%.2f%%)",
        commission, agent_id, quote_payment_id, percent,
    )
    return CommissionResult(
        credited=True, agent_id=agent_id, percent=percent, amount_minor=commission
    )
