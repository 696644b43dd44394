"""Test data builders shared by service and API tests."""

from datetime import UTC, datetime

from sqlalchemy.orm import Session

from linescout.db.models import (
    AuthSession,
    ChatMode,
    Conversation,
    ConversationKind,
    ConversationPaymentStatus,
    Handoff,
    HandoffStatus,
    OwnerType,
    PayoutAccount,
    PayoutAccountStatus,
    Quote,
    User,
    Wallet,
)
from linescout.services.wallet_service import WalletService

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def add(db: Session, obj):
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


def make_session(db: Session, principal_type: str, principal_id: int) -> str:
    session = add(db, AuthSession(principal_type=principal_type, principal_id=principal_id))
    return session.token


def make_conversation(
    db: Session,
    user: User,
    *,
    route_type: str = "machine_sourcing",
    kind: str = ConversationKind.primary.value,
    chat_mode: str = ChatMode.ai_only.value,
    payment_status: str = ConversationPaymentStatus.unpaid.value,
    handoff_id: int | None = None,
    assigned_agent_id: int | None = None,
    **fields,
) -> Conversation:
    return add(
        db,
        Conversation(
            user_id=user.id,
            route_type=route_type,
            conversation_kind=kind,
            chat_mode=chat_mode,
            payment_status=payment_status,
            handoff_id=handoff_id,
            assigned_agent_id=assigned_agent_id,
            **fields,
        ),
    )


def make_paid_conversation(db: Session, user: User, **fields) -> Conversation:
    return make_conversation(
        db,
        user,
        chat_mode=ChatMode.paid_human.value,
        payment_status=ConversationPaymentStatus.paid.value,
        **fields,
    )


def make_handoff(
    db: Session, user: User, *, status: str = HandoffStatus.pending.value, **fields
) -> Handoff:
    return add(db, Handoff(user_id=user.id, status=status, **fields))


def make_quote(
    db: Session,
    handoff: Handoff,
    *,
    product_total_minor: int = 1_000_000,
    shipping_total_minor: int = 200_000,
    deposit_percent: float = 0.0,
    agent_percent: float = 0.0,
    currency: str = "NGN",
) -> Quote:
    return add(
        db,
        Quote(
            handoff_id=handoff.id,
            user_id=handoff.user_id,
            currency=currency,
            product_total_minor=product_total_minor,
            shipping_total_minor=shipping_total_minor,
            deposit_percent=deposit_percent,
            agent_percent=agent_percent,
        ),
    )


def fund_wallet(db: Session, owner_type: OwnerType, owner_id: int, amount_minor: int) -> Wallet:
    """Create a wallet and credit it through the ledger so balance == sum."""
    wallets = WalletService(db)
    wallet = wallets.get_or_create_wallet(owner_type, owner_id)
    if amount_minor:
        wallets.credit(wallet, amount_minor, "Test funding")
    db.commit()
    db.refresh(wallet)
    return wallet


def add_payout_account(
    db: Session, owner_type: OwnerType, owner_id: int, verified: bool = True
) -> PayoutAccount:
    return add(
        db,
        PayoutAccount(
            owner_type=owner_type.value,
            owner_id=owner_id,
            bank_code="058",
            account_number="0123456789",
            account_name="Test Account",
            status=(
                PayoutAccountStatus.verified.value
                if verified
                else PayoutAccountStatus.pending.value
            ),
        ),
    )
