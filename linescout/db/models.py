"""SQLAlchemy ORM models for the LineScout state database.

This module defines the data models for customer conversations and their
access tiers, sourcing handoffs, quote payments, wallets and their ledger,
and payout requests. Uses SQLAlchemy 2.0 style with Mapped and mapped_column.

Money is stored as integers in minor units (kobo for NGN, cents for USD).
Timestamps are ISO8601 UTC strings.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_token() -> str:
    """Generate an opaque random token (sessions, quote links)."""
    return uuid4().hex


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


def to_iso(value: datetime) -> str:
    """Render a datetime as an ISO8601 UTC string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO8601 timestamp to an aware UTC datetime.

    Returns None for empty or malformed values so callers can treat them
    as "no deadline".
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


# Enums matching the database schema constraints


class RouteType(str, Enum):
    """Sourcing routes a customer can chat about."""

    machine_sourcing = "machine_sourcing"
    white_label = "white_label"
    simple_sourcing = "simple_sourcing"


class ChatMode(str, Enum):
    """Access tier of a conversation.

    Lifecycle: ai_only -> limited_human -> ai_only | paid_human
               paid_human is never downgraded automatically.
    """

    ai_only = "ai_only"
    limited_human = "limited_human"
    paid_human = "paid_human"


class ConversationKind(str, Enum):
    """Long-lived primary thread or an ephemeral quick-human escalation."""

    primary = "primary"
    quick_human = "quick_human"


class ConversationPaymentStatus(str, Enum):
    unpaid = "unpaid"
    paid = "paid"


class ProjectStatus(str, Enum):
    active = "active"
    cancelled = "cancelled"


class SenderType(str, Enum):
    """Author of a message. ``ai`` rows come only from the chat gateway."""

    user = "user"
    agent = "agent"
    ai = "ai"


class HandoffStatus(str, Enum):
    """Status values for sourcing handoffs.

    Lifecycle: pending -> claimed -> manufacturer_found -> paid -> shipped -> delivered
               any non-terminal state -> cancelled
    """

    pending = "pending"
    claimed = "claimed"
    manufacturer_found = "manufacturer_found"
    paid = "paid"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class QuotePaymentStatus(str, Enum):
    """Lifecycle: pending -> paid (exactly once) | failed."""

    pending = "pending"
    paid = "paid"
    failed = "failed"


class QuotePaymentPurpose(str, Enum):
    deposit = "deposit"
    product_balance = "product_balance"
    full_product_payment = "full_product_payment"
    shipping_payment = "shipping_payment"


class HandoffPaymentPurpose(str, Enum):
    downpayment = "downpayment"
    full_payment = "full_payment"
    shipping_payment = "shipping_payment"


class PaymentProvider(str, Enum):
    paystack = "paystack"
    paypal = "paypal"
    wallet = "wallet"


class OwnerType(str, Enum):
    """Wallet and payout-account owners."""

    user = "user"
    agent = "agent"


class TransactionType(str, Enum):
    credit = "credit"
    debit = "debit"


class PayoutStatus(str, Enum):
    """Status values for payout requests.

    Lifecycle: pending -> approved | rejected
               approved -> paid | failed
    """

    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    paid = "paid"
    failed = "failed"


class AgentRole(str, Enum):
    agent = "agent"
    admin = "admin"


class PayoutAccountStatus(str, Enum):
    pending = "pending"
    verified = "verified"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Principals


class User(Base):
    """An authenticated customer.

    Attributes:
        id: Integer primary key
        email: Unique login email
        display_name: Name shown to agents
        created_at: ISO8601 timestamp of account creation
    """

    __tablename__ = "linescout_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id!r}, email={self.email!r})>"


class Agent(Base):
    """Internal staff account (sourcing agent or admin).

    Attributes:
        id: Integer primary key
        username: Unique login name
        email: Contact email for assignment notices
        role: 'agent' or 'admin'
        is_active: Disabled accounts cannot authenticate
        created_at: ISO8601 timestamp of account creation
    """

    __tablename__ = "linescout_internal_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AgentRole.agent.value
    )
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    @property
    def is_admin(self) -> bool:
        return self.role == AgentRole.admin.value

    def __repr__(self) -> str:
        return f"<Agent(id={self.id!r}, username={self.username!r}, role={self.role!r})>"


class AuthSession(Base):
    """Bearer session token for a user or an internal account.

    Attributes:
        token: Opaque bearer token presented in the Authorization header
        principal_type: 'user' or 'agent'
        principal_id: ID in linescout_users or linescout_internal_users
        expires_at: ISO8601 expiry, None for non-expiring sessions
        revoked_at: ISO8601 timestamp when the session was revoked
    """

    __tablename__ = "linescout_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, default=generate_token
    )
    principal_type: Mapped[str] = mapped_column(String(20), nullable=False)
    principal_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    expires_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    revoked_at: Mapped[str | None] = mapped_column(String(50), nullable=True)


# Conversations


class Conversation(Base):
    """A customer's sourcing chat thread for one route type.

    At most one primary conversation exists per (user_id, route_type);
    quick_human conversations are ephemeral escalations and may repeat,
    subject to the cooldown enforced in the conversation service.

    Attributes:
        id: Integer primary key
        user_id: Owning customer
        route_type: machine_sourcing, white_label or simple_sourcing
        conversation_kind: primary or quick_human
        chat_mode: ai_only, limited_human or paid_human
        human_message_limit: Message budget while limited_human
        human_message_used: Messages consumed while limited_human
        human_access_expires_at: ISO8601 deadline while limited_human
        payment_status: unpaid or paid
        project_status: active or cancelled
        assigned_agent_id: Agent who claimed the conversation
        handoff_id: Linked sourcing request, once one exists
        source_conversation_id: Primary conversation a quick_human was spawned from
    """

    __tablename__ = "linescout_conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("linescout_users.id", ondelete="CASCADE"), nullable=False
    )
    route_type: Mapped[str] = mapped_column(String(30), nullable=False)
    conversation_kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConversationKind.primary.value
    )
    chat_mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ChatMode.ai_only.value
    )
    human_message_limit: Mapped[int] = mapped_column(nullable=False, default=0)
    human_message_used: Mapped[int] = mapped_column(nullable=False, default=0)
    human_access_expires_at: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConversationPaymentStatus.unpaid.value
    )
    project_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProjectStatus.active.value
    )
    assigned_agent_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("linescout_internal_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    handoff_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("linescout_handoffs.id", ondelete="SET NULL"), nullable=True
    )
    source_conversation_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )

    __table_args__ = (
        Index(
            "uq_conversations_primary_route",
            "user_id",
            "route_type",
            unique=True,
            sqlite_where=text("conversation_kind = 'primary'"),
            postgresql_where=text("conversation_kind = 'primary'"),
        ),
        Index("idx_conversations_user_route_kind", "user_id", "route_type", "conversation_kind"),
        Index("idx_conversations_handoff", "handoff_id"),
        Index("idx_conversations_agent", "assigned_agent_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id!r}, kind={self.conversation_kind!r}, "
            f"chat_mode={self.chat_mode!r})>"
        )


class Message(Base):
    """Append-only chat message.

    The autoincrement id is strictly increasing and doubles as the
    pagination cursor and the "seen" marker.
    """

    __tablename__ = "linescout_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("linescout_conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_type: Mapped[str] = mapped_column(String(10), nullable=False)
    sender_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    message_text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="messages"
    )

    __table_args__ = (Index("idx_messages_conversation_id", "conversation_id", "id"),)

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id!r}, conversation_id={self.conversation_id!r}, "
            f"sender_type={self.sender_type!r})>"
        )


class ConversationRead(Base):
    """Highest message id an agent has seen in a conversation."""

    __tablename__ = "linescout_conversation_reads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("linescout_conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    agent_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("linescout_internal_users.id", ondelete="CASCADE"),
        nullable=False,
    )
    last_seen_message_id: Mapped[int] = mapped_column(nullable=False, default=0)
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (
        UniqueConstraint("conversation_id", "agent_id", name="uq_conversation_reads"),
    )


# Handoffs


class Handoff(Base):
    """One sourcing request tracked from pending to delivered or cancelled.

    Attributes:
        id: Integer primary key
        user_id: Customer who requested the sourcing
        status: Current lifecycle status (see HandoffStatus)
        claimed_by: Agent who claimed the handoff
        claimed_at: ISO8601 timestamp of the claim
        manufacturer_found_at: Milestone timestamp
        paid_at: Milestone timestamp
        shipped_at: Milestone timestamp
        shipper: Carrier or forwarder, required once shipped
        tracking_number: Required once shipped
        delivered_at: Milestone timestamp (terminal)
        cancelled_at: Milestone timestamp (terminal)
        cancel_reason: Required once cancelled
    """

    __tablename__ = "linescout_handoffs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("linescout_users.id", ondelete="SET NULL"), nullable=True
    )
    route_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    context: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=HandoffStatus.pending.value
    )

    claimed_by: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("linescout_internal_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    claimed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    manufacturer_found_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    paid_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shipped_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shipper: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    delivered_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cancelled_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (Index("idx_handoffs_status", "status"),)

    def __repr__(self) -> str:
        return f"<Handoff(id={self.id!r}, status={self.status!r})>"


class HandoffClaimAudit(Base):
    """Audit row written for every successful handoff claim."""

    __tablename__ = "linescout_handoff_claim_audits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    handoff_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("linescout_handoffs.id", ondelete="CASCADE"), nullable=False
    )
    agent_id: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    claimed_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )


class HandoffPayment(Base):
    """Ledger of money received against a handoff."""

    __tablename__ = "linescout_handoff_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    handoff_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("linescout_handoffs.id", ondelete="CASCADE"), nullable=False
    )
    quote_payment_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("linescout_quote_payments.id"), nullable=True, unique=True
    )
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    purpose: Mapped[str] = mapped_column(String(30), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )


# Quotes and payment intents


class Quote(Base):
    """A priced offer for a handoff, shared with the customer by token.

    Attributes:
        token: Public link token
        handoff_id: Handoff the quote prices
        user_id: Customer expected to pay
        product_total_minor: Product cost including markup
        shipping_total_minor: Shipping cost, payable once shipped
        deposit_percent: Share of the product total payable as deposit (0 = no deposit)
        agent_percent: Per-quote commission override (0 = use platform default)
    """

    __tablename__ = "linescout_quotes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, default=generate_token
    )
    handoff_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("linescout_handoffs.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("linescout_users.id", ondelete="SET NULL"), nullable=True
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    product_total_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    shipping_total_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    deposit_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    agent_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )


class QuotePayment(Base):
    """One attempted payment against a quote.

    ``provider_ref`` is unique; status moves pending -> paid exactly once.
    """

    __tablename__ = "linescout_quote_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quote_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("linescout_quotes.id", ondelete="CASCADE"), nullable=False
    )
    handoff_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("linescout_handoffs.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    purpose: Mapped[str] = mapped_column(String(30), nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QuotePaymentStatus.pending.value
    )
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    provider_ref: Mapped[str | None] = mapped_column(
        String(120), nullable=True, unique=True
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    paid_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    quote: Mapped["Quote"] = relationship("Quote")

    __table_args__ = (Index("idx_quote_payments_quote", "quote_id"),)

    def __repr__(self) -> str:
        return (
            f"<QuotePayment(id={self.id!r}, provider_ref={self.provider_ref!r}, "
            f"status={self.status!r})>"
        )


class SourcingPayment(Base):
    """Sourcing fee that upgrades a primary conversation to paid chat.

    Status values follow QuotePaymentStatus. Settling creates the handoff
    and links it to ``conversation_id`` in the same transaction.

    Attributes:
        user_id: Paying customer
        route_type: Route of the conversation being upgraded
        conversation_id: Primary conversation upgraded to paid_human
        source_conversation_id: Conversation the customer paid from, if different
        handoff_id: Handoff created at settlement
        provider: paystack or paypal
        provider_ref: Transaction reference or PayPal order id (unique)
    """

    __tablename__ = "linescout_sourcing_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("linescout_users.id", ondelete="CASCADE"), nullable=False
    )
    route_type: Mapped[str] = mapped_column(String(30), nullable=False)
    conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("linescout_conversations.id", ondelete="CASCADE"), nullable=False
    )
    source_conversation_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    handoff_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("linescout_handoffs.id", ondelete="SET NULL"), nullable=True
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QuotePaymentStatus.pending.value
    )
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    provider_ref: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    paid_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (Index("idx_sourcing_payments_user", "user_id"),)

    def __repr__(self) -> str:
        return (
            f"<SourcingPayment(id={self.id!r}, provider_ref={self.provider_ref!r}, "
            f"status={self.status!r})>"
        )


# Ledger


class Wallet(Base):
    """Balance-holding account for a user or agent.

    ``balance_minor`` always equals the signed sum of the wallet's
    transactions; it is only changed by the wallet service.
    """

    __tablename__ = "linescout_wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_type: Mapped[str] = mapped_column(String(10), nullable=False)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    balance_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    transactions: Mapped[list["WalletTransaction"]] = relationship(
        "WalletTransaction", back_populates="wallet", order_by="WalletTransaction.id"
    )

    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", name="uq_wallets_owner"),
    )

    def __repr__(self) -> str:
        return (
            f"<Wallet(id={self.id!r}, owner={self.owner_type}:{self.owner_id}, "
            f"balance_minor={self.balance_minor!r})>"
        )


class WalletTransaction(Base):
    """Append-only ledger entry.

    (reference_type, reference_id) is unique, so an operation keyed on a
    reference can only ever be booked once.
    """

    __tablename__ = "linescout_wallet_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("linescout_wallets.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint(
            "reference_type", "reference_id", name="uq_wallet_transactions_reference"
        ),
        Index("idx_wallet_transactions_wallet", "wallet_id"),
    )

    @property
    def signed_amount(self) -> int:
        if self.type == TransactionType.debit.value:
            return -self.amount_minor
        return self.amount_minor


# Payouts


class PayoutAccount(Base):
    """Bank account a user or agent withdraws to."""

    __tablename__ = "linescout_payout_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_type: Mapped[str] = mapped_column(String(10), nullable=False)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    bank_code: Mapped[str] = mapped_column(String(20), nullable=False)
    account_number: Mapped[str] = mapped_column(String(20), nullable=False)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayoutAccountStatus.pending.value
    )
    verified_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", name="uq_payout_accounts_owner"),
    )

    @property
    def is_verified(self) -> bool:
        return self.status == PayoutAccountStatus.verified.value or bool(
            self.verified_at
        )


class AgentPayoutRequest(Base):
    """Agent withdrawal request. Does not hold funds until marked paid."""

    __tablename__ = "linescout_agent_payout_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("linescout_internal_users.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayoutStatus.pending.value
    )
    requested_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rejected_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    paid_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    failed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (Index("idx_agent_payouts_status", "status"),)


class UserPayoutRequest(Base):
    """Customer withdrawal request. The amount is debited at request time."""

    __tablename__ = "linescout_user_payout_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("linescout_users.id", ondelete="CASCADE"), nullable=False
    )
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayoutStatus.pending.value
    )
    bank_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rejected_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    paid_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (Index("idx_user_payouts_status", "status"),)


# Settings


class AppSettings(Base):
    """Single-row table of business settings editable by admins.

    Read through SettingsService.load(), which hands out an immutable
    PlatformSettings snapshot.
    """

    __tablename__ = "linescout_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_percent: Mapped[float] = mapped_column(Float, nullable=False, default=5.0)
    min_agent_payout_minor: Mapped[int] = mapped_column(nullable=False, default=10000)
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )
