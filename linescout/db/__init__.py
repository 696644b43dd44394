"""Database module for LineScout state and ledger persistence."""

from linescout.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from linescout.db.models import (
    Agent,
    AgentPayoutRequest,
    AppSettings,
    Base,
    ChatMode,
    Conversation,
    ConversationKind,
    Handoff,
    HandoffPayment,
    HandoffStatus,
    Message,
    PayoutStatus,
    Quote,
    QuotePayment,
    QuotePaymentStatus,
    SourcingPayment,
    User,
    UserPayoutRequest,
    Wallet,
    WalletTransaction,
)

__all__ = [
    # Models
    "Base",
    "User",
    "Agent",
    "Conversation",
    "Message",
    "Handoff",
    "HandoffPayment",
    "Quote",
    "QuotePayment",
    "SourcingPayment",
    "Wallet",
    "WalletTransaction",
    "AgentPayoutRequest",
    "UserPayoutRequest",
    "AppSettings",
    # Enums
    "ChatMode",
    "ConversationKind",
    "HandoffStatus",
    "QuotePaymentStatus",
    "PayoutStatus",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]
