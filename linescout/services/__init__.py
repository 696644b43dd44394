"""Service layer for LineScout.

Provides the ledger, payment-intent tracking, commission, conversation
access tiers, the handoff lifecycle and the payout workflow.
"""

from linescout.services.conversation_service import ConversationService
from linescout.services.handoff_service import HandoffService, plan_transition
from linescout.services.payout_service import PayoutService
from linescout.services.quote_payment_service import QuotePaymentService
from linescout.services.settings_service import PlatformSettings, SettingsService
from linescout.services.wallet_service import WalletService

__all__ = [
    "ConversationService",
    "HandoffService",
    "plan_transition",
    "PayoutService",
    "QuotePaymentService",
    "PlatformSettings",
    "SettingsService",
    "WalletService",
]
