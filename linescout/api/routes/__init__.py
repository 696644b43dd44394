"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from linescout.api.routes import (
    agent_inbox,
    conversations,
    handoffs,
    paid_chat,
    payments,
    payouts,
    settings,
    wallets,
)

__all__ = [
    "conversations",
    "agent_inbox",
    "handoffs",
    "paid_chat",
    "payments",
    "wallets",
    "payouts",
    "settings",
]
