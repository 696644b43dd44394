"""Wallet routes: balances with recent ledger entries, and admin adjustments."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from linescout.api.deps import get_current_agent, get_current_user, require_admin
from linescout.api.schemas import WalletAdjustRequest, WalletResponse, WalletTransactionResponse
from linescout.db.connection import get_db
from linescout.db.models import Agent, OwnerType, User
from linescout.services.payout_service import PayoutService
from linescout.services.wallet_service import WalletService

router = APIRouter(tags=["wallets"])


def get_wallet_service(db: Session = Depends(get_db)) -> WalletService:
    """Dependency to get WalletService instance."""
    return WalletService(db)


def _wallet_payload(svc: WalletService, owner_type: OwnerType, owner_id: int, limit: int) -> dict:
    wallet = svc.get_or_create_wallet(owner_type, owner_id)
    svc.db.commit()
    return {
        "ok": True,
        "wallet": WalletResponse.model_validate(wallet),
        "transactions": [
            WalletTransactionResponse.model_validate(tx)
            for tx in svc.list_transactions(wallet, limit=limit)
        ],
    }


@router.get("/wallet")
def get_user_wallet(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    svc: WalletService = Depends(get_wallet_service),
) -> dict:
    return _wallet_payload(svc, OwnerType.user, user.id, limit)


@router.get("/agent/wallet")
def get_agent_wallet(
    limit: int = Query(50, ge=1, le=200),
    agent: Agent = Depends(get_current_agent),
    svc: WalletService = Depends(get_wallet_service),
) -> dict:
    return _wallet_payload(svc, OwnerType.agent, agent.id, limit)


@router.post("/admin/wallets/adjust")
def adjust_wallet(
    body: WalletAdjustRequest,
    admin: Agent = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict:
    """Manual credit or debit; debits may not overdraw the wallet."""
    wallet, tx = PayoutService(db).admin_adjust(
        admin, body.owner_type, body.owner_id, body.type, body.amount_minor, body.reason
    )
    return {
        "ok": True,
        "wallet": WalletResponse.model_validate(wallet),
        "transaction": WalletTransactionResponse.model_validate(tx),
    }
