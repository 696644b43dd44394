"""Payout routes for customers, agents and the admins who settle them.

Customer withdrawals hold funds at request time; agent withdrawals are
debited only when an admin marks them paid.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from linescout.api.deps import (
    get_current_agent,
    get_current_user,
    get_platform_settings,
    require_admin,
)
from linescout.api.schemas import (
    AgentPayoutCreate,
    AgentPayoutResponse,
    PayoutDecision,
    UserPayoutCreate,
    UserPayoutResponse,
)
from linescout.db.connection import get_db
from linescout.db.models import Agent, User
from linescout.services.payout_service import PayoutService
from linescout.services.settings_service import PlatformSettings

router = APIRouter(tags=["payouts"])


def get_payout_service(
    db: Session = Depends(get_db),
    settings: PlatformSettings = Depends(get_platform_settings),
) -> PayoutService:
    """Dependency to get PayoutService instance."""
    return PayoutService(db, settings)


def _user_payout(request) -> dict:
    return {"ok": True, "request": UserPayoutResponse.model_validate(request)}


def _agent_payout(request) -> dict:
    return {"ok": True, "request": AgentPayoutResponse.model_validate(request)}


# =========================================================================
# Customer payouts
# =========================================================================


@router.post("/payout-requests", status_code=201)
def request_user_payout(
    body: UserPayoutCreate,
    user: User = Depends(get_current_user),
    svc: PayoutService = Depends(get_payout_service),
) -> dict:
    return _user_payout(svc.request_user_payout(user.id, body.amount_minor))


@router.get("/payout-requests/mine")
def list_my_payouts(
    user: User = Depends(get_current_user),
    svc: PayoutService = Depends(get_payout_service),
) -> dict:
    return {
        "ok": True,
        "items": [UserPayoutResponse.model_validate(r) for r in svc.list_user_payouts(user.id)],
    }


@router.post("/admin/user-payouts/{request_id}/approve")
def approve_user_payout(
    request_id: int,
    admin: Agent = Depends(require_admin),
    svc: PayoutService = Depends(get_payout_service),
) -> dict:
    return _user_payout(svc.approve_user_payout(request_id, admin))


@router.post("/admin/user-payouts/{request_id}/reject")
def reject_user_payout(
    request_id: int,
    body: PayoutDecision,
    admin: Agent = Depends(require_admin),
    svc: PayoutService = Depends(get_payout_service),
) -> dict:
    """Reject a pending request and return the held amount to the wallet."""
    return _user_payout(svc.reject_user_payout(request_id, admin, reason=body.reason))


@router.post("/admin/user-payouts/{request_id}/pay")
def mark_user_payout_paid(
    request_id: int,
    admin: Agent = Depends(require_admin),
    svc: PayoutService = Depends(get_payout_service),
) -> dict:
    return _user_payout(svc.mark_user_payout_paid(request_id, admin))


# =========================================================================
# Agent payouts
# =========================================================================


@router.post("/agent/payout-requests", status_code=201)
def request_agent_payout(
    body: AgentPayoutCreate,
    agent: Agent = Depends(get_current_agent),
    svc: PayoutService = Depends(get_payout_service),
) -> dict:
    return _agent_payout(svc.request_agent_payout(agent, body.amount_minor, note=body.note))


@router.post("/admin/payout-requests/{request_id}/approve")
def approve_agent_payout(
    request_id: int,
    body: PayoutDecision,
    admin: Agent = Depends(require_admin),
    svc: PayoutService = Depends(get_payout_service),
) -> dict:
    return _agent_payout(
        svc.decide_agent_payout(request_id, admin, "approve", admin_note=body.admin_note)
    )


@router.post("/admin/payout-requests/{request_id}/reject")
def reject_agent_payout(
    request_id: int,
    body: PayoutDecision,
    admin: Agent = Depends(require_admin),
    svc: PayoutService = Depends(get_payout_service),
) -> dict:
    note = body.admin_note or body.reason
    return _agent_payout(svc.decide_agent_payout(request_id, admin, "reject", admin_note=note))


@router.post("/admin/payout-requests/{request_id}/pay")
def mark_agent_payout_paid(
    request_id: int,
    admin: Agent = Depends(require_admin),
    svc: PayoutService = Depends(get_payout_service),
) -> dict:
    """Debit the agent wallet and close the request."""
    return _agent_payout(svc.mark_agent_payout_paid(request_id, admin))


@router.post("/admin/payout-requests/{request_id}/fail")
def mark_agent_payout_failed(
    request_id: int,
    body: PayoutDecision,
    admin: Agent = Depends(require_admin),
    svc: PayoutService = Depends(get_payout_service),
) -> dict:
    return _agent_payout(
        svc.mark_agent_payout_failed(request_id, admin, admin_note=body.admin_note)
    )
