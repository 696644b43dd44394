"""Handoff routes: create, claim, status transitions and payment history."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from linescout.api.deps import get_ai_gateway, get_current_agent, get_current_user
from linescout.api.schemas import (
    HandoffCreate,
    HandoffPaymentResponse,
    HandoffResponse,
    HandoffStatusUpdate,
)
from linescout.db.connection import get_db
from linescout.db.models import Agent, Conversation, User
from linescout.errors import ForbiddenError, NotFoundError
from linescout.services.ai_gateway import AIGateway
from linescout.services.handoff_service import HandoffService, notify_status_change

router = APIRouter(prefix="/handoffs", tags=["handoffs"])


def get_handoff_service(db: Session = Depends(get_db)) -> HandoffService:
    """Dependency to get HandoffService instance."""
    return HandoffService(db)


@router.post("", status_code=201)
def create_handoff(
    body: HandoffCreate,
    user: User = Depends(get_current_user),
    svc: HandoffService = Depends(get_handoff_service),
) -> dict:
    if body.conversation_id is not None:
        conversation = svc.db.get(Conversation, body.conversation_id)
        if conversation is None or conversation.user_id != user.id:
            raise NotFoundError("Conversation", body.conversation_id)
    handoff = svc.create_handoff(
        user.id,
        route_type=body.route_type,
        context=body.context,
        conversation_id=body.conversation_id,
    )
    return {"ok": True, "handoff": HandoffResponse.model_validate(handoff)}


@router.post("/{handoff_id}/claim")
def claim_handoff(
    handoff_id: int,
    agent: Agent = Depends(get_current_agent),
    svc: HandoffService = Depends(get_handoff_service),
) -> dict:
    handoff = svc.claim_handoff(handoff_id, agent)
    return {"ok": True, "handoff": HandoffResponse.model_validate(handoff)}


@router.post("/{handoff_id}/status")
async def update_status(
    handoff_id: int,
    body: HandoffStatusUpdate,
    agent: Agent = Depends(get_current_agent),
    svc: HandoffService = Depends(get_handoff_service),
    gateway: AIGateway = Depends(get_ai_gateway),
) -> dict:
    """Advance a handoff, then notify the events workflow outside the transaction."""
    current = svc.get_handoff(handoff_id)
    if current.claimed_by and current.claimed_by != agent.id and not agent.is_admin:
        raise ForbiddenError("This handoff is claimed by another agent.")
    plan = svc.update_status(
        handoff_id,
        body.status,
        shipper=body.shipper,
        tracking_number=body.tracking_number,
        cancel_reason=body.cancel_reason,
    )
    handoff = svc.get_handoff(handoff_id)
    notified = await notify_status_change(gateway, handoff, plan)
    return {
        "ok": True,
        "changed": not plan.is_noop,
        "handoff": HandoffResponse.model_validate(handoff),
        "notified": notified,
    }


@router.get("/{handoff_id}/payments")
def list_payments(
    handoff_id: int,
    agent: Agent = Depends(get_current_agent),
    svc: HandoffService = Depends(get_handoff_service),
) -> dict:
    payments = svc.list_payments(handoff_id)
    return {
        "ok": True,
        "items": [HandoffPaymentResponse.model_validate(p) for p in payments],
        "total_minor": sum(p.amount_minor for p in payments),
    }
