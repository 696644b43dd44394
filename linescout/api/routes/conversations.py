"""Customer-facing conversation routes.

Primary conversation upsert, quick-human escalation (start, consume,
refresh, send) and the message log.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from linescout.api.deps import get_ai_gateway, get_app_config, get_current_user
from linescout.api.schemas import (
    ConversationResponse,
    MessageResponse,
    RouteTypeRequest,
    SendMessageRequest,
    StartQuickHumanRequest,
)
from linescout.config import LineScoutConfig
from linescout.db.connection import get_db
from linescout.db.models import User
from linescout.services.access_tier import AccessState
from linescout.services.ai_gateway import AIGateway
from linescout.services.conversation_service import ConversationService, SendResult

router = APIRouter(tags=["conversations"])


def get_conversation_service(
    db: Session = Depends(get_db),
    config: LineScoutConfig = Depends(get_app_config),
) -> ConversationService:
    """Dependency to get ConversationService instance."""
    return ConversationService(db, config.quick_human)


def _send_payload(result: SendResult) -> dict:
    payload: dict = {
        "ok": True,
        "messages": [MessageResponse.model_validate(m) for m in result.messages],
    }
    if result.access is not None:
        access = result.access.to_dict()
        access.pop("ok")
        payload["meta"] = access
    return payload


@router.post("/conversations/primary")
def ensure_primary(
    body: RouteTypeRequest,
    user: User = Depends(get_current_user),
    svc: ConversationService = Depends(get_conversation_service),
) -> dict:
    conversation = svc.ensure_primary_conversation(user.id, body.route_type)
    return {"ok": True, "conversation": ConversationResponse.model_validate(conversation)}


@router.post("/limited-human/start")
def start_quick_human(
    body: StartQuickHumanRequest,
    user: User = Depends(get_current_user),
    svc: ConversationService = Depends(get_conversation_service),
) -> dict:
    """Open a quick specialist chat, or return the one still running.

    Fails with 403 LIMITED_HUMAN_COOLDOWN inside the cooldown.
    """
    conversation, created = svc.start_quick_human(
        user.id, body.route_type, source_conversation_id=body.source_conversation_id
    )
    state = AccessState.of(conversation)
    return {
        "ok": True,
        "created": created,
        "conversation_id": conversation.id,
        "route_type": conversation.route_type,
        "chat_mode": state.chat_mode,
        "human_message_limit": state.human_message_limit,
        "human_message_used": state.human_message_used,
        "remaining": state.remaining,
        "human_access_expires_at": state.human_access_expires_at,
    }


@router.post("/limited-human/consume")
def consume_human_message(
    body: RouteTypeRequest,
    user: User = Depends(get_current_user),
    svc: ConversationService = Depends(get_conversation_service),
) -> dict:
    return svc.consume_human_message(user.id, body.route_type).to_dict()


@router.post("/limited-human/refresh")
def refresh_human_access(
    body: RouteTypeRequest,
    user: User = Depends(get_current_user),
    svc: ConversationService = Depends(get_conversation_service),
) -> dict:
    return svc.refresh_human_access(user.id, body.route_type).to_dict()


@router.post("/limited-human/send")
def send_quick_human_message(
    body: SendMessageRequest,
    user: User = Depends(get_current_user),
    svc: ConversationService = Depends(get_conversation_service),
) -> dict:
    result = svc.send_quick_human_message(user.id, body.conversation_id, body.message_text)
    return _send_payload(result)


@router.post("/messages/send")
async def send_message(
    body: SendMessageRequest,
    user: User = Depends(get_current_user),
    svc: ConversationService = Depends(get_conversation_service),
    gateway: AIGateway = Depends(get_ai_gateway),
) -> dict:
    """Send a customer message; ai_only conversations get the assistant's reply."""
    result = await svc.send_user_message(
        user.id, body.conversation_id, body.message_text, gateway
    )
    return _send_payload(result)


@router.get("/messages")
def list_messages(
    conversation_id: int = Query(...),
    after_id: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    svc: ConversationService = Depends(get_conversation_service),
) -> dict:
    conversation = svc.get_owned_conversation(user.id, conversation_id)
    messages = svc.list_messages(conversation, after_id=after_id, limit=limit)
    return {
        "ok": True,
        "conversation": ConversationResponse.model_validate(conversation),
        "items": [MessageResponse.model_validate(m) for m in messages],
        "last_id": messages[-1].id if messages else after_id,
    }
