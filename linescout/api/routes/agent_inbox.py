"""Agent-facing conversation routes: inbox, claim, messages and read markers.

Every route resolves access through ``ConversationService.check_agent_access``.
"""

import logging

from fastapi import APIRouter, Depends, Query

from linescout.api.deps import get_current_agent, get_notifier
from linescout.api.routes.conversations import get_conversation_service
from linescout.api.schemas import (
    AgentMessageRequest,
    ConversationResponse,
    InboxItemResponse,
    MarkReadRequest,
    MessageResponse,
)
from linescout.db.models import Agent, User
from linescout.services.conversation_service import ConversationService
from linescout.services.notifications import Notifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent", tags=["agent"])


@router.get("/inbox")
def inbox(
    limit: int = Query(50, ge=1, le=200),
    cursor: int | None = Query(None, ge=1),
    agent: Agent = Depends(get_current_agent),
    svc: ConversationService = Depends(get_conversation_service),
) -> dict:
    items = svc.agent_inbox(agent, limit=limit, cursor=cursor)
    return {
        "ok": True,
        "items": [InboxItemResponse.model_validate(item) for item in items],
        "next_cursor": items[-1].conversation.id if items else None,
    }


@router.post("/conversations/{conversation_id}/claim")
async def claim_conversation(
    conversation_id: int,
    agent: Agent = Depends(get_current_agent),
    svc: ConversationService = Depends(get_conversation_service),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    """Claim a conversation, then tell the customer a specialist joined."""
    conversation = svc.claim_conversation(agent, conversation_id)
    customer = svc.db.get(User, conversation.user_id)
    notified = False
    if customer is not None:
        name = agent.username
        notified = await notifier.send_mail(
            customer.email,
            "A LineScout specialist has joined your chat",
            f"{name} from LineScout is now handling your request. "
            "Open the app to continue the conversation.",
        )
    return {
        "ok": True,
        "conversation": ConversationResponse.model_validate(conversation),
        "notified": notified,
    }


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: int,
    after_id: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    agent: Agent = Depends(get_current_agent),
    svc: ConversationService = Depends(get_conversation_service),
) -> dict:
    conversation = svc.get_conversation(conversation_id)
    svc.check_agent_access(agent, conversation)
    messages = svc.list_messages(conversation, after_id=after_id, limit=limit)
    return {
        "ok": True,
        "conversation": ConversationResponse.model_validate(conversation),
        "items": [MessageResponse.model_validate(m) for m in messages],
        "last_id": messages[-1].id if messages else after_id,
    }


@router.post("/conversations/{conversation_id}/messages")
def send_message(
    conversation_id: int,
    body: AgentMessageRequest,
    agent: Agent = Depends(get_current_agent),
    svc: ConversationService = Depends(get_conversation_service),
) -> dict:
    message = svc.send_agent_message(agent, conversation_id, body.message_text)
    return {"ok": True, "message": MessageResponse.model_validate(message)}


@router.post("/conversations/{conversation_id}/read")
def mark_read(
    conversation_id: int,
    body: MarkReadRequest,
    agent: Agent = Depends(get_current_agent),
    svc: ConversationService = Depends(get_conversation_service),
) -> dict:
    seen = svc.mark_read(agent, conversation_id, body.last_seen_message_id)
    return {"ok": True, "conversation_id": conversation_id, "last_seen_message_id": seen}
