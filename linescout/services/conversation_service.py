"""Conversation access tiers, messages, claims and read markers.

Customers own one primary conversation per route type and may spawn short
quick-human escalations from it. Tier expiry is lazy: every operation that
touches a limited_human conversation resolves its state through the pure
functions in ``access_tier`` before acting.

Agents reach conversations through a single access check
(``check_agent_access``) shared by the inbox, message and read endpoints.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from linescout.config import QuickHumanConfig
from linescout.db.models import (
    Agent,
    ChatMode,
    Conversation,
    ConversationKind,
    ConversationRead,
    Message,
    ProjectStatus,
    RouteType,
    SenderType,
    parse_iso,
    to_iso,
    utc_now_iso,
)
from linescout.errors import (
    AccessEndedError,
    ConflictError,
    CooldownError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from linescout.services import access_tier
from linescout.services.access_tier import AccessState
from linescout.services.ai_gateway import AIGateway, ChatTurn

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 8000
MAX_PAGE_SIZE = 200


def clean_message_text(text: str | None) -> str:
    """Strip and bound a message body.

    Raises:
        ValidationError: If the text is empty or too long.
    """
    text = (text or "").strip()
    if not text:
        raise ValidationError("message_text is required")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError("message_text too long")
    return text


def validate_route_type(route_type: str | None) -> str:
    try:
        return RouteType(route_type).value
    except ValueError:
        raise ValidationError("Invalid route_type") from None


@dataclass(frozen=True)
class AccessResult:
    """Tier of a conversation after a consume or refresh."""

    conversation_id: int | None
    state: AccessState
    ended: bool

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "conversation_id": self.conversation_id,
            "chat_mode": self.state.chat_mode,
            "human_message_limit": self.state.human_message_limit,
            "human_message_used": self.state.human_message_used,
            "remaining": self.state.remaining,
            "human_access_expires_at": self.state.human_access_expires_at,
            "ended": self.ended,
        }


@dataclass
class SendResult:
    """Messages written by a send, plus the tier when it was counted."""

    messages: list[Message] = field(default_factory=list)
    access: AccessResult | None = None


@dataclass(frozen=True)
class InboxItem:
    conversation: Conversation
    last_message_id: int | None
    last_sender_type: str | None
    last_message_text: str | None
    unread_count: int


class ConversationService:
    """Tier machine and message log for customer conversations.

    Methods that change state commit before returning and roll back on
    failure. Every time-dependent method accepts ``now`` for tests.

    Attributes:
        db: SQLAlchemy session for database operations.
        quick_human: Budget, window and cooldown of quick-human escalations.
    """

    def __init__(self, db: Session, quick_human: QuickHumanConfig | None = None) -> None:
        self.db = db
        self.quick_human = quick_human or QuickHumanConfig()

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_conversation(self, conversation_id: int, lock: bool = False) -> Conversation:
        stmt = select(Conversation).where(Conversation.id == conversation_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        conversation = self.db.execute(stmt).scalar_one_or_none()
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    def get_owned_conversation(
        self, user_id: int, conversation_id: int, lock: bool = False
    ) -> Conversation:
        """Return the conversation if ``user_id`` owns it; 404 otherwise."""
        conversation = self.get_conversation(conversation_id, lock=lock)
        if conversation.user_id != user_id:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    def get_primary(self, user_id: int, route_type: str) -> Conversation | None:
        return self.db.execute(
            select(Conversation).where(
                Conversation.user_id == user_id,
                Conversation.route_type == route_type,
                Conversation.conversation_kind == ConversationKind.primary.value,
            )
        ).scalar_one_or_none()

    def latest_quick_human(
        self,
        user_id: int,
        route_type: str,
        lock: bool = False,
        active_only: bool = False,
    ) -> Conversation | None:
        """Newest quick-human escalation for a route.

        With ``active_only`` escalations whose project was cancelled are skipped.
        """
        stmt = (
            select(Conversation)
            .where(
                Conversation.user_id == user_id,
                Conversation.route_type == route_type,
                Conversation.conversation_kind == ConversationKind.quick_human.value,
            )
            .order_by(Conversation.id.desc())
            .limit(1)
        )
        if active_only:
            stmt = stmt.where(Conversation.project_status == ProjectStatus.active.value)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    # =========================================================================
    # Tier machine
    # =========================================================================

    def ensure_primary_conversation(self, user_id: int, route_type: str) -> Conversation:
        """Return the user's primary conversation for a route, creating it if needed."""
        route_type = validate_route_type(route_type)
        existing = self.get_primary(user_id, route_type)
        if existing is not None:
            return existing

        conversation = Conversation(
            user_id=user_id,
            route_type=route_type,
            conversation_kind=ConversationKind.primary.value,
            chat_mode=ChatMode.ai_only.value,
        )
        self.db.add(conversation)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent create; the partial unique index kept one row.
            self.db.rollback()
            existing = self.get_primary(user_id, route_type)
            if existing is None:
                raise
            return existing
        self.db.refresh(conversation)
        logger.info(
            "Created primary %s conversation %s for user %s",
            route_type, conversation.id, user_id,
        )
        return conversation

    def start_quick_human(
        self,
        user_id: int,
        route_type: str,
        source_conversation_id: int | None = None,
        now: datetime | None = None,
    ) -> tuple[Conversation, bool]:
        """Open (or reuse) a quick-human escalation.

        An escalation that is still inside its window and budget is returned
        as is. Otherwise a new one may only start once the cooldown since
        the previous escalation was created has passed.

        Returns:
            (conversation, created)

        Raises:
            CooldownError: If the previous escalation started too recently.
        """
        now = now or datetime.now(UTC)
        route_type = validate_route_type(route_type)

        latest = self.latest_quick_human(user_id, route_type, lock=True)
        if latest is not None:
            state = AccessState.of(latest)
            if (
                latest.chat_mode == ChatMode.limited_human.value
                and latest.project_status == ProjectStatus.active.value
                and not access_tier.is_expired_or_exhausted(state, now)
            ):
                return latest, False

            started = parse_iso(latest.created_at)
            cooldown = timedelta(hours=self.quick_human.cooldown_hours)
            if started is not None and now - started < cooldown:
                raise CooldownError(
                    access_tier.retry_after_hours(
                        started, now, self.quick_human.cooldown_hours
                    )
                )

        handoff_id = None
        if source_conversation_id is not None:
            source = self.get_owned_conversation(user_id, source_conversation_id)
            if source.route_type != route_type:
                raise ValidationError("Source conversation belongs to another route")
            handoff_id = source.handoff_id
        else:
            primary = self.get_primary(user_id, route_type)
            if primary is not None:
                source_conversation_id = primary.id
                handoff_id = primary.handoff_id

        window = access_tier.open_window(
            self.quick_human.message_limit, self.quick_human.window_minutes, now
        )
        conversation = Conversation(
            user_id=user_id,
            route_type=route_type,
            conversation_kind=ConversationKind.quick_human.value,
            project_status=ProjectStatus.active.value,
            source_conversation_id=source_conversation_id,
            handoff_id=handoff_id,
            created_at=to_iso(now),
        )
        window.apply_to(conversation)
        self.db.add(conversation)
        self.db.commit()
        self.db.refresh(conversation)
        logger.info(
            "Started quick-human conversation %s for user %s (%s)",
            conversation.id, user_id, route_type,
        )
        return conversation, True

    def _require_quick_human(self, user_id: int, route_type: str) -> Conversation:
        conversation = self.latest_quick_human(
            user_id, route_type, lock=True, active_only=True
        )
        if conversation is None:
            raise NotFoundError("Quick human conversation", route_type)
        return conversation

    def consume_human_message(
        self, user_id: int, route_type: str, now: datetime | None = None
    ) -> AccessResult:
        """Count one human message against the active escalation.

        A conversation that is no longer limited_human is reported as ended
        without changes. Escalations cancelled with their project are
        not counted.
        """
        now = now or datetime.now(UTC)
        conversation = self._require_quick_human(user_id, validate_route_type(route_type))
        state = AccessState.of(conversation)
        if state.chat_mode != ChatMode.limited_human.value:
            return AccessResult(conversation.id, state, ended=True)

        new_state, ended = access_tier.consume(state, now)
        new_state.apply_to(conversation)
        self.db.commit()
        if ended:
            logger.info("Quick-human conversation %s ended", conversation.id)
        return AccessResult(conversation.id, new_state, ended)

    def refresh_human_access(
        self, user_id: int, route_type: str, now: datetime | None = None
    ) -> AccessResult:
        """Resolve lazy expiry of the latest escalation without consuming."""
        now = now or datetime.now(UTC)
        route_type = validate_route_type(route_type)
        conversation = self.latest_quick_human(
            user_id, route_type, lock=True, active_only=True
        )
        if conversation is None:
            return AccessResult(None, access_tier.AI_ONLY, ended=True)

        state = AccessState.of(conversation)
        if state.chat_mode != ChatMode.limited_human.value:
            return AccessResult(conversation.id, state, ended=True)

        new_state, ended = access_tier.evaluate(state, now)
        if ended:
            new_state.apply_to(conversation)
            self.db.commit()
            logger.info("Quick-human conversation %s expired", conversation.id)
        return AccessResult(conversation.id, new_state, ended)

    # =========================================================================
    # Sending
    # =========================================================================

    def _append(
        self, conversation: Conversation, sender_type: SenderType, sender_id: int | None, text: str
    ) -> Message:
        message = Message(
            conversation_id=conversation.id,
            sender_type=sender_type.value,
            sender_id=sender_id,
            message_text=text,
        )
        self.db.add(message)
        conversation.updated_at = utc_now_iso()
        self.db.flush()
        return message

    def send_quick_human_message(
        self,
        user_id: int,
        conversation_id: int,
        text: str,
        now: datetime | None = None,
    ) -> SendResult:
        """Post a customer message into a limited_human conversation.

        Raises:
            ForbiddenError: If the conversation is not an active limited_human chat.
            AccessEndedError: If the window expired or the budget is spent;
                the tier is reset to ai_only before raising.
        """
        now = now or datetime.now(UTC)
        text = clean_message_text(text)
        conversation = self.get_owned_conversation(user_id, conversation_id, lock=True)
        if (
            conversation.chat_mode != ChatMode.limited_human.value
            or conversation.project_status != ProjectStatus.active.value
        ):
            raise ForbiddenError("Quick specialist chat is not active.")

        state = AccessState.of(conversation)
        if access_tier.is_expired_or_exhausted(state, now):
            access_tier.AI_ONLY.apply_to(conversation)
            self.db.commit()
            raise AccessEndedError()

        try:
            message = self._append(conversation, SenderType.user, user_id, text)
            new_state, ended = access_tier.consume(state, now)
            new_state.apply_to(conversation)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(message)
        return SendResult(
            messages=[message],
            access=AccessResult(conversation.id, new_state, ended),
        )

    async def send_user_message(
        self,
        user_id: int,
        conversation_id: int,
        text: str,
        gateway: AIGateway,
        now: datetime | None = None,
    ) -> SendResult:
        """Post a customer message, routing by the conversation's tier.

        quick_human and limited_human conversations count against the
        budget; paid_human conversations append for the agent; ai_only
        conversations get the assistant's reply in the same transaction.
        """
        now = now or datetime.now(UTC)
        text = clean_message_text(text)
        conversation = self.get_owned_conversation(user_id, conversation_id)

        if (
            conversation.conversation_kind == ConversationKind.quick_human.value
            or conversation.chat_mode == ChatMode.limited_human.value
        ):
            return self.send_quick_human_message(user_id, conversation_id, text, now=now)

        if conversation.chat_mode == ChatMode.paid_human.value:
            if conversation.project_status != ProjectStatus.active.value:
                raise ForbiddenError("This project is cancelled.")
            message = self._append(conversation, SenderType.user, user_id, text)
            self.db.commit()
            self.db.refresh(message)
            return SendResult(messages=[message])

        return await self._send_ai(conversation, user_id, text, gateway)

    async def _send_ai(
        self, conversation: Conversation, user_id: int, text: str, gateway: AIGateway
    ) -> SendResult:
        try:
            user_message = self._append(conversation, SenderType.user, user_id, text)
            rows = self.db.execute(
                select(Message.sender_type, Message.message_text)
                .where(Message.conversation_id == conversation.id)
                .order_by(Message.id.desc())
                .limit(30)
            ).all()
            history = [
                ChatTurn(
                    role="user" if sender == SenderType.user.value else "assistant",
                    content=body,
                )
                for sender, body in reversed(rows)
            ]
            reply = await gateway.chat(f"c-{conversation.id}", text, history)
            ai_message = self._append(conversation, SenderType.ai, None, reply)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(user_message)
        self.db.refresh(ai_message)
        return SendResult(messages=[user_message, ai_message])

    def send_agent_message(
        self,
        agent: Agent,
        conversation_id: int,
        text: str,
        now: datetime | None = None,
    ) -> Message:
        """Post an agent reply where the tier allows human support.

        Raises:
            ForbiddenError: If the agent may not write here or the tier
                does not allow an agent reply.
        """
        now = now or datetime.now(UTC)
        text = clean_message_text(text)
        conversation = self.get_conversation(conversation_id, lock=True)
        self.check_agent_access(agent, conversation, write=True)
        if conversation.project_status != ProjectStatus.active.value:
            raise ForbiddenError("This project is cancelled.")
        if not access_tier.agent_may_send(conversation, now):
            if conversation.chat_mode == ChatMode.limited_human.value:
                access_tier.AI_ONLY.apply_to(conversation)
                self.db.commit()
                raise AccessEndedError()
            raise ForbiddenError("Human chat is not available for this conversation.")

        message = self._append(conversation, SenderType.agent, agent.id, text)
        self.db.commit()
        self.db.refresh(message)
        return message

    # =========================================================================
    # Agent access
    # =========================================================================

    def check_agent_access(
        self, agent: Agent, conversation: Conversation, write: bool = False
    ) -> None:
        """Gate every agent read and write on a conversation.

        Admins always pass. Any agent may read an unclaimed conversation;
        writing requires a claim, and a claimed conversation belongs to its
        assigned agent alone.

        Raises:
            ForbiddenError: If the agent may not access the conversation.
        """
        if agent.is_admin:
            return
        if conversation.assigned_agent_id is None:
            if write:
                raise ForbiddenError("Claim this conversation before replying.")
            return
        if conversation.assigned_agent_id != agent.id:
            raise ForbiddenError("This conversation is assigned to another agent.")

    def claim_conversation(self, agent: Agent, conversation_id: int) -> Conversation:
        """Assign a conversation to ``agent``.

        Claiming is first-come: it succeeds only while the conversation is
        unassigned (or already assigned to the same agent). Admins may
        reassign.

        Raises:
            ConflictError: If another agent holds the conversation.
        """
        conversation = self.get_conversation(conversation_id)
        stmt = update(Conversation).where(Conversation.id == conversation_id)
        if not agent.is_admin:
            stmt = stmt.where(
                or_(
                    Conversation.assigned_agent_id.is_(None),
                    Conversation.assigned_agent_id == agent.id,
                )
            )
        result = self.db.execute(
            stmt.values(assigned_agent_id=agent.id, updated_at=utc_now_iso()).execution_options(
                synchronize_session=False
            )
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictError("Conversation already claimed by another agent")
        self.db.commit()
        self.db.refresh(conversation)
        logger.info("Agent %s claimed conversation %s", agent.id, conversation_id)
        return conversation

    # =========================================================================
    # Message log
    # =========================================================================

    def list_messages(
        self, conversation: Conversation, after_id: int = 0, limit: int = 50
    ) -> list[Message]:
        """Messages with id > ``after_id``, oldest first."""
        limit = max(1, min(MAX_PAGE_SIZE, int(limit or 50)))
        return list(
            self.db.execute(
                select(Message)
                .where(
                    Message.conversation_id == conversation.id,
                    Message.id > max(0, int(after_id or 0)),
                )
                .order_by(Message.id.asc())
                .limit(limit)
            ).scalars()
        )

    def mark_read(
        self, agent: Agent, conversation_id: int, last_seen_message_id: int
    ) -> int:
        """Advance the agent's read marker; it never moves backwards.

        Returns:
            The stored marker.
        """
        if not last_seen_message_id or last_seen_message_id <= 0:
            raise ValidationError("last_seen_message_id is required")
        conversation = self.get_conversation(conversation_id)
        self.check_agent_access(agent, conversation)

        read = self.db.execute(
            select(ConversationRead).where(
                ConversationRead.conversation_id == conversation.id,
                ConversationRead.agent_id == agent.id,
            )
        ).scalar_one_or_none()
        if read is None:
            read = ConversationRead(
                conversation_id=conversation.id,
                agent_id=agent.id,
                last_seen_message_id=last_seen_message_id,
            )
            self.db.add(read)
        else:
            read.last_seen_message_id = max(read.last_seen_message_id, last_seen_message_id)
        self.db.commit()
        return read.last_seen_message_id

    def agent_inbox(
        self, agent: Agent, limit: int = 50, cursor: int | None = None
    ) -> list[InboxItem]:
        """Active human-tier conversations visible to ``agent``, newest first.

        Non-admins see conversations that are unclaimed or claimed by them.
        """
        limit = max(1, min(MAX_PAGE_SIZE, int(limit or 50)))
        last_id = (
            select(func.max(Message.id))
            .where(Message.conversation_id == Conversation.id)
            .correlate(Conversation)
            .scalar_subquery()
        )
        seen = (
            select(ConversationRead.last_seen_message_id)
            .where(
                ConversationRead.conversation_id == Conversation.id,
                ConversationRead.agent_id == agent.id,
            )
            .correlate(Conversation)
            .scalar_subquery()
        )
        unread = (
            select(func.count(Message.id))
            .where(
                Message.conversation_id == Conversation.id,
                Message.sender_type == SenderType.user.value,
                Message.id > func.coalesce(seen, 0),
            )
            .correlate(Conversation)
            .scalar_subquery()
        )

        stmt = (
            select(Conversation, last_id.label("last_id"), unread.label("unread"))
            .where(
                Conversation.project_status == ProjectStatus.active.value,
                or_(
                    and_(
                        Conversation.conversation_kind == ConversationKind.quick_human.value,
                        Conversation.chat_mode == ChatMode.limited_human.value,
                    ),
                    Conversation.chat_mode == ChatMode.paid_human.value,
                ),
            )
            .order_by(Conversation.id.desc())
            .limit(limit)
        )
        if not agent.is_admin:
            stmt = stmt.where(
                or_(
                    Conversation.assigned_agent_id.is_(None),
                    Conversation.assigned_agent_id == agent.id,
                )
            )
        if cursor:
            stmt = stmt.where(Conversation.id < cursor)

        items = []
        for conversation, last_message_id, unread_count in self.db.execute(stmt).all():
            last = self.db.get(Message, last_message_id) if last_message_id else None
            items.append(
                InboxItem(
                    conversation=conversation,
                    last_message_id=last_message_id,
                    last_sender_type=last.sender_type if last else None,
                    last_message_text=last.message_text if last else None,
                    unread_count=int(unread_count or 0),
                )
            )
        return items
