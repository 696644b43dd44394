"""Pure access-tier rules for conversations.

The limited-human tier has no timer behind it: expiry is decided here, on
whatever code path next touches the conversation. Every function takes an
explicit ``now`` so callers and tests control the clock.

    state, ended = evaluate(AccessState.of(conversation), now)  # check only
    state, ended = consume(AccessState.of(conversation), now)   # count one message
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from linescout.db.models import (
    ChatMode,
    Conversation,
    ConversationPaymentStatus,
    parse_iso,
    to_iso,
)


@dataclass(frozen=True)
class AccessState:
    """Tier fields of a conversation, detached from the ORM row."""

    chat_mode: str
    human_message_limit: int = 0
    human_message_used: int = 0
    human_access_expires_at: str | None = None

    @property
    def remaining(self) -> int:
        return max(0, self.human_message_limit - self.human_message_used)

    @classmethod
    def of(cls, conversation: Conversation) -> "AccessState":
        return cls(
            chat_mode=conversation.chat_mode,
            human_message_limit=conversation.human_message_limit or 0,
            human_message_used=conversation.human_message_used or 0,
            human_access_expires_at=conversation.human_access_expires_at,
        )

    def apply_to(self, conversation: Conversation) -> None:
        conversation.chat_mode = self.chat_mode
        conversation.human_message_limit = self.human_message_limit
        conversation.human_message_used = self.human_message_used
        conversation.human_access_expires_at = self.human_access_expires_at


AI_ONLY = AccessState(chat_mode=ChatMode.ai_only.value)
PAID_HUMAN = AccessState(chat_mode=ChatMode.paid_human.value)


def is_expired(state: AccessState, now: datetime) -> bool:
    """A missing or unparseable deadline counts as expired."""
    deadline = parse_iso(state.human_access_expires_at)
    return deadline is None or deadline <= now


def is_exhausted(state: AccessState) -> bool:
    return state.human_message_limit <= 0 or state.human_message_used >= state.human_message_limit


def is_expired_or_exhausted(state: AccessState, now: datetime) -> bool:
    return is_expired(state, now) or is_exhausted(state)


def evaluate(state: AccessState, now: datetime) -> tuple[AccessState, bool]:
    """Resolve a lazily-expired tier without consuming anything.

    Returns:
        (new state, ended). Tiers other than limited_human are returned
        unchanged with ``ended=False``.
    """
    if state.chat_mode != ChatMode.limited_human.value:
        return state, False
    if is_expired_or_exhausted(state, now):
        return AI_ONLY, True
    return state, False


def consume(state: AccessState, now: datetime) -> tuple[AccessState, bool]:
    """Count one human message against a limited_human budget.

    The message that reaches the limit is allowed, and the tier drops back
    to ai_only in the same step.
    """
    if state.chat_mode != ChatMode.limited_human.value:
        return state, False
    if is_expired_or_exhausted(state, now):
        return AI_ONLY, True
    used = state.human_message_used + 1
    if used >= state.human_message_limit:
        return AI_ONLY, True
    return replace(state, human_message_used=used), False


def open_window(limit: int, window_minutes: int, now: datetime) -> AccessState:
    """Fresh limited_human tier starting at ``now``."""
    return AccessState(
        chat_mode=ChatMode.limited_human.value,
        human_message_limit=limit,
        human_message_used=0,
        human_access_expires_at=to_iso(now + timedelta(minutes=window_minutes)),
    )


def agent_may_send(conversation: Conversation, now: datetime) -> bool:
    """Whether an agent reply is allowed in this conversation's tier."""
    if conversation.chat_mode == ChatMode.paid_human.value:
        return conversation.payment_status == ConversationPaymentStatus.paid.value
    if conversation.chat_mode == ChatMode.limited_human.value:
        return not is_expired_or_exhausted(AccessState.of(conversation), now)
    return False


def retry_after_hours(last_started: datetime, now: datetime, cooldown_hours: int) -> int:
    """Whole hours (at least 1) until the cooldown since ``last_started`` lapses."""
    remaining = (last_started + timedelta(hours=cooldown_hours)) - now
    return max(1, math.ceil(remaining.total_seconds() / 3600))
