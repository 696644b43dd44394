"""Handoff lifecycle state machine.

A handoff moves along a fixed pipeline and can be cancelled from any
non-terminal state:

    pending -> claimed -> manufacturer_found -> paid -> shipped -> delivered
    (any of the non-terminal states) -> cancelled

``plan_transition`` is the single place the adjacency table and the
per-target rules live. It validates everything up front and returns the
column values to write; ``HandoffService.update_status`` then applies them
in one UPDATE scoped to the handoff's id and expected current status.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from linescout.db.models import (
    Agent,
    Conversation,
    Handoff,
    HandoffClaimAudit,
    HandoffPayment,
    HandoffStatus,
    ProjectStatus,
    to_iso,
)
from linescout.errors import (
    ClaimRequiredError,
    ConflictError,
    InvalidTransitionError,
    MissingFieldError,
    NotFoundError,
    TerminalStateError,
    ValidationError,
)
from linescout.services.ai_gateway import AIGateway

logger = logging.getLogger(__name__)

NEXT_ALLOWED: dict[HandoffStatus, frozenset[HandoffStatus]] = {
    HandoffStatus.pending: frozenset({HandoffStatus.claimed, HandoffStatus.cancelled}),
    HandoffStatus.claimed: frozenset({HandoffStatus.manufacturer_found, HandoffStatus.cancelled}),
    HandoffStatus.manufacturer_found: frozenset({HandoffStatus.paid, HandoffStatus.cancelled}),
    HandoffStatus.paid: frozenset({HandoffStatus.shipped, HandoffStatus.cancelled}),
    HandoffStatus.shipped: frozenset({HandoffStatus.delivered, HandoffStatus.cancelled}),
    HandoffStatus.delivered: frozenset(),
    HandoffStatus.cancelled: frozenset(),
}

TERMINAL_STATES = frozenset(
    status for status, targets in NEXT_ALLOWED.items() if not targets
)

MILESTONE_COLUMNS = {
    HandoffStatus.manufacturer_found: "manufacturer_found_at",
    HandoffStatus.paid: "paid_at",
    HandoffStatus.shipped: "shipped_at",
    HandoffStatus.delivered: "delivered_at",
    HandoffStatus.cancelled: "cancelled_at",
}

STATUS_CHANGED_EVENT = "handoff.status_changed"


def parse_status(value: str | None) -> HandoffStatus:
    try:
        return HandoffStatus(str(value or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid status: {value}") from None


def allowed_targets(current: HandoffStatus) -> list[str]:
    return sorted(status.value for status in NEXT_ALLOWED[current])


def _non_empty(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


@dataclass(frozen=True)
class TransitionPlan:
    """Validated outcome of a transition request.

    Attributes:
        current: Status before the transition.
        target: Status after the transition.
        values: Column values to write (empty for a self-transition).
    """

    current: HandoffStatus
    target: HandoffStatus
    values: dict[str, Any] = field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        return self.current == self.target


def plan_transition(
    current: HandoffStatus | str,
    target: HandoffStatus | str,
    *,
    claimed_by: int | None,
    shipper: str | None = None,
    tracking_number: str | None = None,
    cancel_reason: str | None = None,
    now: datetime | None = None,
) -> TransitionPlan:
    """Validate a transition and compute the columns it writes.

    Checks run in a fixed order: terminal state, claim, adjacency, then the
    fields the target requires. A self-transition confirms the current
    status and writes nothing.

    Raises:
        TerminalStateError: If the handoff is delivered or cancelled.
        ClaimRequiredError: If a milestone is requested on an unclaimed handoff.
        InvalidTransitionError: If the target is not adjacent to the current status.
        MissingFieldError: If shipper, tracking_number or cancel_reason is missing.
    """
    current = parse_status(current)
    target = parse_status(target)

    if current in TERMINAL_STATES:
        raise TerminalStateError(current.value)

    if target not in (HandoffStatus.cancelled, HandoffStatus.pending) and not claimed_by:
        raise ClaimRequiredError()

    if target == current:
        return TransitionPlan(current=current, target=target)

    if target not in NEXT_ALLOWED[current]:
        raise InvalidTransitionError(current.value, target.value, allowed_targets(current))

    values: dict[str, Any] = {"status": target.value}
    if target == HandoffStatus.shipped:
        shipper = _non_empty(shipper)
        tracking_number = _non_empty(tracking_number)
        if not shipper:
            raise MissingFieldError("shipper", "Missing shipper")
        if not tracking_number:
            raise MissingFieldError("tracking_number", "Missing tracking_number")
        values["shipper"] = shipper
        values["tracking_number"] = tracking_number
    elif target == HandoffStatus.cancelled:
        cancel_reason = _non_empty(cancel_reason)
        if not cancel_reason:
            raise MissingFieldError("cancel_reason", "Missing cancel_reason")
        values["cancel_reason"] = cancel_reason

    stamp = to_iso(now or datetime.now(UTC))
    column = MILESTONE_COLUMNS.get(target)
    if column:
        values[column] = stamp
    values["updated_at"] = stamp
    return TransitionPlan(current=current, target=target, values=values)


class HandoffService:
    """Creates, claims and advances handoffs.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_handoff(self, handoff_id: int) -> Handoff:
        handoff = self.db.get(Handoff, handoff_id)
        if handoff is None:
            raise NotFoundError("Handoff", handoff_id)
        return handoff

    def create_handoff(
        self,
        user_id: int | None,
        route_type: str | None = None,
        context: str | None = None,
        conversation_id: int | None = None,
    ) -> Handoff:
        """Open a pending handoff and link it to the originating conversation."""
        handoff = Handoff(
            user_id=user_id,
            route_type=route_type,
            context=context,
            status=HandoffStatus.pending.value,
        )
        self.db.add(handoff)
        self.db.flush()
        if conversation_id is not None:
            conversation = self.db.get(Conversation, conversation_id)
            if conversation is None:
                self.db.rollback()
                raise NotFoundError("Conversation", conversation_id)
            conversation.handoff_id = handoff.id
        self.db.commit()
        self.db.refresh(handoff)
        logger.info("Created handoff %s for user %s", handoff.id, user_id)
        return handoff

    def claim_handoff(
        self, handoff_id: int, agent: Agent, now: datetime | None = None
    ) -> Handoff:
        """Claim a pending handoff for ``agent``.

        Linked conversations without an assigned agent are assigned to the
        claimer so commission can be attributed.

        Raises:
            ConflictError: If the handoff is no longer pending.
        """
        handoff = self.get_handoff(handoff_id)
        stamp = to_iso(now or datetime.now(UTC))
        result = self.db.execute(
            update(Handoff)
            .where(Handoff.id == handoff_id, Handoff.status == HandoffStatus.pending.value)
            .values(
                status=HandoffStatus.claimed.value,
                claimed_by=agent.id,
                claimed_at=stamp,
                updated_at=stamp,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictError("Already claimed or not pending.")

        self.db.add(
            HandoffClaimAudit(
                handoff_id=handoff_id,
                agent_id=agent.id,
                previous_status=HandoffStatus.pending.value,
                new_status=HandoffStatus.claimed.value,
                claimed_at=stamp,
            )
        )
        self.db.execute(
            update(Conversation)
            .where(
                Conversation.handoff_id == handoff_id,
                Conversation.assigned_agent_id.is_(None),
            )
            .values(assigned_agent_id=agent.id)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(handoff)
        logger.info("Agent %s claimed handoff %s", agent.id, handoff_id)
        return handoff

    def update_status(
        self,
        handoff_id: int,
        target: str,
        *,
        shipper: str | None = None,
        tracking_number: str | None = None,
        cancel_reason: str | None = None,
        now: datetime | None = None,
    ) -> TransitionPlan:
        """Apply a validated transition in a single UPDATE.

        Cancelling also marks the handoff's conversations cancelled.

        Raises:
            NotFoundError: If the handoff does not exist.
            ConflictError: If the status changed between validation and write.
        """
        handoff = self.get_handoff(handoff_id)
        plan = plan_transition(
            handoff.status,
            target,
            claimed_by=handoff.claimed_by,
            shipper=shipper,
            tracking_number=tracking_number,
            cancel_reason=cancel_reason,
            now=now,
        )
        if plan.is_noop:
            return plan

        result = self.db.execute(
            update(Handoff)
            .where(Handoff.id == handoff_id, Handoff.status == plan.current.value)
            .values(**plan.values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictError("Handoff was updated by someone else; reload and retry.")

        if plan.target == HandoffStatus.cancelled:
            self.db.execute(
                update(Conversation)
                .where(Conversation.handoff_id == handoff_id)
                .values(project_status=ProjectStatus.cancelled.value)
                .execution_options(synchronize_session=False)
            )
        self.db.commit()
        self.db.refresh(handoff)
        logger.info(
            "Handoff %s: %s -> %s", handoff_id, plan.current.value, plan.target.value
        )
        return plan

    def list_payments(self, handoff_id: int) -> list[HandoffPayment]:
        self.get_handoff(handoff_id)
        return list(
            self.db.execute(
                select(HandoffPayment)
                .where(HandoffPayment.handoff_id == handoff_id)
                .order_by(HandoffPayment.id.asc())
            ).scalars()
        )


async def notify_status_change(
    gateway: AIGateway, handoff: Handoff, plan: TransitionPlan
) -> bool:
    """Tell the events workflow about a committed status change."""
    if plan.is_noop:
        return False
    return await gateway.notify_event(
        STATUS_CHANGED_EVENT,
        {
            "handoff_id": handoff.id,
            "user_id": handoff.user_id,
            "previous_status": plan.current.value,
            "status": plan.target.value,
            "shipper": handoff.shipper,
            "tracking_number": handoff.tracking_number,
            "cancel_reason": handoff.cancel_reason,
        },
    )
