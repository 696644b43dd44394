"""Typed domain exceptions for API error mapping.

Every exception carries the HTTP status it maps to, an E-XXXX registry code,
and optionally a short client-facing ``code`` (e.g. LIMITED_HUMAN_COOLDOWN)
plus extra response fields. The API layer renders them uniformly as
``{"ok": false, "error": ..., "error_code": ..., "code": ...}``.

Usage:
    # In service layer
    raise NotFoundError("Handoff", handoff_id)

    # In route handler: nothing to do, the app-level handler maps it.
"""

from typing import Any


class DomainError(Exception):
    """Base exception for all domain errors."""

    status_code: int = 400
    error_code: str = "E-1001"
    code: str | None = None

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": False,
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.code:
            payload["code"] = self.code
        payload.update(self.extra)
        return payload


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""


class MissingFieldError(ValidationError):
    """A transition-specific required field is absent. Maps to HTTP 400."""

    error_code = "E-1004"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    status_code = 404
    error_code = "E-1002"

    def __init__(self, resource_type: str, identifier: object) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class InsufficientBalanceError(ValidationError):
    error_code = "E-1003"

    def __init__(self, message: str = "Insufficient balance.") -> None:
        super().__init__(message)


class ConflictError(DomainError):
    """Resource conflict (concurrent claim, already decided). Maps to HTTP 409."""

    status_code = 409
    error_code = "E-2001"


class PayoutNotPendingError(ConflictError):
    error_code = "E-2007"


class InvalidTransitionError(DomainError):
    """Handoff transition outside the adjacency table. Maps to HTTP 400.

    Attributes:
        current: Status the handoff is in.
        target: Status that was requested.
        allowed: Valid targets from ``current``.
    """

    error_code = "E-2002"

    def __init__(self, current: str, target: str, allowed: list[str]) -> None:
        super().__init__(
            f"Invalid transition: {current} → {target}",
            current=current,
            target=target,
            allowed=allowed,
        )
        self.current = current
        self.target = target
        self.allowed = allowed


class TerminalStateError(DomainError):
    """Handoff is delivered or cancelled. Maps to HTTP 400."""

    error_code = "E-2003"

    def __init__(self, current: str) -> None:
        super().__init__(f"Cannot update a handoff that is {current}.")
        self.current = current


class ClaimRequiredError(DomainError):
    """Milestone update on an unclaimed handoff. Maps to HTTP 400."""

    error_code = "E-2004"

    def __init__(self) -> None:
        super().__init__("This handoff must be claimed before updating milestones.")


class CooldownError(DomainError):
    """Quick-human escalation requested inside the cooldown. Maps to HTTP 403."""

    status_code = 403
    error_code = "E-2005"
    code = "LIMITED_HUMAN_COOLDOWN"

    def __init__(self, retry_after_hours: int) -> None:
        super().__init__(
            "Quick specialist chat is temporarily unavailable. You recently spoke "
            "with a sourcing specialist for this project. We allow one quick human "
            "chat per project every 48 hours.",
            retry_after_hours=retry_after_hours,
        )
        self.retry_after_hours = retry_after_hours


class AccessEndedError(DomainError):
    """Quick-human window expired or budget exhausted. Maps to HTTP 403."""

    status_code = 403
    error_code = "E-2006"
    code = "LIMITED_HUMAN_ENDED"

    def __init__(self, message: str = "Quick specialist chat has ended.") -> None:
        super().__init__(message)


class AuthenticationError(DomainError):
    """Missing or invalid credentials. Maps to HTTP 401."""

    status_code = 401
    error_code = "E-3001"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ForbiddenError(DomainError):
    """Authenticated but not allowed. Maps to HTTP 403."""

    status_code = 403
    error_code = "E-3002"


class PaymentNotCompletedError(DomainError):
    """Provider did not report the payment as settled. Maps to HTTP 400."""

    error_code = "E-4002"

    def __init__(self, provider: str, status: str | None = None) -> None:
        super().__init__("Payment not completed yet.", provider_status=status or None)
        self.provider = provider


class UpstreamError(DomainError):
    """Payment provider or AI gateway failure. Maps to HTTP 502."""

    status_code = 502
    error_code = "E-4001"

    def __init__(self, provider: str, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        if error_code:
            self.error_code = error_code
