"""Error handling framework for LineScout.

This package provides:
- Error code registry with E-XXXX format codes
- Typed domain exceptions mapped to HTTP statuses by the API layer
- LineScoutError and formatting for system-level failures

Error categories:
- E-1xxx: Validation errors
- E-2xxx: State-conflict errors
- E-3xxx: Authorization errors
- E-4xxx: Upstream errors
- E-5xxx: System/internal errors
"""

from linescout.errors.domain import (
    AccessEndedError,
    AuthenticationError,
    ClaimRequiredError,
    ConflictError,
    CooldownError,
    DomainError,
    ForbiddenError,
    InsufficientBalanceError,
    InvalidTransitionError,
    MissingFieldError,
    NotFoundError,
    PaymentNotCompletedError,
    PayoutNotPendingError,
    TerminalStateError,
    UpstreamError,
    ValidationError,
)
from linescout.errors.formatter import LineScoutError, format_error
from linescout.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Formatter
    "LineScoutError",
    "format_error",
    # Domain
    "DomainError",
    "ValidationError",
    "MissingFieldError",
    "NotFoundError",
    "InsufficientBalanceError",
    "ConflictError",
    "PayoutNotPendingError",
    "PaymentNotCompletedError",
    "InvalidTransitionError",
    "TerminalStateError",
    "ClaimRequiredError",
    "CooldownError",
    "AccessEndedError",
    "AuthenticationError",
    "ForbiddenError",
    "UpstreamError",
]
