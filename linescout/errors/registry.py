"""Error code registry with E-XXXX format codes.

This module defines the error code system for LineScout, organizing errors
into categories:
- E-1xxx: Validation errors (bad input, missing transition fields)
- E-2xxx: State-conflict errors (illegal transitions, cooldowns, double decisions)
- E-3xxx: Authorization errors
- E-4xxx: Upstream errors (payment providers, AI gateway, mail)
- E-5xxx: System/internal errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    VALIDATION = "validation"  # E-1xxx
    STATE = "state"  # E-2xxx
    AUTH = "auth"  # E-3xxx
    UPSTREAM = "upstream"  # E-4xxx
    SYSTEM = "system"  # E-5xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action the caller should take to resolve.
        is_retryable: Whether the operation can be retried without changes.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Validation errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.VALIDATION,
        title="Invalid Request",
        message_template="{detail}",
        remediation="Correct the request and retry.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.VALIDATION,
        title="Resource Not Found",
        message_template="{resource_type} '{identifier}' not found",
        remediation="Check the identifier and retry.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.VALIDATION,
        title="Insufficient Balance",
        message_template="Insufficient balance.",
        remediation="Request a smaller amount or wait for more credits.",
    ),
    "E-1004": ErrorCode(
        code="E-1004",
        category=ErrorCategory.VALIDATION,
        title="Missing Transition Field",
        message_template="{detail}",
        remediation="Supply the fields required by the target status.",
    ),
    # State-conflict errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.STATE,
        title="Conflict",
        message_template="{detail}",
        remediation="Reload the resource and retry against its current state.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.STATE,
        title="Invalid Handoff Transition",
        message_template="Invalid transition: {current} → {target}",
        remediation="Move the handoff through its milestones in order.",
    ),
    "E-2003": ErrorCode(
        code="E-2003",
        category=ErrorCategory.STATE,
        title="Handoff Closed",
        message_template="Cannot update a handoff that is {current}.",
        remediation="Delivered and cancelled handoffs are final.",
    ),
    "E-2004": ErrorCode(
        code="E-2004",
        category=ErrorCategory.STATE,
        title="Handoff Not Claimed",
        message_template="This handoff must be claimed before updating milestones.",
        remediation="Claim the handoff first.",
    ),
    "E-2005": ErrorCode(
        code="E-2005",
        category=ErrorCategory.STATE,
        title="Quick Human Cooldown",
        message_template=(
            "Quick specialist chat is temporarily unavailable. "
            "You can start another one in {retry_after_hours} hour(s)."
        ),
        remediation="Continue with the AI assistant until the cooldown ends.",
    ),
    "E-2006": ErrorCode(
        code="E-2006",
        category=ErrorCategory.STATE,
        title="Quick Human Ended",
        message_template="Quick specialist chat has ended.",
        remediation="Continue with the AI assistant or start a paid project.",
    ),
    "E-2007": ErrorCode(
        code="E-2007",
        category=ErrorCategory.STATE,
        title="Payout Already Decided",
        message_template="{detail}",
        remediation="Only pending requests can be approved or rejected.",
    ),
    # Authorization errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.AUTH,
        title="Unauthorized",
        message_template="Unauthorized",
        remediation="Sign in again.",
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.AUTH,
        title="Forbidden",
        message_template="{detail}",
        remediation="Use an account with the required role.",
    ),
    # Upstream errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.UPSTREAM,
        title="Payment Provider Error",
        message_template="{provider} request failed: {detail}",
        remediation="Retry the verification shortly.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.UPSTREAM,
        title="Payment Not Successful",
        message_template="{provider} reports the payment as not successful.",
        remediation="Complete the payment with the provider and verify again.",
    ),
    "E-4003": ErrorCode(
        code="E-4003",
        category=ErrorCategory.UPSTREAM,
        title="AI Gateway Error",
        message_template="AI assistant is unavailable: {detail}",
        remediation="Retry the message shortly.",
        is_retryable=True,
    ),
    "E-4004": ErrorCode(
        code="E-4004",
        category=ErrorCategory.UPSTREAM,
        title="Notification Failure",
        message_template="Failed to deliver {channel} notification: {detail}",
        remediation="No action needed; the operation itself succeeded.",
        is_retryable=True,
    ),
    # System errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.SYSTEM,
        title="Internal Error",
        message_template="Server error",
        remediation="Retry later. Contact support if the problem persists.",
        is_retryable=True,
    ),
    "E-5002": ErrorCode(
        code="E-5002",
        category=ErrorCategory.SYSTEM,
        title="Provider Not Configured",
        message_template="{provider} credentials are not configured.",
        remediation="Set the provider section in linescout.yaml or LINESCOUT_* env vars.",
    ),
    "E-5003": ErrorCode(
        code="E-5003",
        category=ErrorCategory.SYSTEM,
        title="Ledger Drift",
        message_template=(
            "Wallet {wallet_id} balance {balance} differs from transaction sum {expected}."
        ),
        remediation="Run `linescout wallets reconcile --fix` after investigating.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Look up error code definition.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all error codes in a category.

    Args:
        category: The ErrorCategory to filter by.

    Returns:
        List of ErrorCode objects in that category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
