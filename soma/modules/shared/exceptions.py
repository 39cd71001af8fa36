"""
Domain exceptions for the Soma economy.

Raised by economy services for rule violations and bad caller input. Chat
commands and HTTP routes turn them into user-facing replies; nothing here
knows how. Every class derives from `SomaDomainException`, which shares
`message`, `details`, `severity`, `is_retryable`, `error_code` and
`to_dict()` with the infrastructure errors through `SomaError`.

The module-level helpers (`is_transient_error`, `get_error_severity`,
`should_alert`) work on either family.
"""

from __future__ import annotations

from typing import Any, Optional

from soma.core.exceptions import ErrorSeverity, SomaError


class SomaDomainException(SomaError):
    """
    Base exception for all Soma domain-level errors.

    Example:
        >>> raise SomaDomainException(
        ...     "Transfer failed",
        ...     {"reason": "receiver unknown"}
        ... )
    """


class ValidationError(SomaDomainException):
    """
    Raised when caller input fails domain validation.

    Always raised before any storage access.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={
                "field": field,
                "validation_message": message,
            },
            error_code=f"VALIDATION_{field.upper()}",
        )


class InsufficientBalanceError(SomaDomainException):
    """
    Raised when a user cannot cover a spend or transfer.

    Args:
        required: Amount the operation needs
        available: Balance after regeneration at the time of the check
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, required: float, available: float) -> None:
        self.required = required
        self.available = available
        self.deficit = max(0.0, required - available)
        super().__init__(
            f"Insufficient ichor: need {required:.2f}, have {available:.2f}",
            details={
                "required": required,
                "available": available,
                "deficit": self.deficit,
            },
            error_code="INSUFFICIENT_BALANCE",
        )


class NotFoundError(SomaDomainException):
    """
    Raised when a referenced entity does not exist.

    Args:
        resource_type: Type of resource (e.g., "User", "Transaction")
        identifier: Optional identifier for the missing resource
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={
                "resource_type": resource_type,
                "identifier": identifier,
            },
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class BotNotConfiguredError(NotFoundError):
    """
    Raised when a bot has neither a server-specific nor a global cost.

    Args:
        bot_id: Bot whose price was requested
        server_id: Server the activation happened in (may be None)
    """

    def __init__(self, bot_id: str, server_id: Optional[str] = None) -> None:
        self.bot_id = bot_id
        self.server_id = server_id
        super().__init__("BotCost", bot_id)
        self.details["server_id"] = server_id
        self.error_code = "BOT_NOT_CONFIGURED"


class ConflictError(SomaDomainException):
    """
    Raised when an operation would duplicate a one-time effect
    (double refund, repeated reward claim).

    Args:
        resource: What is being duplicated
        reason: Explanation of the conflict
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource: str, reason: str) -> None:
        self.resource = resource
        self.reason = reason
        super().__init__(
            f"Conflict on {resource}: {reason}",
            details={"resource": resource, "reason": reason},
            error_code=f"CONFLICT_{resource.upper()}",
        )


class InvalidOperationError(SomaDomainException):
    """
    Raised when a request violates an economy rule.

    Args:
        action: Description of the invalid action
        reason: Explanation of why it's not allowed

    Example:
        >>> raise InvalidOperationError("transfer", "cannot transfer to yourself")
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Invalid operation '{action}': {reason}",
            details={
                "action": action,
                "reason": reason,
            },
            error_code=f"INVALID_{action.upper()}",
        )


class DailyLimitExceededError(SomaDomainException):
    """
    Raised when a transfer would exceed the sender's or receiver's daily cap.

    Args:
        reason: 'sender_limit' or 'receiver_limit'
        remaining: How much the limiting side can still move today
    """

    DEFAULT_SEVERITY = ErrorSeverity.DEBUG
    DEFAULT_RETRYABLE = True

    def __init__(self, reason: str, remaining: float) -> None:
        self.reason = reason
        self.remaining = remaining
        super().__init__(
            f"Daily transfer limit reached ({reason}): {remaining:.2f} remaining today",
            details={"reason": reason, "remaining": remaining},
            error_code="DAILY_LIMIT_EXCEEDED",
        )


class RewardUnavailableError(SomaDomainException):
    """
    Raised when a free reward is refused by the daily cap or the cooldown.

    Args:
        reason: 'daily_limit' or 'cooldown'
        retry_after: Seconds until the gate reopens (None when it won't today)
    """

    DEFAULT_SEVERITY = ErrorSeverity.DEBUG
    DEFAULT_RETRYABLE = True

    def __init__(self, reason: str, retry_after: Optional[float] = None) -> None:
        self.reason = reason
        self.retry_after = retry_after
        message = f"Reward unavailable: {reason}"
        if retry_after is not None:
            message += f" (retry after {retry_after:.0f}s)"
        super().__init__(
            message,
            details={"reason": reason, "retry_after": retry_after},
            error_code="REWARD_UNAVAILABLE",
        )


class PermissionDeniedError(SomaDomainException):
    """
    Raised when an actor is not allowed to perform an admin action.

    Args:
        actor: Id of the caller
        action: Admin action that was attempted
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, actor: Optional[str], action: str) -> None:
        self.actor = actor
        self.action = action
        super().__init__(
            f"Permission denied: {actor} may not {action}",
            details={"actor": actor, "action": action},
            error_code="PERMISSION_DENIED",
        )


# Utility functions for exception handling patterns


def is_transient_error(exc: Exception) -> bool:
    """True for Soma errors marked retryable (daily limits, storage failures)."""
    if isinstance(exc, SomaError):
        return exc.is_retryable
    return False


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """
    Get the severity level of an exception for logging.

    Args:
        exc: Exception to check

    Returns:
        ErrorSeverity level.
    """
    if isinstance(exc, SomaError):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    """True if severity is ERROR or CRITICAL."""
    severity = get_error_severity(exc)
    return severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
