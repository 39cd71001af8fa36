"""
Infrastructure exceptions for Soma.

These cover failures that are not economy rule violations: a database that
stayed unavailable through every retry, or settings that cannot be used.
Callers of EconomyEngine see them next to the domain exceptions from
`soma.modules.shared.exceptions`, which share `ErrorSeverity` and the
`to_dict()` shape so one error handler can serialize both.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError


class ErrorSeverity(Enum):
    """How loudly an error should be logged."""

    DEBUG = "debug"  # cooldowns, empty results
    INFO = "info"  # refused requests, bad input
    WARNING = "warning"  # handled, worth watching
    ERROR = "error"
    CRITICAL = "critical"  # process cannot continue


class SomaError(Exception):
    """
    Common base for infrastructure and domain errors.

    Subclasses set DEFAULT_SEVERITY / DEFAULT_RETRYABLE; `error_code` defaults
    to the class name so log queries can group on it.
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.severity = severity or self.DEFAULT_SEVERITY
        self.is_retryable = self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable
        self.error_code = error_code or type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        if not self.details:
            return f"[{self.error_code}] {self.message}"
        return f"[{self.error_code}] {self.message} | Details: {self.details}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, details={self.details!r}, "
            f"severity={self.severity.value!r}, is_retryable={self.is_retryable!r})"
        )


class SomaInfrastructureException(SomaError):
    """Base class for failures outside the economy rules (storage, settings)."""


class ConfigurationError(SomaInfrastructureException):
    """A setting (env var or persisted config) that cannot be used."""

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str, value: Any = None) -> None:
        self.config_key = config_key
        details: Dict[str, Any] = {"config_key": config_key, "message": message}
        if value is not None:
            details["value"] = repr(value)
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details=details,
            error_code="CONFIG_ERROR",
        )


class DatabaseError(SomaInfrastructureException):
    """
    A storage failure that survived DatabaseRetryPolicy.

    `original_error` is the SQLAlchemy exception. Constraint violations are
    non-retryable; every other failure is reported as retryable.
    """

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error

        details: Dict[str, Any] = {
            "operation": operation,
            "error": str(original_error),
            "error_type": type(original_error).__name__,
        }
        sqlstate = sqlstate_of(original_error)
        if sqlstate:
            details["sqlstate"] = sqlstate

        super().__init__(
            f"Database error during {operation}: {original_error}",
            details=details,
            error_code="DATABASE_ERROR",
            is_retryable=not isinstance(original_error, IntegrityError),
        )


def sqlstate_of(exc: BaseException) -> Optional[str]:
    """SQLSTATE of a driver error (asyncpg `sqlstate`, psycopg `pgcode`), if any."""
    if not isinstance(exc, DBAPIError):
        return None
    for attr in ("sqlstate", "pgcode"):
        code = getattr(exc.orig, attr, None)
        if code:
            return str(code)
    return None
