"""
Base Service Foundation

Purpose
-------
Provides the foundational class for all Soma domain services. Services
implement pure economy logic against a caller-supplied `AsyncSession`,
enforce business rules and raise domain exceptions.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Numeric validation helpers that raise `ValidationError`

What this class does NOT do:
- Open or commit transactions (the engine does that via DatabaseService)
- Know anything about chat platforms or HTTP

Usage
-----
    class RoleService(BaseService):
        def __init__(self, logger=None):
            super().__init__(logger or get_logger(__name__))

        async def effective_regen_rate(self, session, server_id, role_ids, base_rate):
            self.log_operation("effective_regen_rate", server_id=server_id)
            ...
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Optional

from .exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger


class BaseService:
    """
    Base class for all domain services.

    Args:
        logger: Structured logger instance
    """

    def __init__(self, logger: Logger) -> None:
        self.log = logger

    def log_operation(self, operation: str, **context: Any) -> None:
        """
        Log a service operation with structured context.

        Args:
            operation: Name of the operation being performed
            **context: Additional context data
        """
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def validate_positive_amount(self, value: Any, name: str) -> float:
        """
        Validate that a value is a finite number greater than zero.

        Returns:
            The value as float

        Raises:
            ValidationError: If value is not a positive finite number
        """
        amount = self._as_number(value, name)
        if amount <= 0:
            raise ValidationError(name, f"{name} must be positive, got {value}")
        return amount

    def validate_non_negative_amount(self, value: Any, name: str) -> float:
        amount = self._as_number(value, name)
        if amount < 0:
            raise ValidationError(name, f"{name} must not be negative, got {value}")
        return amount

    def validate_range(
        self,
        value: Any,
        name: str,
        min_val: float,
        max_val: float,
        exclusive_min: bool = False,
    ) -> float:
        """
        Validate that a value is within a specified range.

        Args:
            value: Value to validate
            name: Name of the value (for error messages)
            min_val: Minimum allowed value (inclusive unless exclusive_min)
            max_val: Maximum allowed value (inclusive)
            exclusive_min: Reject values equal to min_val

        Raises:
            ValidationError: If value is out of range
        """
        number = self._as_number(value, name)
        low_ok = number > min_val if exclusive_min else number >= min_val
        if not low_ok or number > max_val:
            bracket = "(" if exclusive_min else "["
            raise ValidationError(
                name,
                f"{name} must be in {bracket}{min_val}, {max_val}], got {value}",
            )
        return number

    def validate_int_range(self, value: Any, name: str, min_val: int, max_val: int) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            else:
                raise ValidationError(name, f"{name} must be a whole number, got {value!r}")
        if not (min_val <= value <= max_val):
            raise ValidationError(
                name, f"{name} must be between {min_val} and {max_val}, got {value}"
            )
        return value

    @staticmethod
    def validate_id(value: Optional[Any], name: str) -> str:
        """
        Normalize an external (platform) id to a non-empty string.

        Raises:
            ValidationError: If the id is missing or blank
        """
        if value is None or isinstance(value, bool):
            raise ValidationError(name, f"{name} is required")
        text = str(value).strip()
        if not text:
            raise ValidationError(name, f"{name} must not be empty")
        return text

    @staticmethod
    def _as_number(value: Any, name: str) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(name, f"{name} must be a number, got {value!r}")
        number = float(value)
        if not math.isfinite(number):
            raise ValidationError(name, f"{name} must be finite, got {value}")
        return number
