"""
Soma Domain Validators

Purpose
-------
Validation utilities for economy rules that several services share. Each
validator raises a structured domain exception on failure and returns None on
success (raise-on-error pattern). None of them touch the database.

Usage
-----
    from soma.modules.shared.validators import validate_sufficient_balance

    validate_sufficient_balance(required=10.0, available=4.5)
    # Raises: InsufficientBalanceError
"""

from __future__ import annotations

from typing import Any


def validate_sufficient_balance(required: float, available: float) -> None:
    """
    Raises:
        InsufficientBalanceError: If available < required
    """
    from .exceptions import InsufficientBalanceError

    if available < required:
        raise InsufficientBalanceError(required, available)


def validate_distinct_users(sender_id: str, receiver_id: str, action: str = "transfer") -> None:
    """
    Reject operations where a user would pay or reward themselves.

    Raises:
        InvalidOperationError: If both ids are the same
    """
    from .exceptions import InvalidOperationError

    if sender_id == receiver_id:
        raise InvalidOperationError(action, f"cannot {action} to yourself")


def validate_emoji_list(value: Any, field: str, max_entries: int = 10) -> list:
    """
    Validate a non-empty list of emoji strings.

    Returns:
        The list with surrounding whitespace stripped from each entry

    Raises:
        ValidationError: If the value is not a non-empty list of non-empty
            strings or has more than max_entries entries
    """
    from .exceptions import ValidationError

    if not isinstance(value, (list, tuple)) or not value:
        raise ValidationError(field, "must be a non-empty list of emoji")
    if len(value) > max_entries:
        raise ValidationError(field, f"at most {max_entries} emoji allowed, got {len(value)}")

    cleaned = []
    for entry in value:
        if not isinstance(entry, str) or not entry.strip():
            raise ValidationError(field, f"invalid emoji entry {entry!r}")
        cleaned.append(entry.strip())
    return cleaned


def validate_single_emoji(value: Any, field: str) -> str:
    """
    Raises:
        ValidationError: If value is not a single non-empty string
    """
    from .exceptions import ValidationError

    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "must be a single non-empty emoji string")
    return value.strip()
