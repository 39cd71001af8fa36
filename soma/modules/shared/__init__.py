"""
Shared building blocks for Soma domain modules.

- BaseService / BaseRepository: service and data-access foundations
- exceptions: domain exception hierarchy
- formulas: pure economy math
- validators: raise-on-error rule checks
"""

from .base_repository import BaseRepository
from .base_service import BaseService
from .exceptions import (
    BotNotConfiguredError,
    ConflictError,
    DailyLimitExceededError,
    InsufficientBalanceError,
    InvalidOperationError,
    NotFoundError,
    PermissionDeniedError,
    RewardUnavailableError,
    SomaDomainException,
    ValidationError,
    get_error_severity,
    is_transient_error,
    should_alert,
)
from .formulas import (
    calculate_activation_cost,
    calculate_regen_balance,
    minutes_to_afford,
    round_amount,
)

__all__ = [
    "BaseRepository",
    "BaseService",
    "SomaDomainException",
    "ValidationError",
    "InsufficientBalanceError",
    "NotFoundError",
    "BotNotConfiguredError",
    "ConflictError",
    "InvalidOperationError",
    "DailyLimitExceededError",
    "RewardUnavailableError",
    "PermissionDeniedError",
    "is_transient_error",
    "get_error_severity",
    "should_alert",
    "calculate_regen_balance",
    "calculate_activation_cost",
    "minutes_to_afford",
    "round_amount",
]
