"""
Database models for Soma.

Organized by domain:
- core: identity, balances, configuration and bot pricing
- economy: transaction ledger and daily anti-abuse counters

Importing this package registers every table on ``Base.metadata``.
"""

from soma.database.models.core import (
    GLOBAL_CONFIG_ID,
    Balance,
    BotCost,
    GlobalConfig,
    RoleConfig,
    Server,
    User,
    UserServerRoles,
)
from soma.database.models.economy import (
    DailyReward,
    DailyTransfer,
    RewardClaim,
    Transaction,
    new_transaction_id,
)
from soma.database.models.enums import (
    CREDIT_TYPES,
    EARNED_TYPES,
    TransactionType,
    TransferDirection,
    TransferOverflowPolicy,
)

__all__ = [
    # Core
    "User",
    "Balance",
    "Server",
    "RoleConfig",
    "UserServerRoles",
    "GlobalConfig",
    "GLOBAL_CONFIG_ID",
    "BotCost",
    # Economy
    "Transaction",
    "new_transaction_id",
    "DailyTransfer",
    "DailyReward",
    "RewardClaim",
    # Enums
    "TransactionType",
    "TransferDirection",
    "TransferOverflowPolicy",
    "CREDIT_TYPES",
    "EARNED_TYPES",
]
