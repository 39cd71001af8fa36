"""
Database Model Enums
====================

Lightweight enumerations for categorical fields across the schema. Stored as
plain strings; services compare against these members.
"""

from __future__ import annotations

import enum


class TransactionType(str, enum.Enum):
    """
    Kinds of balance-affecting events recorded in the transaction ledger.
    """

    SPEND = "spend"
    REGEN = "regen"
    TRANSFER = "transfer"
    REWARD = "reward"
    TIP = "tip"
    GRANT = "grant"
    REVOKE = "revoke"
    REFUND = "refund"


# Types `add` accepts; spend and refund have dedicated operations
CREDIT_TYPES = frozenset(
    {
        TransactionType.GRANT,
        TransactionType.REWARD,
        TransactionType.TIP,
        TransactionType.TRANSFER,
        TransactionType.REVOKE,
    }
)

# Types that count as "earned" on the leaderboard
EARNED_TYPES = (
    TransactionType.REWARD,
    TransactionType.TRANSFER,
    TransactionType.TIP,
)


class TransferDirection(str, enum.Enum):
    """Which side of a daily transfer counter a row tracks."""

    SENT = "sent"
    RECEIVED = "received"


class TransferOverflowPolicy(str, enum.Enum):
    """
    What happens when a transfer would push the receiver past max balance.

    CLAMP: receiver is capped and the sender still pays the full amount.
    REFUND_OVERFLOW: sender pays only what the receiver can hold.
    """

    CLAMP = "clamp"
    REFUND_OVERFLOW = "refund_overflow"
