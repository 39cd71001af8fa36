from .transaction_log_service import (
    LeaderboardEntry,
    TransactionLogService,
    TransactionSummary,
    TypeTotals,
)

__all__ = [
    "LeaderboardEntry",
    "TransactionLogService",
    "TransactionSummary",
    "TypeTotals",
]
