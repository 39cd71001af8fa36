from .service import (
    AddResult,
    BalanceInfo,
    BalanceService,
    DeductResult,
    EconomyContext,
    RefundResult,
    TransferResult,
)

__all__ = [
    "AddResult",
    "BalanceInfo",
    "BalanceService",
    "DeductResult",
    "EconomyContext",
    "RefundResult",
    "TransferResult",
]
