from .daily_reward import DailyReward
from .daily_transfer import DailyTransfer
from .reward_claim import RewardClaim
from .transaction import Transaction, new_transaction_id

__all__ = [
    "DailyReward",
    "DailyTransfer",
    "RewardClaim",
    "Transaction",
    "new_transaction_id",
]
