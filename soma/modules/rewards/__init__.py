from .service import RewardService, RewardStatus

__all__ = ["RewardService", "RewardStatus"]
