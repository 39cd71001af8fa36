from .service import DailyLimitService, DailyLimitStatus, LimitCheck

__all__ = ["DailyLimitService", "DailyLimitStatus", "LimitCheck"]
