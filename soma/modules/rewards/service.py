"""
RewardService - anti-abuse gates for free reaction rewards
==========================================================

Handles:
- One reward per (reactor, message), permanently (reward_claims)
- A per-day reward count per reactor, rolling over at reference midnight
- A cooldown between consecutive rewards from the same reactor

Both limits come from the global config. max_daily_rewards == 0 means
unlimited and reward_cooldown_minutes == 0 disables the cooldown.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from sqlalchemy import case

from soma.core.database.base import utc_now
from soma.core.logging.logger import get_logger
from soma.core.timeutil import next_reference_midnight, reference_days_ago, reference_today
from soma.database.models import DailyReward, RewardClaim
from soma.modules.shared.base_repository import BaseRepository
from soma.modules.shared.base_service import BaseService
from soma.modules.shared.exceptions import RewardUnavailableError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from soma.modules.config import ConfigService


@dataclass(frozen=True)
class RewardStatus:
    used_today: int
    max_daily: int
    remaining: float
    cooldown_remaining_seconds: float
    can_reward: bool
    next_reward_at: Optional[datetime]


class RewardService(BaseService):
    def __init__(self, config_service: ConfigService, logger: Optional[Logger] = None) -> None:
        super().__init__(logger or get_logger(__name__))
        self._config = config_service
        self._claims = BaseRepository[RewardClaim](RewardClaim, self.log)
        self._daily = BaseRepository[DailyReward](DailyReward, self.log)

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    async def has_claimed(self, session: AsyncSession, user_id: str, message_id: str) -> bool:
        return await self._claims.get(session, (user_id, message_id)) is not None

    async def record_claim(self, session: AsyncSession, user_id: str, message_id: str) -> bool:
        """
        Insert the claim unless it exists.

        Returns:
            False when the user had already claimed this message
        """
        inserted = await self._claims.insert_ignore(
            session,
            values={"user_id": user_id, "message_id": message_id, "claimed_at": utc_now()},
            index_elements=["user_id", "message_id"],
        )
        if not inserted:
            self.log.debug(
                "Duplicate reward claim ignored",
                extra={"user_id": user_id, "message_id": message_id},
            )
        return inserted

    # ------------------------------------------------------------------
    # Daily counter and cooldown
    # ------------------------------------------------------------------

    async def status(
        self,
        session: AsyncSession,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> RewardStatus:
        config = await self._config.get_global_config(session)
        now = now or utc_now()
        today = reference_today(now)

        row = await self._daily.get(session, user_id, refresh=True)
        used_today = row.rewards_today if row is not None and row.reset_date == today else 0

        max_daily = config.max_daily_rewards
        remaining = math.inf if max_daily <= 0 else max(0, max_daily - used_today)

        cooldown_remaining = 0.0
        cooldown_ends: Optional[datetime] = None
        if config.reward_cooldown_minutes > 0 and row is not None and row.last_reward_at is not None:
            cooldown_ends = row.last_reward_at + timedelta(minutes=config.reward_cooldown_minutes)
            cooldown_remaining = max(0.0, (cooldown_ends - now).total_seconds())

        can_reward = remaining > 0 and cooldown_remaining == 0

        next_reward_at: Optional[datetime] = None
        if remaining <= 0:
            next_reward_at = next_reference_midnight(now)
        elif cooldown_remaining > 0:
            next_reward_at = cooldown_ends

        return RewardStatus(
            used_today=used_today,
            max_daily=max_daily,
            remaining=remaining,
            cooldown_remaining_seconds=cooldown_remaining,
            can_reward=can_reward,
            next_reward_at=next_reward_at,
        )

    async def ensure_can_reward(self, session: AsyncSession, user_id: str) -> RewardStatus:
        """
        Raises:
            RewardUnavailableError: daily cap reached or cooldown running
        """
        status = await self.status(session, user_id)
        if status.can_reward:
            return status

        retry_after = None
        if status.next_reward_at is not None:
            retry_after = max(0.0, (status.next_reward_at - utc_now()).total_seconds())

        if status.remaining <= 0:
            raise RewardUnavailableError("daily_limit", retry_after=retry_after)
        raise RewardUnavailableError("cooldown", retry_after=retry_after)

    async def record_reward(self, session: AsyncSession, user_id: str) -> None:
        now = utc_now()
        today = reference_today(now)

        await self._daily.upsert(
            session,
            values={
                "user_id": user_id,
                "rewards_today": 1,
                "last_reward_at": now,
                "reset_date": today,
            },
            index_elements=["user_id"],
            update_values={
                "rewards_today": case(
                    (DailyReward.reset_date == today, DailyReward.rewards_today + 1),
                    else_=1,
                ),
                "last_reward_at": now,
                "reset_date": today,
            },
        )

        self.log.debug("Recorded reward", extra={"user_id": user_id, "reset_date": today})

    async def cleanup(self, session: AsyncSession, retention_days: int = 7) -> int:
        cutoff = reference_days_ago(retention_days)
        removed = await self._daily.delete_where(session, DailyReward.reset_date < cutoff)
        if removed:
            self.log.debug("Cleaned up daily reward counters", extra={"deleted": removed})
        return removed
