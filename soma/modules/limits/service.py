"""
DailyLimitService - per-day transfer caps
=========================================

Tracks how much each user sent and received today (transfers and tips) and
refuses movements that would exceed the global daily caps.

Business Rules
--------------
- "Today" is the calendar date in the reference timezone
- A counter whose reset_date is not today reads as zero
- Recording onto a stale counter overwrites it instead of adding
- A cap of 0 means unlimited (remaining is math.inf)
- The sender is checked before the receiver
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from sqlalchemy import case

from soma.core.logging.logger import get_logger
from soma.core.timeutil import reference_days_ago, reference_today
from soma.database.models import DailyTransfer, TransferDirection
from soma.modules.shared.base_repository import BaseRepository
from soma.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from soma.modules.config import ConfigService


@dataclass(frozen=True)
class DailyLimitStatus:
    sent_today: float
    received_today: float
    max_sent: float
    max_received: float
    sent_remaining: float
    received_remaining: float


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    reason: Optional[str] = None
    remaining: Optional[float] = None


def _remaining(maximum: float, used: float) -> float:
    if maximum <= 0:
        return math.inf
    return max(0.0, maximum - used)


class DailyLimitService(BaseService):
    def __init__(self, config_service: ConfigService, logger: Optional[Logger] = None) -> None:
        super().__init__(logger or get_logger(__name__))
        self._config = config_service
        self._repo = BaseRepository[DailyTransfer](DailyTransfer, self.log)

    async def _amount_today(
        self,
        session: AsyncSession,
        user_id: str,
        direction: TransferDirection,
        today: str,
    ) -> float:
        row = await self._repo.get(session, (user_id, direction.value), refresh=True)
        if row is None or row.reset_date != today:
            return 0.0
        return row.amount_today

    async def status(self, session: AsyncSession, user_id: str) -> DailyLimitStatus:
        config = await self._config.get_global_config(session)
        today = reference_today()

        sent = await self._amount_today(session, user_id, TransferDirection.SENT, today)
        received = await self._amount_today(session, user_id, TransferDirection.RECEIVED, today)

        return DailyLimitStatus(
            sent_today=sent,
            received_today=received,
            max_sent=config.max_daily_sent,
            max_received=config.max_daily_received,
            sent_remaining=_remaining(config.max_daily_sent, sent),
            received_remaining=_remaining(config.max_daily_received, received),
        )

    async def check(
        self,
        session: AsyncSession,
        sender_id: str,
        receiver_id: str,
        amount: float,
    ) -> LimitCheck:
        """Whether `amount` fits under both users' remaining allowance."""
        sender = await self.status(session, sender_id)
        if sender.sent_remaining < amount:
            return LimitCheck(allowed=False, reason="sender_limit", remaining=sender.sent_remaining)

        receiver = await self.status(session, receiver_id)
        if receiver.received_remaining < amount:
            return LimitCheck(allowed=False, reason="receiver_limit", remaining=receiver.received_remaining)

        return LimitCheck(allowed=True)

    async def _record_direction(
        self,
        session: AsyncSession,
        user_id: str,
        direction: TransferDirection,
        amount: float,
        today: str,
    ) -> None:
        await self._repo.upsert(
            session,
            values={
                "user_id": user_id,
                "direction": direction.value,
                "amount_today": amount,
                "reset_date": today,
            },
            index_elements=["user_id", "direction"],
            update_values={
                "amount_today": case(
                    (DailyTransfer.reset_date == today, DailyTransfer.amount_today + amount),
                    else_=amount,
                ),
                "reset_date": today,
            },
        )

    async def record(
        self,
        session: AsyncSession,
        sender_id: str,
        receiver_id: str,
        amount: float,
    ) -> None:
        """Add a completed movement to both users' counters."""
        today = reference_today()
        await self._record_direction(session, sender_id, TransferDirection.SENT, amount, today)
        await self._record_direction(session, receiver_id, TransferDirection.RECEIVED, amount, today)

        self.log.debug(
            "Recorded daily transfer",
            extra={"sender_id": sender_id, "receiver_id": receiver_id, "amount": amount, "reset_date": today},
        )

    async def cleanup(self, session: AsyncSession, retention_days: int = 7) -> int:
        cutoff = reference_days_ago(retention_days)
        removed = await self._repo.delete_where(session, DailyTransfer.reset_date < cutoff)
        if removed:
            self.log.debug("Cleaned up daily transfer counters", extra={"deleted": removed})
        return removed
