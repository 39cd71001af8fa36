"""
DailyReward Model
=================

How many free reaction rewards a user has given today, and when the last one
was given (for the cooldown gate).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from soma.core.database.base import Base, UTCDateTime


class DailyReward(Base):
    __tablename__ = "daily_rewards"
    __table_args__ = (
        Index("ix_daily_rewards_reset_date", "reset_date"),
    )

    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("users.discord_id", ondelete="CASCADE"),
        primary_key=True,
    )

    rewards_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_reward_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    reset_date: Mapped[str] = mapped_column(String(10), nullable=False)
