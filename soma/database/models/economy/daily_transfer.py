"""
DailyTransfer Model
===================

Per-user, per-direction running total of ichor moved today. ``reset_date`` is
the reference-timezone calendar day the total belongs to; a row whose date is
not today reads as zero.
"""

from __future__ import annotations

from sqlalchemy import Float, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from soma.core.database.base import Base


class DailyTransfer(Base):
    __tablename__ = "daily_transfers"
    __table_args__ = (
        Index("ix_daily_transfers_reset_date", "reset_date"),
    )

    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("users.discord_id", ondelete="CASCADE"),
        primary_key=True,
    )

    direction: Mapped[str] = mapped_column(String(8), primary_key=True)

    amount_today: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    reset_date: Mapped[str] = mapped_column(String(10), nullable=False)
