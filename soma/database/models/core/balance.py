"""
Balance Model
=============

Authoritative stored ichor amount and the timestamp regeneration is measured
from. The displayed balance is derived (stored + elapsed regen, capped) and
only written back as a checkpoint by a mutating operation.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from soma.core.database.base import Base, UTCDateTime, utc_now

if TYPE_CHECKING:
    from .user import User


class Balance(Base):
    """One row per user; `amount` is never negative."""

    __tablename__ = "balances"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_balances_amount_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("users.discord_id", ondelete="CASCADE"),
        primary_key=True,
    )

    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    last_regen_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )

    user: Mapped["User"] = relationship(back_populates="balance", lazy="raise")

    def __repr__(self) -> str:
        return (
            f"<Balance(user_id={self.user_id!r}, amount={self.amount}, "
            f"last_regen_at={self.last_regen_at})>"
        )
