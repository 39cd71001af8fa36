"""
RewardClaim Model
=================

Permanent record that a user has rewarded a given message. The composite
primary key is the dedupe guard.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from soma.core.database.base import Base, UTCDateTime, utc_now


class RewardClaim(Base):
    __tablename__ = "reward_claims"

    user_id: Mapped[str] = mapped_column(String(32), primary_key=True)

    message_id: Mapped[str] = mapped_column(String(32), primary_key=True)

    claimed_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )
