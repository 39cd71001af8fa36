"""
User Model
==========

Identity row for a chat-platform user, keyed by the platform's stable id.
Display metadata is a cache refreshed whenever the user is observed.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from soma.core.database.base import Base, UTCDateTime, utc_now

if TYPE_CHECKING:
    from .balance import Balance


class User(Base):
    """
    Economy participant.

    Created on first observation together with a Balance row at the
    starting balance; never deleted in normal operation.
    """

    __tablename__ = "users"

    discord_id: Mapped[str] = mapped_column(String(32), primary_key=True)

    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    avatar_hash: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )
    last_seen: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )

    balance: Mapped[Optional["Balance"]] = relationship(
        back_populates="user",
        uselist=False,
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<User(discord_id={self.discord_id!r}, username={self.username!r})>"
