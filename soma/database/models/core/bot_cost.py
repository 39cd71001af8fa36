"""
BotCost Model
=============

Base activation cost for a metered bot. ``server_id`` NULL is the global
price; a row with a server id overrides it for that server.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import CheckConstraint, Float, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from soma.core.database.base import Base, IdMixin, TimestampMixin


class BotCost(Base, IdMixin, TimestampMixin):
    __tablename__ = "bot_costs"
    __table_args__ = (
        UniqueConstraint("bot_id", "server_id", name="uq_bot_costs_bot_server"),
        CheckConstraint("base_cost >= 0", name="ck_bot_costs_non_negative"),
        Index("ix_bot_costs_bot_id", "bot_id"),
    )

    bot_id: Mapped[str] = mapped_column(String(32), nullable=False)

    server_id: Mapped[Optional[str]] = mapped_column(
        String(32),
        ForeignKey("servers.discord_id", ondelete="CASCADE"),
        nullable=True,
    )

    base_cost: Mapped[float] = mapped_column(Float, nullable=False)

    description: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
