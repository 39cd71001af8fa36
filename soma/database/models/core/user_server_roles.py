"""
UserServerRoles Model
=====================

Last-seen role ids per (user, server). Populated whenever a caller observes
the user with fresh role data; read when resolving the best regen role across
every server (e.g. a DM with no role context). Rows older than the configured
age are pruned by maintenance.
"""

from __future__ import annotations

from datetime import datetime
from typing import List

from sqlalchemy import JSON, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from soma.core.database.base import Base, UTCDateTime, utc_now


class UserServerRoles(Base):
    __tablename__ = "user_server_roles"
    __table_args__ = (
        Index("ix_user_server_roles_last_seen", "last_seen"),
    )

    user_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("users.discord_id", ondelete="CASCADE"),
        primary_key=True,
    )

    server_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("servers.discord_id", ondelete="CASCADE"),
        primary_key=True,
    )

    role_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    last_seen: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )
