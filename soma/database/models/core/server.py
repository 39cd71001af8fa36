"""
Server Model
============

A community (guild) the engine has seen. `config` is a free-form JSON
document merged field-by-field over the defaults by ConfigService, so new
keys can be added without a migration.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from soma.core.database.base import Base, UTCDateTime, utc_now


class Server(Base):
    __tablename__ = "servers"

    discord_id: Mapped[str] = mapped_column(String(32), primary_key=True)

    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    config: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        return f"<Server(discord_id={self.discord_id!r}, name={self.name!r})>"
