"""
GlobalConfig Model
==================

Singleton row (``id = "global"``) holding admin overrides of economy policy.

The three base economy fields are nullable: NULL means "no override", and the
resolver falls back to the environment bootstrap value and then to the
hardcoded default. The remaining fields only exist in the database and carry
their defaults directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from soma.core.database.base import Base, UTCDateTime

GLOBAL_CONFIG_ID = "global"


class GlobalConfig(Base):
    __tablename__ = "global_config"

    id: Mapped[str] = mapped_column(String(16), primary_key=True, default=GLOBAL_CONFIG_ID)

    # ========================================================================
    # ENV-SEEDED, DB-OVERRIDABLE
    # ========================================================================

    base_regen_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_balance: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    starting_balance: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # ========================================================================
    # DB-NATIVE
    # ========================================================================

    reward_cooldown_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    max_daily_rewards: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    global_cost_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    max_daily_sent: Mapped[float] = mapped_column(Float, nullable=False, default=1000.0)
    max_daily_received: Mapped[float] = mapped_column(Float, nullable=False, default=2000.0)

    # ========================================================================
    # PROVENANCE
    # ========================================================================

    modified_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    modified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
