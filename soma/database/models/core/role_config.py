"""
RoleConfig Model
================

Per (server, role) economy modifiers. When a user holds several configured
roles the best value of each kind wins; they never multiply together.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Float, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from soma.core.database.base import Base, IdMixin, TimestampMixin


class RoleConfig(Base, IdMixin, TimestampMixin):
    """
    Schema-only model:
    - regen_multiplier: amplifies regeneration (default 1.0)
    - cost_multiplier: discounts/surcharges activation cost (default 1.0)
    - max_balance_override: optional higher cap for holders of this role
    """

    __tablename__ = "role_configs"
    __table_args__ = (
        UniqueConstraint("server_id", "role_id", name="uq_role_configs_server_role"),
    )

    server_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("servers.discord_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    role_id: Mapped[str] = mapped_column(String(32), nullable=False)

    regen_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    cost_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    max_balance_override: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
