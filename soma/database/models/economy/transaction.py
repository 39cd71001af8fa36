"""
Transaction Model
=================

Append-only ledger row for every balance-affecting event.

Pure schema only. Rows are never updated after insert and are removed only by
retention cleanup. ``amount`` is signed: negative for spends and revokes,
positive for credits. Transfers are a single row from the sender's
perspective, so ``balance_after`` is the sender's balance.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from soma.core.database.base import Base, UTCDateTime, utc_now


def new_transaction_id() -> str:
    return str(uuid.uuid4())


class Transaction(Base):
    __tablename__ = "transactions"

    # ========================================================================
    # TABLE CONFIGURATION
    # ========================================================================

    __table_args__ = (
        Index("ix_transactions_from_user_ts", "from_user_id", "timestamp"),
        Index("ix_transactions_to_user_ts", "to_user_id", "timestamp"),
        Index("ix_transactions_server_ts", "server_id", "timestamp"),
        Index("ix_transactions_type", "type"),
        Index("ix_transactions_timestamp", "timestamp"),
    )

    # ========================================================================
    # PRIMARY KEY
    # ========================================================================

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_transaction_id)

    # ========================================================================
    # EVENT
    # ========================================================================

    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )

    server_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    type: Mapped[str] = mapped_column(String(16), nullable=False)

    from_user_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    to_user_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    bot_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    amount: Mapped[float] = mapped_column(Float, nullable=False)

    balance_after: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # `metadata` is reserved on declarative classes
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    refund_of_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        unique=True,
        doc="Id of the spend this row refunds; unique so a spend is refunded once",
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id!r}, type={self.type!r}, amount={self.amount}, "
            f"from={self.from_user_id!r}, to={self.to_user_id!r})>"
        )
