"""
TransactionLogService - the append-only ichor ledger
====================================================

Handles:
- Writing one immutable Transaction row per balance-affecting event
- Sensitive metadata filtering (callers sometimes forward raw request bodies)
- History queries, per-user summaries and the earnings leaderboard
- Refund back-reference lookups
- Retention cleanup

Rows are never updated after insert. All methods take the caller's session;
the engine owns the transaction boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import desc, func, or_, select

from soma.core.database.base import utc_now
from soma.core.logging.logger import get_logger
from soma.database.models import EARNED_TYPES, Transaction, TransactionType, User
from soma.modules.shared import constants as C
from soma.modules.shared.base_repository import BaseRepository
from soma.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass
class TypeTotals:
    count: int = 0
    amount_in: float = 0.0
    amount_out: float = 0.0


@dataclass
class TransactionSummary:
    user_id: str
    total_transactions: int = 0
    total_received: float = 0.0
    total_sent: float = 0.0
    by_type: Dict[str, TypeTotals] = field(default_factory=dict)


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    username: Optional[str]
    display_name: Optional[str]
    avatar_hash: Optional[str]
    contribution_count: int
    total_earned: float


class TransactionLogService(BaseService):
    """
    TransactionLogService owns every read and write of the transactions table.

    Business Logic:
    - Amounts are signed: spends and revokes negative, credits positive
    - A transfer is one row from the sender's perspective
    - A refund row points at its spend through `refund_of_id` and the
      `original_transaction_id` metadata key
    """

    def __init__(self, logger: Optional[Logger] = None) -> None:
        super().__init__(logger or get_logger(__name__))
        self._repo = BaseRepository[Transaction](Transaction, self.log)

    # -------------------------------------------------------------------------
    # Core Operations
    # -------------------------------------------------------------------------

    async def record(
        self,
        session: AsyncSession,
        *,
        tx_type: TransactionType,
        amount: float,
        balance_after: Optional[float],
        server_id: Optional[str] = None,
        from_user_id: Optional[str] = None,
        to_user_id: Optional[str] = None,
        bot_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        refund_of_id: Optional[str] = None,
    ) -> Transaction:
        """
        Append a ledger row and flush it so its id is usable immediately.
        """
        tx = self._repo.add(
            session,
            Transaction(
                timestamp=utc_now(),
                server_id=server_id,
                type=TransactionType(tx_type).value,
                from_user_id=from_user_id,
                to_user_id=to_user_id,
                bot_id=bot_id,
                amount=amount,
                balance_after=balance_after,
                meta=dict(metadata or {}),
                refund_of_id=refund_of_id,
            ),
        )
        await session.flush()

        self.log.debug(
            "Created transaction",
            extra={
                "transaction_id": tx.id,
                "transaction_type": tx.type,
                "amount": amount,
                "from_user_id": from_user_id,
                "to_user_id": to_user_id,
            },
        )
        return tx

    # -------------------------------------------------------------------------
    # Query Operations
    # -------------------------------------------------------------------------

    async def get_by_id(self, session: AsyncSession, transaction_id: str) -> Optional[Transaction]:
        return await self._repo.get(session, transaction_id)

    async def find_refund_of(self, session: AsyncSession, transaction_id: str) -> Optional[Transaction]:
        """Existing refund row for a spend, by column or by metadata back-reference."""
        return await self._repo.find_one_where(
            session,
            Transaction.type == TransactionType.REFUND.value,
            or_(
                Transaction.refund_of_id == transaction_id,
                Transaction.meta["original_transaction_id"].as_string() == transaction_id,
            ),
        )

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        server_id: Optional[str] = None,
        limit: int = C.DEFAULT_HISTORY_LIMIT,
    ) -> List[Transaction]:
        """
        Newest-first rows where the user is sender or recipient, optionally
        restricted to one server. `limit` is clamped to [1, MAX_HISTORY_LIMIT].
        """
        limit = max(1, min(int(limit), C.MAX_HISTORY_LIMIT))

        conditions = [or_(Transaction.from_user_id == user_id, Transaction.to_user_id == user_id)]
        if server_id:
            conditions.append(Transaction.server_id == server_id)

        return await self._repo.find_many_where(
            session,
            *conditions,
            order_by=[desc(Transaction.timestamp), desc(Transaction.id)],
            limit=limit,
        )

    async def summary(self, session: AsyncSession, user_id: str) -> TransactionSummary:
        """
        Counts and totals per transaction type for one user.

        Incoming positive amounts count as received; spends, outgoing
        transfers and revokes count as sent.
        """
        stmt = (
            select(
                Transaction.type,
                Transaction.to_user_id,
                func.count().label("count"),
                func.coalesce(func.sum(Transaction.amount), 0.0).label("total"),
            )
            .where(or_(Transaction.from_user_id == user_id, Transaction.to_user_id == user_id))
            .group_by(Transaction.type, Transaction.to_user_id)
        )
        rows = (await session.execute(stmt)).all()

        result = TransactionSummary(user_id=user_id)
        for tx_type, to_user_id, count, total in rows:
            totals = result.by_type.setdefault(tx_type, TypeTotals())
            totals.count += count
            result.total_transactions += count
            total = float(total)

            if to_user_id == user_id and total >= 0:
                totals.amount_in += total
                result.total_received += total
            else:
                totals.amount_out += abs(total)
                result.total_sent += abs(total)

        return result

    async def leaderboard(
        self,
        session: AsyncSession,
        limit: int = C.DEFAULT_LEADERBOARD_LIMIT,
    ) -> List[LeaderboardEntry]:
        """Top recipients of reward, transfer and tip credits."""
        limit = max(1, min(int(limit), C.MAX_LEADERBOARD_LIMIT))
        total = func.sum(Transaction.amount).label("total_earned")

        stmt = (
            select(
                Transaction.to_user_id,
                User.username,
                User.display_name,
                User.avatar_hash,
                func.count().label("contribution_count"),
                total,
            )
            .outerjoin(User, User.discord_id == Transaction.to_user_id)
            .where(
                Transaction.type.in_([t.value for t in EARNED_TYPES]),
                Transaction.to_user_id.is_not(None),
            )
            .group_by(
                Transaction.to_user_id,
                User.username,
                User.display_name,
                User.avatar_hash,
            )
            .order_by(desc(total), Transaction.to_user_id)
            .limit(limit)
        )
        rows = (await session.execute(stmt)).all()

        return [
            LeaderboardEntry(
                rank=index,
                user_id=row.to_user_id,
                username=row.username,
                display_name=row.display_name,
                avatar_hash=row.avatar_hash,
                contribution_count=row.contribution_count,
                total_earned=float(row.total_earned or 0.0),
            )
            for index, row in enumerate(rows, start=1)
        ]

    # -------------------------------------------------------------------------
    # Maintenance Operations
    # -------------------------------------------------------------------------

    async def cleanup_old_transactions(
        self,
        session: AsyncSession,
        retention_days: int,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Delete rows older than the retention period. A retention of 0 or
        less disables pruning.
        """
        if retention_days <= 0:
            return 0

        cutoff = (now or utc_now()) - timedelta(days=retention_days)
        removed = await self._repo.delete_where(session, Transaction.timestamp < cutoff)

        if removed:
            self.log.info(
                "Pruned old transactions",
                extra={"deleted": removed, "retention_days": retention_days},
            )
        return removed
