"""
BalanceService - lazy regeneration and money movement
=====================================================

Purpose
-------
Own every write to the balances table. Regeneration is never scheduled: the
displayed balance is derived on read, and a mutating operation first writes
that derived value back (a checkpoint) under a row lock, then applies its
change and appends a ledger row.

Operations
----------
- read_balance: pure read, nothing persisted
- apply_regen_and_checkpoint: lock, regenerate, persist, reset the regen clock
- deduct: server-effective checkpoint, affordability check, spend row
- add: global checkpoint, signed credit clamped to [0, max], ledger row
- transfer: checkpoint both sides, debit sender, credit receiver (see
  TransferOverflowPolicy), one row from the sender's perspective
- refund: credit back a spend exactly once
- set_balance / reset_all_balances: admin tools

Design Notes
------------
- Session-first; all steps of one operation share the caller's transaction,
  so a raised domain error leaves no partial write once it rolls back
- Rows are locked with SELECT ... FOR UPDATE (no-op on SQLite)
- Amounts are floats; rounding only happens in presentation helpers
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence, Tuple

from sqlalchemy import func, select, update

from soma.core.config import Config
from soma.core.database.base import utc_now
from soma.core.logging.logger import get_logger
from soma.database.models import (
    CREDIT_TYPES,
    Balance,
    TransactionType,
    TransferOverflowPolicy,
)
from soma.modules.shared.base_repository import BaseRepository
from soma.modules.shared.base_service import BaseService
from soma.modules.shared.exceptions import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)
from soma.modules.shared.formulas import calculate_regen_balance
from soma.modules.shared.validators import validate_distinct_users, validate_sufficient_balance

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from soma.modules.config import ConfigService, GlobalEconomyConfig
    from soma.modules.economy import TransactionLogService
    from soma.modules.roles import RoleService


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class BalanceInfo:
    balance: float
    max_balance: float
    base_regen_rate: float
    effective_regen_rate: float
    effective_cost_multiplier: float
    last_regen_at: datetime


@dataclass(frozen=True)
class DeductResult:
    balance_after: float
    transaction_id: str


@dataclass(frozen=True)
class AddResult:
    balance_after: float
    transaction_id: str


@dataclass(frozen=True)
class TransferResult:
    from_balance_after: float
    to_balance_after: float
    transaction_id: str
    amount_debited: float
    amount_credited: float


@dataclass(frozen=True)
class RefundResult:
    refund_transaction_id: str
    amount: float
    balance_after: float


@dataclass(frozen=True)
class EconomyContext:
    """Rate, cap and cost multiplier that apply to one user in one place."""

    regen_rate: float
    max_balance: float
    cost_multiplier: float


# ============================================================================
# BalanceService
# ============================================================================


class BalanceService(BaseService):
    def __init__(
        self,
        config_service: ConfigService,
        role_service: RoleService,
        transaction_log: TransactionLogService,
        overflow_policy: Optional[TransferOverflowPolicy] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        super().__init__(logger or get_logger(__name__))
        self._config = config_service
        self._roles = role_service
        self._ledger = transaction_log
        self.overflow_policy = overflow_policy or TransferOverflowPolicy(
            Config.TRANSFER_OVERFLOW_POLICY
        )
        self._balance_repo = BaseRepository[Balance](Balance, self.log)

    # ========================================================================
    # CONTEXT RESOLUTION
    # ========================================================================

    async def resolve_context(
        self,
        session: AsyncSession,
        user_id: str,
        server_id: Optional[str],
        role_ids: Sequence[str],
        global_config: Optional[GlobalEconomyConfig] = None,
    ) -> EconomyContext:
        """
        With a server, that server's role modifiers apply. Without one, the
        user's best cached regen role applies with the global cap and no
        cost modifier.
        """
        global_config = global_config or await self._config.get_global_config(session)
        base_rate = global_config.base_regen_rate

        if server_id:
            return EconomyContext(
                regen_rate=await self._roles.effective_regen_rate(session, server_id, role_ids, base_rate),
                max_balance=await self._roles.effective_max_balance(
                    session, server_id, role_ids, global_config.max_balance
                ),
                cost_multiplier=await self._roles.effective_cost_multiplier(session, server_id, role_ids),
            )

        global_rate = await self._roles.global_effective_regen_rate(session, user_id, base_rate)
        return EconomyContext(
            regen_rate=global_rate.rate,
            max_balance=global_config.max_balance,
            cost_multiplier=1.0,
        )

    # ========================================================================
    # READS
    # ========================================================================

    async def read_balance(
        self,
        session: AsyncSession,
        user_id: str,
        server_id: Optional[str] = None,
        role_ids: Sequence[str] = (),
    ) -> BalanceInfo:
        """
        Current balance with regeneration applied. Nothing is written.

        A user with no balance row gets the starting balance and defaults.
        """
        global_config = await self._config.get_global_config(session)
        row = await self._balance_repo.get(session, user_id)

        if row is None:
            return BalanceInfo(
                balance=global_config.starting_balance,
                max_balance=global_config.max_balance,
                base_regen_rate=global_config.base_regen_rate,
                effective_regen_rate=global_config.base_regen_rate,
                effective_cost_multiplier=1.0,
                last_regen_at=utc_now(),
            )

        context = await self.resolve_context(session, user_id, server_id, role_ids, global_config)
        current = calculate_regen_balance(
            row.amount, row.last_regen_at, context.regen_rate, context.max_balance
        )

        return BalanceInfo(
            balance=current,
            max_balance=context.max_balance,
            base_regen_rate=global_config.base_regen_rate,
            effective_regen_rate=context.regen_rate,
            effective_cost_multiplier=context.cost_multiplier,
            last_regen_at=row.last_regen_at,
        )

    # ========================================================================
    # CHECKPOINT
    # ========================================================================

    async def _checkpoint(
        self,
        session: AsyncSession,
        user_id: str,
        rate: float,
        max_balance: float,
    ) -> Tuple[Balance, float]:
        row = await self._balance_repo.get_for_update(session, user_id)
        if row is None:
            raise NotFoundError("Balance", user_id)

        previous = row.amount
        current = calculate_regen_balance(row.amount, row.last_regen_at, rate, max_balance)
        row.amount = current
        row.last_regen_at = utc_now()

        if current > previous:
            self.log.debug(
                "Applied regen",
                extra={"user_id": user_id, "regen_amount": current - previous, "new_balance": current},
            )
        return row, current

    async def apply_regen_and_checkpoint(
        self,
        session: AsyncSession,
        user_id: str,
        rate: float,
        max_balance: float,
    ) -> float:
        """
        Lock the balance row, persist the regenerated amount and restart the
        regen clock.

        Raises:
            NotFoundError: The user has no balance row
        """
        _, current = await self._checkpoint(session, user_id, rate, max_balance)
        await session.flush()
        return current

    # ========================================================================
    # MONEY MOVEMENT
    # ========================================================================

    async def deduct(
        self,
        session: AsyncSession,
        user_id: str,
        amount: float,
        server_id: Optional[str],
        role_ids: Sequence[str],
        bot_id: Optional[str],
        message_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> DeductResult:
        """
        Spend ichor on a bot activation.

        Raises:
            ValidationError: amount is not a positive number
            InsufficientBalanceError: regenerated balance is below amount
            NotFoundError: the user has no balance row
        """
        amount = self.validate_positive_amount(amount, "amount")

        context = await self.resolve_context(session, user_id, server_id, role_ids)
        row, current = await self._checkpoint(session, user_id, context.regen_rate, context.max_balance)

        validate_sufficient_balance(required=amount, available=current)

        new_balance = current - amount
        row.amount = new_balance

        metadata: Dict[str, Any] = {}
        if message_id:
            metadata["message_id"] = message_id
        if note:
            metadata["note"] = note

        tx = await self._ledger.record(
            session,
            tx_type=TransactionType.SPEND,
            amount=-amount,
            balance_after=new_balance,
            server_id=server_id,
            from_user_id=user_id,
            bot_id=bot_id,
            metadata=metadata,
        )

        self.log.info(
            "Deducted balance",
            extra={
                "user_id": user_id,
                "amount": amount,
                "balance_after": new_balance,
                "bot_id": bot_id,
                "transaction_id": tx.id,
            },
        )
        return DeductResult(balance_after=new_balance, transaction_id=tx.id)

    async def add(
        self,
        session: AsyncSession,
        user_id: str,
        amount: float,
        server_id: Optional[str],
        tx_type: TransactionType,
        metadata: Optional[Dict[str, Any]] = None,
        from_user_id: Optional[str] = None,
    ) -> AddResult:
        """
        Credit (or, for revoke, debit) a user at the global rate and cap.

        Revokes are stored with a negative amount whatever sign is passed;
        every other type requires a positive amount.

        Raises:
            ValidationError: unsupported type or bad amount
            NotFoundError: the user has no balance row
        """
        tx_type = self._validate_credit_type(tx_type)
        amount = self.validate_positive_amount(abs(amount) if tx_type is TransactionType.REVOKE else amount, "amount")
        signed = -amount if tx_type is TransactionType.REVOKE else amount

        global_config = await self._config.get_global_config(session)
        row, current = await self._checkpoint(
            session, user_id, global_config.base_regen_rate, global_config.max_balance
        )

        new_balance = max(0.0, min(global_config.max_balance, current + signed))
        row.amount = new_balance

        tx = await self._ledger.record(
            session,
            tx_type=tx_type,
            amount=signed,
            balance_after=new_balance,
            server_id=server_id,
            from_user_id=from_user_id,
            to_user_id=user_id,
            metadata=metadata,
        )

        self.log.info(
            "Added balance",
            extra={
                "user_id": user_id,
                "amount": signed,
                "balance_after": new_balance,
                "transaction_type": tx_type.value,
                "transaction_id": tx.id,
            },
        )
        return AddResult(balance_after=new_balance, transaction_id=tx.id)

    async def transfer(
        self,
        session: AsyncSession,
        from_user_id: str,
        to_user_id: str,
        amount: float,
        server_id: Optional[str],
        note: Optional[str] = None,
        tx_type: TransactionType = TransactionType.TRANSFER,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransferResult:
        """
        Move ichor between two users inside the caller's transaction.

        Under CLAMP the receiver is capped and the sender still pays the full
        amount. Under REFUND_OVERFLOW the sender only pays what the receiver
        can hold.

        Raises:
            ValidationError: amount is not a positive number
            InvalidOperationError: self-transfer, or nothing fits under REFUND_OVERFLOW
            InsufficientBalanceError: sender cannot cover amount
            NotFoundError: either side has no balance row
        """
        amount = self.validate_positive_amount(amount, "amount")
        validate_distinct_users(from_user_id, to_user_id, "transfer")

        global_config = await self._config.get_global_config(session)
        rate, cap = global_config.base_regen_rate, global_config.max_balance

        # Lock both rows in a stable order before touching either
        for user_id in sorted((from_user_id, to_user_id)):
            if await self._balance_repo.get_for_update(session, user_id) is None:
                raise NotFoundError("Balance", user_id)

        sender, sender_balance = await self._checkpoint(session, from_user_id, rate, cap)
        validate_sufficient_balance(required=amount, available=sender_balance)

        receiver, receiver_balance = await self._checkpoint(session, to_user_id, rate, cap)

        headroom = max(0.0, cap - receiver_balance)
        if self.overflow_policy is TransferOverflowPolicy.REFUND_OVERFLOW:
            credited = min(amount, headroom)
            if credited <= 0:
                raise InvalidOperationError("transfer", "receiver is already at max balance")
            debited = credited
        else:
            credited = min(amount, headroom)
            debited = amount

        sender.amount = sender_balance - debited
        receiver.amount = receiver_balance + credited

        tx_metadata: Dict[str, Any] = dict(metadata or {})
        if note:
            tx_metadata["note"] = note
        if credited < amount:
            tx_metadata["overflow"] = amount - credited
            tx_metadata["overflow_policy"] = self.overflow_policy.value

        tx = await self._ledger.record(
            session,
            tx_type=tx_type,
            amount=debited,
            balance_after=sender.amount,
            server_id=server_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            metadata=tx_metadata,
        )

        self.log.info(
            "Transferred balance",
            extra={
                "from_user_id": from_user_id,
                "to_user_id": to_user_id,
                "amount": debited,
                "credited": credited,
                "from_balance_after": sender.amount,
                "to_balance_after": receiver.amount,
                "transaction_id": tx.id,
            },
        )
        return TransferResult(
            from_balance_after=sender.amount,
            to_balance_after=receiver.amount,
            transaction_id=tx.id,
            amount_debited=debited,
            amount_credited=credited,
        )

    async def refund(
        self,
        session: AsyncSession,
        transaction_id: str,
        reason: Optional[str] = None,
    ) -> RefundResult:
        """
        Return the ichor of a spend to its payer, once.

        Raises:
            NotFoundError: no such transaction
            InvalidOperationError: the transaction is not a spend
            ConflictError: the spend was already refunded
        """
        original = await self._ledger.get_by_id(session, transaction_id)
        if original is None:
            raise NotFoundError("Transaction", transaction_id)
        if original.type != TransactionType.SPEND.value:
            raise InvalidOperationError(
                "refund",
                f"cannot refund transaction of type '{original.type}'; only spends can be refunded",
            )
        if await self._ledger.find_refund_of(session, transaction_id) is not None:
            raise ConflictError("transaction", f"transaction {transaction_id} has already been refunded")

        payer = original.from_user_id
        if payer is None:
            raise InvalidOperationError("refund", "spend has no payer")

        refund_amount = abs(original.amount)
        global_config = await self._config.get_global_config(session)
        row, current = await self._checkpoint(
            session, payer, global_config.base_regen_rate, global_config.max_balance
        )
        new_balance = min(global_config.max_balance, current + refund_amount)
        row.amount = new_balance

        tx = await self._ledger.record(
            session,
            tx_type=TransactionType.REFUND,
            amount=refund_amount,
            balance_after=new_balance,
            server_id=original.server_id,
            to_user_id=payer,
            bot_id=original.bot_id,
            metadata={
                "original_transaction_id": transaction_id,
                "reason": reason or "inference_failed",
            },
            refund_of_id=transaction_id,
        )

        self.log.info(
            "Transaction refunded",
            extra={
                "original_transaction_id": transaction_id,
                "refund_transaction_id": tx.id,
                "user_id": payer,
                "amount": refund_amount,
                "reason": reason,
            },
        )
        return RefundResult(refund_transaction_id=tx.id, amount=refund_amount, balance_after=new_balance)

    # ========================================================================
    # ADMIN
    # ========================================================================

    async def set_balance(self, session: AsyncSession, user_id: str, amount: float) -> float:
        """
        Overwrite a user's stored balance and restart the regen clock.
        No ledger row is written.
        """
        amount = self.validate_non_negative_amount(amount, "amount")

        row = await self._balance_repo.get_for_update(session, user_id)
        if row is None:
            raise NotFoundError("Balance", user_id)

        row.amount = amount
        row.last_regen_at = utc_now()
        await session.flush()

        self.log_operation("set_balance", user_id=user_id, balance=amount)
        return amount

    async def reset_all_balances(self, session: AsyncSession, amount: float) -> int:
        """Set every balance to `amount`; returns the number of users affected."""
        amount = self.validate_non_negative_amount(amount, "amount")

        before = (
            await session.execute(select(func.count(), func.coalesce(func.sum(Balance.amount), 0.0)))
        ).one()
        result = await session.execute(
            update(Balance)
            .values(amount=amount, last_regen_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        affected = result.rowcount or 0

        self.log.warning(
            "All balances reset",
            extra={
                "operation": "reset_all_balances",
                "users_affected": affected,
                "new_amount": amount,
                "total_before": float(before[1]),
            },
        )
        return affected

    @staticmethod
    def _validate_credit_type(tx_type: Any) -> TransactionType:
        try:
            resolved = TransactionType(tx_type)
        except ValueError:
            raise ValidationError("type", f"unknown transaction type {tx_type!r}") from None
        if resolved not in CREDIT_TYPES:
            raise ValidationError(
                "type",
                f"'{resolved.value}' cannot be used with add; "
                f"allowed: {', '.join(sorted(t.value for t in CREDIT_TYPES))}",
            )
        return resolved
