"""
EconomyEngine - inbound facade for the ichor economy

Purpose
-------
The one object callers (chat command layer, HTTP routes, jobs) talk to. Every
public method:

1. opens a LogContext carrying user, server and operation
2. runs its work through DatabaseRetryPolicy, each attempt inside a fresh
   DatabaseService.get_transaction() (or get_session() for pure reads)
3. lets domain exceptions through unchanged, and wraps storage failures that
   survive the retries in DatabaseError

Services never open transactions themselves. Most calls are one
transaction; check_and_deduct and give_reward split theirs into steps that
each commit or roll back whole.

Usage
-----
>>> engine = EconomyEngine()
>>> result = await engine.check_and_deduct("1234", "5678", "bot-1", role_ids=["42"])
>>> if not result.allowed:
...     print(result.minutes_to_afford)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from soma.core.database.retry_policy import DatabaseRetryPolicy
from soma.core.database.service import DatabaseService
from soma.core.exceptions import DatabaseError
from soma.core.logging.logger import LogContext, get_logger
from soma.database.models import Transaction, TransactionType, TransferOverflowPolicy, User
from soma.modules.admin import AdminPolicy
from soma.modules.balance import AddResult, BalanceInfo, BalanceService, DeductResult, RefundResult, TransferResult
from soma.modules.config import ConfigService, GlobalEconomyConfig, ServerConfig
from soma.modules.costs import BotCostEntry, BotCostQuote, CheaperAlternative, CostService
from soma.modules.economy import LeaderboardEntry, TransactionLogService, TransactionSummary
from soma.modules.limits import DailyLimitService, DailyLimitStatus, LimitCheck
from soma.modules.maintenance import MaintenanceService, MaintenanceSettings
from soma.modules.rewards import RewardService, RewardStatus
from soma.modules.roles import RoleService
from soma.modules.shared import constants as C
from soma.modules.shared.base_service import BaseService
from soma.modules.shared.exceptions import (
    ConflictError,
    DailyLimitExceededError,
    InsufficientBalanceError,
    InvalidOperationError,
)
from soma.modules.shared.formulas import minutes_to_afford, round_amount
from soma.modules.shared.validators import validate_distinct_users
from soma.modules.users import UserProfile, UserService

logger = get_logger(__name__)

T = TypeVar("T")

validate_id = BaseService.validate_id


@dataclass(frozen=True)
class ActivationResult:
    """Outcome of a metered bot activation. Denials are results, not errors."""

    allowed: bool
    cost: float
    balance_after: Optional[float] = None
    transaction_id: Optional[str] = None
    current_balance: Optional[float] = None
    regen_rate: Optional[float] = None
    minutes_to_afford: Optional[int] = None
    cheaper_alternatives: List[CheaperAlternative] = field(default_factory=list)


class EconomyEngine:
    def __init__(
        self,
        *,
        config_service: Optional[ConfigService] = None,
        role_service: Optional[RoleService] = None,
        transaction_log: Optional[TransactionLogService] = None,
        overflow_policy: Optional[TransferOverflowPolicy] = None,
        admin_policy: Optional[AdminPolicy] = None,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
    ) -> None:
        self.config = config_service or ConfigService()
        self.roles = role_service or RoleService()
        self.ledger = transaction_log or TransactionLogService()
        self.users = UserService(self.config)
        self.balances = BalanceService(self.config, self.roles, self.ledger, overflow_policy)
        self.costs = CostService(self.config, self.roles)
        self.limits = DailyLimitService(self.config)
        self.rewards = RewardService(self.config)
        self.admin = admin_policy or AdminPolicy.from_config(self.roles)
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()

    def maintenance(self, settings: Optional[MaintenanceSettings] = None) -> MaintenanceService:
        return MaintenanceService(self.ledger, self.limits, self.rewards, self.roles, settings)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def _run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        user_id: Optional[str] = None,
        server_id: Optional[str] = None,
        read_only: bool = False,
    ) -> T:
        async def attempt() -> T:
            if read_only:
                async with DatabaseService.get_session() as session:
                    return await work(session)
            async with DatabaseService.get_transaction() as session:
                return await work(session)

        async with LogContext(user_id=user_id, server_id=server_id, component="economy", operation=operation):
            try:
                return await self._retry.execute(
                    attempt,
                    operation_name=f"economy.{operation}",
                    context={"user_id": user_id, "server_id": server_id},
                )
            except SQLAlchemyError as exc:
                raise DatabaseError(operation, exc) from exc

    async def _require_admin(
        self,
        session: AsyncSession,
        actor: Optional[str],
        action: str,
        actor_role_ids: Sequence[str],
    ) -> None:
        await self.admin.require(session, actor, action, actor_role_ids)

    async def _ensure_parties(
        self,
        session: AsyncSession,
        user_ids: Sequence[str],
        server_id: Optional[str],
    ) -> None:
        for user_id in user_ids:
            await self.users.get_or_create_user(session, user_id)
        if server_id:
            await self.config.ensure_server(session, server_id)

    # ========================================================================
    # IDENTITY
    # ========================================================================

    async def get_or_create_user(
        self,
        user_id: str,
        profile: Optional[UserProfile | Mapping[str, Any]] = None,
    ) -> User:
        user_id = validate_id(user_id, "user_id")
        if profile is not None and not isinstance(profile, UserProfile):
            profile = UserProfile.from_mapping(profile)

        return await self._run(
            "get_or_create_user",
            lambda s: self.users.get_or_create_user(s, user_id, profile),
            user_id=user_id,
        )

    async def get_or_create_server(self, server_id: str, name: Optional[str] = None) -> Any:
        server_id = validate_id(server_id, "server_id")
        return await self._run(
            "get_or_create_server",
            lambda s: self.users.get_or_create_server(s, server_id, name),
            server_id=server_id,
        )

    async def observe_user_roles(self, user_id: str, server_id: str, role_ids: Sequence[str]) -> None:
        """Remember the roles a user currently holds in a server."""
        user_id = validate_id(user_id, "user_id")
        server_id = validate_id(server_id, "server_id")

        async def work(session: AsyncSession) -> None:
            await self._ensure_parties(session, [user_id], server_id)
            await self.roles.update_user_roles(session, user_id, server_id, role_ids)

        await self._run("observe_user_roles", work, user_id=user_id, server_id=server_id)

    # ========================================================================
    # BALANCE
    # ========================================================================

    async def read_balance(
        self,
        user_id: str,
        server_id: Optional[str] = None,
        role_ids: Sequence[str] = (),
    ) -> BalanceInfo:
        user_id = validate_id(user_id, "user_id")
        return await self._run(
            "read_balance",
            lambda s: self.balances.read_balance(s, user_id, server_id, role_ids),
            user_id=user_id,
            server_id=server_id,
            read_only=True,
        )

    async def set_balance(
        self,
        actor: str,
        user_id: str,
        amount: float,
        actor_role_ids: Sequence[str] = (),
    ) -> float:
        user_id = validate_id(user_id, "user_id")
        amount = self.balances.validate_non_negative_amount(amount, "amount")

        async def work(session: AsyncSession) -> float:
            await self._require_admin(session, actor, "set_balance", actor_role_ids)
            await self.users.get_or_create_user(session, user_id)
            return await self.balances.set_balance(session, user_id, amount)

        return await self._run("set_balance", work, user_id=user_id)

    async def reset_all_balances(
        self,
        actor: str,
        amount: float,
        actor_role_ids: Sequence[str] = (),
    ) -> int:
        amount = self.balances.validate_non_negative_amount(amount, "amount")

        async def work(session: AsyncSession) -> int:
            await self._require_admin(session, actor, "reset_all_balances", actor_role_ids)
            return await self.balances.reset_all_balances(session, amount)

        return await self._run("reset_all_balances", work, user_id=actor)

    # ========================================================================
    # MONEY MOVEMENT
    # ========================================================================

    async def deduct(
        self,
        user_id: str,
        amount: float,
        server_id: Optional[str] = None,
        role_ids: Sequence[str] = (),
        bot_id: Optional[str] = None,
        message_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> DeductResult:
        user_id = validate_id(user_id, "user_id")
        amount = self.balances.validate_positive_amount(amount, "amount")

        async def work(session: AsyncSession) -> DeductResult:
            await self._ensure_parties(session, [user_id], server_id)
            return await self.balances.deduct(
                session, user_id, amount, server_id, role_ids, bot_id, message_id, note
            )

        return await self._run("deduct", work, user_id=user_id, server_id=server_id)

    async def add(
        self,
        user_id: str,
        amount: float,
        tx_type: TransactionType,
        server_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        from_user_id: Optional[str] = None,
    ) -> AddResult:
        user_id = validate_id(user_id, "user_id")

        async def work(session: AsyncSession) -> AddResult:
            await self._ensure_parties(session, [user_id], server_id)
            return await self.balances.add(
                session, user_id, amount, server_id, tx_type, metadata, from_user_id
            )

        return await self._run("add", work, user_id=user_id, server_id=server_id)

    async def _admin_adjust(
        self,
        operation: str,
        tx_type: TransactionType,
        actor: str,
        user_id: str,
        amount: float,
        server_id: Optional[str],
        reason: Optional[str],
        actor_role_ids: Sequence[str],
    ) -> AddResult:
        user_id = validate_id(user_id, "user_id")
        amount = self.balances.validate_positive_amount(amount, "amount")
        metadata: Dict[str, Any] = {"admin_id": actor}
        if reason:
            metadata["reason"] = reason

        async def work(session: AsyncSession) -> AddResult:
            await self._require_admin(session, actor, operation, actor_role_ids)
            await self._ensure_parties(session, [user_id], server_id)
            return await self.balances.add(
                session, user_id, amount, server_id, tx_type, metadata, from_user_id=actor
            )

        return await self._run(operation, work, user_id=user_id, server_id=server_id)

    async def grant(
        self,
        actor: str,
        user_id: str,
        amount: float,
        server_id: Optional[str] = None,
        reason: Optional[str] = None,
        actor_role_ids: Sequence[str] = (),
    ) -> AddResult:
        return await self._admin_adjust(
            "grant", TransactionType.GRANT, actor, user_id, amount, server_id, reason, actor_role_ids
        )

    async def revoke(
        self,
        actor: str,
        user_id: str,
        amount: float,
        server_id: Optional[str] = None,
        reason: Optional[str] = None,
        actor_role_ids: Sequence[str] = (),
    ) -> AddResult:
        return await self._admin_adjust(
            "revoke", TransactionType.REVOKE, actor, user_id, amount, server_id, reason, actor_role_ids
        )

    async def _limited_transfer(
        self,
        session: AsyncSession,
        from_user_id: str,
        to_user_id: str,
        amount: float,
        server_id: Optional[str],
        tx_type: TransactionType,
        note: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransferResult:
        await self._ensure_parties(session, [from_user_id, to_user_id], server_id)

        check = await self.limits.check(session, from_user_id, to_user_id, amount)
        if not check.allowed:
            raise DailyLimitExceededError(check.reason or "limit", check.remaining or 0.0)

        result = await self.balances.transfer(
            session, from_user_id, to_user_id, amount, server_id, note, tx_type, metadata
        )
        await self.limits.record(session, from_user_id, to_user_id, result.amount_debited)
        return result

    async def transfer(
        self,
        from_user_id: str,
        to_user_id: str,
        amount: float,
        server_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TransferResult:
        """
        Move ichor between users, enforcing daily send/receive caps.

        Raises:
            InvalidOperationError: self-transfer
            DailyLimitExceededError: either side is over today's cap
            InsufficientBalanceError: the sender cannot cover amount
        """
        from_user_id = validate_id(from_user_id, "from_user_id")
        to_user_id = validate_id(to_user_id, "to_user_id")
        amount = self.balances.validate_positive_amount(amount, "amount")
        validate_distinct_users(from_user_id, to_user_id, "transfer")

        return await self._run(
            "transfer",
            lambda s: self._limited_transfer(
                s, from_user_id, to_user_id, amount, server_id, TransactionType.TRANSFER, note
            ),
            user_id=from_user_id,
            server_id=server_id,
        )

    async def refund(self, transaction_id: str, reason: Optional[str] = None) -> RefundResult:
        """
        Raises:
            NotFoundError / InvalidOperationError / ConflictError
        """
        transaction_id = validate_id(transaction_id, "transaction_id")
        try:
            return await self._run(
                "refund",
                lambda s: self.balances.refund(s, transaction_id, reason),
            )
        except DatabaseError as exc:
            # Lost a race with a concurrent refund of the same spend
            if isinstance(exc.original_error, IntegrityError):
                raise ConflictError(
                    "transaction", f"transaction {transaction_id} has already been refunded"
                ) from exc
            raise

    # ========================================================================
    # ACTIVATION
    # ========================================================================

    async def check_and_deduct(
        self,
        user_id: str,
        server_id: str,
        bot_id: str,
        role_ids: Sequence[str] = (),
        message_id: Optional[str] = None,
    ) -> ActivationResult:
        """
        Price a bot activation and charge for it if affordable.

        An unaffordable activation is reported with allowed=False along with
        how long regeneration needs to cover it and any cheaper bots.

        Raises:
            BotNotConfiguredError: the bot has no cost in this server or globally
        """
        user_id = validate_id(user_id, "user_id")
        server_id = validate_id(server_id, "server_id")
        bot_id = validate_id(bot_id, "bot_id")

        async def register(session: AsyncSession) -> None:
            await self._ensure_parties(session, [user_id], server_id)

        async def work(session: AsyncSession) -> ActivationResult:
            quote = await self.costs.get_bot_cost(session, bot_id, server_id, role_ids)

            if quote.cost <= 0:
                return ActivationResult(allowed=True, cost=0.0)

            result = await self.balances.deduct(
                session, user_id, quote.cost, server_id, role_ids, bot_id, message_id
            )
            logger.info(
                "Balance deducted, activation allowed",
                extra={
                    "user_id": user_id,
                    "bot_id": bot_id,
                    "cost": quote.cost,
                    "balance_after": result.balance_after,
                    "transaction_id": result.transaction_id,
                },
            )
            return ActivationResult(
                allowed=True,
                cost=quote.cost,
                balance_after=round_amount(result.balance_after),
                transaction_id=result.transaction_id,
            )

        await self._run("check_and_deduct", register, user_id=user_id, server_id=server_id)
        try:
            return await self._run("check_and_deduct", work, user_id=user_id, server_id=server_id)
        except InsufficientBalanceError as exc:
            # The charge transaction has rolled back; the stored balance and
            # regen clock are untouched.
            denied = exc

        async def explain(session: AsyncSession) -> ActivationResult:
            context = await self.balances.resolve_context(session, user_id, server_id, role_ids)
            alternatives = await self.costs.cheaper_alternatives(session, bot_id, server_id, denied.required)
            return ActivationResult(
                allowed=False,
                cost=denied.required,
                current_balance=round_amount(denied.available),
                regen_rate=context.regen_rate,
                minutes_to_afford=minutes_to_afford(denied.deficit, context.regen_rate),
                cheaper_alternatives=alternatives,
            )

        result = await self._run(
            "check_and_deduct", explain, user_id=user_id, server_id=server_id, read_only=True
        )
        logger.info(
            "Insufficient balance, activation denied",
            extra={"user_id": user_id, "bot_id": bot_id, "cost": result.cost, "available": denied.available},
        )
        return result

    # ========================================================================
    # BOT COSTS
    # ========================================================================

    async def get_bot_cost(
        self,
        bot_id: str,
        server_id: Optional[str] = None,
        role_ids: Sequence[str] = (),
    ) -> BotCostQuote:
        bot_id = validate_id(bot_id, "bot_id")
        return await self._run(
            "get_bot_cost",
            lambda s: self.costs.get_bot_cost(s, bot_id, server_id, role_ids),
            server_id=server_id,
            read_only=True,
        )

    async def set_bot_cost(
        self,
        actor: str,
        bot_id: str,
        cost: float,
        server_id: Optional[str] = None,
        description: Optional[str] = None,
        actor_role_ids: Sequence[str] = (),
    ) -> Optional[float]:
        async def work(session: AsyncSession) -> Optional[float]:
            await self._require_admin(session, actor, "set_bot_cost", actor_role_ids)
            if server_id:
                await self.config.ensure_server(session, server_id)
            return await self.costs.set_bot_cost(session, bot_id, server_id, cost, description)

        return await self._run("set_bot_cost", work, user_id=actor, server_id=server_id)

    async def list_bot_costs(self, server_id: Optional[str] = None) -> List[BotCostEntry]:
        return await self._run(
            "list_bot_costs",
            lambda s: self.costs.list_bot_costs(s, server_id),
            server_id=server_id,
            read_only=True,
        )

    async def cheaper_alternatives(
        self,
        bot_id: str,
        server_id: Optional[str],
        current_cost: float,
    ) -> List[CheaperAlternative]:
        return await self._run(
            "cheaper_alternatives",
            lambda s: self.costs.cheaper_alternatives(s, bot_id, server_id, current_cost),
            server_id=server_id,
            read_only=True,
        )

    async def get_bot_description(self, bot_id: str, server_id: Optional[str] = None) -> Optional[str]:
        return await self._run(
            "get_bot_description",
            lambda s: self.costs.get_bot_description(s, bot_id, server_id),
            server_id=server_id,
            read_only=True,
        )

    # ========================================================================
    # CONFIG (ADMIN)
    # ========================================================================

    async def set_role_config(
        self,
        actor: str,
        server_id: str,
        role_id: str,
        regen_multiplier: Optional[float] = None,
        cost_multiplier: Optional[float] = None,
        max_balance_override: Optional[float] = None,
        actor_role_ids: Sequence[str] = (),
    ) -> Any:
        server_id = validate_id(server_id, "server_id")
        role_id = validate_id(role_id, "role_id")

        async def work(session: AsyncSession) -> Any:
            await self._require_admin(session, actor, "set_role_config", actor_role_ids)
            await self.config.ensure_server(session, server_id)
            return await self.roles.set_role_config(
                session, server_id, role_id, regen_multiplier, cost_multiplier, max_balance_override
            )

        return await self._run("set_role_config", work, user_id=actor, server_id=server_id)

    async def get_global_config(self) -> GlobalEconomyConfig:
        return await self._run("get_global_config", self.config.get_global_config, read_only=True)

    async def update_global_config(
        self,
        actor: str,
        updates: Mapping[str, Any],
        actor_role_ids: Sequence[str] = (),
    ) -> GlobalEconomyConfig:
        cleaned = self.config.validate_global_updates(updates)

        async def work(session: AsyncSession) -> GlobalEconomyConfig:
            await self._require_admin(session, actor, "update_global_config", actor_role_ids)
            return await self.config.update_global_config(session, cleaned, actor)

        try:
            return await self._run("update_global_config", work, user_id=actor)
        finally:
            # A rolled-back update must not leave a resolved value cached
            self.config.cache.invalidate()

    async def get_server_config(self, server_id: str) -> ServerConfig:
        server_id = validate_id(server_id, "server_id")
        return await self._run(
            "get_server_config",
            lambda s: self.config.get_or_create_server_config(s, server_id),
            server_id=server_id,
        )

    async def update_server_config(
        self,
        actor: str,
        server_id: str,
        updates: Mapping[str, Any],
        actor_role_ids: Sequence[str] = (),
    ) -> ServerConfig:
        server_id = validate_id(server_id, "server_id")
        cleaned = self.config.validate_server_updates(updates)

        async def work(session: AsyncSession) -> ServerConfig:
            await self._require_admin(session, actor, "update_server_config", actor_role_ids)
            return await self.config.update_server_config(session, server_id, cleaned, actor)

        return await self._run("update_server_config", work, user_id=actor, server_id=server_id)

    async def reset_server_config(
        self,
        actor: str,
        server_id: str,
        actor_role_ids: Sequence[str] = (),
    ) -> ServerConfig:
        server_id = validate_id(server_id, "server_id")

        async def work(session: AsyncSession) -> ServerConfig:
            await self._require_admin(session, actor, "reset_server_config", actor_role_ids)
            return await self.config.reset_server_config(session, server_id, actor)

        return await self._run("reset_server_config", work, user_id=actor, server_id=server_id)

    # ========================================================================
    # LIMITS AND REWARDS
    # ========================================================================

    async def daily_limit_status(self, user_id: str) -> DailyLimitStatus:
        user_id = validate_id(user_id, "user_id")
        return await self._run(
            "daily_limit_status",
            lambda s: self.limits.status(s, user_id),
            user_id=user_id,
            read_only=True,
        )

    async def check_daily_limit(self, sender_id: str, receiver_id: str, amount: float) -> LimitCheck:
        sender_id = validate_id(sender_id, "sender_id")
        receiver_id = validate_id(receiver_id, "receiver_id")
        amount = self.balances.validate_positive_amount(amount, "amount")
        return await self._run(
            "check_daily_limit",
            lambda s: self.limits.check(s, sender_id, receiver_id, amount),
            user_id=sender_id,
            read_only=True,
        )

    async def record_daily_transfer(self, sender_id: str, receiver_id: str, amount: float) -> None:
        sender_id = validate_id(sender_id, "sender_id")
        receiver_id = validate_id(receiver_id, "receiver_id")
        amount = self.balances.validate_positive_amount(amount, "amount")

        async def work(session: AsyncSession) -> None:
            await self._ensure_parties(session, [sender_id, receiver_id], None)
            await self.limits.record(session, sender_id, receiver_id, amount)

        await self._run("record_daily_transfer", work, user_id=sender_id)

    async def reward_status(self, user_id: str) -> RewardStatus:
        user_id = validate_id(user_id, "user_id")
        return await self._run(
            "reward_status",
            lambda s: self.rewards.status(s, user_id),
            user_id=user_id,
            read_only=True,
        )

    async def record_reward_claim(self, user_id: str, message_id: str) -> bool:
        user_id = validate_id(user_id, "user_id")
        message_id = validate_id(message_id, "message_id")
        return await self._run(
            "record_reward_claim",
            lambda s: self.rewards.record_claim(s, user_id, message_id),
            user_id=user_id,
        )

    async def give_reward(
        self,
        reactor_id: str,
        recipient_id: str,
        message_id: str,
        server_id: str,
    ) -> AddResult:
        """
        Free reaction reward: the server's reward_amount is minted for the
        message author. The reactor pays nothing but is rate limited.

        The gate, the per-message claim and the reactor's reward counter
        commit together while the reactor's user row is locked, so two
        concurrent rewards cannot both pass the gate. The credit follows in
        its own transaction.

        Raises:
            InvalidOperationError: rewarding your own message
            RewardUnavailableError: daily cap reached or cooldown running
            ConflictError: this reactor already rewarded this message
        """
        reactor_id = validate_id(reactor_id, "reactor_id")
        recipient_id = validate_id(recipient_id, "recipient_id")
        message_id = validate_id(message_id, "message_id")
        server_id = validate_id(server_id, "server_id")
        if reactor_id == recipient_id:
            raise InvalidOperationError("reward", "cannot reward your own message")

        async def claim(session: AsyncSession) -> None:
            await self._ensure_parties(session, [reactor_id, recipient_id], server_id)
            await DatabaseService.get_locked_entity(session, User, reactor_id)
            await self.rewards.ensure_can_reward(session, reactor_id)
            if not await self.rewards.record_claim(session, reactor_id, message_id):
                raise ConflictError("reward_claim", f"message {message_id} was already rewarded by this user")
            await self.rewards.record_reward(session, reactor_id)

        async def credit(session: AsyncSession) -> AddResult:
            server_config = await self.config.get_or_create_server_config(session, server_id)
            return await self.balances.add(
                session,
                recipient_id,
                server_config.reward_amount,
                server_id,
                TransactionType.REWARD,
                metadata={"message_id": message_id},
                from_user_id=reactor_id,
            )

        await self._run("give_reward.claim", claim, user_id=reactor_id, server_id=server_id)
        return await self._run("give_reward.credit", credit, user_id=reactor_id, server_id=server_id)

    async def give_tip(
        self,
        tipper_id: str,
        recipient_id: str,
        server_id: str,
        role_ids: Sequence[str] = (),
        message_id: Optional[str] = None,
    ) -> TransferResult:
        """
        Paid reaction tip: the server's tip_amount moves from tipper to
        recipient under the daily transfer caps.

        Raises:
            InvalidOperationError: tipping yourself
            DailyLimitExceededError: either side is over today's cap
            InsufficientBalanceError: the tipper cannot cover the tip
        """
        tipper_id = validate_id(tipper_id, "tipper_id")
        recipient_id = validate_id(recipient_id, "recipient_id")
        server_id = validate_id(server_id, "server_id")
        validate_distinct_users(tipper_id, recipient_id, "tip")

        async def work(session: AsyncSession) -> TransferResult:
            await self._ensure_parties(session, [tipper_id, recipient_id], server_id)
            if role_ids:
                await self.roles.update_user_roles(session, tipper_id, server_id, role_ids)

            server_config = await self.config.get_or_create_server_config(session, server_id)
            metadata = {"message_id": message_id} if message_id else None
            return await self._limited_transfer(
                session,
                tipper_id,
                recipient_id,
                server_config.tip_amount,
                server_id,
                TransactionType.TIP,
                metadata=metadata,
            )

        return await self._run("give_tip", work, user_id=tipper_id, server_id=server_id)

    # ========================================================================
    # LEDGER QUERIES
    # ========================================================================

    async def list_transactions(
        self,
        user_id: str,
        server_id: Optional[str] = None,
        limit: int = C.DEFAULT_HISTORY_LIMIT,
    ) -> List[Transaction]:
        user_id = validate_id(user_id, "user_id")
        return await self._run(
            "list_transactions",
            lambda s: self.ledger.list_for_user(s, user_id, server_id, limit),
            user_id=user_id,
            server_id=server_id,
            read_only=True,
        )

    async def get_transaction_by_id(self, transaction_id: str) -> Optional[Transaction]:
        transaction_id = validate_id(transaction_id, "transaction_id")
        return await self._run(
            "get_transaction_by_id",
            lambda s: self.ledger.get_by_id(s, transaction_id),
            read_only=True,
        )

    async def transaction_summary(self, user_id: str) -> TransactionSummary:
        user_id = validate_id(user_id, "user_id")
        return await self._run(
            "transaction_summary",
            lambda s: self.ledger.summary(s, user_id),
            user_id=user_id,
            read_only=True,
        )

    async def leaderboard(self, limit: int = C.DEFAULT_LEADERBOARD_LIMIT) -> List[LeaderboardEntry]:
        return await self._run(
            "leaderboard",
            lambda s: self.ledger.leaderboard(s, limit),
            read_only=True,
        )
