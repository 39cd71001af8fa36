"""
CostService - bot activation pricing
====================================

A bot has one global base cost (server_id NULL) and optional per-server
overrides. The price a user pays is the base cost times their best (lowest)
role cost multiplier times the global cost multiplier, rounded to cents.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from sqlalchemy import or_

from soma.core.logging.logger import get_logger
from soma.database.models import BotCost
from soma.modules.shared.base_repository import BaseRepository
from soma.modules.shared.base_service import BaseService
from soma.modules.shared.exceptions import BotNotConfiguredError
from soma.modules.shared.formulas import calculate_activation_cost

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from soma.modules.config import ConfigService
    from soma.modules.roles import RoleService


@dataclass(frozen=True)
class BotCostQuote:
    cost: float
    base_cost: float
    multiplier: float


@dataclass(frozen=True)
class BotCostEntry:
    bot_id: str
    server_id: Optional[str]
    base_cost: float
    description: Optional[str]

    @property
    def name(self) -> str:
        return self.description or self.bot_id


@dataclass(frozen=True)
class CheaperAlternative:
    bot_id: str
    name: str
    cost: float


class CostService(BaseService):
    def __init__(
        self,
        config_service: ConfigService,
        role_service: RoleService,
        logger: Optional[Logger] = None,
    ) -> None:
        super().__init__(logger or get_logger(__name__))
        self._config = config_service
        self._roles = role_service
        self._repo = BaseRepository[BotCost](BotCost, self.log)

    async def _lookup(
        self,
        session: AsyncSession,
        bot_id: str,
        server_id: Optional[str],
    ) -> Optional[BotCost]:
        """Server-specific row first, then the global row."""
        if server_id:
            row = await self._repo.find_one_where(
                session, BotCost.bot_id == bot_id, BotCost.server_id == server_id
            )
            if row is not None:
                return row
        return await self._repo.find_one_where(
            session, BotCost.bot_id == bot_id, BotCost.server_id.is_(None)
        )

    async def get_bot_cost(
        self,
        session: AsyncSession,
        bot_id: str,
        server_id: Optional[str],
        role_ids: Sequence[str] = (),
    ) -> BotCostQuote:
        """
        Price of one activation for this user.

        Raises:
            BotNotConfiguredError: no global or server cost for the bot
        """
        row = await self._lookup(session, bot_id, server_id)
        if row is None:
            raise BotNotConfiguredError(bot_id, server_id)

        role_multiplier = (
            await self._roles.effective_cost_multiplier(session, server_id, role_ids)
            if server_id
            else 1.0
        )
        global_config = await self._config.get_global_config(session)
        cost = calculate_activation_cost(
            row.base_cost, role_multiplier, global_config.global_cost_multiplier
        )

        return BotCostQuote(
            cost=cost,
            base_cost=row.base_cost,
            multiplier=role_multiplier * global_config.global_cost_multiplier,
        )

    async def set_bot_cost(
        self,
        session: AsyncSession,
        bot_id: str,
        server_id: Optional[str],
        cost: float,
        description: Optional[str] = None,
    ) -> Optional[float]:
        """
        Create or replace a bot cost.

        Returns:
            The previous base cost, or None when the row is new
        """
        bot_id = self.validate_id(bot_id, "bot_id")
        cost = self.validate_non_negative_amount(cost, "cost")

        if server_id:
            existing = await self._repo.find_one_where(
                session, BotCost.bot_id == bot_id, BotCost.server_id == server_id, for_update=True
            )
        else:
            existing = await self._repo.find_one_where(
                session, BotCost.bot_id == bot_id, BotCost.server_id.is_(None), for_update=True
            )

        previous: Optional[float] = None
        if existing is not None:
            previous = existing.base_cost
            existing.base_cost = cost
            existing.description = description or None
            self.log.info(
                "Updated bot cost",
                extra={"bot_id": bot_id, "server_id": server_id, "cost": cost, "previous_cost": previous},
            )
        else:
            self._repo.add(
                session,
                BotCost(bot_id=bot_id, server_id=server_id or None, base_cost=cost, description=description or None),
            )
            self.log.info(
                "Created bot cost",
                extra={"bot_id": bot_id, "server_id": server_id, "cost": cost},
            )

        await session.flush()
        return previous

    async def list_bot_costs(self, session: AsyncSession, server_id: Optional[str]) -> List[BotCostEntry]:
        """Every bot priced for a server, cheapest first. Server rows shadow global rows."""
        conditions = [BotCost.server_id.is_(None)]
        if server_id:
            conditions.append(BotCost.server_id == server_id)

        rows = await self._repo.find_many_where(
            session,
            or_(*conditions),
            order_by=[BotCost.base_cost, BotCost.bot_id],
        )

        by_bot: Dict[str, BotCostEntry] = {}
        for row in rows:
            existing = by_bot.get(row.bot_id)
            if existing is not None and row.server_id is None:
                continue
            by_bot[row.bot_id] = BotCostEntry(
                bot_id=row.bot_id,
                server_id=row.server_id,
                base_cost=row.base_cost,
                description=row.description,
            )

        return sorted(by_bot.values(), key=lambda entry: (entry.base_cost, entry.bot_id))

    async def cheaper_alternatives(
        self,
        session: AsyncSession,
        bot_id: str,
        server_id: Optional[str],
        current_cost: float,
    ) -> List[CheaperAlternative]:
        """Other bots whose base cost is below `current_cost`, ascending."""
        return [
            CheaperAlternative(bot_id=entry.bot_id, name=entry.name, cost=entry.base_cost)
            for entry in await self.list_bot_costs(session, server_id)
            if entry.bot_id != bot_id and entry.base_cost < current_cost
        ]

    async def get_bot_description(
        self,
        session: AsyncSession,
        bot_id: str,
        server_id: Optional[str],
    ) -> Optional[str]:
        row = await self._lookup(session, bot_id, server_id)
        return row.description if row is not None and row.description else None
