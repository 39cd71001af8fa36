"""
RoleService - role multiplier resolution and the last-seen role cache
=====================================================================

Purpose
-------
Turn a user's role set into economy modifiers, and remember which roles a
user held in each server so their best regen bonus follows them into
contexts with no role data (DMs, API calls).

Resolution rules
----------------
- regen: highest matching multiplier, starting from 1.0
- cost: lowest matching multiplier, starting from 1.0
- max balance: highest non-null override above the global max
- roles never stack; a user without configured roles gets exactly 1.0

Design Notes
------------
- Session-first; the caller owns the transaction
- The role cache (user_server_roles) is written only when the caller
  explicitly observes fresh roles, and pruned by age in maintenance
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

from soma.core.database.base import utc_now
from soma.core.logging.logger import get_logger
from soma.database.models import RoleConfig, UserServerRoles
from soma.modules.shared import constants as C
from soma.modules.shared.base_repository import BaseRepository
from soma.modules.shared.base_service import BaseService
from soma.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True)
class GlobalRegenRate:
    rate: float
    multiplier: float
    best_role_id: Optional[str]
    best_server_id: Optional[str]


def _normalize_roles(role_ids: Optional[Iterable[str]]) -> List[str]:
    if not role_ids:
        return []
    seen: List[str] = []
    for role in role_ids:
        text = str(role).strip()
        if text and text not in seen:
            seen.append(text)
    return seen


class RoleService(BaseService):
    """
    Public Methods
    --------------
    - effective_regen_rate() / effective_cost_multiplier() / effective_max_balance()
    - global_effective_regen_rate() -> best regen across every cached server
    - set_role_config() -> admin upsert with partial updates
    - update_user_roles() / role_cache_age() / cleanup_stale_role_cache()
    """

    def __init__(self, logger: Optional[Logger] = None) -> None:
        super().__init__(logger or get_logger(__name__))
        self._role_repo = BaseRepository[RoleConfig](RoleConfig, self.log)
        self._cache_repo = BaseRepository[UserServerRoles](UserServerRoles, self.log)

    async def _matching_configs(
        self,
        session: AsyncSession,
        server_id: str,
        role_ids: Sequence[str],
    ) -> List[RoleConfig]:
        roles = _normalize_roles(role_ids)
        if not roles:
            return []
        return await self._role_repo.find_many_where(
            session,
            RoleConfig.server_id == server_id,
            RoleConfig.role_id.in_(roles),
            order_by=[RoleConfig.id],
        )

    # ========================================================================
    # PER-SERVER RESOLUTION
    # ========================================================================

    async def best_regen_multiplier(
        self,
        session: AsyncSession,
        server_id: str,
        role_ids: Sequence[str],
    ) -> tuple[float, Optional[str]]:
        """Highest regen multiplier among the user's roles and the role granting it."""
        multiplier = C.NEUTRAL_MULTIPLIER
        best_role: Optional[str] = None
        for config in await self._matching_configs(session, server_id, role_ids):
            if config.regen_multiplier > multiplier:
                multiplier = config.regen_multiplier
                best_role = config.role_id
        return multiplier, best_role

    async def effective_regen_rate(
        self,
        session: AsyncSession,
        server_id: str,
        role_ids: Sequence[str],
        base_rate: float,
    ) -> float:
        multiplier, _ = await self.best_regen_multiplier(session, server_id, role_ids)
        return base_rate * multiplier

    async def effective_cost_multiplier(
        self,
        session: AsyncSession,
        server_id: str,
        role_ids: Sequence[str],
    ) -> float:
        multiplier = C.NEUTRAL_MULTIPLIER
        for config in await self._matching_configs(session, server_id, role_ids):
            if config.cost_multiplier < multiplier:
                multiplier = config.cost_multiplier
        return multiplier

    async def effective_max_balance(
        self,
        session: AsyncSession,
        server_id: str,
        role_ids: Sequence[str],
        global_max: float,
    ) -> float:
        max_balance = global_max
        for config in await self._matching_configs(session, server_id, role_ids):
            override = config.max_balance_override
            if override is not None and override > max_balance:
                max_balance = override
        return max_balance

    # ========================================================================
    # GLOBAL ("best role follows you") RESOLUTION
    # ========================================================================

    async def global_effective_regen_rate(
        self,
        session: AsyncSession,
        user_id: str,
        base_rate: float,
    ) -> GlobalRegenRate:
        """
        Scan every cached (server, roles) entry for the user and pick the
        single highest regen multiplier. Equal multipliers keep the first seen.
        """
        entries = await self.cached_roles(session, user_id)

        best_multiplier = C.NEUTRAL_MULTIPLIER
        best_role: Optional[str] = None
        best_server: Optional[str] = None

        for entry in entries:
            roles = entry.role_ids or []
            if not roles:
                continue
            multiplier, role = await self.best_regen_multiplier(session, entry.server_id, roles)
            if multiplier > best_multiplier:
                best_multiplier = multiplier
                best_role = role
                best_server = entry.server_id

        return GlobalRegenRate(
            rate=base_rate * best_multiplier,
            multiplier=best_multiplier,
            best_role_id=best_role,
            best_server_id=best_server,
        )

    # ========================================================================
    # ADMIN
    # ========================================================================

    async def set_role_config(
        self,
        session: AsyncSession,
        server_id: str,
        role_id: str,
        regen_multiplier: Optional[float] = None,
        cost_multiplier: Optional[float] = None,
        max_balance_override: Optional[float] = None,
    ) -> RoleConfig:
        """
        Create or partially update a role's modifiers. Fields left as None
        keep their stored value (or the default on create).

        Raises:
            ValidationError: Nothing to set, or a value outside its range
        """
        if regen_multiplier is None and cost_multiplier is None and max_balance_override is None:
            raise ValidationError("role_config", "at least one field must be provided")
        if regen_multiplier is not None:
            low, high = C.REGEN_MULTIPLIER_RANGE
            regen_multiplier = self.validate_range(regen_multiplier, "regen_multiplier", low, high)
        if cost_multiplier is not None:
            low, high = C.COST_MULTIPLIER_RANGE
            cost_multiplier = self.validate_range(cost_multiplier, "cost_multiplier", low, high)
        if max_balance_override is not None:
            max_balance_override = self.validate_positive_amount(max_balance_override, "max_balance_override")

        config = await self._role_repo.find_one_where(
            session,
            RoleConfig.server_id == server_id,
            RoleConfig.role_id == role_id,
            for_update=True,
        )
        created = config is None
        if config is None:
            config = self._role_repo.add(
                session,
                RoleConfig(
                    server_id=server_id,
                    role_id=role_id,
                    regen_multiplier=C.NEUTRAL_MULTIPLIER,
                    cost_multiplier=C.NEUTRAL_MULTIPLIER,
                ),
            )

        if regen_multiplier is not None:
            config.regen_multiplier = regen_multiplier
        if cost_multiplier is not None:
            config.cost_multiplier = cost_multiplier
        if max_balance_override is not None:
            config.max_balance_override = max_balance_override
        await session.flush()

        self.log_operation(
            "set_role_config",
            server_id=server_id,
            role_id=role_id,
            created=created,
            regen_multiplier=config.regen_multiplier,
            cost_multiplier=config.cost_multiplier,
            max_balance_override=config.max_balance_override,
        )
        return config

    # ========================================================================
    # ROLE CACHE
    # ========================================================================

    async def update_user_roles(
        self,
        session: AsyncSession,
        user_id: str,
        server_id: str,
        role_ids: Sequence[str],
    ) -> UserServerRoles:
        roles = _normalize_roles(role_ids)
        entry = await self._cache_repo.get(session, (user_id, server_id))
        if entry is None:
            entry = self._cache_repo.add(
                session,
                UserServerRoles(user_id=user_id, server_id=server_id, role_ids=roles),
            )
        else:
            entry.role_ids = roles
            entry.last_seen = utc_now()
        await session.flush()

        self.log.debug(
            "Updated user server roles cache",
            extra={"user_id": user_id, "server_id": server_id, "role_count": len(roles)},
        )
        return entry

    async def cached_roles(self, session: AsyncSession, user_id: str) -> List[UserServerRoles]:
        return await self._cache_repo.find_many_where(
            session,
            UserServerRoles.user_id == user_id,
            order_by=[UserServerRoles.server_id],
        )

    async def role_cache_age(
        self,
        session: AsyncSession,
        user_id: str,
        server_id: str,
    ) -> Optional[timedelta]:
        entry = await self._cache_repo.get(session, (user_id, server_id))
        if entry is None:
            return None
        return utc_now() - entry.last_seen

    async def cleanup_stale_role_cache(
        self,
        session: AsyncSession,
        max_age_hours: int = 168,
    ) -> int:
        cutoff = utc_now() - timedelta(hours=max_age_hours)
        removed = await self._cache_repo.delete_where(session, UserServerRoles.last_seen < cutoff)
        if removed:
            self.log.info(
                "Cleaned up stale role cache entries",
                extra={"deleted": removed, "max_age_hours": max_age_hours},
            )
        return removed
