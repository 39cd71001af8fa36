"""
AdminPolicy - who may run admin economy operations
==================================================

An actor is an admin when their id is in the admin user allowlist, or when
they hold an admin role, either in the roles passed with the request or in
any server recorded in their role cache.

The allowlists are parsed once by Config (SOMA_ADMIN_USERS, SOMA_ADMIN_ROLES)
and handed over through from_config(); tests build policies directly.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, FrozenSet, Iterable, Optional, Sequence

from soma.core.config.config import Config
from soma.core.logging.logger import get_logger
from soma.modules.shared.exceptions import PermissionDeniedError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from soma.modules.roles import RoleService

logger = get_logger(__name__)

_SNOWFLAKE = re.compile(r"^\d{17,20}$")


class AdminPolicy:
    def __init__(
        self,
        admin_users: Iterable[str] = (),
        admin_roles: Iterable[str] = (),
        role_service: Optional[RoleService] = None,
    ) -> None:
        self.admin_users: FrozenSet[str] = frozenset(str(u).strip() for u in admin_users if str(u).strip())
        self.admin_roles: FrozenSet[str] = frozenset(str(r).strip() for r in admin_roles if str(r).strip())
        self._roles = role_service

        for user_id in sorted(self.admin_users):
            if not _SNOWFLAKE.match(user_id):
                logger.warning(
                    "Admin user id does not look like a Discord id (17-20 digits)",
                    extra={"invalid_id": user_id},
                )

    @classmethod
    def from_config(cls, role_service: Optional[RoleService] = None) -> AdminPolicy:
        return cls(Config.ADMIN_USERS, Config.ADMIN_ROLES, role_service)

    async def is_admin(
        self,
        session: Optional[AsyncSession],
        actor: Optional[str],
        role_ids: Sequence[str] = (),
    ) -> bool:
        if not actor:
            return False

        if actor in self.admin_users:
            logger.debug("Admin access granted via user allowlist", extra={"actor": actor})
            return True

        if not self.admin_roles:
            return False

        matching = next((r for r in role_ids if str(r) in self.admin_roles), None)
        if matching is not None:
            logger.debug("Admin access granted via role", extra={"actor": actor, "role_id": matching})
            return True

        if session is None or self._roles is None:
            return False

        for entry in await self._roles.cached_roles(session, actor):
            matching = next((r for r in entry.role_ids or [] if r in self.admin_roles), None)
            if matching is not None:
                logger.debug(
                    "Admin access granted via cached role",
                    extra={"actor": actor, "role_id": matching, "server_id": entry.server_id},
                )
                return True

        return False

    async def require(
        self,
        session: Optional[AsyncSession],
        actor: Optional[str],
        action: str,
        role_ids: Sequence[str] = (),
    ) -> None:
        """
        Raises:
            PermissionDeniedError: the actor is not an admin
        """
        if not await self.is_admin(session, actor, role_ids):
            logger.warning("Admin action refused", extra={"actor": actor, "action": action})
            raise PermissionDeniedError(actor, action)
