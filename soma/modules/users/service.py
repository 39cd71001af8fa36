"""
UserService - identity lifecycle for users and servers
======================================================

Users are created the first time anything observes them, together with a
Balance at the global starting balance. Servers are created lazily with a
copy of the default config. Neither is ever deleted in normal operation.

Cached display metadata (username, display name, avatar hash) is refreshed
whenever the caller passes a fresh profile.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Optional

from soma.core.database.base import utc_now
from soma.core.logging.logger import get_logger
from soma.database.models import Balance, Server, User
from soma.modules.shared.base_repository import BaseRepository
from soma.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from soma.modules.config import ConfigService


@dataclass(frozen=True)
class UserProfile:
    """Display metadata supplied by the chat platform."""

    username: str
    display_name: Optional[str] = None
    avatar_hash: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "UserProfile":
        return cls(
            username=str(data["username"]),
            display_name=data.get("display_name") or data.get("global_name"),
            avatar_hash=data.get("avatar_hash") or data.get("avatar"),
        )


class UserService(BaseService):
    def __init__(self, config_service: ConfigService, logger: Optional[Logger] = None) -> None:
        super().__init__(logger or get_logger(__name__))
        self._config = config_service
        self._user_repo = BaseRepository[User](User, self.log)
        self._balance_repo = BaseRepository[Balance](Balance, self.log)

    async def get_or_create_user(
        self,
        session: AsyncSession,
        user_id: str,
        profile: Optional[UserProfile] = None,
    ) -> User:
        """
        Fetch a user, creating it (and its starting balance) on first sight.

        When `profile` is given the cached display fields and `last_seen`
        are refreshed on an existing user.
        """
        user = await self._user_repo.get(session, user_id)

        if user is not None:
            if profile is not None:
                user.username = profile.username
                user.display_name = profile.display_name
                user.avatar_hash = profile.avatar_hash
                user.last_seen = utc_now()
            return user

        global_config = await self._config.get_global_config(session)
        now = utc_now()

        user = self._user_repo.add(
            session,
            User(
                discord_id=user_id,
                username=profile.username if profile else None,
                display_name=profile.display_name if profile else None,
                avatar_hash=profile.avatar_hash if profile else None,
                created_at=now,
                last_seen=now,
            ),
        )
        self._balance_repo.add(
            session,
            Balance(
                user_id=user_id,
                amount=global_config.starting_balance,
                last_regen_at=now,
            ),
        )
        await session.flush()

        self.log.info(
            "Created new user",
            extra={
                "user_id": user_id,
                "username": profile.username if profile else None,
                "starting_balance": global_config.starting_balance,
            },
        )
        return user

    async def get_or_create_server(
        self,
        session: AsyncSession,
        server_id: str,
        name: Optional[str] = None,
    ) -> Server:
        return await self._config.ensure_server(session, server_id, name)
