"""
ConfigService - layered economy configuration
=============================================

Purpose
-------
Resolve the global economy policy and per-server settings that every other
service reads, and apply admin updates to them.

Global resolution, per field:
    persisted override (global_config row) > environment bootstrap (Config)
    > hardcoded default (soma.modules.shared.constants)

The environment step only exists for base_regen_rate, max_balance and
starting_balance. The merged result is cached in an injected
GlobalConfigCache until an admin write invalidates it.

Server configs are a JSON document on the servers row, merged field by field
over the defaults so older rows pick up newly added keys.

Design Notes
------------
- Session-first: callers own the transaction (EconomyEngine opens it)
- Validation happens before any write; a bad field rejects the whole update
- No Discord or HTTP concerns
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from soma.core.config import Config
from soma.core.database.base import utc_now
from soma.core.logging.logger import get_logger
from soma.database.models import GLOBAL_CONFIG_ID, GlobalConfig, Server
from soma.modules.shared import constants as C
from soma.modules.shared.base_repository import BaseRepository
from soma.modules.shared.base_service import BaseService
from soma.modules.shared.exceptions import ValidationError
from soma.modules.shared.validators import validate_emoji_list, validate_single_emoji

from .cache import GlobalConfigCache

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession


# ============================================================================
# Resolved config types
# ============================================================================


@dataclass(frozen=True)
class GlobalEconomyConfig:
    base_regen_rate: float
    max_balance: float
    starting_balance: float
    reward_cooldown_minutes: int
    max_daily_rewards: int
    global_cost_multiplier: float
    max_daily_sent: float
    max_daily_received: float
    modified_by: Optional[str] = None
    modified_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ServerConfig:
    """Effective settings for one server after merging over defaults."""

    reward_emoji: List[str] = field(default_factory=lambda: list(C.DEFAULT_REWARD_EMOJI))
    reward_amount: float = C.DEFAULT_REWARD_AMOUNT
    tip_emoji: str = C.DEFAULT_TIP_EMOJI
    tip_amount: float = C.DEFAULT_TIP_AMOUNT
    name: Optional[str] = None
    last_modified_by: Optional[str] = None
    last_modified_at: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """JSON document persisted on the servers row (name lives in its own column)."""
        doc = asdict(self)
        doc.pop("name")
        return doc


SERVER_CONFIG_FIELDS = ("reward_emoji", "reward_amount", "tip_emoji", "tip_amount")
GLOBAL_CONFIG_FIELDS = tuple(C.GLOBAL_CONFIG_RANGES)


# ============================================================================
# ConfigService
# ============================================================================


class ConfigService(BaseService):
    """
    Resolves and updates global and per-server economy configuration.

    Public Methods
    --------------
    - get_global_config() -> merged, cached GlobalEconomyConfig
    - update_global_config() -> validate, persist, invalidate
    - ensure_server() -> get-or-create the servers row
    - get_or_create_server_config() / update_server_config() / reset_server_config()
    """

    def __init__(
        self,
        cache: Optional[GlobalConfigCache] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        super().__init__(logger or get_logger(__name__))
        self.cache = cache or GlobalConfigCache()
        self._global_repo = BaseRepository[GlobalConfig](GlobalConfig, self.log)
        self._server_repo = BaseRepository[Server](Server, self.log)

    # ========================================================================
    # GLOBAL CONFIG
    # ========================================================================

    async def get_global_config(self, session: AsyncSession) -> GlobalEconomyConfig:
        cached = self.cache.get()
        if cached is not None:
            return cached

        row = await self._global_repo.get(session, GLOBAL_CONFIG_ID)
        resolved = self._resolve_global(row)
        self.cache.set(resolved)

        self.log.debug(
            "Global config resolved",
            extra={"has_row": row is not None, **resolved.to_dict()},
        )
        return resolved

    async def update_global_config(
        self,
        session: AsyncSession,
        updates: Mapping[str, Any],
        actor: Optional[str],
    ) -> GlobalEconomyConfig:
        """
        Apply a partial update to the global config.

        Every field is validated before anything is written.

        Raises:
            ValidationError: Unknown field, empty update, or value out of range
        """
        cleaned = self.validate_global_updates(updates)

        row = await self._global_repo.get_for_update(session, GLOBAL_CONFIG_ID)
        if row is None:
            row = self._global_repo.add(session, self._new_global_row())

        for key, value in cleaned.items():
            setattr(row, key, value)
        row.modified_by = actor
        row.modified_at = utc_now()
        await session.flush()

        self.cache.invalidate()
        resolved = self._resolve_global(row)

        self.log_operation(
            "update_global_config",
            actor=actor,
            fields=sorted(cleaned),
        )
        return resolved

    def validate_global_updates(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        if not updates:
            raise ValidationError("updates", "no fields to update")

        unknown = sorted(set(updates) - set(GLOBAL_CONFIG_FIELDS))
        if unknown:
            raise ValidationError(unknown[0], f"unknown global config field(s): {', '.join(unknown)}")

        cleaned: Dict[str, Any] = {}
        for key, value in updates.items():
            low, high, exclusive_min = C.GLOBAL_CONFIG_RANGES[key]
            if key in C.GLOBAL_INT_FIELDS:
                cleaned[key] = self.validate_int_range(value, key, int(low), int(high))
            else:
                cleaned[key] = self.validate_range(value, key, low, high, exclusive_min=exclusive_min)
        return cleaned

    @staticmethod
    def _new_global_row() -> GlobalConfig:
        return GlobalConfig(
            id=GLOBAL_CONFIG_ID,
            reward_cooldown_minutes=C.DEFAULT_REWARD_COOLDOWN_MINUTES,
            max_daily_rewards=C.DEFAULT_MAX_DAILY_REWARDS,
            global_cost_multiplier=C.DEFAULT_GLOBAL_COST_MULTIPLIER,
            max_daily_sent=C.DEFAULT_MAX_DAILY_SENT,
            max_daily_received=C.DEFAULT_MAX_DAILY_RECEIVED,
        )

    @staticmethod
    def _env_or_default(env_value: Optional[float], default: float, allow_zero: bool) -> float:
        if env_value is None:
            return default
        if env_value > 0 or (allow_zero and env_value == 0):
            return float(env_value)
        return default

    @classmethod
    def _resolve_global(cls, row: Optional[GlobalConfig]) -> GlobalEconomyConfig:
        base_rate = cls._env_or_default(Config.BASE_REGEN_RATE, C.DEFAULT_BASE_REGEN_RATE, False)
        max_balance = cls._env_or_default(Config.MAX_BALANCE, C.DEFAULT_MAX_BALANCE, False)
        starting = cls._env_or_default(Config.STARTING_BALANCE, C.DEFAULT_STARTING_BALANCE, True)

        if row is None:
            return GlobalEconomyConfig(
                base_regen_rate=base_rate,
                max_balance=max_balance,
                starting_balance=starting,
                reward_cooldown_minutes=C.DEFAULT_REWARD_COOLDOWN_MINUTES,
                max_daily_rewards=C.DEFAULT_MAX_DAILY_REWARDS,
                global_cost_multiplier=C.DEFAULT_GLOBAL_COST_MULTIPLIER,
                max_daily_sent=C.DEFAULT_MAX_DAILY_SENT,
                max_daily_received=C.DEFAULT_MAX_DAILY_RECEIVED,
            )

        def pick(value: Optional[Any], fallback: Any) -> Any:
            return fallback if value is None else value

        return GlobalEconomyConfig(
            base_regen_rate=float(pick(row.base_regen_rate, base_rate)),
            max_balance=float(pick(row.max_balance, max_balance)),
            starting_balance=float(pick(row.starting_balance, starting)),
            reward_cooldown_minutes=int(pick(row.reward_cooldown_minutes, C.DEFAULT_REWARD_COOLDOWN_MINUTES)),
            max_daily_rewards=int(pick(row.max_daily_rewards, C.DEFAULT_MAX_DAILY_REWARDS)),
            global_cost_multiplier=float(pick(row.global_cost_multiplier, C.DEFAULT_GLOBAL_COST_MULTIPLIER)),
            max_daily_sent=float(pick(row.max_daily_sent, C.DEFAULT_MAX_DAILY_SENT)),
            max_daily_received=float(pick(row.max_daily_received, C.DEFAULT_MAX_DAILY_RECEIVED)),
            modified_by=row.modified_by,
            modified_at=row.modified_at,
        )

    # ========================================================================
    # SERVERS
    # ========================================================================

    async def ensure_server(
        self,
        session: AsyncSession,
        server_id: str,
        name: Optional[str] = None,
    ) -> Server:
        """
        Get the servers row, creating it with default config on first sight.

        A non-empty `name` different from the stored one renames the server.
        """
        server = await self._server_repo.get(session, server_id)
        if server is None:
            server = self._server_repo.add(
                session,
                Server(discord_id=server_id, name=name, config=ServerConfig().to_document()),
            )
            await session.flush()
            self.log.info(
                "Server registered",
                extra={"server_id": server_id, "server_name": name},
            )
        elif name and server.name != name:
            server.name = name
        return server

    async def get_or_create_server_config(self, session: AsyncSession, server_id: str) -> ServerConfig:
        server = await self.ensure_server(session, server_id)
        return self.parse_server_config(server.config, name=server.name)

    async def update_server_config(
        self,
        session: AsyncSession,
        server_id: str,
        updates: Mapping[str, Any],
        actor: Optional[str],
    ) -> ServerConfig:
        """
        Raises:
            ValidationError: Unknown field, empty update, or invalid value
        """
        cleaned = self.validate_server_updates(updates)

        server = await self.ensure_server(session, server_id)
        current = self.parse_server_config(server.config, name=server.name)
        updated = replace(
            current,
            **cleaned,
            last_modified_by=actor,
            last_modified_at=utc_now().isoformat(),
        )
        # Reassign so the JSON column is flagged dirty
        server.config = updated.to_document()
        await session.flush()

        self.log_operation(
            "update_server_config",
            server_id=server_id,
            actor=actor,
            fields=sorted(cleaned),
        )
        return updated

    async def reset_server_config(
        self,
        session: AsyncSession,
        server_id: str,
        actor: Optional[str],
    ) -> ServerConfig:
        server = await self.ensure_server(session, server_id)
        fresh = ServerConfig(
            name=server.name,
            last_modified_by=actor,
            last_modified_at=utc_now().isoformat(),
        )
        server.config = fresh.to_document()
        await session.flush()

        self.log_operation("reset_server_config", server_id=server_id, actor=actor)
        return fresh

    def validate_server_updates(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        if not updates:
            raise ValidationError("updates", "no fields to update")

        unknown = sorted(set(updates) - set(SERVER_CONFIG_FIELDS))
        if unknown:
            raise ValidationError(unknown[0], f"unknown server config field(s): {', '.join(unknown)}")

        cleaned: Dict[str, Any] = {}
        if "reward_amount" in updates:
            low, high = C.REWARD_AMOUNT_RANGE
            cleaned["reward_amount"] = self.validate_range(updates["reward_amount"], "reward_amount", low, high)
        if "tip_amount" in updates:
            low, high = C.TIP_AMOUNT_RANGE
            cleaned["tip_amount"] = self.validate_range(updates["tip_amount"], "tip_amount", low, high)
        if "reward_emoji" in updates:
            cleaned["reward_emoji"] = validate_emoji_list(
                updates["reward_emoji"], "reward_emoji", C.MAX_REWARD_EMOJI
            )
        if "tip_emoji" in updates:
            cleaned["tip_emoji"] = validate_single_emoji(updates["tip_emoji"], "tip_emoji")
        return cleaned

    def parse_server_config(self, raw: Any, name: Optional[str] = None) -> ServerConfig:
        """
        Merge a stored document over the defaults.

        Unknown keys are ignored; missing or ill-typed keys keep their
        default; an unparseable document yields the defaults.
        """
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError:
                self.log.warning("Malformed server config JSON; using defaults")
                raw = None
        if not isinstance(raw, dict):
            return ServerConfig(name=name)

        config = ServerConfig(name=name)

        emoji = raw.get("reward_emoji")
        if isinstance(emoji, list) and emoji and all(isinstance(e, str) for e in emoji):
            config.reward_emoji = list(emoji)

        for key in ("reward_amount", "tip_amount"):
            value = raw.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                setattr(config, key, float(value))

        tip_emoji = raw.get("tip_emoji")
        if isinstance(tip_emoji, str) and tip_emoji:
            config.tip_emoji = tip_emoji

        for key in ("last_modified_by", "last_modified_at"):
            value = raw.get(key)
            if value is not None:
                setattr(config, key, str(value))

        return config
