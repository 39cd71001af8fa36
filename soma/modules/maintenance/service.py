"""
MaintenanceService - periodic retention cleanup

Purpose
-------
Prune data that only matters for a bounded window:

- transactions older than SOMA_TRANSACTION_RETENTION_DAYS (0 keeps everything)
- daily transfer and reward counters older than SOMA_DAILY_RETENTION_DAYS
- role cache entries not refreshed for SOMA_ROLE_CACHE_MAX_AGE_HOURS

Each task runs in its own transaction and is idempotent, so a failed or
interrupted pass is simply repeated on the next tick.

Usage
-----
>>> stop_event = asyncio.Event()
>>> maintenance = MaintenanceService(transaction_log, limits, rewards, roles)
>>> task = asyncio.create_task(maintenance.run_forever(stop_event=stop_event))
>>> # ... later ...
>>> stop_event.set()
>>> await task
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from soma.core.config import Config
from soma.core.database.service import DatabaseService
from soma.core.logging.logger import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from soma.modules.economy import TransactionLogService
    from soma.modules.limits import DailyLimitService
    from soma.modules.rewards import RewardService
    from soma.modules.roles import RoleService

logger = get_logger(__name__)


@dataclass(frozen=True)
class MaintenanceSettings:
    transaction_retention_days: int = 90
    daily_retention_days: int = 7
    role_cache_max_age_hours: int = 168
    interval_seconds: int = 3600

    @classmethod
    def from_config(cls) -> MaintenanceSettings:
        return cls(
            transaction_retention_days=Config.TRANSACTION_RETENTION_DAYS,
            daily_retention_days=Config.DAILY_RETENTION_DAYS,
            role_cache_max_age_hours=Config.ROLE_CACHE_MAX_AGE_HOURS,
            interval_seconds=Config.MAINTENANCE_INTERVAL_SECONDS,
        )


@dataclass
class MaintenanceReport:
    deleted: Dict[str, int] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())


class MaintenanceService:
    def __init__(
        self,
        transaction_log: TransactionLogService,
        limits: DailyLimitService,
        rewards: RewardService,
        roles: RoleService,
        settings: Optional[MaintenanceSettings] = None,
    ) -> None:
        self._settings = settings or MaintenanceSettings.from_config()
        self._tasks: List[Tuple[str, Callable[[AsyncSession], Awaitable[int]]]] = [
            (
                "transactions",
                lambda s: transaction_log.cleanup_old_transactions(s, self._settings.transaction_retention_days),
            ),
            ("daily_transfers", lambda s: limits.cleanup(s, self._settings.daily_retention_days)),
            ("daily_rewards", lambda s: rewards.cleanup(s, self._settings.daily_retention_days)),
            ("role_cache", lambda s: roles.cleanup_stale_role_cache(s, self._settings.role_cache_max_age_hours)),
        ]

    @property
    def settings(self) -> MaintenanceSettings:
        return self._settings

    async def run_once(self) -> MaintenanceReport:
        """Run every cleanup task once; a failing task does not stop the others."""
        report = MaintenanceReport()

        for name, task in self._tasks:
            try:
                async with DatabaseService.get_transaction() as session:
                    report.deleted[name] = await task(session)
            except SQLAlchemyError as exc:
                report.failed.append(name)
                logger.error(
                    "Maintenance task failed",
                    extra={"task": name, "error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )

        logger.info(
            "Maintenance pass complete",
            extra={"deleted": report.deleted, "failed": report.failed, "total_deleted": report.total_deleted},
        )
        return report

    async def run_forever(
        self,
        *,
        stop_event: asyncio.Event,
        interval: Optional[float] = None,
    ) -> None:
        interval = interval if interval is not None else self._settings.interval_seconds
        logger.info("MaintenanceService started", extra={"interval_seconds": interval})

        try:
            while not stop_event.is_set():
                await self.run_once()

                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    continue
        finally:
            logger.info("MaintenanceService stopped")
