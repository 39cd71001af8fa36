"""
Unit tests for MaintenanceService.

Tests retention pruning across every task, per-task failure isolation, and
the stop-event driven loop.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from soma.core.database.base import utc_now
from soma.core.database.service import DatabaseService
from soma.core.timeutil import reference_days_ago
from soma.database.models import (
    DailyReward,
    DailyTransfer,
    Transaction,
    TransactionType,
    UserServerRoles,
)
from soma.modules.maintenance import MaintenanceService, MaintenanceSettings
from tests.conftest import ALICE, BOB, ROLE_VIP, SERVER

SETTINGS = MaintenanceSettings(
    transaction_retention_days=30,
    daily_retention_days=7,
    role_cache_max_age_hours=24,
    interval_seconds=3600,
)


@pytest.fixture
def maintenance(transaction_log, limit_service, reward_service, role_service):
    return MaintenanceService(transaction_log, limit_service, reward_service, role_service, settings=SETTINGS)


async def seed_expired_data(user_service, transaction_log, limit_service, reward_service, role_service):
    """One expired and one current row in every pruned table."""
    async with DatabaseService.get_transaction() as session:
        for user_id in (ALICE, BOB):
            await user_service.get_or_create_user(session, user_id)
        await user_service.get_or_create_server(session, SERVER)

        await transaction_log.record(session, tx_type=TransactionType.GRANT, amount=1.0, balance_after=51.0, to_user_id=ALICE)
        old = await transaction_log.record(
            session, tx_type=TransactionType.GRANT, amount=2.0, balance_after=52.0, to_user_id=ALICE
        )
        await session.execute(
            update(Transaction).where(Transaction.id == old.id).values(timestamp=utc_now() - timedelta(days=45))
        )

        await limit_service.record(session, ALICE, BOB, 5.0)
        await session.execute(
            update(DailyTransfer).where(DailyTransfer.user_id == ALICE).values(reset_date=reference_days_ago(10))
        )

        await reward_service.record_reward(session, ALICE)
        await reward_service.record_reward(session, BOB)
        await session.execute(
            update(DailyReward).where(DailyReward.user_id == BOB).values(reset_date=reference_days_ago(10))
        )

        await role_service.update_user_roles(session, ALICE, SERVER, [ROLE_VIP])
        await role_service.update_user_roles(session, BOB, SERVER, [ROLE_VIP])
        await session.execute(
            update(UserServerRoles)
            .where(UserServerRoles.user_id == BOB)
            .values(last_seen=utc_now() - timedelta(hours=48))
        )


async def count(model):
    async with DatabaseService.get_session() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
class TestRunOnce:
    """Test a single maintenance pass."""

    async def test_prunes_expired_rows_only(
        self, database, maintenance, user_service, transaction_log, limit_service, reward_service, role_service
    ):
        await seed_expired_data(user_service, transaction_log, limit_service, reward_service, role_service)

        report = await maintenance.run_once()

        assert report.deleted == {
            "transactions": 1,
            "daily_transfers": 1,
            "daily_rewards": 1,
            "role_cache": 1,
        }
        assert report.failed == []
        assert report.total_deleted == 4
        assert await count(Transaction) == 1
        assert await count(DailyTransfer) == 1
        assert await count(DailyReward) == 1
        assert await count(UserServerRoles) == 1

    async def test_second_pass_is_a_no_op(
        self, database, maintenance, user_service, transaction_log, limit_service, reward_service, role_service
    ):
        await seed_expired_data(user_service, transaction_log, limit_service, reward_service, role_service)
        await maintenance.run_once()

        report = await maintenance.run_once()
        assert report.total_deleted == 0

    async def test_failed_task_does_not_stop_others(
        self,
        database,
        maintenance,
        mocker,
        user_service,
        transaction_log,
        limit_service,
        reward_service,
        role_service,
    ):
        await seed_expired_data(user_service, transaction_log, limit_service, reward_service, role_service)
        mocker.patch.object(
            limit_service,
            "cleanup",
            side_effect=OperationalError("DELETE FROM daily_transfers", {}, Exception("database is locked")),
        )

        report = await maintenance.run_once()

        assert report.failed == ["daily_transfers"]
        assert report.deleted["transactions"] == 1
        assert report.deleted["role_cache"] == 1
        assert await count(DailyTransfer) == 2

    async def test_zero_retention_keeps_transactions(
        self, database, transaction_log, limit_service, reward_service, role_service, user_service
    ):
        await seed_expired_data(user_service, transaction_log, limit_service, reward_service, role_service)
        keep_all = MaintenanceService(
            transaction_log,
            limit_service,
            reward_service,
            role_service,
            settings=MaintenanceSettings(transaction_retention_days=0),
        )

        report = await keep_all.run_once()

        assert report.deleted["transactions"] == 0
        assert await count(Transaction) == 2


@pytest.mark.asyncio
class TestRunForever:
    async def test_stops_when_event_set(self, database, maintenance, mocker):
        run_once = mocker.patch.object(maintenance, "run_once")
        stop_event = asyncio.Event()

        task = asyncio.create_task(maintenance.run_forever(stop_event=stop_event, interval=0.01))
        await asyncio.sleep(0.05)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert run_once.await_count >= 2

    async def test_preset_event_never_runs(self, database, maintenance, mocker):
        run_once = mocker.patch.object(maintenance, "run_once")
        stop_event = asyncio.Event()
        stop_event.set()

        await maintenance.run_forever(stop_event=stop_event, interval=0.01)

        run_once.assert_not_awaited()
