"""
Integration Tests for DatabaseService
=====================================

Purpose
-------
Test the database layer against real PostgreSQL using testcontainers:
schema creation, transaction commit and rollback, row locking, and the
dialect-specific upsert helpers.

Testing Strategy
----------------
- Real PostgreSQL (postgres:17-alpine) through the asyncpg driver
- Each test gets a freshly created schema
"""

import asyncio

import pytest
from sqlalchemy import insert, select, text
from sqlalchemy.exc import IntegrityError

from soma.core.database.service import DatabaseService
from soma.core.logging.logger import get_logger
from soma.database.models import Balance, DailyTransfer, RewardClaim, User
from soma.modules.shared.base_repository import BaseRepository
from tests.conftest import ALICE

logger = get_logger(__name__)

EXPECTED_TABLES = {
    "users",
    "balances",
    "servers",
    "global_config",
    "role_configs",
    "bot_costs",
    "user_server_roles",
    "transactions",
    "daily_transfers",
    "daily_rewards",
    "reward_claims",
}


# ============================================================================
# CONNECTION AND SCHEMA
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestDatabaseConnection:
    """Test database connection and schema creation."""

    async def test_health_check(self, pg_database):
        assert await DatabaseService.health_check()

    async def test_schema_created(self, pg_database):
        async with DatabaseService.get_session() as session:
            result = await session.execute(
                text(
                    """
                    SELECT table_name
                    FROM information_schema.tables
                    WHERE table_schema = 'public'
                    """
                )
            )
            tables = {row.table_name for row in result.fetchall()}

        assert EXPECTED_TABLES <= tables


# ============================================================================
# TRANSACTIONS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestDatabaseTransactions:
    """Test transaction management."""

    async def test_transaction_commits(self, pg_database):
        async with DatabaseService.get_transaction() as session:
            session.add(User(discord_id=ALICE, username="alice"))

        async with DatabaseService.get_session() as session:
            user = await session.get(User, ALICE)
            assert user is not None
            assert user.username == "alice"

    async def test_exception_rolls_back(self, pg_database):
        with pytest.raises(RuntimeError):
            async with DatabaseService.get_transaction() as session:
                session.add(User(discord_id=ALICE, username="alice"))
                await session.flush()
                raise RuntimeError("abort")

        async with DatabaseService.get_session() as session:
            assert await session.get(User, ALICE) is None

    async def test_unique_violation_raises_integrity_error(self, pg_database):
        with pytest.raises(IntegrityError):
            async with DatabaseService.get_transaction() as session:
                session.add(User(discord_id=ALICE))
                await session.flush()
                await session.execute(insert(User).values(discord_id=ALICE))

    async def test_locked_entity_serializes_writers(self, pg_database):
        async with DatabaseService.get_transaction() as session:
            session.add(User(discord_id=ALICE))
            await session.flush()
            session.add(Balance(user_id=ALICE, amount=0.0))

        async def increment():
            async with DatabaseService.get_transaction() as session:
                row = await DatabaseService.get_locked_entity(session, Balance, ALICE)
                current = row.amount
                await asyncio.sleep(0.01)
                row.amount = current + 1

        await asyncio.gather(*(increment() for _ in range(5)))

        async with DatabaseService.get_session() as session:
            assert (await session.get(Balance, ALICE)).amount == 5.0


# ============================================================================
# UPSERT HELPERS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestUpsertHelpers:
    """Test ON CONFLICT helpers on PostgreSQL."""

    async def test_insert_ignore(self, pg_database):
        repo = BaseRepository[RewardClaim](RewardClaim, logger)
        values = {"user_id": ALICE, "message_id": "m-1"}

        async with DatabaseService.get_transaction() as session:
            assert await repo.insert_ignore(session, values, ["user_id", "message_id"])
            assert not await repo.insert_ignore(session, values, ["user_id", "message_id"])

    async def test_upsert_updates_existing_row(self, pg_database):
        repo = BaseRepository[DailyTransfer](DailyTransfer, logger)

        async with DatabaseService.get_transaction() as session:
            session.add(User(discord_id=ALICE))
            await session.flush()
            for amount in (10.0, 15.0):
                await repo.upsert(
                    session,
                    values={"user_id": ALICE, "direction": "sent", "amount_today": amount, "reset_date": "2025-01-01"},
                    index_elements=["user_id", "direction"],
                    update_values={"amount_today": DailyTransfer.amount_today + amount},
                )

        async with DatabaseService.get_session() as session:
            stored = (await session.execute(select(DailyTransfer.amount_today))).scalar_one()
        assert stored == 25.0
