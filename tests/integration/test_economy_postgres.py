"""
Integration tests for concurrent economy operations on PostgreSQL.

SQLite serializes every writer, so row locking and ON CONFLICT races only
show up against a real server.
"""

import asyncio

import pytest

from soma.modules.shared.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    RewardUnavailableError,
)
from tests.conftest import ADMIN, ALICE, BOB, SERVER, stored_balance


@pytest.mark.integration
@pytest.mark.database
class TestConcurrentMoneyMovement:
    """Test that concurrent writers never overdraw or double-credit."""

    async def test_concurrent_deducts_never_overdraw(self, pg_engine):
        await pg_engine.get_or_create_user(ALICE)

        results = await asyncio.gather(
            *(pg_engine.deduct(ALICE, 10.0, bot_id="claude") for _ in range(10)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, BaseException)]
        refused = [r for r in results if isinstance(r, InsufficientBalanceError)]
        assert len(succeeded) == 5
        assert len(refused) == 5
        assert await stored_balance(ALICE) == pytest.approx(0.0, abs=0.01)
        assert len(await pg_engine.list_transactions(ALICE, limit=50)) == 5

    async def test_opposing_transfers_conserve_total(self, pg_engine):
        await pg_engine.get_or_create_user(ALICE)
        await pg_engine.get_or_create_user(BOB)

        await asyncio.gather(
            *(pg_engine.transfer(ALICE, BOB, 1.0) for _ in range(5)),
            *(pg_engine.transfer(BOB, ALICE, 1.0) for _ in range(5)),
        )

        total = await stored_balance(ALICE) + await stored_balance(BOB)
        assert total == pytest.approx(100.0, abs=0.1)

    async def test_concurrent_refunds_credit_once(self, pg_engine):
        spend = await pg_engine.deduct(ALICE, 10.0, SERVER, bot_id="claude")

        results = await asyncio.gather(
            pg_engine.refund(spend.transaction_id),
            pg_engine.refund(spend.transaction_id),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, ConflictError)) == 1
        assert await stored_balance(ALICE) == pytest.approx(50.0, abs=0.01)


@pytest.mark.integration
@pytest.mark.database
class TestConcurrentRewards:
    async def test_same_message_rewarded_once(self, pg_engine):
        await pg_engine.update_global_config(ADMIN, {"reward_cooldown_minutes": 0})
        await pg_engine.get_or_create_server(SERVER)
        await pg_engine.get_or_create_user(ALICE)
        await pg_engine.get_or_create_user(BOB)

        results = await asyncio.gather(
            *(pg_engine.give_reward(ALICE, BOB, "msg-1", SERVER) for _ in range(3)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, ConflictError)) == 2
        assert await stored_balance(BOB) == pytest.approx(51.0, abs=0.01)

    async def test_reactor_daily_cap_holds_under_concurrency(self, pg_engine):
        await pg_engine.update_global_config(
            ADMIN, {"reward_cooldown_minutes": 0, "max_daily_rewards": 1}
        )
        await pg_engine.get_or_create_server(SERVER)
        await pg_engine.get_or_create_user(ALICE)
        await pg_engine.get_or_create_user(BOB)

        results = await asyncio.gather(
            *(pg_engine.give_reward(ALICE, BOB, f"msg-{i}", SERVER) for i in range(3)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, RewardUnavailableError)) == 2
        assert (await pg_engine.reward_status(ALICE)).used_today == 1
        assert await stored_balance(BOB) == pytest.approx(51.0, abs=0.01)
