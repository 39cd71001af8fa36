"""
Unit tests for EconomyEngine.

End-to-end flows through the facade against the in-memory database: each
engine call runs in its own transaction, exactly as callers use it.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from soma.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from soma.core.database.service import DatabaseService
from soma.core.exceptions import DatabaseError
from soma.database.models import Balance, TransactionType
from soma.engine import EconomyEngine
from soma.modules.shared.exceptions import (
    BotNotConfiguredError,
    ConflictError,
    DailyLimitExceededError,
    InsufficientBalanceError,
    InvalidOperationError,
    PermissionDeniedError,
    RewardUnavailableError,
    ValidationError,
)
from tests.conftest import (
    ADMIN,
    ALICE,
    BOB,
    CAROL,
    OTHER_SERVER,
    ROLE_ADMIN,
    ROLE_BOOSTER,
    ROLE_VIP,
    SERVER,
    backdate_regen,
    force_balance,
    stored_balance,
)


async def regen_clock(user_id):
    async with DatabaseService.get_session() as session:
        return (await session.get(Balance, user_id)).last_regen_at


@pytest.fixture
def fast_retry():
    return DatabaseRetryPolicy(
        DatabaseRetryConfig(max_attempts=2, initial_backoff_ms=1, max_backoff_ms=1, jitter_ms=0)
    )


async def price_bots(engine):
    await engine.set_bot_cost(ADMIN, "claude", 10.0, description="Claude")
    await engine.set_bot_cost(ADMIN, "opus", 80.0, description="Opus")
    await engine.set_bot_cost(ADMIN, "haiku", 2.0, description="Haiku")


@pytest.mark.asyncio
class TestIdentity:
    """Test user and server registration."""

    async def test_new_user_gets_starting_balance(self, engine):
        user = await engine.get_or_create_user(ALICE, {"username": "alice", "global_name": "Alice"})

        assert user.username == "alice"
        assert user.display_name == "Alice"
        assert await stored_balance(ALICE) == 50.0

    async def test_profile_refreshed_on_existing_user(self, engine):
        await engine.get_or_create_user(ALICE, {"username": "alice"})
        user = await engine.get_or_create_user(ALICE, {"username": "alice2"})

        assert user.username == "alice2"

    async def test_blank_id_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.get_or_create_user("  ")

    async def test_server_registration(self, engine):
        server = await engine.get_or_create_server(SERVER, "Guild")
        assert server.name == "Guild"


@pytest.mark.asyncio
class TestDeductAndRead:
    """Test spends and regenerated reads through the facade."""

    async def test_cold_start_deduct_creates_user(self, engine):
        result = await engine.deduct(ALICE, 10.0, SERVER, bot_id="claude")

        assert result.balance_after == pytest.approx(40.0, abs=0.01)
        assert await stored_balance(ALICE) == pytest.approx(40.0, abs=0.01)

    async def test_failed_deduct_rolls_back(self, engine):
        await engine.get_or_create_user(ALICE)

        with pytest.raises(InsufficientBalanceError):
            await engine.deduct(ALICE, 60.0)

        assert await engine.list_transactions(ALICE) == []
        assert await stored_balance(ALICE) == pytest.approx(50.0, abs=0.01)

    async def test_read_balance_regenerates(self, engine):
        await engine.get_or_create_user(ALICE)
        await force_balance(ALICE, 0.0)
        await backdate_regen(ALICE, 2)

        info = await engine.read_balance(ALICE)

        assert info.balance == pytest.approx(10.0, abs=0.01)
        assert await stored_balance(ALICE) == 0.0

    async def test_server_role_bonus(self, engine):
        await engine.set_role_config(ADMIN, SERVER, ROLE_BOOSTER, regen_multiplier=2.0)
        await engine.get_or_create_user(ALICE)
        await force_balance(ALICE, 0.0)
        await backdate_regen(ALICE, 1)

        info = await engine.read_balance(ALICE, SERVER, [ROLE_BOOSTER])

        assert info.effective_regen_rate == 10.0
        assert info.balance == pytest.approx(10.0, abs=0.01)

    async def test_best_role_follows_user_outside_server(self, engine):
        await engine.set_role_config(ADMIN, SERVER, ROLE_BOOSTER, regen_multiplier=3.0)
        await engine.observe_user_roles(ALICE, SERVER, [ROLE_BOOSTER])

        info = await engine.read_balance(ALICE)

        assert info.effective_regen_rate == 15.0
        assert info.max_balance == 100.0


@pytest.mark.asyncio
class TestCheckAndDeduct:
    """Test metered bot activations."""

    async def test_affordable_activation_charges(self, engine):
        await price_bots(engine)

        result = await engine.check_and_deduct(ALICE, SERVER, "claude", message_id="m-1")
        tx = await engine.get_transaction_by_id(result.transaction_id)

        assert result.allowed
        assert result.cost == 10.0
        assert result.balance_after == 40.0
        assert tx.type == TransactionType.SPEND.value
        assert tx.bot_id == "claude"

    async def test_unaffordable_activation_denied_with_hints(self, engine):
        await price_bots(engine)

        result = await engine.check_and_deduct(ALICE, SERVER, "opus")

        assert not result.allowed
        assert result.cost == 80.0
        assert result.current_balance == 50.0
        assert result.regen_rate == 5.0
        # 30 ichor at 5/h
        assert result.minutes_to_afford == 360
        assert [a.bot_id for a in result.cheaper_alternatives] == ["haiku", "claude"]
        assert await engine.list_transactions(ALICE) == []

    async def test_denied_activation_leaves_balance_row_untouched(self, engine):
        await engine.set_role_config(ADMIN, SERVER, ROLE_VIP, max_balance_override=500.0)
        await engine.set_balance(ADMIN, ALICE, 300.0)
        await engine.set_bot_cost(ADMIN, "opus", 400.0)
        clock_before = await regen_clock(ALICE)

        # Outside SERVER the global cap of 100 applies
        result = await engine.check_and_deduct(ALICE, OTHER_SERVER, "opus")

        assert not result.allowed
        assert result.current_balance == 100.0
        assert await stored_balance(ALICE) == 300.0
        assert await regen_clock(ALICE) == clock_before
        assert await engine.list_transactions(ALICE) == []

    async def test_role_discount_applies(self, engine):
        await price_bots(engine)
        await engine.set_role_config(ADMIN, SERVER, ROLE_BOOSTER, cost_multiplier=0.5)

        result = await engine.check_and_deduct(ALICE, SERVER, "claude", role_ids=[ROLE_BOOSTER])

        assert result.cost == 5.0
        assert result.balance_after == 45.0

    async def test_free_activation_writes_nothing(self, engine):
        await engine.set_bot_cost(ADMIN, "echo", 0.0)

        result = await engine.check_and_deduct(ALICE, SERVER, "echo")

        assert result.allowed
        assert result.cost == 0.0
        assert result.transaction_id is None
        assert await engine.list_transactions(ALICE) == []

    async def test_unpriced_bot(self, engine):
        with pytest.raises(BotNotConfiguredError):
            await engine.check_and_deduct(ALICE, SERVER, "mystery")

    async def test_price_list(self, engine):
        await price_bots(engine)
        await engine.set_bot_cost(ADMIN, "opus", 1.0, server_id=SERVER)

        entries = await engine.list_bot_costs(SERVER)

        assert [e.bot_id for e in entries] == ["opus", "haiku", "claude"]
        assert await engine.get_bot_description("opus") == "Opus"


@pytest.mark.asyncio
class TestAdminOperations:
    """Test that admin operations are gated and audited."""

    async def test_grant_records_admin(self, engine):
        result = await engine.grant(ADMIN, ALICE, 20.0, reason="contest")
        tx = await engine.get_transaction_by_id(result.transaction_id)

        assert result.balance_after == pytest.approx(70.0, abs=0.01)
        assert tx.type == TransactionType.GRANT.value
        assert tx.from_user_id == ADMIN
        assert tx.meta == {"admin_id": ADMIN, "reason": "contest"}

    async def test_revoke(self, engine):
        result = await engine.revoke(ADMIN, ALICE, 15.0)
        assert result.balance_after == pytest.approx(35.0, abs=0.01)

    async def test_non_admin_refused_without_writes(self, engine):
        with pytest.raises(PermissionDeniedError):
            await engine.grant(BOB, ALICE, 20.0)

        assert await engine.list_transactions(ALICE) == []

    async def test_admin_role_in_request_accepted(self, engine):
        await engine.grant(BOB, ALICE, 5.0, actor_role_ids=[ROLE_ADMIN])

    async def test_admin_role_from_role_cache_accepted(self, engine):
        await engine.observe_user_roles(BOB, SERVER, [ROLE_ADMIN])

        await engine.set_balance(BOB, ALICE, 12.0)
        assert await stored_balance(ALICE) == 12.0

    async def test_reset_all_balances(self, engine):
        await engine.get_or_create_user(ALICE)
        await engine.get_or_create_user(BOB)

        assert await engine.reset_all_balances(ADMIN, 0.0) == 2
        assert await stored_balance(BOB) == 0.0

    async def test_global_config_update_takes_effect(self, engine):
        await engine.update_global_config(ADMIN, {"base_regen_rate": 20})

        info = await engine.read_balance(ALICE)
        assert info.effective_regen_rate == 20.0

    async def test_refused_config_update_leaves_config_unchanged(self, engine):
        with pytest.raises(PermissionDeniedError):
            await engine.update_global_config(BOB, {"base_regen_rate": 20})

        assert (await engine.get_global_config()).base_regen_rate == 5.0

    async def test_invalid_config_update(self, engine):
        with pytest.raises(ValidationError):
            await engine.update_global_config(ADMIN, {"max_balance": -1})

    async def test_server_config_update_and_reset(self, engine):
        updated = await engine.update_server_config(ADMIN, SERVER, {"tip_amount": 12})
        assert updated.tip_amount == 12.0
        assert (await engine.get_server_config(SERVER)).tip_amount == 12.0

        reset = await engine.reset_server_config(ADMIN, SERVER)
        assert reset.tip_amount == 5.0


@pytest.mark.asyncio
class TestTransfers:
    """Test transfers and tips under the daily caps."""

    async def test_transfer_records_daily_counters(self, engine):
        result = await engine.transfer(ALICE, BOB, 20.0, SERVER, note="lunch")
        status = await engine.daily_limit_status(ALICE)

        assert result.from_balance_after == pytest.approx(30.0, abs=0.01)
        assert status.sent_today == 20.0
        assert (await engine.daily_limit_status(BOB)).received_today == 20.0

    async def test_daily_cap_refuses_transfer(self, engine):
        await engine.update_global_config(ADMIN, {"max_daily_sent": 30})
        await engine.transfer(ALICE, BOB, 20.0)

        with pytest.raises(DailyLimitExceededError):
            await engine.transfer(ALICE, BOB, 20.0)

        assert await stored_balance(ALICE) == pytest.approx(30.0, abs=0.01)
        assert (await engine.check_daily_limit(ALICE, CAROL, 10.0)).allowed

    async def test_self_transfer(self, engine):
        with pytest.raises(InvalidOperationError):
            await engine.transfer(ALICE, ALICE, 1.0)

    async def test_tip_moves_server_tip_amount(self, engine):
        result = await engine.give_tip(ALICE, BOB, SERVER, message_id="m-9")
        tx = await engine.get_transaction_by_id(result.transaction_id)

        assert result.amount_debited == 5.0
        assert result.to_balance_after == pytest.approx(55.0, abs=0.01)
        assert tx.type == TransactionType.TIP.value
        assert tx.meta == {"message_id": "m-9"}

    async def test_tip_is_not_refundable(self, engine):
        result = await engine.give_tip(ALICE, BOB, SERVER)

        with pytest.raises(InvalidOperationError):
            await engine.refund(result.transaction_id)

    async def test_tip_without_funds(self, engine):
        await engine.get_or_create_user(ALICE)
        await force_balance(ALICE, 1.0)

        with pytest.raises(InsufficientBalanceError):
            await engine.give_tip(ALICE, BOB, SERVER)


@pytest.mark.asyncio
class TestRewards:
    """Test free reaction rewards."""

    async def test_reward_credits_author(self, engine):
        result = await engine.give_reward(ALICE, BOB, "msg-1", SERVER)
        tx = await engine.get_transaction_by_id(result.transaction_id)

        assert result.balance_after == pytest.approx(51.0, abs=0.01)
        assert tx.type == TransactionType.REWARD.value
        assert tx.from_user_id == ALICE
        assert tx.to_user_id == BOB
        assert await stored_balance(ALICE) == 50.0

    async def test_same_message_rewarded_once(self, engine):
        await engine.update_global_config(ADMIN, {"reward_cooldown_minutes": 0})
        await engine.give_reward(ALICE, BOB, "msg-1", SERVER)

        with pytest.raises(ConflictError):
            await engine.give_reward(ALICE, BOB, "msg-1", SERVER)

    async def test_cooldown_between_rewards(self, engine):
        await engine.give_reward(ALICE, BOB, "msg-1", SERVER)

        with pytest.raises(RewardUnavailableError):
            await engine.give_reward(ALICE, BOB, "msg-2", SERVER)

        status = await engine.reward_status(ALICE)
        assert status.used_today == 1
        assert not await engine.record_reward_claim(ALICE, "msg-1")

    async def test_own_message(self, engine):
        with pytest.raises(InvalidOperationError):
            await engine.give_reward(ALICE, ALICE, "msg-1", SERVER)


@pytest.mark.asyncio
class TestRefunds:
    async def test_refund_once(self, engine):
        spend = await engine.deduct(ALICE, 10.0, SERVER, bot_id="claude")

        refund = await engine.refund(spend.transaction_id, reason="timeout")
        assert refund.amount == 10.0

        with pytest.raises(ConflictError):
            await engine.refund(spend.transaction_id)

    async def test_lost_refund_race_is_conflict(self, engine, mocker):
        mocker.patch.object(
            engine.balances,
            "refund",
            side_effect=IntegrityError("INSERT INTO transactions", {}, Exception("UNIQUE constraint failed")),
        )

        with pytest.raises(ConflictError):
            await engine.refund("00000000-0000-0000-0000-000000000001")


@pytest.mark.asyncio
class TestLedgerQueries:
    async def test_summary_and_leaderboard(self, engine):
        await engine.get_or_create_user(CAROL, {"username": "carol"})
        await engine.give_tip(ALICE, CAROL, SERVER)
        await engine.give_reward(BOB, CAROL, "msg-1", SERVER)
        await engine.transfer(ALICE, BOB, 3.0)
        await engine.deduct(ALICE, 2.0, bot_id="claude")

        summary = await engine.transaction_summary(ALICE)
        board = await engine.leaderboard(limit=5)

        assert summary.total_transactions == 3
        assert summary.total_sent == pytest.approx(10.0)
        assert summary.by_type["tip"].amount_out == 5.0
        assert [(e.user_id, e.total_earned) for e in board] == [(CAROL, 6.0), (BOB, 3.0)]
        assert board[0].username == "carol"
        assert board[0].rank == 1

    async def test_history_newest_first(self, engine):
        first = await engine.deduct(ALICE, 1.0)
        second = await engine.deduct(ALICE, 1.0)

        history = await engine.list_transactions(ALICE, limit=10)
        assert [tx.id for tx in history] == [second.transaction_id, first.transaction_id]

    async def test_metadata_stored_as_given(self, engine):
        metadata = {"author_id": "42", "authorized_by": ADMIN, "token_count": 812, "message_id": "m"}

        result = await engine.add(BOB, 5.0, TransactionType.REWARD, metadata=metadata)
        tx = await engine.get_transaction_by_id(result.transaction_id)

        assert tx.meta == metadata


@pytest.mark.asyncio
class TestStorageFailures:
    async def test_storage_error_wrapped_after_retries(self, database, role_service, admin_policy, fast_retry, mocker):
        engine = EconomyEngine(role_service=role_service, admin_policy=admin_policy, retry_policy=fast_retry)
        deduct = mocker.patch.object(
            engine.balances,
            "deduct",
            side_effect=OperationalError("UPDATE balances", {}, Exception("database is locked")),
        )

        with pytest.raises(DatabaseError) as exc_info:
            await engine.deduct(ALICE, 1.0)

        assert exc_info.value.operation == "deduct"
        assert deduct.await_count == 2
