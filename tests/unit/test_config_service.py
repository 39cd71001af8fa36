"""
Unit tests for ConfigService.

Tests global config resolution and caching, admin update validation, and
per-server config documents.
"""

import pytest

from soma.core.database.service import DatabaseService
from soma.database.models import GLOBAL_CONFIG_ID, GlobalConfig, Server
from soma.modules.config import ConfigService, GlobalConfigCache, ServerConfig
from soma.modules.shared.exceptions import ValidationError
from tests.conftest import ADMIN, SERVER


@pytest.mark.asyncio
class TestGlobalConfigResolution:
    """Test persisted > environment > default resolution."""

    async def test_defaults_without_row(self, session, config_service):
        config = await config_service.get_global_config(session)

        assert config.base_regen_rate == 5.0
        assert config.max_balance == 100.0
        assert config.starting_balance == 50.0
        assert config.reward_cooldown_minutes == 5
        assert config.max_daily_rewards == 3
        assert config.global_cost_multiplier == 1.0
        assert config.max_daily_sent == 1000.0
        assert config.max_daily_received == 2000.0

    async def test_persisted_override_wins(self, session, config_service):
        session.add(GlobalConfig(id=GLOBAL_CONFIG_ID, base_regen_rate=12.0, max_daily_rewards=7))
        await session.flush()

        config = await config_service.get_global_config(session)

        assert config.base_regen_rate == 12.0
        assert config.max_daily_rewards == 7
        # NULL column means "no override"
        assert config.max_balance == 100.0

    async def test_environment_value_used_when_no_override(self, session, mocker):
        mocker.patch("soma.modules.config.service.Config.MAX_BALANCE", 250.0)
        service = ConfigService(cache=GlobalConfigCache())

        config = await service.get_global_config(session)

        assert config.max_balance == 250.0

    async def test_invalid_environment_value_falls_back(self, session, mocker):
        mocker.patch("soma.modules.config.service.Config.BASE_REGEN_RATE", -3.0)
        service = ConfigService(cache=GlobalConfigCache())

        config = await service.get_global_config(session)

        assert config.base_regen_rate == 5.0

    async def test_result_is_cached(self, session, config_service):
        first = await config_service.get_global_config(session)
        second = await config_service.get_global_config(session)

        assert first is second
        assert config_service.cache.hits == 1
        assert config_service.cache.misses == 1
        assert config_service.cache.age_seconds is not None


@pytest.mark.asyncio
class TestUpdateGlobalConfig:
    """Test admin updates to the global config."""

    async def test_update_persists_and_records_actor(self, database, config_service):
        async with DatabaseService.get_transaction() as session:
            await config_service.update_global_config(session, {"base_regen_rate": 10.0}, ADMIN)

        async with DatabaseService.get_session() as session:
            row = await session.get(GlobalConfig, GLOBAL_CONFIG_ID)
            assert row.base_regen_rate == 10.0
            assert row.modified_by == ADMIN
            assert row.modified_at is not None

    async def test_update_invalidates_cache(self, session, config_service):
        before = await config_service.get_global_config(session)

        after = await config_service.update_global_config(session, {"max_balance": 500.0}, ADMIN)

        assert before.max_balance == 100.0
        assert after.max_balance == 500.0
        assert (await config_service.get_global_config(session)).max_balance == 500.0

    @pytest.mark.parametrize(
        "updates",
        [
            {"base_regen_rate": 0},
            {"base_regen_rate": 1001},
            {"max_balance": 0},
            {"starting_balance": -1},
            {"reward_cooldown_minutes": 1441},
            {"reward_cooldown_minutes": 2.5},
            {"max_daily_rewards": 101},
            {"global_cost_multiplier": 0.05},
            {"max_daily_sent": 100_001},
            {"max_daily_received": -1},
        ],
    )
    async def test_out_of_range_rejected(self, session, config_service, updates):
        with pytest.raises(ValidationError):
            await config_service.update_global_config(session, updates, ADMIN)

    async def test_unknown_field_rejected(self, session, config_service):
        with pytest.raises(ValidationError):
            await config_service.update_global_config(session, {"tax_rate": 0.1}, ADMIN)

    async def test_invalid_update_writes_nothing(self, session, config_service):
        with pytest.raises(ValidationError):
            await config_service.update_global_config(
                session, {"base_regen_rate": 8.0, "max_balance": -5}, ADMIN
            )

        assert await session.get(GlobalConfig, GLOBAL_CONFIG_ID) is None

    async def test_boundary_values_accepted(self, session, config_service):
        config = await config_service.update_global_config(
            session,
            {"base_regen_rate": 1000, "starting_balance": 0, "max_daily_rewards": 0, "global_cost_multiplier": 0.1},
            ADMIN,
        )

        assert config.base_regen_rate == 1000.0
        assert config.starting_balance == 0.0
        assert config.max_daily_rewards == 0


@pytest.mark.asyncio
class TestServerConfig:
    """Test per-server config documents."""

    async def test_first_access_creates_server_with_defaults(self, session, config_service):
        config = await config_service.get_or_create_server_config(session, SERVER)

        assert config.reward_emoji == ["⭐", "🔥", "💯", "👏"]
        assert config.reward_amount == 1.0
        assert config.tip_emoji == "🫀"
        assert config.tip_amount == 5.0
        assert await session.get(Server, SERVER) is not None

    async def test_update_merges_and_records_provenance(self, session, config_service):
        updated = await config_service.update_server_config(
            session, SERVER, {"tip_amount": 10, "reward_emoji": ["🎉"]}, ADMIN
        )

        assert updated.tip_amount == 10.0
        assert updated.reward_emoji == ["🎉"]
        assert updated.reward_amount == 1.0
        assert updated.last_modified_by == ADMIN
        assert updated.last_modified_at is not None

        reread = await config_service.get_or_create_server_config(session, SERVER)
        assert reread.tip_amount == 10.0

    @pytest.mark.parametrize(
        "updates",
        [
            {"reward_amount": 0.05},
            {"reward_amount": 101},
            {"tip_amount": 0.5},
            {"reward_emoji": []},
            {"reward_emoji": ["a"] * 11},
            {"tip_emoji": ""},
            {"tip_emoji": ["🫀"]},
            {"colour": "red"},
        ],
    )
    async def test_invalid_updates_rejected(self, session, config_service, updates):
        with pytest.raises(ValidationError):
            await config_service.update_server_config(session, SERVER, updates, ADMIN)

    async def test_reset_restores_defaults(self, session, config_service):
        await config_service.update_server_config(session, SERVER, {"reward_amount": 50}, ADMIN)

        reset = await config_service.reset_server_config(session, SERVER, ADMIN)

        assert reset.reward_amount == 1.0
        assert reset.last_modified_by == ADMIN

    async def test_rename_on_ensure(self, session, config_service):
        await config_service.ensure_server(session, SERVER, "Old Name")
        server = await config_service.ensure_server(session, SERVER, "New Name")

        assert server.name == "New Name"


class TestParseServerConfig:
    """Test tolerant parsing of stored documents."""

    def test_unknown_keys_ignored(self):
        config = ConfigService().parse_server_config({"tip_amount": 7, "legacy": True})
        assert config.tip_amount == 7.0

    def test_ill_typed_keys_keep_defaults(self):
        config = ConfigService().parse_server_config({"reward_amount": "lots", "reward_emoji": "⭐"})

        assert config.reward_amount == 1.0
        assert config.reward_emoji == ServerConfig().reward_emoji

    def test_malformed_json_falls_back_to_defaults(self):
        config = ConfigService().parse_server_config("{not json", name="Guild")

        assert config == ServerConfig(name="Guild")

    def test_json_string_document_parsed(self):
        config = ConfigService().parse_server_config('{"tip_emoji": "💸"}')
        assert config.tip_emoji == "💸"
