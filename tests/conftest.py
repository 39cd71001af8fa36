"""
Pytest Configuration and Fixtures for the Soma Test Suite
=========================================================

Purpose
-------
Centralized fixtures shared by unit and integration tests.

Responsibilities
----------------
- In-memory SQLite database through the real DatabaseService (unit tests)
- Service and engine construction with isolated config caches
- Well-known Discord-style ids and small data helpers

Architecture Notes
------------------
- Unit tests run against `sqlite+aiosqlite://` with StaticPool; each test
  gets a fresh schema
- Integration fixtures (PostgreSQL testcontainer) live in
  tests/integration/conftest.py
- Time-dependent behavior is tested by backdating stored timestamps rather
  than patching the clock
"""

from __future__ import annotations

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from datetime import timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from soma.core.database.base import utc_now
from soma.core.database.service import DatabaseService
from soma.core.logging.logger import get_logger
from soma.database.models import Balance
from soma.engine import EconomyEngine
from soma.modules.admin import AdminPolicy
from soma.modules.balance import BalanceService
from soma.modules.config import ConfigService, GlobalConfigCache
from soma.modules.costs import CostService
from soma.modules.economy import TransactionLogService
from soma.modules.limits import DailyLimitService
from soma.modules.rewards import RewardService
from soma.modules.roles import RoleService
from soma.modules.users import UserService

logger = get_logger(__name__)

# ============================================================================
# IDS
# ============================================================================

ALICE = "100000000000000001"
BOB = "100000000000000002"
CAROL = "100000000000000003"
ADMIN = "100000000000000099"

SERVER = "200000000000000001"
OTHER_SERVER = "200000000000000002"

ROLE_BOOSTER = "300000000000000001"
ROLE_VIP = "300000000000000002"
ROLE_ADMIN = "300000000000000099"

# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    """Configure pytest environment."""
    os.environ["ENVIRONMENT"] = "testing"
    os.environ["LOG_LEVEL"] = "DEBUG"


# ============================================================================
# DATABASE FIXTURES (Unit Tests)
# ============================================================================


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """
    Fresh in-memory database per test.

    Scope: function (StaticPool keeps the single connection alive)
    """
    await DatabaseService.initialize("sqlite+aiosqlite://")
    await DatabaseService.create_schema()
    yield
    await DatabaseService.shutdown()


@pytest_asyncio.fixture
async def session(database) -> AsyncGenerator[AsyncSession, None]:
    """
    One transaction for service-level tests. Commits if the test body
    returns normally.
    """
    async with DatabaseService.get_transaction() as s:
        yield s


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def config_service() -> ConfigService:
    return ConfigService(cache=GlobalConfigCache())


@pytest.fixture
def role_service() -> RoleService:
    return RoleService()


@pytest.fixture
def transaction_log() -> TransactionLogService:
    return TransactionLogService()


@pytest.fixture
def user_service(config_service) -> UserService:
    return UserService(config_service)


@pytest.fixture
def balance_service(config_service, role_service, transaction_log) -> BalanceService:
    return BalanceService(config_service, role_service, transaction_log)


@pytest.fixture
def cost_service(config_service, role_service) -> CostService:
    return CostService(config_service, role_service)


@pytest.fixture
def limit_service(config_service) -> DailyLimitService:
    return DailyLimitService(config_service)


@pytest.fixture
def reward_service(config_service) -> RewardService:
    return RewardService(config_service)


@pytest.fixture
def admin_policy(role_service) -> AdminPolicy:
    return AdminPolicy(admin_users=[ADMIN], admin_roles=[ROLE_ADMIN], role_service=role_service)


@pytest_asyncio.fixture
async def engine(database, admin_policy, role_service) -> EconomyEngine:
    """EconomyEngine over the in-memory database with a known admin."""
    return EconomyEngine(role_service=role_service, admin_policy=admin_policy)


# ============================================================================
# HELPERS
# ============================================================================


async def backdate_regen(user_id: str, hours: float) -> None:
    """Move a user's regen clock into the past, as if `hours` had elapsed."""
    async with DatabaseService.get_transaction() as s:
        row = await s.get(Balance, user_id)
        assert row is not None, f"no balance row for {user_id}"
        row.last_regen_at = utc_now() - timedelta(hours=hours)


async def stored_balance(user_id: str) -> float:
    """The persisted amount, without regeneration applied."""
    async with DatabaseService.get_session() as s:
        row = await s.get(Balance, user_id)
        assert row is not None, f"no balance row for {user_id}"
        return row.amount


async def force_balance(user_id: str, amount: float) -> None:
    """Write a stored amount and restart the regen clock."""
    async with DatabaseService.get_transaction() as s:
        row = await s.get(Balance, user_id)
        assert row is not None, f"no balance row for {user_id}"
        row.amount = amount
        row.last_regen_at = utc_now()
