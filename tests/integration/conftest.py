"""
Integration fixtures: a real PostgreSQL server via testcontainers.

Run with ``pytest -m integration`` (Docker required). The container is
started once per session; every test gets a freshly created schema that is
dropped afterwards.
"""

from __future__ import annotations

from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from testcontainers.postgres import PostgresContainer

from soma.core.database.service import DatabaseService
from soma.core.logging.logger import get_logger
from soma.engine import EconomyEngine

logger = get_logger(__name__)


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL testcontainer for integration tests.

    Scope: session (container persists across all tests)
    """
    logger.info("Starting PostgreSQL testcontainer...")
    container = PostgresContainer(
        image="postgres:17-alpine",
        driver="asyncpg",
    )
    container.start()

    logger.info(
        "PostgreSQL testcontainer started",
        extra={"url": container.get_connection_url()},
    )

    yield container

    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


@pytest.fixture(scope="session")
def postgres_url(postgres_container: PostgresContainer) -> str:
    # Older testcontainers releases ignore `driver`
    return postgres_container.get_connection_url().replace("psycopg2", "asyncpg")


@pytest_asyncio.fixture
async def pg_database(postgres_url: str) -> AsyncGenerator[None, None]:
    """DatabaseService bound to the container with a clean schema."""
    await DatabaseService.initialize(postgres_url)
    await DatabaseService.create_schema()
    yield
    await DatabaseService.drop_schema()
    await DatabaseService.shutdown()


@pytest_asyncio.fixture
async def pg_engine(pg_database, admin_policy, role_service) -> EconomyEngine:
    return EconomyEngine(role_service=role_service, admin_policy=admin_policy)
