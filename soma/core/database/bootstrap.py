"""
Database Subsystem Bootstrap

Purpose
-------
Single entry point for bringing the database subsystem up and down: engine
initialization, optional schema creation, and a readiness health check.

Bootstrap Sequence
------------------
1. `initialize_database_subsystem()` called during process startup
2. DatabaseService initializes engine and session factory
3. Schema is created when `create_schema=True` (fresh deployments, tests)
4. Optional health check verifies connectivity with a timeout

Usage Example
-------------
>>> await initialize_database_subsystem(create_schema=True)
>>> retry = create_retry_policy()
>>> ...
>>> await shutdown_database_subsystem()
"""

from __future__ import annotations

import asyncio
from typing import Optional

from soma.core.database.retry_policy import DatabaseRetryPolicy
from soma.core.database.service import (
    DatabaseInitializationError,
    DatabaseService,
)
from soma.core.logging.logger import get_logger

logger = get_logger(__name__)

HEALTH_TIMEOUT_SECONDS = 5.0


# ============================================================================
# Subsystem Lifecycle
# ============================================================================


async def initialize_database_subsystem(
    *,
    url: Optional[str] = None,
    create_schema: bool = False,
    verify_health: bool = True,
) -> None:
    """
    Initialize the database subsystem.

    Raises
    ------
    DatabaseInitializationError
        If initialization fails or the health check fails/times out.
    """
    logger.info("Initializing database subsystem")

    await DatabaseService.initialize(url)

    if create_schema:
        await DatabaseService.create_schema()

    if not verify_health:
        logger.info("Database subsystem initialized (health check skipped)")
        return

    try:
        healthy = await asyncio.wait_for(
            DatabaseService.health_check(),
            timeout=HEALTH_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as exc:
        logger.error(
            "Database health check timed out during bootstrap",
            extra={"timeout_seconds": HEALTH_TIMEOUT_SECONDS},
        )
        raise DatabaseInitializationError(
            f"Database health check timed out after {HEALTH_TIMEOUT_SECONDS}s"
        ) from exc

    if not healthy:
        logger.error("Database health check failed during bootstrap")
        raise DatabaseInitializationError(
            "Database is unreachable or unhealthy after initialization"
        )

    logger.info("Database subsystem initialized and healthy")


async def shutdown_database_subsystem() -> None:
    """Dispose the engine. Safe to call multiple times."""
    logger.info("Shutting down database subsystem")
    await DatabaseService.shutdown()
    logger.info("Database subsystem shutdown complete")


# ============================================================================
# Component Factories
# ============================================================================


def create_retry_policy() -> DatabaseRetryPolicy:
    """Create a retry policy configured from Config."""
    return DatabaseRetryPolicy.from_config()
