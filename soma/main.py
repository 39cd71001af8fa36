"""
Soma - Process Entry Point
==========================

Runs the economy backend as a standalone worker:

- Logging setup
- Config validation
- Database initialization (schema created if missing)
- Periodic retention maintenance until SIGTERM/SIGINT
- Graceful shutdown

Front ends (chat bot, HTTP API) embed EconomyEngine in their own process;
this entry point only owns the background housekeeping.
"""

import asyncio
import signal
import sys

from soma.core.config.config import Config
from soma.core.database.bootstrap import (
    initialize_database_subsystem,
    shutdown_database_subsystem,
)
from soma.core.logging.logger import (
    get_logger,
    get_logging_health,
    setup_logging,
    shutdown_logging,
)
from soma.engine import EconomyEngine

logger = get_logger(__name__)


# ============================================================================
# Application Bootstrap
# ============================================================================

async def _startup() -> EconomyEngine:
    """Initialize infrastructure and build the engine."""
    logger.info("========== SOMA INITIALIZATION START ==========")

    try:
        Config.validate()
        logger.info("✓ Configuration validated")
    except Exception as exc:
        logger.critical(f"Configuration validation failed: {exc}")
        raise

    try:
        await initialize_database_subsystem(create_schema=True)
        logger.info("✓ Database service initialized")
    except Exception as exc:
        logger.critical(f"Database initialization failed: {exc}", exc_info=True)
        raise

    engine = EconomyEngine()
    logger.info("✓ Economy engine ready")

    logger.info("========== INFRASTRUCTURE INITIALIZED SUCCESSFULLY ==========")
    return engine


# ============================================================================
# Application Shutdown
# ============================================================================

async def _shutdown() -> None:
    logger.info("========== SOMA SHUTDOWN START ==========")

    try:
        await shutdown_database_subsystem()
        logger.info("✓ Database service shut down")
    except Exception as exc:
        logger.error(f"Database service shutdown error: {exc}", exc_info=True)

    health = get_logging_health()
    if health.records_dropped:
        logger.warning(
            "Log records were dropped while the queue was full",
            extra={"records_dropped": health.records_dropped},
        )

    logger.info("========== SHUTDOWN COMPLETE ==========")


# ============================================================================
# Application Entrypoint
# ============================================================================

def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.debug(f"{sig.name} not supported on this platform (likely Windows)")


async def main() -> None:
    """
    Lifecycle:
        1. Validate configuration and initialize the database
        2. Run maintenance every SOMA_MAINTENANCE_INTERVAL_SECONDS
        3. Stop on signal and shut down gracefully
    """
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    try:
        engine = await _startup()
        await engine.maintenance().run_forever(stop_event=stop_event)

    except asyncio.CancelledError:
        logger.warning("Asyncio task cancellation received; shutting down gracefully.")
        raise

    except Exception as exc:
        logger.critical(f"Fatal error: {exc}", exc_info=True)
        sys.exit(1)

    finally:
        await _shutdown()


def run() -> None:
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Manually stopped via keyboard interrupt.")
    finally:
        shutdown_logging()


if __name__ == "__main__":
    run()
