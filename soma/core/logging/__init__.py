from soma.core.logging.logger import (
    LogContext,
    get_log_context,
    get_logger,
    get_logging_health,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "LogContext",
    "get_log_context",
    "get_logger",
    "get_logging_health",
    "setup_logging",
    "shutdown_logging",
]
