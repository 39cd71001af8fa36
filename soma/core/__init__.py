"""
Core infrastructure layer for Soma.

- Configuration (Config)
- Database subsystem (DatabaseService, DatabaseRetryPolicy, Base)
- Logging (get_logger, LogContext)
- Infrastructure exceptions
- Reference-timezone calendar helpers

Business logic lives in ``soma.modules``; nothing here knows about ichor.
"""
