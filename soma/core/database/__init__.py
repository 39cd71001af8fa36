from soma.core.database.base import Base, IdMixin, TimestampMixin, UTCDateTime, utc_now
from soma.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from soma.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    "DatabaseService",
    "IdMixin",
    "TimestampMixin",
    "UTCDateTime",
    "utc_now",
]
