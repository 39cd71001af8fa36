"""
Database Retry Policy - Infrastructure Resilience

Purpose
-------
Re-run a whole transactional operation when the database reports a transient
failure: serialization conflicts under SERIALIZABLE isolation, deadlocks, or
dropped connections. Uses exponential backoff with jitter.

Responsibilities
----------------
- Execute async operations with retry logic
- Classify errors as retriable or non-retriable
- Implement exponential backoff with jitter
- Emit structured logs for each attempt

Non-Responsibilities
--------------------
- Transaction management (the retried operation opens its own transaction)
- Business logic or domain rules

Architecture Notes
------------------
**Retry Classification**:
- Retriable: OperationalError, connection-invalidated DBAPIError, and any
  DBAPIError whose SQLSTATE is 40001 (serialization_failure) or 40P01
  (deadlock_detected)
- Non-retriable: everything else, notably IntegrityError and domain exceptions

**Backoff Strategy**:
- Formula: min(base * 2^(attempt-1), max) + random(0, jitter)

**Correct usage** (retry wraps the transaction):

>>> await retry_policy.execute(
>>>     lambda: engine_op_that_opens_get_transaction(),
>>>     operation_name="balance.deduct",
>>> )

Retrying *inside* an open transaction is never correct: the failed
transaction must be rolled back and the read-modify-write re-run from scratch.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from soma.core.config.config import Config
from soma.core.exceptions import sqlstate_of
from soma.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class DatabaseRetryConfig:
    """
    Configuration for database retry behavior.

    Attributes
    ----------
    max_attempts : int
        Maximum number of attempts (including initial attempt).
    initial_backoff_ms : int
        Initial backoff duration in milliseconds.
    max_backoff_ms : int
        Maximum backoff duration in milliseconds.
    jitter_ms : int
        Maximum random jitter to add to backoff in milliseconds.
    """

    max_attempts: int
    initial_backoff_ms: int
    max_backoff_ms: int
    jitter_ms: int

    @classmethod
    def from_config(cls) -> DatabaseRetryConfig:
        return cls(
            max_attempts=int(Config.DATABASE_RETRY_MAX_ATTEMPTS),
            initial_backoff_ms=int(Config.DATABASE_RETRY_INITIAL_BACKOFF_MS),
            max_backoff_ms=int(Config.DATABASE_RETRY_MAX_BACKOFF_MS),
            jitter_ms=int(Config.DATABASE_RETRY_JITTER_MS),
        )


# ============================================================================
# Retry Policy
# ============================================================================


class DatabaseRetryPolicy:
    """
    Execute async database operations with retry semantics.

    Public API
    ----------
    - from_config() -> Create policy from Config
    - is_retriable(exc) -> Classification used by execute()
    - execute(operation, operation_name, context) -> Execute with retries
    """

    def __init__(self, config: DatabaseRetryConfig) -> None:
        self._config = config

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(DatabaseRetryConfig.from_config())

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def is_retriable(self, exc: BaseException) -> bool:
        if isinstance(exc, IntegrityError):
            return False
        if isinstance(exc, OperationalError):
            return True
        if isinstance(exc, DBAPIError):
            return exc.connection_invalidated or sqlstate_of(exc) in _TRANSIENT_SQLSTATES
        return False

    def _compute_backoff_ms(self, attempt: int) -> int:
        exponent = max(attempt - 1, 0)
        capped = min(self._config.initial_backoff_ms * (2**exponent), self._config.max_backoff_ms)
        jitter = random.randint(0, self._config.jitter_ms) if self._config.jitter_ms > 0 else 0
        return capped + jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Execute async operation with retry logic for transient failures.

        Parameters
        ----------
        operation : Callable[[], Awaitable[T]]
            Zero-argument async callable that opens and completes its own
            transaction.
        operation_name : str
            Stable identifier for logging (e.g., "balance.transfer").
        context : Optional[dict[str, Any]]
            Additional structured context for logs.

        Raises
        ------
        Exception
            The last exception when retries are exhausted, or any
            non-retriable exception immediately.
        """
        ctx_extra = dict(context or {})
        ctx_extra["retry_operation"] = operation_name

        attempt = 0

        while True:
            attempt += 1

            try:
                return await operation()

            except Exception as exc:
                retriable = self.is_retriable(exc)
                will_retry = retriable and attempt < self._config.max_attempts

                if not retriable:
                    raise

                logger.warning(
                    "Database operation failed",
                    extra={
                        **ctx_extra,
                        "attempt": attempt,
                        "error_type": type(exc).__name__,
                        "will_retry": will_retry,
                    },
                )

                if not will_retry:
                    logger.error(
                        "Database operation gave up after retries",
                        extra={**ctx_extra, "attempts": attempt},
                    )
                    raise

                await asyncio.sleep(self._compute_backoff_ms(attempt) / 1000.0)
