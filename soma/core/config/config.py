"""
Static configuration management for Soma.

Purpose
-------
Provides centralized static configuration loaded from environment variables
with sensible defaults, type validation, and bounds checking. This module
handles the bootstrap values that are fixed at process start; runtime policy
lives in the database and is resolved by ConfigService.

Responsibilities
----------------
- Load configuration from environment variables with .env support
- Provide type-safe access to all static configuration values
- Seed the three base economy values (regen rate, max balance, starting balance)
- Parse admin allowlists for the AdminPolicy predicate
- Validate critical settings on startup
- Track configuration loading metrics

Non-Responsibilities
--------------------
- Database-backed economy policy (handled by ConfigService)
- Per-server reward/tip configuration (handled by ConfigService)
- Authorization decisions (handled by AdminPolicy)

Architecture Notes
------------------
- Singleton pattern via class methods (no instantiation)
- Auto-loads on module import via Config.validate()
- Base economy values are only honoured when they parse to a usable number;
  anything else falls back to the hardcoded default with a warning
- Metrics track which values came from environment vs defaults

Environment Variables
---------------------
Database:
- DATABASE_URL (default: sqlite+aiosqlite:///./soma.db)
- DATABASE_POOL_SIZE, DATABASE_MAX_OVERFLOW, DATABASE_POOL_RECYCLE,
  DATABASE_POOL_TIMEOUT, DATABASE_STATEMENT_TIMEOUT_MS, DATABASE_ECHO
- DATABASE_ISOLATION_LEVEL (default: SERIALIZABLE, PostgreSQL only)
- DATABASE_RETRY_* (retry policy tuning)

Economy bootstrap:
- SOMA_BASE_REGEN_RATE (default: 5.0 ichor/hour)
- SOMA_MAX_BALANCE (default: 100.0)
- SOMA_STARTING_BALANCE (default: 50.0)
- SOMA_REFERENCE_TIMEZONE (default: America/Los_Angeles)
- SOMA_TRANSFER_OVERFLOW_POLICY (default: clamp)

Admin / maintenance:
- SOMA_ADMIN_USERS, SOMA_ADMIN_ROLES (comma separated ids)
- SOMA_TRANSACTION_RETENTION_DAYS (default: 90, 0 disables pruning)
- SOMA_DAILY_RETENTION_DAYS (default: 7)
- SOMA_ROLE_CACHE_MAX_AGE_HOURS (default: 168)
- SOMA_MAINTENANCE_INTERVAL_SECONDS (default: 3600)
"""

import logging
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# ============================================================================
# Enums and Constants
# ============================================================================


class Environment(Enum):
    """
    Deployment environment types.
    """
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def from_string(cls, value: str) -> "Environment":
        """
        Parse environment string safely with fallback.

        Example
        -------
        >>> Environment.from_string("production") == Environment.PRODUCTION
        True
        >>> Environment.from_string("invalid") == Environment.DEVELOPMENT
        True
        """
        try:
            return cls(value.lower())
        except ValueError:
            # Structured logger is not initialized during bootstrap
            logging.warning(
                f"Unknown environment '{value}', defaulting to development"
            )
            return cls.DEVELOPMENT


# ============================================================================
# Configuration Metrics Tracker
# ============================================================================

class _ConfigLoadMetrics:
    """
    Internal metrics tracker for configuration loading.

    Tracks which configuration values came from environment variables
    versus defaults, and any validation errors encountered.
    """

    def __init__(self):
        self.env_vars_loaded: Dict[str, bool] = {}
        self.validation_errors: Dict[str, str] = {}
        self.defaults_used: Dict[str, Any] = {}
        self.last_reload: Optional[str] = None

    def record_env_load(self, key: str, from_env: bool, value: Any, default: Any):
        """Record whether a config value came from environment."""
        self.env_vars_loaded[key] = from_env
        if not from_env:
            self.defaults_used[key] = default

    def record_validation_error(self, key: str, error: str):
        """Record a validation error."""
        self.validation_errors[key] = error

    def get_summary(self) -> Dict[str, Any]:
        """Get configuration loading summary."""
        return {
            "total_configs": len(self.env_vars_loaded),
            "from_environment": sum(1 for v in self.env_vars_loaded.values() if v),
            "from_defaults": sum(1 for v in self.env_vars_loaded.values() if not v),
            "validation_errors": len(self.validation_errors),
            "defaults_used": list(self.defaults_used.keys()),
            "last_reload": self.last_reload,
        }


# ============================================================================
# Main Configuration Class
# ============================================================================


class Config:
    """
    Centralized static configuration for the Soma economy engine.

    Usage
    -----
    >>> db_url = Config.DATABASE_URL
    >>> Config.BASE_REGEN_RATE
    5.0
    >>> if Config.is_production():
    ...     logger.info("Running in production mode")
    """

    # =========================================================================
    # Internal State
    # =========================================================================

    _metrics: Optional[_ConfigLoadMetrics] = None
    _enable_metrics: bool = True
    _validated: bool = False

    # =========================================================================
    # Database Configuration
    # =========================================================================

    DATABASE_URL: str = "sqlite+aiosqlite:///./soma.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False
    DATABASE_POOL_RECYCLE: int = 1800
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_STATEMENT_TIMEOUT_MS: int = 30_000
    DATABASE_ISOLATION_LEVEL: str = "SERIALIZABLE"

    DATABASE_RETRY_MAX_ATTEMPTS: int = 3
    DATABASE_RETRY_INITIAL_BACKOFF_MS: int = 50
    DATABASE_RETRY_MAX_BACKOFF_MS: int = 1000
    DATABASE_RETRY_JITTER_MS: int = 50

    # =========================================================================
    # Environment Configuration
    # =========================================================================

    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: Optional[bool] = None
    LOG_COLORS: bool = True

    # =========================================================================
    # Directory Configuration
    # =========================================================================

    PROJECT_ROOT = Path(__file__).resolve().parents[3]
    LOGS_DIR = PROJECT_ROOT / "logs"

    # =========================================================================
    # Economy Bootstrap
    # =========================================================================

    BASE_REGEN_RATE: float = 5.0
    MAX_BALANCE: float = 100.0
    STARTING_BALANCE: float = 50.0
    REFERENCE_TIMEZONE: str = "America/Los_Angeles"
    TRANSFER_OVERFLOW_POLICY: str = "clamp"

    # =========================================================================
    # Admin Allowlists
    # =========================================================================

    ADMIN_USERS: List[str] = []
    ADMIN_ROLES: List[str] = []

    # =========================================================================
    # Maintenance / Retention
    # =========================================================================

    TRANSACTION_RETENTION_DAYS: int = 90
    DAILY_RETENTION_DAYS: int = 7
    ROLE_CACHE_MAX_AGE_HOURS: int = 168
    MAINTENANCE_INTERVAL_SECONDS: int = 3600

    # =========================================================================
    # Helper Methods
    # =========================================================================

    @classmethod
    def _init_metrics(cls):
        """Initialize metrics tracking if enabled."""
        if cls._enable_metrics and cls._metrics is None:
            cls._metrics = _ConfigLoadMetrics()

    @classmethod
    def _reject(cls, key: str, error: str) -> None:
        logging.warning(error)
        if cls._metrics:
            cls._metrics.record_validation_error(key, error)

    @classmethod
    def _safe_int(
        cls,
        key: str,
        default: int,
        min_val: Optional[int] = None,
        max_val: Optional[int] = None,
    ) -> int:
        """
        Safely parse integer from environment with validation.

        Parameters
        ----------
        key:
            Environment variable name.
        default:
            Default value if not set or invalid.
        min_val:
            Minimum allowed value (inclusive).
        max_val:
            Maximum allowed value (inclusive).

        Example
        -------
        >>> Config._safe_int("DATABASE_POOL_SIZE", 10, min_val=1, max_val=200)
        10
        """
        cls._init_metrics()

        raw_value = os.getenv(key)

        if raw_value is None:
            if cls._metrics:
                cls._metrics.record_env_load(key, False, default, default)
            return default

        try:
            value = int(raw_value)
        except ValueError:
            cls._reject(
                key, f"{key}='{raw_value}' is not a valid integer, using default {default}"
            )
            return default

        if min_val is not None and value < min_val:
            cls._reject(
                key, f"{key}={value} is below minimum {min_val}, using default {default}"
            )
            return default

        if max_val is not None and value > max_val:
            cls._reject(
                key, f"{key}={value} exceeds maximum {max_val}, using default {default}"
            )
            return default

        if cls._metrics:
            cls._metrics.record_env_load(key, True, value, default)

        return value

    @classmethod
    def _safe_float(
        cls,
        key: str,
        default: float,
        min_val: Optional[float] = None,
        exclusive_min: bool = False,
    ) -> float:
        """
        Safely parse a float from environment.

        With ``exclusive_min`` the value must be strictly greater than
        ``min_val``; the base regen rate and max balance use this so that
        ``0`` falls back to the default.
        """
        cls._init_metrics()

        raw_value = os.getenv(key)

        if raw_value is None or raw_value.strip() == "":
            if cls._metrics:
                cls._metrics.record_env_load(key, False, default, default)
            return default

        try:
            value = float(raw_value)
        except ValueError:
            cls._reject(
                key, f"{key}='{raw_value}' is not a valid number, using default {default}"
            )
            return default

        if value != value:  # NaN
            cls._reject(key, f"{key} is NaN, using default {default}")
            return default

        if min_val is not None:
            too_low = value <= min_val if exclusive_min else value < min_val
            if too_low:
                cls._reject(
                    key, f"{key}={value} is out of range, using default {default}"
                )
                return default

        if cls._metrics:
            cls._metrics.record_env_load(key, True, value, default)

        return value

    @classmethod
    def _safe_bool(cls, key: str, default: Optional[bool]) -> Optional[bool]:
        """
        Safely parse boolean from environment.

        Recognizes: true/false, yes/no, 1/0, on/off (case-insensitive).
        """
        cls._init_metrics()

        raw_value = os.getenv(key)

        if raw_value is None:
            if cls._metrics:
                cls._metrics.record_env_load(key, False, default, default)
            return default

        normalized = raw_value.lower().strip()

        if normalized in {"true", "yes", "1", "on"}:
            value = True
        elif normalized in {"false", "no", "0", "off"}:
            value = False
        else:
            cls._reject(
                key, f"{key}='{raw_value}' is not a valid boolean, using default {default}"
            )
            return default

        if cls._metrics:
            cls._metrics.record_env_load(key, True, value, default)

        return value

    @classmethod
    def _safe_str(cls, key: str, default: str) -> str:
        """Safely get string from environment."""
        cls._init_metrics()

        value = os.getenv(key, default)
        from_env = key in os.environ

        if cls._metrics:
            cls._metrics.record_env_load(key, from_env, value, default)

        return value

    @classmethod
    def _safe_list(cls, key: str) -> List[str]:
        """Parse a comma separated list, dropping blanks."""
        raw_value = cls._safe_str(key, "")
        return [item.strip() for item in raw_value.split(",") if item.strip()]

    # =========================================================================
    # Configuration Loading
    # =========================================================================

    @classmethod
    def load(cls) -> None:
        """
        Load all configuration from environment variables with validation.

        Called automatically on module import; tests call it again after
        patching the environment.
        """
        cls._init_metrics()

        # Database Configuration
        cls.DATABASE_URL = cls._safe_str("DATABASE_URL", "sqlite+aiosqlite:///./soma.db")
        cls.DATABASE_POOL_SIZE = cls._safe_int(
            "DATABASE_POOL_SIZE", 10, min_val=1, max_val=200
        )
        cls.DATABASE_MAX_OVERFLOW = cls._safe_int(
            "DATABASE_MAX_OVERFLOW", 10, min_val=0, max_val=200
        )
        cls.DATABASE_ECHO = bool(cls._safe_bool("DATABASE_ECHO", False))
        cls.DATABASE_POOL_RECYCLE = cls._safe_int(
            "DATABASE_POOL_RECYCLE", 1800, min_val=60
        )
        cls.DATABASE_POOL_TIMEOUT = cls._safe_int(
            "DATABASE_POOL_TIMEOUT", 30, min_val=1, max_val=600
        )
        cls.DATABASE_STATEMENT_TIMEOUT_MS = cls._safe_int(
            "DATABASE_STATEMENT_TIMEOUT_MS", 30_000, min_val=100
        )
        cls.DATABASE_ISOLATION_LEVEL = cls._safe_str(
            "DATABASE_ISOLATION_LEVEL", "SERIALIZABLE"
        ).upper()

        cls.DATABASE_RETRY_MAX_ATTEMPTS = cls._safe_int(
            "DATABASE_RETRY_MAX_ATTEMPTS", 3, min_val=1, max_val=20
        )
        cls.DATABASE_RETRY_INITIAL_BACKOFF_MS = cls._safe_int(
            "DATABASE_RETRY_INITIAL_BACKOFF_MS", 50, min_val=0
        )
        cls.DATABASE_RETRY_MAX_BACKOFF_MS = cls._safe_int(
            "DATABASE_RETRY_MAX_BACKOFF_MS", 1000, min_val=0
        )
        cls.DATABASE_RETRY_JITTER_MS = cls._safe_int(
            "DATABASE_RETRY_JITTER_MS", 50, min_val=0
        )

        # Environment Configuration
        cls.ENVIRONMENT = cls._safe_str("ENVIRONMENT", "development")
        cls.DEBUG = bool(cls._safe_bool("DEBUG", False))
        cls.LOG_LEVEL = cls._safe_str("LOG_LEVEL", "INFO")
        cls.LOG_JSON = cls._safe_bool("LOG_JSON", None)
        cls.LOG_COLORS = bool(cls._safe_bool("LOG_COLORS", True))
        logs_dir = os.getenv("LOGS_DIR")
        cls.LOGS_DIR = Path(logs_dir) if logs_dir else cls.PROJECT_ROOT / "logs"

        # Economy bootstrap: only usable values override the defaults
        cls.BASE_REGEN_RATE = cls._safe_float(
            "SOMA_BASE_REGEN_RATE", 5.0, min_val=0, exclusive_min=True
        )
        cls.MAX_BALANCE = cls._safe_float(
            "SOMA_MAX_BALANCE", 100.0, min_val=0, exclusive_min=True
        )
        cls.STARTING_BALANCE = cls._safe_float(
            "SOMA_STARTING_BALANCE", 50.0, min_val=0
        )
        cls.REFERENCE_TIMEZONE = cls._safe_str(
            "SOMA_REFERENCE_TIMEZONE", "America/Los_Angeles"
        )
        cls.TRANSFER_OVERFLOW_POLICY = cls._safe_str(
            "SOMA_TRANSFER_OVERFLOW_POLICY", "clamp"
        ).lower()

        # Admin allowlists
        cls.ADMIN_USERS = cls._safe_list("SOMA_ADMIN_USERS")
        cls.ADMIN_ROLES = cls._safe_list("SOMA_ADMIN_ROLES")

        # Maintenance
        cls.TRANSACTION_RETENTION_DAYS = cls._safe_int(
            "SOMA_TRANSACTION_RETENTION_DAYS", 90, min_val=0
        )
        cls.DAILY_RETENTION_DAYS = cls._safe_int(
            "SOMA_DAILY_RETENTION_DAYS", 7, min_val=1
        )
        cls.ROLE_CACHE_MAX_AGE_HOURS = cls._safe_int(
            "SOMA_ROLE_CACHE_MAX_AGE_HOURS", 168, min_val=1
        )
        cls.MAINTENANCE_INTERVAL_SECONDS = cls._safe_int(
            "SOMA_MAINTENANCE_INTERVAL_SECONDS", 3600, min_val=10
        )

        if cls._metrics:
            cls._metrics.last_reload = datetime.now(timezone.utc).isoformat()

    @classmethod
    def validate(cls) -> None:
        """
        Validate critical configuration values on startup.

        Raises
        ------
        ValueError:
            If required config values are missing or invalid in production.
        """
        if cls._validated:
            return

        logger = logging.getLogger(__name__)
        cls._init_metrics()

        try:
            cls.load()

            if not cls.DATABASE_URL:
                raise ValueError("DATABASE_URL environment variable is required")

            if cls.is_production() and cls.DATABASE_URL.startswith("sqlite"):
                logger.warning(
                    "Production environment using a SQLite database - "
                    "this may be incorrect"
                )

            valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            if cls.LOG_LEVEL.upper() not in valid_log_levels:
                logger.warning(f"Invalid LOG_LEVEL '{cls.LOG_LEVEL}', using INFO")
                cls.LOG_LEVEL = "INFO"

            if cls.STARTING_BALANCE > cls.MAX_BALANCE:
                logger.warning(
                    f"SOMA_STARTING_BALANCE={cls.STARTING_BALANCE} exceeds "
                    f"SOMA_MAX_BALANCE={cls.MAX_BALANCE}; new balances will be capped"
                )

            if cls.TRANSFER_OVERFLOW_POLICY not in {"clamp", "refund_overflow"}:
                logger.warning(
                    f"Unknown SOMA_TRANSFER_OVERFLOW_POLICY "
                    f"'{cls.TRANSFER_OVERFLOW_POLICY}', using clamp"
                )
                cls.TRANSFER_OVERFLOW_POLICY = "clamp"

            if cls.is_production() and cls.DEBUG:
                logger.warning("DEBUG mode enabled in production!")

            cls._validated = True

            if cls._metrics:
                summary = cls._metrics.get_summary()
                logger.info(f"Configuration loaded: {summary}")

                if cls._metrics.validation_errors:
                    logger.warning(
                        f"Configuration warnings: {cls._metrics.validation_errors}"
                    )

        except Exception as e:
            logger.warning(f"Config validation warning (safe for tests): {e}")
            if cls.ENVIRONMENT.lower() == "production":
                logger.error("Configuration validation failed in production!")
                raise

    # =========================================================================
    # Environment Checks
    # =========================================================================

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment."""
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development environment."""
        return cls.ENVIRONMENT.lower() == "development"

    @classmethod
    def is_testing(cls) -> bool:
        """Check if running in testing environment."""
        return cls.ENVIRONMENT.lower() == "testing"

    # =========================================================================
    # Metrics & Summary
    # =========================================================================

    @classmethod
    def get_metrics(cls) -> Optional[_ConfigLoadMetrics]:
        """Get configuration loading metrics."""
        return cls._metrics

    @classmethod
    def get_config_summary(cls) -> Dict[str, Any]:
        """
        Get non-sensitive configuration summary for debugging.

        Example
        -------
        >>> Config.get_config_summary()["base_regen_rate"]
        5.0
        """
        return {
            "environment": cls.ENVIRONMENT,
            "debug": cls.DEBUG,
            "log_level": cls.LOG_LEVEL,
            "database_url_scheme": cls.DATABASE_URL.split(":", 1)[0],
            "database_pool_size": cls.DATABASE_POOL_SIZE,
            "base_regen_rate": cls.BASE_REGEN_RATE,
            "max_balance": cls.MAX_BALANCE,
            "starting_balance": cls.STARTING_BALANCE,
            "reference_timezone": cls.REFERENCE_TIMEZONE,
            "transfer_overflow_policy": cls.TRANSFER_OVERFLOW_POLICY,
            "admin_users_configured": len(cls.ADMIN_USERS),
            "admin_roles_configured": len(cls.ADMIN_ROLES),
        }


# Auto-validate on import
Config.validate()
