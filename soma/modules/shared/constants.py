"""
Soma Economy Constants

Purpose
-------
Hardcoded defaults and admin-input bounds for the ichor economy. These are the
last step of configuration resolution: a persisted override wins, then the
environment bootstrap value, then what is defined here.

Infrastructure concerns (pool sizes, retry backoff, log paths) belong in
soma.core.config.
"""

from __future__ import annotations

from typing import Dict, Final, List, Tuple

# ============================================================================
# GLOBAL ECONOMY DEFAULTS
# ============================================================================

DEFAULT_BASE_REGEN_RATE: Final[float] = 5.0  # ichor per hour
DEFAULT_MAX_BALANCE: Final[float] = 100.0
DEFAULT_STARTING_BALANCE: Final[float] = 50.0

DEFAULT_REWARD_COOLDOWN_MINUTES: Final[int] = 5
DEFAULT_MAX_DAILY_REWARDS: Final[int] = 3
DEFAULT_GLOBAL_COST_MULTIPLIER: Final[float] = 1.0
DEFAULT_MAX_DAILY_SENT: Final[float] = 1000.0
DEFAULT_MAX_DAILY_RECEIVED: Final[float] = 2000.0

# (min, max, exclusive_min) per admin-updatable global field
GLOBAL_CONFIG_RANGES: Final[Dict[str, Tuple[float, float, bool]]] = {
    "base_regen_rate": (0.0, 1000.0, True),
    "max_balance": (0.0, 1_000_000.0, True),
    "starting_balance": (0.0, 1_000_000.0, False),
    "reward_cooldown_minutes": (0, 1440, False),
    "max_daily_rewards": (0, 100, False),
    "global_cost_multiplier": (0.1, 10.0, False),
    "max_daily_sent": (0.0, 100_000.0, False),
    "max_daily_received": (0.0, 100_000.0, False),
}

GLOBAL_INT_FIELDS: Final[frozenset] = frozenset(
    {"reward_cooldown_minutes", "max_daily_rewards"}
)

# ============================================================================
# SERVER DEFAULTS
# ============================================================================

DEFAULT_REWARD_EMOJI: Final[List[str]] = ["⭐", "🔥", "💯", "👏"]
DEFAULT_REWARD_AMOUNT: Final[float] = 1.0
DEFAULT_TIP_EMOJI: Final[str] = "🫀"
DEFAULT_TIP_AMOUNT: Final[float] = 5.0

REWARD_AMOUNT_RANGE: Final[Tuple[float, float]] = (0.1, 100.0)
TIP_AMOUNT_RANGE: Final[Tuple[float, float]] = (1.0, 100.0)
MAX_REWARD_EMOJI: Final[int] = 10

# ============================================================================
# ROLE MULTIPLIERS
# ============================================================================

REGEN_MULTIPLIER_RANGE: Final[Tuple[float, float]] = (0.1, 10.0)
COST_MULTIPLIER_RANGE: Final[Tuple[float, float]] = (0.0, 2.0)
NEUTRAL_MULTIPLIER: Final[float] = 1.0

# ============================================================================
# QUERIES
# ============================================================================

DEFAULT_HISTORY_LIMIT: Final[int] = 20
MAX_HISTORY_LIMIT: Final[int] = 100
DEFAULT_LEADERBOARD_LIMIT: Final[int] = 10
MAX_LEADERBOARD_LIMIT: Final[int] = 100
