"""
Soma Economy Formulas

Purpose
-------
Pure calculation functions for the ichor economy: lazy regeneration,
affordability estimates, activation pricing and presentation rounding.

Design Notes
------------
All formulas:
- Accept parameters explicitly (no config or database access)
- Return calculated values
- Are deterministic given `now`

Usage
-----
    from soma.modules.shared.formulas import calculate_regen_balance

    balance = calculate_regen_balance(40.0, last_regen_at, rate=5.0, max_balance=100.0)
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional


def calculate_regen_balance(
    stored: float,
    last_regen_at: datetime,
    rate: float,
    max_balance: float,
    now: Optional[datetime] = None,
) -> float:
    """
    Compute the balance after lazy regeneration since the last checkpoint.

    regen = max(0, hours elapsed) * rate, and the result is
    min(max_balance, stored + regen) floored at zero. A stored amount already
    above the cap comes back clamped to the cap.

    Args:
        stored: Amount persisted at the last checkpoint
        last_regen_at: Timestamp of that checkpoint
        rate: Ichor per hour
        max_balance: Applicable cap
        now: Evaluation time (defaults to current UTC time)

    Returns:
        Regenerated balance

    Example:
        >>> t0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
        >>> calculate_regen_balance(10.0, t0, 5.0, 100.0, now=t0.replace(hour=2))
        20.0
    """
    now = now or datetime.now(timezone.utc)
    if last_regen_at.tzinfo is None:
        last_regen_at = last_regen_at.replace(tzinfo=timezone.utc)

    hours = max(0.0, (now - last_regen_at).total_seconds() / 3600.0)
    regen = hours * max(0.0, rate)

    return max(0.0, min(max_balance, stored + regen))


def minutes_to_afford(deficit: float, rate: float) -> Optional[int]:
    """
    Whole minutes of regeneration needed to cover a deficit.

    Returns:
        ceil(deficit / rate * 60), 0 when nothing is missing, or None when
        the rate is zero (the deficit never closes)
    """
    if deficit <= 0:
        return 0
    if rate <= 0:
        return None
    return math.ceil(deficit / rate * 60)


def calculate_activation_cost(
    base_cost: float,
    role_multiplier: float,
    global_multiplier: float,
) -> float:
    """
    Final activation price after role and global multipliers.

    Example:
        >>> calculate_activation_cost(10.0, 0.5, 1.0)
        5.0
    """
    return max(0.0, round(base_cost * role_multiplier * global_multiplier, 2))


def round_amount(value: float) -> float:
    """Two-decimal rounding used only when presenting amounts."""
    if math.isinf(value):
        return value
    return round(value, 2)
