"""
Reference-timezone calendar helpers.

Daily limits and reward counters roll over at midnight in one fixed zone
(Config.REFERENCE_TIMEZONE), independent of the host clock and of any
server's locale. Dates are stored as ISO ``YYYY-MM-DD`` strings so they
compare lexically.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from soma.core.config.config import Config
from soma.core.exceptions import ConfigurationError


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(
            "SOMA_REFERENCE_TIMEZONE", f"unknown timezone {name!r}"
        ) from exc


def reference_zone(name: Optional[str] = None) -> ZoneInfo:
    return _zone(name or Config.REFERENCE_TIMEZONE)


def reference_date(now: Optional[datetime] = None, zone: Optional[str] = None) -> date:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(reference_zone(zone)).date()


def reference_today(now: Optional[datetime] = None, zone: Optional[str] = None) -> str:
    """Today's date in the reference timezone as ``YYYY-MM-DD``."""
    return reference_date(now, zone).isoformat()


def reference_days_ago(days: int, now: Optional[datetime] = None, zone: Optional[str] = None) -> str:
    return (reference_date(now, zone) - timedelta(days=days)).isoformat()


def next_reference_midnight(now: Optional[datetime] = None, zone: Optional[str] = None) -> datetime:
    """UTC instant at which the reference-timezone date next rolls over."""
    tz = reference_zone(zone)
    tomorrow = reference_date(now, zone) + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=tz).astimezone(timezone.utc)
