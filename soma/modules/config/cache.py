"""
Process-local cache for the merged global economy config.

One instance is owned by each ConfigService; tests build their own instead of
sharing hidden module state.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .service import GlobalEconomyConfig


class GlobalConfigCache:
    """
    Holds the last resolved GlobalEconomyConfig until invalidated.

    Entries never expire on their own; admin writes call `invalidate()`.
    """

    def __init__(self) -> None:
        self._value: Optional[GlobalEconomyConfig] = None
        self._loaded_at: Optional[float] = None
        self.hits = 0
        self.misses = 0

    def get(self) -> Optional[GlobalEconomyConfig]:
        if self._value is None:
            self.misses += 1
            return None
        self.hits += 1
        return self._value

    def set(self, value: GlobalEconomyConfig) -> None:
        self._value = value
        self._loaded_at = time.monotonic()

    def invalidate(self) -> None:
        self._value = None
        self._loaded_at = None

    @property
    def age_seconds(self) -> Optional[float]:
        if self._loaded_at is None:
            return None
        return time.monotonic() - self._loaded_at
