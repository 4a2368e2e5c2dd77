"""In-memory freshness cache for fetched price series."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from candlelens.config import SETTINGS
from candlelens.models import PriceSeries
from candlelens.utils.logger import setup_logger

logger = setup_logger("cache")


@dataclass(frozen=True)
class CacheEntry:
    series: PriceSeries
    fetched_at: float


class SeriesCache:
    """TTL cache keyed by (symbol, range tag).

    Expiry is lazy: a stale entry is dropped when it is read. When the
    number of entries exceeds ``max_entries`` the oldest-inserted entry is
    evicted (insertion order, not LRU).
    """

    def __init__(
        self,
        max_entries: int | None = None,
        intraday_ttl: float | None = None,
        daily_ttl: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        cfg = SETTINGS.get("cache", {})
        self.max_entries = max_entries if max_entries is not None else cfg.get("max_entries", 50)
        self.intraday_ttl = (
            intraday_ttl if intraday_ttl is not None else cfg.get("intraday_ttl_seconds", 120)
        )
        self.daily_ttl = daily_ttl if daily_ttl is not None else cfg.get("daily_ttl_seconds", 300)
        self._clock = clock
        self._entries: OrderedDict[tuple[str, str], CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _key(symbol: str, range_tag: str) -> tuple[str, str]:
        return symbol.strip().upper(), range_tag

    def ttl_for(self, range_tag: str) -> float:
        from candlelens.data_sources.resolution import plan_range

        return self.intraday_ttl if plan_range(range_tag).intraday else self.daily_ttl

    def get(self, symbol: str, range_tag: str) -> Optional[PriceSeries]:
        """Return the cached series, or None if absent or expired."""
        key = self._key(symbol, range_tag)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.fetched_at > self.ttl_for(range_tag):
                del self._entries[key]
                logger.debug("Cache expired: %s %s", *key)
                return None
            return entry.series

    def set(self, symbol: str, range_tag: str, series: PriceSeries) -> None:
        key = self._key(symbol, range_tag)
        with self._lock:
            # Re-inserting moves the key to the newest position
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(series, self._clock())
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache full, evicted %s %s", *evicted)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Cache cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return self._key(*key) in self._entries
