"""Market data client - OHLCV history through the provider fallback chain.

Primary: the configured provider priority list | Last resort: Yahoo chart
scrape | Total failure: a synthetic placeholder series flagged ``live=False``.
"""

from __future__ import annotations

import time
import zlib
from typing import Mapping, Optional

import numpy as np

from candlelens.config import SETTINGS, load_credentials
from candlelens.data_sources.orchestrator import FallbackOrchestrator
from candlelens.data_sources.resolution import plan_range
from candlelens.errors import AllSourcesFailed
from candlelens.models import PriceSeries, RawCandle, normalize_records
from candlelens.utils.cache import SeriesCache
from candlelens.utils.logger import setup_logger

logger = setup_logger("market_data")

_STEP_SECONDS = {
    "5min": 300,
    "30min": 1_800,
    "1hour": 3_600,
    "1day": 86_400,
    "1week": 7 * 86_400,
    "1month": 30 * 86_400,
}


def placeholder_series(symbol: str, range_tag: str, now: Optional[float] = None) -> PriceSeries:
    """Deterministic random-walk series used when no source is reachable.

    Seeded by the symbol so the same symbol always renders the same chart.
    """
    plan = plan_range(range_tag, now)
    step = _STEP_SECONDS[plan.granularity]
    n = plan.expected_count
    rng = np.random.RandomState(zlib.crc32(symbol.upper().encode()) & 0xFFFFFFFF)

    close = 100.0 * np.exp(np.cumsum(rng.normal(0.0003, 0.012, n)))
    open_ = np.concatenate([[close[0]], close[:-1]])
    high = np.maximum(open_, close) * (1 + np.abs(rng.normal(0, 0.004, n)))
    low = np.minimum(open_, close) * (1 - np.abs(rng.normal(0, 0.004, n)))
    volume = rng.randint(500_000, 5_000_000, n).astype(float)

    last = plan.end - plan.end % step
    stamps = [last - (n - 1 - i) * step for i in range(n)]
    records = [
        RawCandle(ts, o, h, l, c, v)
        for ts, o, h, l, c, v in zip(stamps, open_, high, low, close, volume)
    ]
    candles = tuple(normalize_records(records))
    return PriceSeries(
        symbol=symbol.upper(),
        range_tag=range_tag,
        candles=candles,
        source="synthetic",
        last_price=candles[-1].close,
        live=False,
    )


class MarketDataClient:
    """Fetch historical market data; never raises on acquisition failure."""

    def __init__(
        self,
        credentials: Optional[Mapping[str, str]] = None,
        cache: Optional[SeriesCache] = None,
        orchestrator: Optional[FallbackOrchestrator] = None,
    ):
        self.credentials = dict(credentials) if credentials is not None else load_credentials()
        if cache is None and orchestrator is not None:
            cache = orchestrator.cache
        self.cache = cache if cache is not None else SeriesCache()
        self.orchestrator = orchestrator or FallbackOrchestrator(cache=self.cache)
        # The client and its orchestrator share one cache
        self.orchestrator.cache = self.cache

    def get_price_history(
        self, symbol: str, range_tag: str = "3-month", now: Optional[float] = None,
    ) -> PriceSeries:
        """Get OHLCV history for a symbol.

        Tries every configured provider in priority order, then the chart
        scrape. If everything fails, returns placeholder data with
        ``live=False`` so callers can flag the display as not live.

        Args:
            symbol: Instrument symbol (e.g. "AAPL")
            range_tag: 1-day, 1-week, 1-month, 3-month, 6-month, 1-year, 5-year, all-time
        """
        logger.info("Fetching price history: %s (range=%s)", symbol, range_tag)
        try:
            return self.orchestrator.fetch(symbol, range_tag, self.credentials, now=now)
        except AllSourcesFailed as e:
            logger.warning("Serving placeholder data for %s: %s", symbol, e)
            return placeholder_series(symbol, range_tag, now=now)

    def get_multiple(
        self,
        symbols: list[str],
        range_tag: str = "3-month",
        delay: Optional[float] = None,
    ) -> dict[str, PriceSeries]:
        """Fetch several symbols one at a time with a fixed pause between them."""
        if delay is None:
            delay = float(SETTINGS.get("fetch", {}).get("batch_delay_seconds", 1.0))
        results = {}
        for i, symbol in enumerate(symbols):
            if i and delay > 0:
                time.sleep(delay)
            results[symbol] = self.get_price_history(symbol, range_tag)
        return results

    def set_credentials(self, credentials: Mapping[str, str]) -> None:
        """Replace provider keys; cached series are dropped."""
        self.credentials = dict(credentials)
        self.cache.clear()

    def clear_cache(self) -> None:
        self.cache.clear()
