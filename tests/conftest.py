"""Shared pytest fixtures for the CandleLens test suite.

Provides synthetic price series with fixed seeds for reproducibility.
All fixtures are independent of external APIs.
"""

import numpy as np
import pandas as pd
import pytest

from candlelens.models import PriceSeries


def series_from_arrays(close, open_=None, high=None, low=None, volume=None,
                       symbol="TEST", range_tag="1-year", source="fixture",
                       start="2023-01-02"):
    """Build a daily PriceSeries from numpy arrays (OHLC default to close)."""
    close = np.asarray(close, dtype=float)
    n = len(close)
    open_ = close if open_ is None else np.asarray(open_, dtype=float)
    high = np.maximum(open_, close) if high is None else np.asarray(high, dtype=float)
    low = np.minimum(open_, close) if low is None else np.asarray(low, dtype=float)
    volume = np.full(n, 1_000_000.0) if volume is None else np.asarray(volume, dtype=float)
    df = pd.DataFrame(
        {"Open": open_, "High": high, "Low": low, "Close": close, "Volume": volume},
        index=pd.bdate_range(start=start, periods=n),
    )
    return PriceSeries.from_frame(df, symbol=symbol, range_tag=range_tag, source=source)


@pytest.fixture
def make_series():
    """Factory fixture wrapping :func:`series_from_arrays`."""
    return series_from_arrays


# ---------------------------------------------------------------------------
# 1. Random-walk series
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_series():
    """252 daily candles from a geometric Brownian motion seeded at 42.

    Starting price ~150, daily drift ~0.04%, daily vol ~1.5%.
    """
    np.random.seed(42)
    n = 252
    log_returns = np.random.normal(0.0004, 0.015, n)
    close = 150.0 * np.exp(np.cumsum(log_returns))
    high = close * (1 + np.abs(np.random.normal(0.002, 0.005, n)))
    low = close * (1 - np.abs(np.random.normal(0.002, 0.005, n)))
    open_ = close * (1 + np.random.normal(0, 0.003, n))
    volume = np.random.randint(1_000_000, 10_000_000, n).astype(float)
    return series_from_arrays(close, open_, high, low, volume, symbol="GBM")


# ---------------------------------------------------------------------------
# 2. Strictly rising series
# ---------------------------------------------------------------------------

@pytest.fixture
def trending_series():
    """100 daily candles rising exactly 0.5% per candle with no noise.

    Each candle opens at the previous close; high is the close and low the
    open; volume is constant.
    """
    n = 100
    close = 100.0 * 1.005 ** np.arange(1, n + 1)
    open_ = np.concatenate([[100.0], close[:-1]])
    return series_from_arrays(close, open_, close, open_, symbol="UP")


# ---------------------------------------------------------------------------
# 3. Flat series
# ---------------------------------------------------------------------------

@pytest.fixture
def flat_series():
    """100 identical candles (O=H=L=C=50)."""
    close = np.full(100, 50.0)
    return series_from_arrays(close, close, close, close, symbol="FLAT")


# ---------------------------------------------------------------------------
# 4. Oscillating series
# ---------------------------------------------------------------------------

@pytest.fixture
def zigzag_series():
    """Rising zigzag: clean swing highs and lows, both stepping higher.

    Closes move up 8 candles then down 4 (net +4 per 12-candle cycle);
    every candle spans close +/- 0.5.
    """
    steps = ([1.0] * 8 + [-1.0] * 4) * 10
    close = 100.0 + np.cumsum(steps)
    return series_from_arrays(close, close, close + 0.5, close - 0.5, symbol="ZIG")


# ---------------------------------------------------------------------------
# 5. Controllable clock
# ---------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock stand-in; ``sleep`` advances time instead of blocking."""

    def __init__(self, start=1_000.0):
        self.now = start
        self.slept = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.slept.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
