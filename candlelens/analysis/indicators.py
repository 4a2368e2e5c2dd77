"""Indicator library: pure functions over a PriceSeries.

Array indicators return one entry per candle, ``None`` until enough
history exists. Outputs are rounded for deterministic display and
comparison: 2 decimals for price-scale values, 1 for RSI, 3 for the
MACD family. Nothing here raises on short or flat input.

SMA, EMA, Bollinger Bands and ATR use TA-Lib kernels, which already
implement the conventions used here (SMA-seeded EMA, population standard
deviation, Wilder ATR seeded by the mean of the first true ranges). RSI
is computed directly so a flat series yields a neutral 50 instead of 0.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import List, Optional

import numpy as np
import pandas as pd
import talib

from candlelens.models import PriceSeries

Values = List[Optional[float]]

PRICE_DECIMALS = 2
RSI_DECIMALS = 1
MACD_DECIMALS = 3


def _to_list(arr: np.ndarray, decimals: int) -> Values:
    return [None if np.isnan(v) else round(float(v), decimals) for v in arr]


def _none(n: int) -> Values:
    return [None] * n


def _valid_count(arr: np.ndarray) -> int:
    return int((~np.isnan(arr)).sum())


def _sma_raw(values: np.ndarray, period: int) -> np.ndarray:
    if len(values) < period or period < 1:
        return np.full(len(values), np.nan)
    return talib.SMA(values, timeperiod=period)


def _ema_raw(values: np.ndarray, period: int) -> np.ndarray:
    """EMA seeded by the simple mean of the first ``period`` valid values.

    Leading NaNs are skipped by TA-Lib, so this also works on a derived
    line such as MACD.
    """
    if _valid_count(values) < period or period < 1:
        return np.full(len(values), np.nan)
    return talib.EMA(values, timeperiod=period)


# ---------------------------------------------------------------------------
# Moving averages
# ---------------------------------------------------------------------------
def sma(series: PriceSeries, period: int = 20) -> Values:
    return _to_list(_sma_raw(series.closes, period), PRICE_DECIMALS)


def ema(series: PriceSeries, period: int = 12) -> Values:
    return _to_list(_ema_raw(series.closes, period), PRICE_DECIMALS)


def volume_sma(series: PriceSeries, period: int = 20) -> Values:
    return _to_list(_sma_raw(series.volumes, period), PRICE_DECIMALS)


# ---------------------------------------------------------------------------
# RSI
# ---------------------------------------------------------------------------
def _rsi_raw(closes: np.ndarray, period: int) -> np.ndarray:
    n = len(closes)
    out = np.full(n, np.nan)
    if n <= period or period < 1:
        return out

    deltas = np.diff(closes)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()
    out[period] = _rsi_value(avg_gain, avg_loss)
    for i in range(period, n - 1):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out[i + 1] = _rsi_value(avg_gain, avg_loss)
    return out


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rsi(series: PriceSeries, period: int = 14) -> Values:
    """Wilder RSI, seeded by the simple mean of the first ``period`` deltas."""
    return _to_list(_rsi_raw(series.closes, period), RSI_DECIMALS)


def latest_rsi(series: PriceSeries, period: int = 14) -> Optional[float]:
    values = rsi(series, period)
    return values[-1] if values else None


# ---------------------------------------------------------------------------
# MACD
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class MACDResult:
    macd: Values
    signal: Values
    histogram: Values


def macd(
    series: PriceSeries, fast: int = 12, slow: int = 26, signal_period: int = 9,
) -> MACDResult:
    """MACD line = EMA(fast) - EMA(slow).

    The signal line is an EMA of the MACD line whose seed is the simple
    mean of the first ``signal_period`` MACD values. The histogram is the
    difference of the rounded MACD and signal values.
    """
    closes = series.closes
    n = len(closes)
    line = _ema_raw(closes, fast) - _ema_raw(closes, slow)
    sig = _ema_raw(line, signal_period)

    macd_vals = _to_list(line, MACD_DECIMALS)
    sig_vals = _to_list(sig, MACD_DECIMALS)
    hist: Values = _none(n)
    for i in range(n):
        if macd_vals[i] is not None and sig_vals[i] is not None:
            hist[i] = round(macd_vals[i] - sig_vals[i], MACD_DECIMALS)
    return MACDResult(macd=macd_vals, signal=sig_vals, histogram=hist)


# ---------------------------------------------------------------------------
# Volatility
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class BollingerBands:
    upper: Values
    middle: Values
    lower: Values
    bandwidth: Values  # (upper - lower) / middle, in percent


def bollinger(series: PriceSeries, period: int = 20, num_std: float = 2.0) -> BollingerBands:
    """SMA +/- ``num_std`` population standard deviations."""
    closes = series.closes
    n = len(closes)
    if n < period:
        return BollingerBands(_none(n), _none(n), _none(n), _none(n))
    upper, middle, lower = talib.BBANDS(
        closes, timeperiod=period, nbdevup=num_std, nbdevdn=num_std, matype=0,
    )
    with np.errstate(divide="ignore", invalid="ignore"):
        width = np.where(middle != 0, (upper - lower) / middle * 100.0, np.nan)
    return BollingerBands(
        upper=_to_list(upper, PRICE_DECIMALS),
        middle=_to_list(middle, PRICE_DECIMALS),
        lower=_to_list(lower, PRICE_DECIMALS),
        bandwidth=_to_list(width, PRICE_DECIMALS),
    )


def atr(series: PriceSeries, period: int = 14) -> Values:
    """Wilder ATR seeded by the mean of the first ``period`` true ranges."""
    n = len(series)
    if n <= period:
        return _none(n)
    out = talib.ATR(series.highs, series.lows, series.closes, timeperiod=period)
    return _to_list(out, PRICE_DECIMALS)


# ---------------------------------------------------------------------------
# Relative strength vs a benchmark
# ---------------------------------------------------------------------------
def relative_strength(
    series: PriceSeries, benchmark: PriceSeries, period: int = 63,
) -> Optional[float]:
    """Return over ``period`` candles minus the benchmark's, in percentage points."""
    if len(series) <= period or len(benchmark) <= period:
        return None
    a, b = series.closes, benchmark.closes
    if a[-period - 1] == 0 or b[-period - 1] == 0:
        return None
    own = a[-1] / a[-period - 1] - 1
    bench = b[-1] / b[-period - 1] - 1
    return round(float((own - bench) * 100), PRICE_DECIMALS)


# ---------------------------------------------------------------------------
# Full indicator set
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class IndicatorSet:
    sma20: Values
    sma50: Values
    ema12: Values
    ema26: Values
    rsi: Values
    macd: Values
    macd_signal: Values
    macd_hist: Values
    bb_upper: Values
    bb_middle: Values
    bb_lower: Values
    bb_bandwidth: Values
    atr: Values
    volume_sma: Values

    def latest(self, name: str) -> Optional[float]:
        values = getattr(self, name)
        return values[-1] if values else None

    def previous(self, name: str, offset: int = 1) -> Optional[float]:
        values = getattr(self, name)
        idx = len(values) - 1 - offset
        return values[idx] if idx >= 0 else None

    def to_frame(self, series: Optional[PriceSeries] = None) -> pd.DataFrame:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        index = series.to_frame().index if series is not None else None
        return pd.DataFrame(data, index=index, dtype=float)


def compute_indicators(series: PriceSeries) -> IndicatorSet:
    """Compute every indicator over the whole series."""
    m = macd(series)
    bb = bollinger(series)
    return IndicatorSet(
        sma20=sma(series, 20),
        sma50=sma(series, 50),
        ema12=ema(series, 12),
        ema26=ema(series, 26),
        rsi=rsi(series, 14),
        macd=m.macd,
        macd_signal=m.signal,
        macd_hist=m.histogram,
        bb_upper=bb.upper,
        bb_middle=bb.middle,
        bb_lower=bb.lower,
        bb_bandwidth=bb.bandwidth,
        atr=atr(series, 14),
        volume_sma=volume_sma(series, 20),
    )
