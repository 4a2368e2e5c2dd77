"""Weighted 0-100 confidence rubric over the latest candle.

Five buckets, each capped independently:

    trend        <= 25   price vs SMA20 / SMA50, SMA20 vs SMA50
    setup        <= 25   RSI band plus MACD-histogram sign and slope
    volume       <= 20   latest volume vs its 20-period average
    risk_reward  <= 15   distance to upper vs lower Bollinger band
    momentum     <= 15   RSI above 50, MACD above signal

An indicator without enough history contributes nothing to its bucket.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

from candlelens.analysis.indicators import IndicatorSet, compute_indicators
from candlelens.models import PriceSeries

MIN_CANDLES = 50


@dataclass(frozen=True)
class ScoreBreakdown:
    trend: float = 0.0
    setup: float = 0.0
    volume: float = 0.0
    risk_reward: float = 0.0
    momentum: float = 0.0
    total: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _trend_score(price: float, sma20: Optional[float], sma50: Optional[float]) -> float:
    score = 0.0
    if sma20 is not None and price > sma20:
        score += 8
    if sma50 is not None and price > sma50:
        score += 8
    if sma20 is not None and sma50 is not None and sma20 > sma50:
        score += 9
    return score


def _rsi_band(rsi: float) -> float:
    if rsi > 70:
        return 8        # stretched
    if rsi >= 60:
        return 15       # strong, not yet overbought
    if rsi >= 40:
        return 10
    if rsi >= 30:
        return 6
    return 10           # oversold, mean-reversion candidate


def _setup_score(rsi: Optional[float], hist: Optional[float], prev_hist: Optional[float]) -> float:
    score = _rsi_band(rsi) if rsi is not None else 0.0
    if hist is not None and hist > 0:
        score += 5
        if prev_hist is not None and hist >= prev_hist:
            score += 5
    return min(score, 25)


def _volume_score(volume: float, avg_volume: Optional[float]) -> float:
    if not avg_volume:
        return 0.0
    ratio = volume / avg_volume
    if ratio >= 2.0:
        return 20
    if ratio >= 1.5:
        return 15
    if ratio >= 1.2:
        return 10
    if ratio >= 1.0:
        return 5
    return 0.0


def _risk_reward_score(price: float, upper: Optional[float], lower: Optional[float]) -> float:
    if upper is None or lower is None:
        return 0.0
    upside = upper - price
    downside = price - lower
    if downside <= 0:
        return 15 if upside > 0 else 0.0
    ratio = upside / downside
    if ratio >= 3:
        return 15
    if ratio >= 2:
        return 12
    if ratio >= 1.5:
        return 9
    if ratio >= 1:
        return 6
    return 3


def _momentum_score(rsi: Optional[float], macd: Optional[float], signal: Optional[float]) -> float:
    score = 0.0
    if rsi is not None and rsi > 50:
        score += 8
    if macd is not None and signal is not None and macd > signal:
        score += 7
    return score


def confidence_score(
    series: PriceSeries, indicators: Optional[IndicatorSet] = None,
) -> ScoreBreakdown:
    """Score the latest candle; all zeros below 50 candles."""
    if len(series) < MIN_CANDLES:
        return ScoreBreakdown()
    ind = indicators or compute_indicators(series)
    candle = series.candles[-1]
    price = candle.close

    trend = _trend_score(price, ind.latest("sma20"), ind.latest("sma50"))
    setup = _setup_score(ind.latest("rsi"), ind.latest("macd_hist"), ind.previous("macd_hist"))
    volume = _volume_score(candle.volume, ind.latest("volume_sma"))
    risk_reward = _risk_reward_score(price, ind.latest("bb_upper"), ind.latest("bb_lower"))
    momentum = _momentum_score(ind.latest("rsi"), ind.latest("macd"), ind.latest("macd_signal"))

    total = int(round(min(trend + setup + volume + risk_reward + momentum, 100)))
    return ScoreBreakdown(
        trend=trend,
        setup=setup,
        volume=volume,
        risk_reward=risk_reward,
        momentum=momentum,
        total=total,
    )
