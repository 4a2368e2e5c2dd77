"""Rule-based swing setups evaluated against the latest candle.

Every rule is independent and carries its own confidence formula; several
may fire together. ``primary_setup`` picks the most confident one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from candlelens.analysis.indicators import IndicatorSet, compute_indicators
from candlelens.analysis.levels import find_swing_points
from candlelens.models import PriceSeries

MIN_CANDLES = 50

_BREAKOUT_PROXIMITY = 0.98     # close within 2 % of the 20-candle high
_BREAKOUT_VOLUME = 1.5
_PULLBACK_DISTANCE = 0.02
_PULLBACK_TREND_LAG = 10       # SMA50 must be above its value this many candles ago
_SQUEEZE_BANDWIDTH = 4.0
_SQUEEZE_PERCENTILE = 20
_SQUEEZE_HISTORY = 50
_SQUEEZE_VOLUME = 1.2
_CLIMAX_VOLUME = 2.0
_CLIMAX_BODY_RATIO = 0.3
_CLIMAX_LOOKBACK = 5


@dataclass(frozen=True)
class SetupFinding:
    type: str
    direction: str         # bullish / bearish / neutral
    confidence: int        # 0-100
    description: str

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "direction": self.direction,
            "confidence": self.confidence,
            "description": self.description,
        }


class _Context:
    """Latest-candle values shared by every rule."""

    def __init__(self, series: PriceSeries, ind: IndicatorSet):
        self.series = series
        self.ind = ind
        self.candle = series.candles[-1]
        self.close = self.candle.close
        self.rsi = ind.latest("rsi")
        avg_vol = ind.latest("volume_sma")
        self.volume_ratio = (
            self.candle.volume / avg_vol if avg_vol else None
        )


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def _breakout(ctx: _Context) -> Optional[SetupFinding]:
    high20 = float(ctx.series.highs[-20:].max())
    if ctx.volume_ratio is None or ctx.rsi is None:
        return None
    if (ctx.close >= high20 * _BREAKOUT_PROXIMITY
            and ctx.volume_ratio >= _BREAKOUT_VOLUME and ctx.rsi < 70):
        conf = (60 + min(20, (ctx.volume_ratio - _BREAKOUT_VOLUME) * 20)
                + min(15, (70 - ctx.rsi) / 2))
        return SetupFinding(
            "Breakout", "bullish", int(round(min(conf, 95))),
            f"Close {ctx.close:.2f} near 20-candle high {high20:.2f} on "
            f"{ctx.volume_ratio:.1f}x average volume (RSI {ctx.rsi:.1f})",
        )
    return None


def _pullback(ctx: _Context) -> Optional[SetupFinding]:
    sma20 = ctx.ind.latest("sma20")
    sma50 = ctx.ind.latest("sma50")
    sma50_prior = ctx.ind.previous("sma50", _PULLBACK_TREND_LAG)
    if None in (sma20, sma50, sma50_prior, ctx.rsi) or not sma20:
        return None
    distance = abs(ctx.close - sma20) / sma20
    if (distance <= _PULLBACK_DISTANCE and sma20 > sma50 > sma50_prior
            and 40 <= ctx.rsi <= 55):
        conf = 55 + 20 * (1 - distance / _PULLBACK_DISTANCE) + (10 if ctx.rsi <= 50 else 5)
        return SetupFinding(
            "Pullback", "bullish", int(round(min(conf, 100))),
            f"Price {_pct(distance)} from a rising SMA20 ({sma20:.2f}) in an "
            f"uptrend, RSI {ctx.rsi:.1f}",
        )
    return None


def _squeeze(ctx: _Context) -> Optional[SetupFinding]:
    bandwidth = ctx.ind.latest("bb_bandwidth")
    if bandwidth is None or ctx.volume_ratio is None:
        return None
    history = [v for v in ctx.ind.bb_bandwidth[-_SQUEEZE_HISTORY:] if v is not None]
    threshold = float(np.percentile(history, _SQUEEZE_PERCENTILE)) if history else None
    tight = bandwidth < _SQUEEZE_BANDWIDTH or (threshold is not None and bandwidth <= threshold)
    if tight and ctx.volume_ratio >= _SQUEEZE_VOLUME:
        conf = 55 + min(20, (_SQUEEZE_BANDWIDTH - min(bandwidth, _SQUEEZE_BANDWIDTH)) * 5) \
            + min(15, (ctx.volume_ratio - _SQUEEZE_VOLUME) * 15)
        return SetupFinding(
            "Squeeze", "neutral", int(round(min(conf, 90))),
            f"Bollinger bandwidth compressed to {bandwidth:.2f}% with "
            f"{ctx.volume_ratio:.1f}x volume; expansion likely",
        )
    return None


def _divergence(ctx: _Context) -> Optional[SetupFinding]:
    rsi = ctx.ind.rsi
    points = find_swing_points(ctx.series)
    lows = [p for p in points if p.kind == "low" and rsi[p.index] is not None]
    highs = [p for p in points if p.kind == "high" and rsi[p.index] is not None]

    candidates = []
    if len(lows) >= 2:
        a, b = lows[-2], lows[-1]
        if b.price < a.price and rsi[b.index] > rsi[a.index]:
            candidates.append((b.index, "bullish", "lower low", rsi[b.index] - rsi[a.index]))
    if len(highs) >= 2:
        a, b = highs[-2], highs[-1]
        if b.price > a.price and rsi[b.index] < rsi[a.index]:
            candidates.append((b.index, "bearish", "higher high", rsi[a.index] - rsi[b.index]))
    if not candidates:
        return None

    _, direction, move, delta = max(candidates, key=lambda c: c[0])
    conf = 60 + min(25, abs(delta) * 2)
    return SetupFinding(
        "RSI Divergence", direction, int(round(conf)),
        f"Price made a {move} while RSI moved the other way by {abs(delta):.1f} points",
    )


def _volume_climax(ctx: _Context) -> Optional[SetupFinding]:
    if ctx.volume_ratio is None or len(ctx.series) <= _CLIMAX_LOOKBACK:
        return None
    c = ctx.candle
    if ctx.volume_ratio >= _CLIMAX_VOLUME and c.body <= _CLIMAX_BODY_RATIO * c.range:
        prior = ctx.series.candles[-1 - _CLIMAX_LOOKBACK].close
        direction = "bullish" if c.close < prior else "bearish"
        conf = 55 + min(30, (ctx.volume_ratio - _CLIMAX_VOLUME) * 15)
        return SetupFinding(
            "Volume Climax", direction, int(round(conf)),
            f"{ctx.volume_ratio:.1f}x average volume on a small-bodied candle "
            f"after a {'decline' if direction == 'bullish' else 'rally'}",
        )
    return None


def _macd_crossover(ctx: _Context) -> Optional[SetupFinding]:
    hist = ctx.ind.latest("macd_hist")
    prev = ctx.ind.previous("macd_hist")
    if hist is None or prev is None:
        return None
    if prev <= 0 < hist:
        direction = "bullish"
    elif prev >= 0 > hist:
        direction = "bearish"
    else:
        return None
    macd_val = ctx.ind.latest("macd") or 0.0
    # crossing on the trend's side of zero is the stronger signal
    aligned = (macd_val > 0) == (direction == "bullish")
    conf = 60 + (10 if aligned else 0) + min(10, abs(hist - prev) * 20)
    return SetupFinding(
        "MACD Crossover", direction, int(round(min(conf, 85))),
        f"MACD histogram flipped from {prev:+.3f} to {hist:+.3f}",
    )


def _oversold_bounce(ctx: _Context) -> Optional[SetupFinding]:
    if ctx.rsi is None:
        return None
    if ctx.rsi <= 30 and ctx.candle.close > ctx.candle.open:
        conf = min(90, 60 + (30 - ctx.rsi) * 1.5)
        return SetupFinding(
            "Oversold Bounce", "bullish", int(round(conf)),
            f"RSI {ctx.rsi:.1f} is oversold and the latest candle closed green",
        )
    return None


def _overbought_reversal(ctx: _Context) -> Optional[SetupFinding]:
    if ctx.rsi is None:
        return None
    if ctx.rsi >= 70 and ctx.candle.close < ctx.candle.open:
        conf = min(90, 60 + (ctx.rsi - 70) * 1.5)
        return SetupFinding(
            "Overbought Reversal", "bearish", int(round(conf)),
            f"RSI {ctx.rsi:.1f} is overbought and the latest candle closed red",
        )
    return None


# Rule bank order decides ties in primary_setup
RULES: List[Callable[[_Context], Optional[SetupFinding]]] = [
    _breakout,
    _pullback,
    _squeeze,
    _divergence,
    _volume_climax,
    _macd_crossover,
    _oversold_bounce,
    _overbought_reversal,
]


def detect_setups(
    series: PriceSeries, indicators: Optional[IndicatorSet] = None,
) -> List[SetupFinding]:
    """Run every rule against the latest candle; ``[]`` below 50 candles."""
    if len(series) < MIN_CANDLES:
        return []
    ind = indicators or compute_indicators(series)
    ctx = _Context(series, ind)
    findings = []
    for rule in RULES:
        finding = rule(ctx)
        if finding is not None:
            findings.append(finding)
    return findings


def primary_setup(findings: List[SetupFinding]) -> Optional[SetupFinding]:
    if not findings:
        return None
    best = findings[0]
    for f in findings[1:]:
        if f.confidence > best.confidence:
            best = f
    return best
