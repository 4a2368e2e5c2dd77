"""Report composer: turns a PriceSeries into a complete AnalysisReport.

Combines the indicator library, swing-point pattern classification,
support/resistance clustering, setup detection and the confidence rubric
into one verdict with a transparent reasoning trail. The rule-based report
is always complete on its own; a narrative enricher may only refine it.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Protocol

import numpy as np

from candlelens.analysis.indicators import IndicatorSet, compute_indicators
from candlelens.analysis.levels import SupportResistance, SwingPoint, find_swing_points, support_resistance
from candlelens.analysis.scoring import ScoreBreakdown, confidence_score
from candlelens.analysis.setups import SetupFinding, detect_setups, primary_setup
from candlelens.config import SETTINGS
from candlelens.models import PriceSeries
from candlelens.utils.logger import setup_logger

logger = setup_logger("technical")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
_MIN_CANDLES = 5
_MAX_TRACE_POINTS = 12
_MOMENTUM_PROXIMITY = 0.02     # close within 2 % of the 20-candle extreme

PATTERN_DIRECTION = {
    "Ascending Channel": "bullish",
    "Descending Channel": "bearish",
    "Symmetrical Triangle": "neutral",
    "Expanding Wedge": "neutral",
    "Consolidation": "neutral",
    "Momentum Breakout": "bullish",
    "Momentum Breakdown": "bearish",
}


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class PatternPoint:
    index: int
    timestamp: int
    price: float
    kind: str          # high / low / anchor

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "timestamp": self.timestamp,
            "price": self.price,
            "kind": self.kind,
        }


@dataclass(frozen=True)
class AnalysisReport:
    symbol: str
    signal: str                     # BULLISH / BEARISH / NEUTRAL
    confidence: int                 # 0-100
    pattern: str
    narrative: str
    reasoning: List[str]
    support_resistance: SupportResistance
    scoring: ScoreBreakdown
    setups: List[SetupFinding] = field(default_factory=list)
    primary_setup: Optional[SetupFinding] = None
    pattern_points: List[PatternPoint] = field(default_factory=list)
    indicators: Dict[str, Optional[float]] = field(default_factory=dict)
    source: str = "rules"           # rules / rules+ai
    live: bool = True
    insufficient_data: bool = False
    range_tag: str = ""
    data_source: str = ""

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "range": self.range_tag,
            "data_source": self.data_source,
            "signal": self.signal,
            "confidence": self.confidence,
            "pattern": self.pattern,
            "narrative": self.narrative,
            "reasoning": list(self.reasoning),
            "support_resistance": self.support_resistance.to_dict(),
            "scoring": self.scoring.to_dict(),
            "setups": [s.to_dict() for s in self.setups],
            "primary_setup": self.primary_setup.to_dict() if self.primary_setup else None,
            "pattern_points": [p.to_dict() for p in self.pattern_points],
            "indicators": dict(self.indicators),
            "source": self.source,
            "live": self.live,
            "insufficient_data": self.insufficient_data,
        }


class Enricher(Protocol):
    def enrich(self, series: PriceSeries, indicators: IndicatorSet,
               report: AnalysisReport) -> Optional[dict]: ...


# ---------------------------------------------------------------------------
# Pattern classification
# ---------------------------------------------------------------------------
def classify_swings(points: List[SwingPoint]) -> str:
    """Label the structure of the last two swing highs and lows."""
    highs = [p for p in points if p.kind == "high"]
    lows = [p for p in points if p.kind == "low"]
    if len(highs) < 2 or len(lows) < 2:
        return "Consolidation"

    dh = highs[-1].price - highs[-2].price
    dl = lows[-1].price - lows[-2].price
    if dh > 0 and dl > 0:
        return "Ascending Channel"
    if dh < 0 and dl < 0:
        return "Descending Channel"
    if dh < 0 < dl:
        return "Symmetrical Triangle"
    if dl < 0 < dh:
        return "Expanding Wedge"
    return "Consolidation"


def pattern_trace(series: PriceSeries, points: List[SwingPoint],
                  max_points: int = _MAX_TRACE_POINTS) -> List[PatternPoint]:
    """Alternating swing points anchored at the first and last candle.

    Consecutive swings of the same kind collapse to the more extreme one;
    the result is thinned evenly to at most ``max_points`` entries.
    """
    n = len(series)
    if n == 0:
        return []

    alternating: List[SwingPoint] = []
    for p in points:
        if alternating and alternating[-1].kind == p.kind:
            prev = alternating[-1]
            more_extreme = p.price > prev.price if p.kind == "high" else p.price < prev.price
            if more_extreme:
                alternating[-1] = p
            continue
        alternating.append(p)

    first, last = series.candles[0], series.candles[-1]
    trace = [PatternPoint(0, first.timestamp, first.close, "anchor")]
    trace.extend(
        PatternPoint(p.index, p.timestamp, p.price, p.kind)
        for p in alternating if 0 < p.index < n - 1
    )
    if n > 1:
        trace.append(PatternPoint(n - 1, last.timestamp, last.close, "anchor"))

    if len(trace) > max_points:
        keep = sorted({int(round(i)) for i in np.linspace(0, len(trace) - 1, max_points)})
        trace = [trace[i] for i in keep]
    return trace


# ---------------------------------------------------------------------------
# Voting
# ---------------------------------------------------------------------------
def _compare(a: Optional[float], b: Optional[float]) -> Optional[str]:
    if a is None or b is None:
        return None
    if a > b:
        return "bullish"
    if a < b:
        return "bearish"
    return "neutral"


def _plurality(votes: List[str]) -> str:
    """Strict plurality of the votes, else neutral."""
    counts = Counter(votes)
    ranked = counts.most_common()
    if not ranked:
        return "neutral"
    if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
        return "neutral"
    return ranked[0][0]


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------
class TechnicalAnalyzer:
    """Rule-based technical analysis of one price series."""

    def __init__(self, min_candles: Optional[int] = None):
        cfg = SETTINGS.get("analysis", {})
        self.min_candles = min_candles or int(cfg.get("min_candles_report", _MIN_CANDLES))

    def analyze(self, series: PriceSeries, enricher: Optional[Enricher] = None) -> AnalysisReport:
        """Compose the full report; an enricher may refine but never break it."""
        if len(series) < self.min_candles:
            logger.info("Insufficient data for %s: %d candles", series.symbol, len(series))
            return self._insufficient(series)

        ind = compute_indicators(series)
        swings = find_swing_points(series)
        levels = support_resistance(series)
        setups = detect_setups(series, ind)
        primary = primary_setup(setups)
        score = confidence_score(series, ind)

        votes = self._indicator_votes(series, ind)
        pattern = self._refine_pattern(series, classify_swings(swings), votes)
        signal = _plurality(list(votes.values()) + [PATTERN_DIRECTION[pattern]]).upper()

        confidence = score.total
        if primary is not None:
            confidence = max(confidence, primary.confidence)
        confidence = int(min(max(confidence, 0), 100))

        reasoning = self._reasoning(series, ind, votes, pattern, levels, primary)
        report = AnalysisReport(
            symbol=series.symbol,
            signal=signal,
            confidence=confidence,
            pattern=pattern,
            narrative=self._narrative(series, signal, confidence, pattern, reasoning),
            reasoning=reasoning,
            support_resistance=levels,
            scoring=score,
            setups=setups,
            primary_setup=primary,
            pattern_points=pattern_trace(series, swings),
            indicators={name: ind.latest(name) for name in (
                "sma20", "sma50", "ema12", "ema26", "rsi", "macd", "macd_signal",
                "macd_hist", "bb_upper", "bb_middle", "bb_lower", "bb_bandwidth",
                "atr", "volume_sma",
            )},
            live=series.live,
            range_tag=series.range_tag,
            data_source=series.source,
        )
        logger.info("%s: %s %s (confidence %d)", series.symbol, signal, pattern, confidence)

        if enricher is not None:
            report = self._enrich(series, ind, report, enricher)
        return report

    # ------------------------------------------------------------------
    @staticmethod
    def _indicator_votes(series: PriceSeries, ind: IndicatorSet) -> Dict[str, str]:
        price = series.current_price
        raw = {
            "price_vs_sma20": _compare(price, ind.latest("sma20")),
            "sma20_vs_sma50": _compare(ind.latest("sma20"), ind.latest("sma50")),
            "rsi_vs_50": _compare(ind.latest("rsi"), 50.0),
            "macd_vs_signal": _compare(ind.latest("macd"), ind.latest("macd_signal")),
            "close_vs_bb_middle": _compare(price, ind.latest("bb_middle")),
        }
        return {k: v for k, v in raw.items() if v is not None}

    @staticmethod
    def _refine_pattern(series: PriceSeries, pattern: str, votes: Dict[str, str]) -> str:
        if pattern != "Consolidation" or not votes:
            return pattern
        majority = _plurality(list(votes.values()))
        close = series.current_price
        if majority == "bullish":
            high20 = float(series.highs[-20:].max())
            if close >= high20 * (1 - _MOMENTUM_PROXIMITY):
                return "Momentum Breakout"
        elif majority == "bearish":
            low20 = float(series.lows[-20:].min())
            if close <= low20 * (1 + _MOMENTUM_PROXIMITY):
                return "Momentum Breakdown"
        return pattern

    @staticmethod
    def _reasoning(
        series: PriceSeries,
        ind: IndicatorSet,
        votes: Dict[str, str],
        pattern: str,
        levels: SupportResistance,
        primary: Optional[SetupFinding],
    ) -> List[str]:
        price = series.current_price
        lines: List[str] = []

        sma20, sma50 = ind.latest("sma20"), ind.latest("sma50")
        if sma20 is not None:
            side = "above" if price > sma20 else "below" if price < sma20 else "at"
            lines.append(f"Price {price:.2f} is {side} SMA20 ({sma20:.2f})")
        if sma20 is not None and sma50 is not None:
            if sma20 > sma50:
                lines.append(f"SMA20 above SMA50 ({sma50:.2f}): short-term trend is up")
            elif sma20 < sma50:
                lines.append(f"SMA20 below SMA50 ({sma50:.2f}): short-term trend is down")
            else:
                lines.append("SMA20 and SMA50 are level: no trend")

        rsi = ind.latest("rsi")
        if rsi is not None:
            if rsi >= 70:
                mood = "overbought"
            elif rsi <= 30:
                mood = "oversold"
            elif rsi > 50:
                mood = "bullish momentum"
            elif rsi < 50:
                mood = "bearish momentum"
            else:
                mood = "neutral"
            lines.append(f"RSI {rsi:.1f}: {mood}")

        macd, sig, hist = ind.latest("macd"), ind.latest("macd_signal"), ind.latest("macd_hist")
        if macd is not None and sig is not None:
            rel = "above" if macd > sig else "below" if macd < sig else "on"
            lines.append(f"MACD {macd:+.3f} {rel} signal {sig:+.3f} (histogram {hist:+.3f})")

        mid = ind.latest("bb_middle")
        if mid is not None:
            upper, lower = ind.latest("bb_upper"), ind.latest("bb_lower")
            lines.append(
                f"Close {votes.get('close_vs_bb_middle', 'neutral')} vs Bollinger middle "
                f"{mid:.2f} (band {lower:.2f} - {upper:.2f})"
            )

        avg_vol = ind.latest("volume_sma")
        if avg_vol:
            lines.append(f"Volume {series.candles[-1].volume / avg_vol:.1f}x its 20-period average")

        lines.append(f"Pattern: {pattern} ({PATTERN_DIRECTION[pattern]})")

        sup, res = levels.nearest_support, levels.nearest_resistance
        if sup is not None:
            note = " (series low)" if sup.fallback else ""
            lines.append(f"Nearest support {sup.price:.2f}, strength {sup.strength:.0f}{note}")
        if res is not None:
            note = " (series high)" if res.fallback else ""
            lines.append(f"Nearest resistance {res.price:.2f}, strength {res.strength:.0f}{note}")

        if primary is not None:
            lines.append(f"Setup: {primary.type} ({primary.direction}, {primary.confidence}%): {primary.description}")

        if not series.live:
            lines.append("Data is a synthetic placeholder, not live market data")
        return lines

    @staticmethod
    def _narrative(series: PriceSeries, signal: str, confidence: int,
                   pattern: str, reasoning: List[str]) -> str:
        head = (
            f"{series.symbol} ({series.range_tag}) reads {signal} with "
            f"{confidence}% confidence; the chart shows {pattern.lower()}."
        )
        return " ".join([head] + [f"{line}." for line in reasoning[:4]])

    @staticmethod
    def _enrich(series: PriceSeries, ind: IndicatorSet, report: AnalysisReport,
                enricher: Enricher) -> AnalysisReport:
        try:
            result = enricher.enrich(series, ind, report)
        except Exception as e:
            logger.warning("Narrative enrichment failed for %s: %s", series.symbol, e)
            return report
        if not isinstance(result, dict) or not result.get("narrative"):
            logger.debug("No narrative returned for %s, keeping rule-based report", series.symbol)
            return report

        changes = {"narrative": str(result["narrative"]), "source": "rules+ai"}
        if result.get("pattern"):
            changes["pattern"] = str(result["pattern"])
        signal = str(result.get("signal") or "").upper()
        if signal in ("BULLISH", "BEARISH", "NEUTRAL"):
            changes["signal"] = signal
        return replace(report, **changes)

    def _insufficient(self, series: PriceSeries) -> AnalysisReport:
        message = (
            f"Insufficient data: {len(series)} candle(s) available, "
            f"at least {self.min_candles} needed for analysis"
        )
        return AnalysisReport(
            symbol=series.symbol,
            signal="NEUTRAL",
            confidence=0,
            pattern="Insufficient Data",
            narrative=message,
            reasoning=[message],
            support_resistance=SupportResistance([], [], series.current_price),
            scoring=ScoreBreakdown(),
            live=series.live,
            insufficient_data=True,
            range_tag=series.range_tag,
            data_source=series.source,
        )
