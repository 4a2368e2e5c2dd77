"""Swing-point detection and support/resistance clustering.

Pivots are candles whose high (low) strictly exceeds (undercuts) every
neighbour within a symmetric window. Pivots are merged chronologically
into clusters by proximity; each cluster's strength blends touch count,
traded volume and recency.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from candlelens.models import PriceSeries

_SR_CLUSTER_PCT = 0.015     # merge tolerance, fraction of the series' full range
_MAX_LEVELS_PER_SIDE = 3
_FALLBACK_STRENGTH = 10.0


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SwingPoint:
    index: int
    timestamp: int
    price: float
    kind: str          # high / low
    volume: float = 0.0

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "timestamp": self.timestamp,
            "price": self.price,
            "kind": self.kind,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class PivotCluster:
    price: float       # running average of member prices
    touches: int
    volume: float
    recency: float     # mean of member indices normalized to [0, 1]
    kind: str          # support / resistance / both
    strength: float = 0.0


@dataclass(frozen=True)
class Level:
    price: float
    strength: float
    touches: int
    kind: str
    fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "price": round(self.price, 2),
            "strength": round(self.strength, 1),
            "touches": self.touches,
            "kind": self.kind,
            "fallback": self.fallback,
        }


@dataclass(frozen=True)
class SupportResistance:
    supports: List[Level]
    resistances: List[Level]
    current_price: Optional[float]

    @property
    def nearest_support(self) -> Optional[Level]:
        return self.supports[0] if self.supports else None

    @property
    def nearest_resistance(self) -> Optional[Level]:
        return self.resistances[0] if self.resistances else None

    def to_dict(self) -> dict:
        return {
            "supports": [lv.to_dict() for lv in self.supports],
            "resistances": [lv.to_dict() for lv in self.resistances],
            "current_price": self.current_price,
        }


# ---------------------------------------------------------------------------
# Swing points
# ---------------------------------------------------------------------------
def default_window(n: int) -> int:
    return max(2, n // 20)


def _strict_extrema(arr: np.ndarray, window: int, mode: str) -> List[int]:
    """Indices whose value strictly beats every neighbour within *window*."""
    n = len(arr)
    indices: List[int] = []
    for i in range(window, n - window):
        left = arr[i - window:i]
        right = arr[i + 1:i + window + 1]
        if mode == "peak":
            is_ext = arr[i] > left.max() and arr[i] > right.max()
        else:  # trough
            is_ext = arr[i] < left.min() and arr[i] < right.min()
        if is_ext:
            indices.append(i)
    return indices


def find_swing_points(series: PriceSeries, window: Optional[int] = None) -> List[SwingPoint]:
    """Swing highs and lows in chronological order.

    A candle that is both a swing high and a swing low yields the high
    first.
    """
    n = len(series)
    if window is None:
        window = default_window(n)
    if n < 2 * window + 1:
        return []

    highs, lows = series.highs, series.lows
    points: List[SwingPoint] = []
    for i in _strict_extrema(highs, window, "peak"):
        c = series.candles[i]
        points.append(SwingPoint(i, c.timestamp, c.high, "high", c.volume))
    for i in _strict_extrema(lows, window, "trough"):
        c = series.candles[i]
        points.append(SwingPoint(i, c.timestamp, c.low, "low", c.volume))
    points.sort(key=lambda p: (p.index, p.kind != "high"))
    return points


# ---------------------------------------------------------------------------
# Clustering
# ---------------------------------------------------------------------------
class _Accumulator:
    __slots__ = ("price", "touches", "volume", "recency_sum", "kinds")

    def __init__(self, point: SwingPoint, position: float):
        self.price = point.price
        self.touches = 1
        self.volume = point.volume
        self.recency_sum = position
        self.kinds = {point.kind}

    def add(self, point: SwingPoint, position: float) -> None:
        self.price = (self.price * self.touches + point.price) / (self.touches + 1)
        self.touches += 1
        self.volume += point.volume
        self.recency_sum += position
        self.kinds.add(point.kind)

    @property
    def kind(self) -> str:
        if self.kinds == {"low"}:
            return "support"
        if self.kinds == {"high"}:
            return "resistance"
        return "both"


def cluster_pivots(
    series: PriceSeries, pivots: Optional[List[SwingPoint]] = None,
) -> List[PivotCluster]:
    """Merge pivots into clusters, returned in creation order."""
    if pivots is None:
        pivots = find_swing_points(series)
    n = len(series)
    if not pivots or n == 0:
        return []

    full_range = float(series.highs.max() - series.lows.min())
    tolerance = _SR_CLUSTER_PCT * full_range
    last_index = max(n - 1, 1)

    accs: List[_Accumulator] = []
    for point in pivots:
        position = point.index / last_index
        best: Optional[_Accumulator] = None
        best_dist = None
        for acc in accs:
            dist = abs(acc.price - point.price)
            # strict < keeps the earlier cluster on ties
            if dist <= tolerance and (best_dist is None or dist < best_dist):
                best, best_dist = acc, dist
        if best is None:
            accs.append(_Accumulator(point, position))
        else:
            best.add(point, position)

    max_volume = max(acc.volume for acc in accs)
    clusters = []
    for acc in accs:
        recency = acc.recency_sum / acc.touches
        vol_score = acc.volume / max_volume * 25 if max_volume > 0 else 0.0
        strength = min(acc.touches * 25, 50) + vol_score + recency * 25
        clusters.append(PivotCluster(
            price=round(acc.price, 2),
            touches=acc.touches,
            volume=acc.volume,
            recency=round(recency, 4),
            kind=acc.kind,
            strength=round(strength, 2),
        ))
    return clusters


# ---------------------------------------------------------------------------
# Support / resistance
# ---------------------------------------------------------------------------
def _top_levels(clusters: List[PivotCluster], kind: str, descending: bool) -> List[Level]:
    ranked = sorted(clusters, key=lambda c: c.strength, reverse=True)[:_MAX_LEVELS_PER_SIDE]
    ranked.sort(key=lambda c: c.price, reverse=descending)
    return [Level(c.price, c.strength, c.touches, kind) for c in ranked]


def support_resistance(
    series: PriceSeries, clusters: Optional[List[PivotCluster]] = None,
) -> SupportResistance:
    """Strongest clusters either side of the current price, nearest first.

    When no cluster lies on one side, the series' own low (high) stands in
    as a single weak level with ``fallback=True``.
    """
    current = series.current_price
    if not len(series):
        return SupportResistance([], [], current)
    if clusters is None:
        clusters = cluster_pivots(series)

    below = [c for c in clusters if c.price < current]
    above = [c for c in clusters if c.price > current]
    supports = _top_levels(below, "support", descending=True)
    resistances = _top_levels(above, "resistance", descending=False)

    if not supports:
        supports = [Level(float(series.lows.min()), _FALLBACK_STRENGTH, 0, "support", fallback=True)]
    if not resistances:
        resistances = [Level(float(series.highs.max()), _FALLBACK_STRENGTH, 0, "resistance", fallback=True)]
    return SupportResistance(supports, resistances, current)
