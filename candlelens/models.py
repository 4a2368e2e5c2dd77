"""Canonical candle and series records shared by providers and analysis."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

import numpy as np
import pandas as pd

_PRICE_DECIMALS = 2


@dataclass(frozen=True)
class Candle:
    """One OHLCV bucket. ``timestamp`` is the bucket start in unix seconds."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def is_up(self) -> bool:
        return self.close >= self.open

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low


@dataclass(frozen=True)
class RawCandle:
    """A provider record before normalization.

    ``timestamp`` and the four prices are required; a record missing any of
    them is dropped. ``volume`` is optional and defaults to 0.
    """

    timestamp: Optional[int]
    open: Optional[float]
    high: Optional[float]
    low: Optional[float]
    close: Optional[float]
    volume: Optional[float] = None


@dataclass(frozen=True)
class RawSeries:
    """Parsed provider reply: records plus whatever provenance it carried."""

    records: list[RawCandle]
    exchange: Optional[str] = None
    currency: Optional[str] = None
    last_price: Optional[float] = None
    timezone: Optional[str] = None      # exchange zone (IANA name), if reported


def _as_float(value) -> Optional[float]:
    if value is None:
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def normalize_record(raw: RawCandle) -> Optional[Candle]:
    """Round prices, default volume and restore the high/low invariant.

    Returns None when a required field is missing or unparseable.
    """
    if raw.timestamp is None:
        return None
    o, h, l, c = (_as_float(v) for v in (raw.open, raw.high, raw.low, raw.close))
    if o is None or h is None or l is None or c is None:
        return None
    volume = _as_float(raw.volume)
    o, h, l, c = (round(v, _PRICE_DECIMALS) for v in (o, h, l, c))
    return Candle(
        timestamp=int(raw.timestamp),
        open=o,
        high=max(h, o, c),
        low=min(l, o, c),
        close=c,
        volume=volume if volume is not None and volume > 0 else 0.0,
    )


def normalize_records(records: Iterable[RawCandle]) -> list[Candle]:
    """Normalize, sort ascending and drop duplicate timestamps (last wins)."""
    by_ts: dict[int, Candle] = {}
    for raw in records:
        candle = normalize_record(raw)
        if candle is not None:
            by_ts[candle.timestamp] = candle
    return [by_ts[ts] for ts in sorted(by_ts)]


@dataclass(frozen=True)
class PriceSeries:
    """Chronological candles for one (symbol, range) plus provenance."""

    symbol: str
    range_tag: str
    candles: tuple[Candle, ...]
    source: str
    exchange: Optional[str] = None
    currency: Optional[str] = None
    last_price: Optional[float] = None
    live: bool = True
    fetched_at: Optional[float] = field(default=None, compare=False)

    def __len__(self) -> int:
        return len(self.candles)

    @property
    def latest(self) -> Optional[Candle]:
        return self.candles[-1] if self.candles else None

    @property
    def current_price(self) -> Optional[float]:
        if self.candles:
            return self.candles[-1].close
        return self.last_price

    # -- numpy column views ------------------------------------------------
    @property
    def timestamps(self) -> np.ndarray:
        return np.array([c.timestamp for c in self.candles], dtype=np.int64)

    @property
    def opens(self) -> np.ndarray:
        return np.array([c.open for c in self.candles], dtype=float)

    @property
    def highs(self) -> np.ndarray:
        return np.array([c.high for c in self.candles], dtype=float)

    @property
    def lows(self) -> np.ndarray:
        return np.array([c.low for c in self.candles], dtype=float)

    @property
    def closes(self) -> np.ndarray:
        return np.array([c.close for c in self.candles], dtype=float)

    @property
    def volumes(self) -> np.ndarray:
        return np.array([c.volume for c in self.candles], dtype=float)

    def to_frame(self) -> pd.DataFrame:
        """OHLCV DataFrame indexed by UTC timestamps."""
        index = pd.to_datetime(self.timestamps, unit="s", utc=True)
        return pd.DataFrame(
            {
                "Open": self.opens,
                "High": self.highs,
                "Low": self.lows,
                "Close": self.closes,
                "Volume": self.volumes,
            },
            index=index,
        )

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        symbol: str,
        range_tag: str,
        source: str,
        **meta,
    ) -> "PriceSeries":
        """Build a series from an OHLCV frame with a datetime index."""
        index = pd.DatetimeIndex(df.index)
        if index.tz is None:
            index = index.tz_localize("UTC")
        epoch = pd.Timestamp("1970-01-01", tz="UTC")
        epochs = [int(v) for v in (index.tz_convert("UTC") - epoch) // pd.Timedelta(seconds=1)]
        volumes = df["Volume"] if "Volume" in df.columns else [None] * len(df)
        records = [
            RawCandle(ts, o, h, l, c, v)
            for ts, o, h, l, c, v in zip(
                epochs, df["Open"], df["High"], df["Low"], df["Close"], volumes,
            )
        ]
        return cls(
            symbol=symbol,
            range_tag=range_tag,
            candles=tuple(normalize_records(records)),
            source=source,
            **meta,
        )
