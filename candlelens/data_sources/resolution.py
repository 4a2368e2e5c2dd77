"""Resolution planner: logical range tag -> fetch parameters and filter policy.

The planner is pure. It never raises; unknown tags get the 3-month plan.
Calendar days are exchange-local dates when the provider reports its zone,
else UTC dates (``timestamp // 86400``).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Sequence

import pandas as pd

from candlelens.models import Candle
from candlelens.utils.logger import setup_logger

logger = setup_logger("resolution")

_DAY = 86_400

# Filter policy kinds
LATEST_DAY = "keep-only-latest-trading-day"
LAST_N_DAYS = "keep-last-N-trading-days"
SINCE_CUTOFF = "keep-since-calendar-cutoff"
LAST_N_CANDLES = "keep-last-N-candles"
KEEP_ALL = "keep-all"

RANGE_TAGS = (
    "1-day", "1-week", "1-month", "3-month", "6-month", "1-year", "5-year", "all-time",
)
DEFAULT_RANGE = "3-month"

INTRADAY_GRANULARITIES = frozenset({"5min", "30min", "1hour"})

# Provider-specific interval tokens per canonical granularity. A provider
# missing a granularity cannot serve it.
PROVIDER_INTERVALS: dict[str, dict[str, object]] = {
    "twelvedata": {
        "5min": "5min", "30min": "30min", "1hour": "1h",
        "1day": "1day", "1week": "1week", "1month": "1month",
    },
    "finnhub": {
        "5min": "5", "30min": "30", "1hour": "60",
        "1day": "D", "1week": "W", "1month": "M",
    },
    "polygon": {
        "5min": (5, "minute"), "30min": (30, "minute"), "1hour": (1, "hour"),
        "1day": (1, "day"), "1week": (1, "week"), "1month": (1, "month"),
    },
    "alphavantage": {
        "5min": ("TIME_SERIES_INTRADAY", "5min"),
        "30min": ("TIME_SERIES_INTRADAY", "30min"),
        "1hour": ("TIME_SERIES_INTRADAY", "60min"),
        "1day": ("TIME_SERIES_DAILY", None),
        "1week": ("TIME_SERIES_WEEKLY", None),
        "1month": ("TIME_SERIES_MONTHLY", None),
    },
    # End-of-day only on the free tier; weekly/monthly are resampled
    "fmp": {"1day": "1day", "1week": "1day", "1month": "1day"},
    "yahoo": {
        "5min": "5m", "30min": "30m", "1hour": "60m",
        "1day": "1d", "1week": "1wk", "1month": "1mo",
    },
}


@dataclass(frozen=True)
class FilterPolicy:
    kind: str
    n: Optional[int] = None
    cutoff: Optional[int] = None


@dataclass(frozen=True)
class RangePlan:
    tag: str
    granularity: str
    lookback_days: int
    expected_count: int
    policy: FilterPolicy
    start: int
    end: int

    @property
    def intraday(self) -> bool:
        return self.granularity in INTRADAY_GRANULARITIES

    def interval_for(self, provider: str):
        """Provider interval token, or None if the provider can't serve it."""
        return PROVIDER_INTERVALS.get(provider, {}).get(self.granularity)


# tag -> (granularity, lookback days, expected count, policy kind, policy n)
_PLAN_TABLE: dict[str, tuple[str, int, int, str, Optional[int]]] = {
    "1-day": ("5min", 7, 78, LATEST_DAY, None),
    "1-week": ("30min", 10, 65, LAST_N_DAYS, 5),
    "1-month": ("1hour", 30, 154, SINCE_CUTOFF, None),
    "3-month": ("1day", 90, 63, SINCE_CUTOFF, None),
    "6-month": ("1day", 180, 126, SINCE_CUTOFF, None),
    "1-year": ("1day", 400, 252, LAST_N_CANDLES, 252),
    "5-year": ("1week", 1830, 260, LAST_N_CANDLES, 260),
    "all-time": ("1month", 18_250, 600, KEEP_ALL, None),
}


def plan_range(range_tag: str, now: Optional[float] = None) -> RangePlan:
    """Resolve a range tag against the current wall-clock time."""
    tag = range_tag if range_tag in _PLAN_TABLE else DEFAULT_RANGE
    granularity, lookback, expected, kind, n = _PLAN_TABLE[tag]
    end = int(now if now is not None else time.time())
    start = end - lookback * _DAY
    cutoff = start if kind == SINCE_CUTOFF else None
    return RangePlan(
        tag=tag,
        granularity=granularity,
        lookback_days=lookback,
        expected_count=expected,
        policy=FilterPolicy(kind=kind, n=n, cutoff=cutoff),
        start=start,
        end=end,
    )


def is_intraday(range_tag: str) -> bool:
    return plan_range(range_tag).intraday


def _day(ts: int) -> int:
    return ts // _DAY


def calendar_days(candles: Sequence[Candle], tz: Optional[str] = None) -> list[int]:
    """Calendar-day ordinal of each candle, in ``tz`` when given, else UTC.

    An unknown zone name falls back to UTC dates.
    """
    if not tz:
        return [_day(c.timestamp) for c in candles]
    try:
        index = pd.to_datetime([c.timestamp for c in candles], unit="s", utc=True).tz_convert(tz)
    except (KeyError, ValueError) as e:
        logger.warning("Unknown exchange time zone %r, using UTC days: %s", tz, e)
        return [_day(c.timestamp) for c in candles]
    return [d.toordinal() for d in index.date]


def apply_policy(
    candles: Sequence[Candle], policy: FilterPolicy, tz: Optional[str] = None,
) -> list[Candle]:
    """Apply a post-fetch filter to chronologically sorted candles.

    Day-based policies group candles by the exchange-local date when ``tz``
    is known, so a session that spans UTC midnight stays in one day.
    """
    candles = list(candles)
    if not candles:
        return candles

    if policy.kind == LATEST_DAY:
        days = calendar_days(candles, tz)
        return [c for c, d in zip(candles, days) if d == days[-1]]

    if policy.kind == LAST_N_DAYS:
        days = calendar_days(candles, tz)
        keep = set(sorted(set(days))[-(policy.n or 1):])
        return [c for c, d in zip(candles, days) if d in keep]

    if policy.kind == SINCE_CUTOFF and policy.cutoff is not None:
        return [c for c in candles if c.timestamp >= policy.cutoff]

    if policy.kind == LAST_N_CANDLES and policy.n:
        return candles[-policy.n:]

    return candles
