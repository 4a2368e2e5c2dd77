"""Financial Modeling Prep end-of-day adapter.

The free tier has no intraday history, so intraday ranges short-circuit
with UnsupportedGranularity before any request (see
resolution.PROVIDER_INTERVALS). Weekly and monthly candles are resampled
from daily bars.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pandas as pd

from candlelens.data_sources.base import BaseProvider, to_epoch
from candlelens.data_sources.resolution import RangePlan
from candlelens.errors import NoData
from candlelens.models import RawCandle, RawSeries

BASE_URL = "https://financialmodelingprep.com/api/v3/historical-price-full"

_RESAMPLE_RULES = {
    "1week": "W-MON",
    "1month": "MS",
}


def resample_records(records: list[RawCandle], rule: str) -> list[RawCandle]:
    """Aggregate daily records into coarser buckets labelled by bucket start."""
    records = [r for r in records if r.timestamp is not None]
    if not records:
        return []
    df = pd.DataFrame(
        {
            "Open": [r.open for r in records],
            "High": [r.high for r in records],
            "Low": [r.low for r in records],
            "Close": [r.close for r in records],
            "Volume": [r.volume or 0 for r in records],
        },
        index=pd.to_datetime([r.timestamp for r in records], unit="s", utc=True),
    ).sort_index()
    for col in ["Open", "High", "Low", "Close", "Volume"]:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    agg = {
        "Open": "first",
        "High": "max",
        "Low": "min",
        "Close": "last",
        "Volume": "sum",
    }
    resampled = (
        df.resample(rule, label="left", closed="left").agg(agg).dropna(subset=["Close"])
    )
    return [
        RawCandle(to_epoch(ts), row.Open, row.High, row.Low, row.Close, row.Volume)
        for ts, row in resampled.iterrows()
    ]


class FMPProvider(BaseProvider):
    name = "fmp"

    def _request(self, symbol: str, plan: RangePlan, interval, credential) -> RawSeries:
        start = datetime.fromtimestamp(plan.start, tz=timezone.utc).strftime("%Y-%m-%d")
        end = datetime.fromtimestamp(plan.end, tz=timezone.utc).strftime("%Y-%m-%d")
        data = self._get_json(
            f"{BASE_URL}/{symbol.upper()}",
            params={"from": start, "to": end, "apikey": credential},
        )

        if isinstance(data, dict) and "Error Message" in data:
            raise NoData(self.name, data["Error Message"])
        historical = data.get("historical") if isinstance(data, dict) else None
        if not historical:
            raise NoData(self.name, f"no history for {symbol}")

        records = [
            RawCandle(
                timestamp=to_epoch(row.get("date")),
                open=row.get("open"),
                high=row.get("high"),
                low=row.get("low"),
                close=row.get("close"),
                volume=row.get("volume"),
            )
            for row in historical
        ]
        rule = _RESAMPLE_RULES.get(plan.granularity)
        if rule:
            records = resample_records(records, rule)
        return RawSeries(records=records)
