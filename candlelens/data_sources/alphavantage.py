"""Alpha Vantage TIME_SERIES_* adapter.

Replies are keyed by exchange-local datetimes; the zone comes from the
``Meta Data`` block (``US/Eastern`` for US listings).
"""

from __future__ import annotations

from candlelens.data_sources.base import BaseProvider, to_epoch
from candlelens.data_sources.resolution import RangePlan
from candlelens.errors import NoData, ProviderError
from candlelens.models import RawCandle, RawSeries

BASE_URL = "https://www.alphavantage.co/query"


def _field(record: dict, suffix: str):
    for key, value in record.items():
        if key.endswith(suffix):
            return value
    return None


class AlphaVantageProvider(BaseProvider):
    name = "alphavantage"

    def _request(self, symbol: str, plan: RangePlan, interval, credential) -> RawSeries:
        function, av_interval = interval
        params = {
            "function": function,
            "symbol": symbol,
            "apikey": credential,
            "outputsize": "full" if plan.intraday or plan.expected_count > 100 else "compact",
        }
        if av_interval:
            params["interval"] = av_interval
        data = self._get_json(BASE_URL, params=params)

        if "Error Message" in data:
            raise NoData(self.name, data["Error Message"])
        # Rate-limit and premium-endpoint notices come back with HTTP 200
        notice = data.get("Note") or data.get("Information")
        if notice:
            raise ProviderError(self.name, notice)

        series_key = next((k for k in data if "Time Series" in k), None)
        if series_key is None:
            raise NoData(self.name, "no time series block in reply")

        meta = data.get("Meta Data") or {}
        tz = _field(meta, "Time Zone") or "US/Eastern"
        records = [
            RawCandle(
                timestamp=to_epoch(stamp, tz=tz),
                open=_field(values, "open"),
                high=_field(values, "high"),
                low=_field(values, "low"),
                close=_field(values, "close"),
                volume=_field(values, "volume"),
            )
            for stamp, values in data[series_key].items()
        ]
        return RawSeries(records=records, timezone=tz)
