"""TwelveData REST adapter.

Free tier: 800 calls/day, 8 calls/min. Timestamps are requested in UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone

from candlelens.data_sources.base import BaseProvider, to_epoch
from candlelens.data_sources.resolution import RangePlan
from candlelens.errors import NoData, ProviderError
from candlelens.models import RawCandle, RawSeries

BASE_URL = "https://api.twelvedata.com/time_series"

# Error codes that mean "nothing to return" rather than a broken call
_NO_DATA_CODES = {400, 404}


class TwelveDataProvider(BaseProvider):
    name = "twelvedata"

    def _request(self, symbol: str, plan: RangePlan, interval, credential) -> RawSeries:
        start = datetime.fromtimestamp(plan.start, tz=timezone.utc)
        data = self._get_json(
            BASE_URL,
            params={
                "symbol": symbol,
                "interval": interval,
                "start_date": start.strftime("%Y-%m-%d %H:%M:%S"),
                "outputsize": 5000,
                "timezone": "UTC",
                "order": "ASC",
                "apikey": credential,
                "format": "JSON",
            },
        )

        if data.get("status") == "error":
            message = data.get("message", "unknown error")
            if data.get("code") in _NO_DATA_CODES:
                raise NoData(self.name, message)
            raise ProviderError(self.name, message)

        values = data.get("values") or []
        meta = data.get("meta") or {}
        records = [
            RawCandle(
                timestamp=to_epoch(v.get("datetime")),
                open=v.get("open"),
                high=v.get("high"),
                low=v.get("low"),
                close=v.get("close"),
                volume=v.get("volume"),
            )
            for v in values
        ]
        return RawSeries(
            records=records,
            exchange=meta.get("exchange"),
            currency=meta.get("currency"),
            timezone=meta.get("exchange_timezone"),
        )
