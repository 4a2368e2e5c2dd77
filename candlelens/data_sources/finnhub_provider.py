"""Finnhub candle adapter (official finnhub-python client)."""

from __future__ import annotations

import finnhub
from finnhub.exceptions import FinnhubAPIException, FinnhubRequestException

from candlelens.data_sources.base import BaseProvider
from candlelens.data_sources.resolution import RangePlan
from candlelens.errors import NoData, ProviderError
from candlelens.models import RawCandle, RawSeries


class FinnhubProvider(BaseProvider):
    name = "finnhub"

    def _client(self, credential: str) -> finnhub.Client:
        return finnhub.Client(api_key=credential, requests_timeout=self.timeout)

    def _request(self, symbol: str, plan: RangePlan, interval, credential) -> RawSeries:
        client = self._client(credential)
        try:
            data = client.stock_candles(symbol, interval, plan.start, plan.end)
        except (FinnhubAPIException, FinnhubRequestException) as e:
            raise ProviderError(self.name, str(e)) from e

        if not isinstance(data, dict) or data.get("s") != "ok":
            status = data.get("s") if isinstance(data, dict) else type(data).__name__
            raise NoData(self.name, f"status={status}")

        t = data["t"]
        volumes = data.get("v") or [None] * len(t)
        records = [
            RawCandle(int(ts), o, h, l, c, v)
            for ts, o, h, l, c, v in zip(t, data["o"], data["h"], data["l"], data["c"], volumes)
        ]
        return RawSeries(records=records)
