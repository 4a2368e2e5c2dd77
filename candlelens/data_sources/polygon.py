"""Polygon.io aggregates adapter."""

from __future__ import annotations

from candlelens.data_sources.base import BaseProvider
from candlelens.data_sources.resolution import RangePlan
from candlelens.errors import ProviderError
from candlelens.models import RawCandle, RawSeries

BASE_URL = "https://api.polygon.io/v2/aggs/ticker"

_OK_STATUSES = {"OK", "DELAYED"}


class PolygonProvider(BaseProvider):
    name = "polygon"

    def _request(self, symbol: str, plan: RangePlan, interval, credential) -> RawSeries:
        multiplier, timespan = interval
        url = (
            f"{BASE_URL}/{symbol.upper()}/range/{multiplier}/{timespan}"
            f"/{plan.start * 1000}/{plan.end * 1000}"
        )
        data = self._get_json(
            url,
            params={"adjusted": "true", "sort": "asc", "limit": 50000, "apiKey": credential},
        )

        status = data.get("status")
        if status not in _OK_STATUSES:
            raise ProviderError(
                self.name, data.get("error") or data.get("message") or f"status={status}",
            )

        records = [
            RawCandle(
                timestamp=int(r["t"]) // 1000,
                open=r.get("o"),
                high=r.get("h"),
                low=r.get("l"),
                close=r.get("c"),
                volume=r.get("v"),
            )
            for r in data.get("results") or []
        ]
        return RawSeries(records=records)
