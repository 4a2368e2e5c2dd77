"""Unauthenticated Yahoo chart scrape, the last-resort source.

Requests go through a small pool of relay URL templates (the first is a
direct call). Each fetch starts at the next relay in the rotation and
walks the pool until one answers or the attempt deadline passes, so a
relay that is temporarily blocked costs one attempt rather than the whole
fetch.
"""

from __future__ import annotations

import itertools
import threading
import time
from urllib.parse import quote, urlencode, urlsplit

import requests

from candlelens.config import SETTINGS
from candlelens.data_sources.base import BaseProvider
from candlelens.data_sources.resolution import RangePlan
from candlelens.errors import NetworkTimeout, NoData, ProviderError
from candlelens.models import RawCandle, RawSeries
from candlelens.utils.http import throttle_host
from candlelens.utils.logger import setup_logger

logger = setup_logger("yahoo_scrape")

CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"

DEFAULT_RELAYS = [
    "{url}",
    "https://corsproxy.io/?url={url}",
    "https://api.allorigins.win/raw?url={url}",
]


class YahooScrapeProvider(BaseProvider):
    name = "yahoo"
    requires_credential = False

    def __init__(self, relays: list[str] | None = None, **kwargs):
        super().__init__(**kwargs)
        cfg = SETTINGS.get("providers", {}).get("yahoo", {})
        self.relays = list(relays or cfg.get("relays") or DEFAULT_RELAYS)
        self._rotation = itertools.cycle(range(len(self.relays)))
        self._rotation_lock = threading.Lock()
        min_interval = cfg.get("min_request_interval", 0.5)
        for template in self.relays:
            host = urlsplit(template.replace("{url}", CHART_URL)).hostname
            if host:
                throttle_host(host, min_interval)

    def _relay_order(self) -> list[str]:
        with self._rotation_lock:
            first = next(self._rotation)
        return self.relays[first:] + self.relays[:first]

    @staticmethod
    def _relay_url(template: str, target: str) -> str:
        if template == "{url}":
            return target
        return template.format(url=quote(target, safe=""))

    def _request(self, symbol: str, plan: RangePlan, interval, credential) -> RawSeries:
        query = urlencode({
            "interval": interval,
            "period1": plan.start,
            "period2": plan.end,
            "includePrePost": "false",
        })
        target = f"{CHART_URL.format(symbol=quote(symbol.upper()))}?{query}"

        # The whole relay walk shares one attempt deadline
        deadline = time.monotonic() + self.timeout
        last_error: Exception | None = None
        for template in self._relay_order():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise NetworkTimeout(self.name, f"relay walk exceeded {self.timeout:.0f}s")
            url = self._relay_url(template, target)
            try:
                data = self._get_json(url, timeout=remaining)
            except (requests.RequestException, ValueError, NoData) as e:
                # Transport failure or a relay mangling the reply: try the next one
                logger.debug("Relay %s failed for %s: %s", template, symbol, e)
                last_error = e
                continue
            # The upstream answered; another relay won't change a chart error
            return self._parse(data, symbol)

        if isinstance(last_error, requests.Timeout):
            raise NetworkTimeout(self.name, "every relay timed out")
        raise ProviderError(self.name, f"every relay failed (last: {last_error})")

    def _parse(self, data: dict, symbol: str) -> RawSeries:
        chart = data.get("chart") or {}
        if chart.get("error"):
            err = chart["error"]
            raise NoData(self.name, err.get("description") if isinstance(err, dict) else str(err))
        results = chart.get("result") or []
        if not results:
            raise NoData(self.name, f"no chart result for {symbol}")

        result = results[0]
        meta = result.get("meta") or {}
        timestamps = result.get("timestamp") or []
        quotes = (result.get("indicators", {}).get("quote") or [{}])[0]
        n = len(timestamps)
        opens = quotes.get("open") or [None] * n
        highs = quotes.get("high") or [None] * n
        lows = quotes.get("low") or [None] * n
        closes = quotes.get("close") or [None] * n
        volumes = quotes.get("volume") or [None] * n

        records = [
            RawCandle(int(ts), o, h, l, c, v)
            for ts, o, h, l, c, v in zip(timestamps, opens, highs, lows, closes, volumes)
        ]
        return RawSeries(
            records=records,
            exchange=meta.get("exchangeName"),
            currency=meta.get("currency"),
            last_price=meta.get("regularMarketPrice"),
            timezone=meta.get("exchangeTimezoneName"),
        )
