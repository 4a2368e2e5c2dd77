"""Ordered multi-provider fallback for price history."""

from __future__ import annotations

from typing import Mapping, Optional

from candlelens.config import SETTINGS
from candlelens.data_sources.alphavantage import AlphaVantageProvider
from candlelens.data_sources.base import BaseProvider
from candlelens.data_sources.finnhub_provider import FinnhubProvider
from candlelens.data_sources.fmp import FMPProvider
from candlelens.data_sources.polygon import PolygonProvider
from candlelens.data_sources.resolution import is_intraday
from candlelens.data_sources.twelvedata import TwelveDataProvider
from candlelens.data_sources.yahoo_scrape import YahooScrapeProvider
from candlelens.errors import AllSourcesFailed, FetchError, MissingCredential
from candlelens.models import PriceSeries
from candlelens.utils.cache import SeriesCache
from candlelens.utils.logger import setup_logger

logger = setup_logger("orchestrator")

PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "twelvedata": TwelveDataProvider,
    "finnhub": FinnhubProvider,
    "polygon": PolygonProvider,
    "alphavantage": AlphaVantageProvider,
    "fmp": FMPProvider,
}

# Intraday: TwelveData and Finnhub have the cleanest free intraday feeds;
# Polygon's 5 calls/min and Alpha Vantage's quota make them later picks.
DEFAULT_INTRADAY_ORDER = ["twelvedata", "finnhub", "polygon", "alphavantage", "fmp"]
# Daily+: Polygon and FMP return long adjusted histories in one call.
DEFAULT_DAILY_ORDER = ["polygon", "fmp", "twelvedata", "alphavantage", "finnhub"]


class FallbackOrchestrator:
    """Try providers in a per-timeframe priority order, first success wins.

    Attempts are strictly sequential and each provider is tried at most
    once per fetch. When every typed provider fails the unauthenticated
    scraper gets one last attempt. The only side effect is writing
    successful results to the injected cache.

    With ``providers=None`` the default adapter set and scraper are built;
    when ``providers`` is given, only the ``scraper`` passed in is used.
    """

    def __init__(
        self,
        providers: Optional[Mapping[str, BaseProvider]] = None,
        intraday_order: Optional[list[str]] = None,
        daily_order: Optional[list[str]] = None,
        scraper: Optional[BaseProvider] = None,
        cache: Optional[SeriesCache] = None,
    ):
        if providers is None:
            providers = {name: cls() for name, cls in PROVIDER_CLASSES.items()}
            scraper = scraper or YahooScrapeProvider()
        self.providers = dict(providers)
        self.scraper = scraper
        self.cache = cache

        priority = SETTINGS.get("fetch", {}).get("priority", {})
        self.intraday_order = list(intraday_order or priority.get("intraday") or DEFAULT_INTRADAY_ORDER)
        self.daily_order = list(daily_order or priority.get("daily") or DEFAULT_DAILY_ORDER)

    def order_for(self, range_tag: str) -> list[str]:
        return self.intraday_order if is_intraday(range_tag) else self.daily_order

    def fetch(
        self,
        symbol: str,
        range_tag: str,
        credentials: Optional[Mapping[str, str]] = None,
        now: Optional[float] = None,
    ) -> PriceSeries:
        """Return the first non-empty series, or raise AllSourcesFailed."""
        credentials = credentials or {}
        if self.cache is not None:
            cached = self.cache.get(symbol, range_tag)
            if cached is not None:
                logger.info("Cache hit: %s %s (%s)", symbol, range_tag, cached.source)
                return cached

        attempts: list[FetchError] = []
        for name in self.order_for(range_tag):
            provider = self.providers.get(name)
            if provider is None:
                logger.debug("Provider %s not registered, skipping", name)
                continue
            credential = credentials.get(name)
            if provider.requires_credential and not credential:
                logger.debug("No credential for %s, skipping", name)
                attempts.append(MissingCredential(name, "no API key configured"))
                continue
            series = self._attempt(provider, symbol, range_tag, credential, now, attempts)
            if series is not None:
                return self._store(symbol, range_tag, series)

        if self.scraper is not None:
            logger.info("All typed providers failed for %s, trying %s", symbol, self.scraper.name)
            series = self._attempt(
                self.scraper, symbol, range_tag, credentials.get(self.scraper.name), now, attempts,
            )
            if series is not None:
                return self._store(symbol, range_tag, series)

        error = AllSourcesFailed(symbol, range_tag, attempts)
        logger.error("%s", error)
        raise error

    @staticmethod
    def _attempt(
        provider: BaseProvider,
        symbol: str,
        range_tag: str,
        credential: Optional[str],
        now: Optional[float],
        attempts: list[FetchError],
    ) -> Optional[PriceSeries]:
        try:
            series = provider.fetch(symbol, range_tag, credential, now=now)
        except FetchError as e:
            logger.warning("%s failed for %s: %s", provider.name, symbol, e.message)
            attempts.append(e)
            return None
        if not len(series):
            attempts.append(FetchError(provider.name, "empty series"))
            return None
        return series

    def _store(self, symbol: str, range_tag: str, series: PriceSeries) -> PriceSeries:
        if self.cache is not None:
            self.cache.set(symbol, range_tag, series)
        return series
