"""Base class for all price-history provider adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import pandas as pd
import requests

from candlelens.config import SETTINGS
from candlelens.data_sources.resolution import RangePlan, apply_policy, plan_range
from candlelens.errors import (
    FetchError,
    MissingCredential,
    NetworkTimeout,
    NoData,
    ProviderError,
    UnsupportedGranularity,
)
from candlelens.models import PriceSeries, RawSeries, normalize_records
from candlelens.utils.http import default_timeout, get_session
from candlelens.utils.logger import setup_logger
from candlelens.utils.rate_limiter import RateLimiter

logger = setup_logger("providers")

_EPOCH = pd.Timestamp("1970-01-01", tz="UTC")


def to_epoch(value: Any, tz: str = "UTC") -> Optional[int]:
    """Parse a provider datetime string into unix seconds.

    Naive values are interpreted in ``tz`` (the exchange's zone when the
    provider reports local times).
    """
    if value is None or value == "":
        return None
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize(tz)
    return int((ts.tz_convert("UTC") - _EPOCH) // pd.Timedelta(seconds=1))


class BaseProvider(ABC):
    """Interface every provider adapter implements.

    To add a provider:
    1. Subclass BaseProvider in a new module under data_sources/
    2. Set ``name`` and implement ``_request()`` returning a RawSeries
    3. Add its interval tokens to resolution.PROVIDER_INTERVALS
    4. Register it in orchestrator.PROVIDER_CLASSES and the priority lists
       in configs/settings.yaml
    """

    name: str = ""
    requires_credential: bool = True

    def __init__(
        self,
        timeout: float | None = None,
        session: requests.Session | None = None,
        limiter: RateLimiter | None = None,
    ):
        self.timeout = timeout if timeout is not None else default_timeout()
        self._session = session
        cpm = SETTINGS.get("providers", {}).get(self.name, {}).get("calls_per_minute", 60)
        self.limiter = limiter or RateLimiter(cpm)

    @property
    def session(self) -> requests.Session:
        return self._session or get_session()

    def fetch(
        self,
        symbol: str,
        range_tag: str,
        credential: str | None = None,
        now: float | None = None,
    ) -> PriceSeries:
        """Fetch and normalize one series.

        Raises:
            MissingCredential: no key supplied (no request is made)
            UnsupportedGranularity: provider can't serve the range's candle size
            NetworkTimeout: the per-attempt deadline elapsed
            ProviderError: transport failure, HTTP error or error payload
            NoData: empty or malformed reply, or nothing left after filtering
        """
        if self.requires_credential and not credential:
            raise MissingCredential(self.name, "no API key configured")

        plan = plan_range(range_tag, now)
        interval = plan.interval_for(self.name)
        if interval is None:
            raise UnsupportedGranularity(
                self.name, f"{plan.granularity} candles not available for {plan.tag}",
            )

        # A quota wait longer than the attempt deadline fails over instead
        delay = self.limiter.would_wait()
        if delay > self.timeout:
            raise ProviderError(self.name, f"rate limited for another {delay:.0f}s")
        self.limiter.wait()
        logger.info(
            "%s: requesting %s (range=%s, granularity=%s)",
            self.name, symbol, plan.tag, plan.granularity,
        )
        try:
            raw = self._request(symbol, plan, interval, credential)
        except FetchError:
            raise
        except requests.Timeout as e:
            raise NetworkTimeout(self.name, f"no reply within {self.timeout:.0f}s") from e
        except requests.exceptions.JSONDecodeError as e:
            raise NoData(self.name, f"unparseable reply: {e}") from e
        except requests.RequestException as e:
            raise ProviderError(self.name, str(e)) from e
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
            raise NoData(self.name, f"malformed reply: {e}") from e

        candles = normalize_records(raw.records)
        if not candles:
            raise NoData(self.name, f"empty reply for {symbol}")
        candles = apply_policy(candles, plan.policy, tz=raw.timezone)
        if not candles:
            raise NoData(self.name, f"no candles left after {plan.policy.kind} filter")

        logger.info("%s: got %d candles for %s", self.name, len(candles), symbol)
        return PriceSeries(
            symbol=symbol.upper(),
            range_tag=range_tag,
            candles=tuple(candles),
            source=self.name,
            exchange=raw.exchange,
            currency=raw.currency,
            last_price=raw.last_price if raw.last_price is not None else candles[-1].close,
        )

    def _get_json(
        self, url: str, params: dict | None = None, timeout: float | None = None,
    ) -> dict:
        """GET a JSON object; any other JSON value (list, null, string) is NoData."""
        resp = self.session.get(url, params=params, timeout=timeout or self.timeout)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise NoData(self.name, f"expected a JSON object, got {type(data).__name__}")
        return data

    @abstractmethod
    def _request(
        self, symbol: str, plan: RangePlan, interval: Any, credential: str | None,
    ) -> RawSeries:
        """Call the provider and parse its reply into raw records."""
        ...
