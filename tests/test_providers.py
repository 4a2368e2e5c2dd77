"""Tests for the provider adapters (mocked HTTP, no network)."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from candlelens.data_sources.alphavantage import AlphaVantageProvider
from candlelens.data_sources.base import to_epoch
from candlelens.data_sources.finnhub_provider import FinnhubProvider
from candlelens.data_sources.fmp import FMPProvider, resample_records
from candlelens.data_sources.orchestrator import FallbackOrchestrator
from candlelens.data_sources.polygon import PolygonProvider
from candlelens.data_sources.twelvedata import TwelveDataProvider
from candlelens.data_sources.yahoo_scrape import YahooScrapeProvider
from candlelens.errors import (
    MissingCredential,
    NetworkTimeout,
    NoData,
    ProviderError,
    UnsupportedGranularity,
)
from candlelens.models import RawCandle
from candlelens.utils.rate_limiter import RateLimiter

NOW = 1_718_000_000      # 2024-06-10 06:13 UTC
JUN_6 = 1_717_632_000    # 2024-06-06 00:00 UTC
JUN_7 = 1_717_718_400    # 2024-06-07 00:00 UTC


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


def _session(*payloads):
    session = MagicMock()
    session.get.side_effect = [_response(p) for p in payloads]
    return session


def _provider(cls, session, **kwargs):
    limiter = MagicMock()
    limiter.would_wait.return_value = 0.0
    return cls(timeout=5, session=session, limiter=limiter, **kwargs)


NON_OBJECT_REPLIES = [[], None, "oops", 42]


# ---------------------------------------------------------------------------
# Shared fetch behavior
# ---------------------------------------------------------------------------

class TestBaseProvider:

    def test_missing_credential_makes_no_request(self):
        session = MagicMock()
        provider = _provider(PolygonProvider, session)
        with pytest.raises(MissingCredential):
            provider.fetch("AAPL", "3-month", credential=None, now=NOW)
        session.get.assert_not_called()
        provider.limiter.wait.assert_not_called()

    def test_unsupported_granularity_makes_no_request(self):
        session = MagicMock()
        provider = _provider(FMPProvider, session)
        with pytest.raises(UnsupportedGranularity):
            provider.fetch("AAPL", "1-day", credential="k", now=NOW)
        session.get.assert_not_called()

    def test_timeout_maps_to_network_timeout(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")
        with pytest.raises(NetworkTimeout):
            _provider(PolygonProvider, session).fetch("AAPL", "3-month", "k", now=NOW)

    def test_http_error_maps_to_provider_error(self):
        resp = _response({})
        resp.raise_for_status.side_effect = requests.HTTPError("403 Forbidden")
        session = MagicMock()
        session.get.return_value = resp
        with pytest.raises(ProviderError):
            _provider(PolygonProvider, session).fetch("AAPL", "3-month", "k", now=NOW)

    def test_unparseable_reply_maps_to_no_data(self):
        resp = _response(None)
        resp.json.side_effect = requests.exceptions.JSONDecodeError("bad", "doc", 0)
        session = MagicMock()
        session.get.return_value = resp
        with pytest.raises(NoData):
            _provider(PolygonProvider, session).fetch("AAPL", "3-month", "k", now=NOW)

    def test_malformed_record_maps_to_no_data(self):
        session = _session({"status": "OK", "results": [{"o": 1.0}]})
        with pytest.raises(NoData):
            _provider(PolygonProvider, session).fetch("AAPL", "3-month", "k", now=NOW)

    def test_candles_filtered_out_is_no_data(self):
        # Candle far older than the 3-month cutoff
        session = _session({"status": "OK", "results": [
            {"t": 1_000_000_000_000, "o": 1, "h": 1, "l": 1, "c": 1, "v": 1},
        ]})
        with pytest.raises(NoData):
            _provider(PolygonProvider, session).fetch("AAPL", "3-month", "k", now=NOW)

    def test_rate_limiter_consulted(self):
        session = _session({"status": "OK", "results": [
            {"t": JUN_7 * 1000, "o": 1, "h": 1, "l": 1, "c": 1, "v": 1},
        ]})
        provider = _provider(PolygonProvider, session)
        provider.fetch("AAPL", "3-month", "k", now=NOW)
        provider.limiter.wait.assert_called_once()

    def test_quota_wait_beyond_deadline_fails_over(self, clock):
        limiter = RateLimiter(5, clock=clock, sleep=clock.sleep)
        payload = {"status": "OK", "results": [
            {"t": JUN_7 * 1000, "o": 1, "h": 1, "l": 1, "c": 1, "v": 1},
        ]}
        session = _session(*[payload] * 5)
        provider = PolygonProvider(timeout=10, session=session, limiter=limiter)
        for _ in range(5):
            provider.fetch("AAPL", "3-month", "k", now=NOW)
            clock.now += 1
        with pytest.raises(ProviderError, match="rate limited"):
            provider.fetch("AAPL", "3-month", "k", now=NOW)
        assert clock.slept == []
        assert session.get.call_count == 5

    def test_short_quota_wait_is_slept(self, clock):
        limiter = RateLimiter(1, clock=clock, sleep=clock.sleep)
        payload = {"status": "OK", "results": [
            {"t": JUN_7 * 1000, "o": 1, "h": 1, "l": 1, "c": 1, "v": 1},
        ]}
        provider = PolygonProvider(timeout=10, session=_session(payload, payload), limiter=limiter)
        provider.fetch("AAPL", "3-month", "k", now=NOW)
        clock.now += 55
        provider.fetch("AAPL", "3-month", "k", now=NOW)
        assert clock.slept == [pytest.approx(5.0)]

    @pytest.mark.parametrize("cls", [
        TwelveDataProvider, PolygonProvider, AlphaVantageProvider, FMPProvider,
    ])
    @pytest.mark.parametrize("reply", NON_OBJECT_REPLIES)
    def test_non_object_reply_is_no_data(self, cls, reply):
        with pytest.raises(NoData):
            _provider(cls, _session(reply)).fetch("AAPL", "3-month", "key", now=NOW)

    def test_non_object_reply_falls_through_to_next_provider(self):
        fmp_payload = {"historical": [
            {"date": "2024-06-07", "open": 2, "high": 3, "low": 1, "close": 2.5, "volume": 20},
        ]}
        providers = {
            "twelvedata": _provider(TwelveDataProvider, _session("oops")),
            "fmp": _provider(FMPProvider, _session(fmp_payload)),
        }
        orch = FallbackOrchestrator(providers, daily_order=["twelvedata", "fmp"])
        series = orch.fetch("AAPL", "3-month", {"twelvedata": "k", "fmp": "k"}, now=NOW)
        assert series.source == "fmp"


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------

class TestTwelveData:

    PAYLOAD = {
        "meta": {"symbol": "AAPL", "exchange": "NASDAQ", "currency": "USD"},
        "values": [
            {"datetime": "2024-06-06", "open": "10.0", "high": "11.0",
             "low": "9.5", "close": "10.5", "volume": "1000"},
            {"datetime": "2024-06-07", "open": "10.5", "high": "12.0",
             "low": "10.1", "close": "11.8", "volume": "2000"},
        ],
        "status": "ok",
    }

    def test_parses_values(self):
        session = _session(self.PAYLOAD)
        series = _provider(TwelveDataProvider, session).fetch("aapl", "3-month", "key", now=NOW)
        assert series.symbol == "AAPL"
        assert series.source == "twelvedata"
        assert series.exchange == "NASDAQ"
        assert series.currency == "USD"
        assert [c.timestamp for c in series.candles] == [JUN_6, JUN_7]
        assert series.candles[-1].close == 11.8
        assert series.last_price == 11.8
        params = session.get.call_args.kwargs["params"]
        assert params["interval"] == "1day"
        assert params["timezone"] == "UTC"
        assert params["apikey"] == "key"

    def test_symbol_not_found_is_no_data(self):
        session = _session({"status": "error", "code": 400, "message": "symbol not found"})
        with pytest.raises(NoData):
            _provider(TwelveDataProvider, session).fetch("ZZZZ", "3-month", "key", now=NOW)

    def test_quota_error_is_provider_error(self):
        session = _session({"status": "error", "code": 429, "message": "run out of credits"})
        with pytest.raises(ProviderError):
            _provider(TwelveDataProvider, session).fetch("AAPL", "3-month", "key", now=NOW)

    @pytest.mark.parametrize("exchange_tz,kept", [
        (None, ["2024-06-10 01:00:00"]),
        ("Australia/Sydney", ["2024-06-09 23:00:00", "2024-06-10 01:00:00"]),
    ])
    def test_latest_day_uses_exchange_zone(self, exchange_tz, kept):
        stamps = ["2024-06-09 03:00:00", "2024-06-09 23:00:00", "2024-06-10 01:00:00"]
        meta = {"symbol": "BHP", "exchange": "ASX", "currency": "AUD"}
        if exchange_tz:
            meta["exchange_timezone"] = exchange_tz
        session = _session({
            "meta": meta,
            "values": [
                {"datetime": s, "open": "1", "high": "1", "low": "1", "close": "1", "volume": "1"}
                for s in stamps
            ],
            "status": "ok",
        })
        series = _provider(TwelveDataProvider, session).fetch("BHP", "1-day", "key", now=NOW)
        assert [c.timestamp for c in series.candles] == [to_epoch(s) for s in kept]


class TestFinnhub:

    def _fetch(self, client, range_tag="3-month"):
        provider = _provider(FinnhubProvider, MagicMock())
        with patch.object(FinnhubProvider, "_client", return_value=client):
            return provider.fetch("AAPL", range_tag, "key", now=NOW)

    def test_parses_candles(self):
        client = MagicMock()
        client.stock_candles.return_value = {
            "s": "ok", "t": [JUN_6, JUN_7], "o": [1, 2], "h": [1.5, 2.5],
            "l": [0.5, 1.5], "c": [1.2, 2.2], "v": [100, 200],
        }
        series = self._fetch(client)
        assert series.source == "finnhub"
        assert [c.close for c in series.candles] == [1.2, 2.2]
        symbol, resolution, start, end = client.stock_candles.call_args.args
        assert (symbol, resolution, end) == ("AAPL", "D", NOW)

    def test_intraday_resolution_token(self):
        client = MagicMock()
        client.stock_candles.return_value = {
            "s": "ok", "t": [NOW - 600], "o": [1], "h": [1], "l": [1], "c": [1], "v": [1],
        }
        self._fetch(client, "1-week")
        assert client.stock_candles.call_args.args[1] == "30"

    def test_no_data_status(self):
        client = MagicMock()
        client.stock_candles.return_value = {"s": "no_data"}
        with pytest.raises(NoData):
            self._fetch(client)

    def test_transport_timeout(self):
        client = MagicMock()
        client.stock_candles.side_effect = requests.Timeout("slow")
        with pytest.raises(NetworkTimeout):
            self._fetch(client)

    @pytest.mark.parametrize("reply", NON_OBJECT_REPLIES)
    def test_non_object_reply_is_no_data(self, reply):
        client = MagicMock()
        client.stock_candles.return_value = reply
        with pytest.raises(NoData):
            self._fetch(client)


class TestPolygon:

    def test_parses_aggregates(self):
        session = _session({
            "status": "DELAYED",
            "results": [
                {"t": JUN_6 * 1000, "o": 10, "h": 11, "l": 9, "c": 10.5, "v": 500},
                {"t": JUN_7 * 1000, "o": 10.5, "h": 12, "l": 10, "c": 11.5, "v": 700},
            ],
        })
        series = _provider(PolygonProvider, session).fetch("msft", "3-month", "key", now=NOW)
        assert [c.timestamp for c in series.candles] == [JUN_6, JUN_7]
        url = session.get.call_args.args[0]
        assert "/MSFT/range/1/day/" in url
        assert url.endswith(f"/{NOW * 1000}")

    def test_error_status(self):
        session = _session({"status": "ERROR", "error": "Unknown API Key"})
        with pytest.raises(ProviderError, match="Unknown API Key"):
            _provider(PolygonProvider, session).fetch("AAPL", "3-month", "key", now=NOW)


class TestAlphaVantage:

    PAYLOAD = {
        "Meta Data": {"1. Information": "Daily Prices", "5. Time Zone": "US/Eastern"},
        "Time Series (Daily)": {
            "2024-06-07": {"1. open": "10.0", "2. high": "11.0", "3. low": "9.0",
                           "4. close": "10.5", "5. volume": "1200"},
            "2024-06-06": {"1. open": "9.0", "2. high": "10.0", "3. low": "8.5",
                           "4. close": "9.8", "5. volume": "900"},
        },
    }

    def test_parses_and_converts_timezone(self):
        session = _session(self.PAYLOAD)
        series = _provider(AlphaVantageProvider, session).fetch("IBM", "3-month", "key", now=NOW)
        # Midnight US/Eastern is 04:00 UTC in June
        assert [c.timestamp for c in series.candles] == [JUN_6 + 14_400, JUN_7 + 14_400]
        assert series.candles[-1].volume == 1200
        assert session.get.call_args.kwargs["params"]["function"] == "TIME_SERIES_DAILY"

    def test_intraday_passes_interval(self):
        session = _session({
            "Meta Data": {"6. Time Zone": "UTC"},
            "Time Series (60min)": {
                "2024-06-10 05:00:00": {"1. open": "1", "2. high": "1", "3. low": "1",
                                        "4. close": "1", "5. volume": "1"},
            },
        })
        _provider(AlphaVantageProvider, session).fetch("IBM", "1-month", "key", now=NOW)
        params = session.get.call_args.kwargs["params"]
        assert params["function"] == "TIME_SERIES_INTRADAY"
        assert params["interval"] == "60min"

    def test_error_message_is_no_data(self):
        session = _session({"Error Message": "Invalid API call"})
        with pytest.raises(NoData):
            _provider(AlphaVantageProvider, session).fetch("ZZZZ", "3-month", "key", now=NOW)

    def test_rate_limit_note_is_provider_error(self):
        session = _session({"Note": "Thank you for using Alpha Vantage! 5 calls per minute."})
        with pytest.raises(ProviderError):
            _provider(AlphaVantageProvider, session).fetch("IBM", "3-month", "key", now=NOW)


class TestFMP:

    def test_parses_daily_history(self):
        session = _session({
            "symbol": "AAPL",
            "historical": [
                {"date": "2024-06-07", "open": 2, "high": 3, "low": 1, "close": 2.5, "volume": 20},
                {"date": "2024-06-06", "open": 1, "high": 2, "low": 0.5, "close": 1.5, "volume": 10},
            ],
        })
        series = _provider(FMPProvider, session).fetch("aapl", "3-month", "key", now=NOW)
        assert [c.timestamp for c in series.candles] == [JUN_6, JUN_7]
        assert "historical-price-full/AAPL" in session.get.call_args.args[0]

    def test_empty_history(self):
        session = _session({})
        with pytest.raises(NoData):
            _provider(FMPProvider, session).fetch("AAPL", "3-month", "key", now=NOW)

    def test_weekly_range_is_resampled(self):
        # Two full weeks, Mon 2024-05-27 .. Fri 2024-06-07
        mon = JUN_7 - 11 * 86_400
        days = [mon + d * 86_400 for d in (0, 1, 2, 3, 4, 7, 8, 9, 10, 11)]
        rows = [
            {"date": f"{_iso(ts)}", "open": 10 + i, "high": 11 + i, "low": 9 + i,
             "close": 10.5 + i, "volume": 100}
            for i, ts in enumerate(days)
        ]
        session = _session({"historical": rows})
        series = _provider(FMPProvider, session).fetch("AAPL", "5-year", "key", now=NOW)
        assert [c.timestamp for c in series.candles] == [mon, mon + 7 * 86_400]
        first = series.candles[0]
        assert (first.open, first.high, first.low, first.close) == (10, 15, 9, 14.5)
        assert first.volume == 500


def _iso(ts):
    from datetime import datetime, timezone
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


class TestResampleRecords:

    def test_monthly_buckets(self):
        # 2024-05-30, 2024-05-31, 2024-06-02
        stamps = [1_717_027_200, 1_717_113_600, 1_717_372_800]
        records = [RawCandle(ts, 1.0 + i, 2.0 + i, 0.5, 1.5 + i, 10) for i, ts in enumerate(stamps)]
        out = resample_records(records, "MS")
        assert [r.timestamp for r in out] == [1_714_521_600, 1_717_200_000]
        assert out[0].close == 2.5
        assert out[0].volume == 20

    def test_empty(self):
        assert resample_records([], "MS") == []


class TestYahooScrape:

    RELAYS = ["{url}", "https://relay.example/?u={url}"]

    CHART = {
        "chart": {
            "result": [{
                "meta": {"exchangeName": "NMS", "currency": "USD", "regularMarketPrice": 12.34},
                "timestamp": [JUN_6, JUN_7],
                "indicators": {"quote": [{
                    "open": [10.0, 11.0], "high": [11.0, 12.5], "low": [9.5, 10.5],
                    "close": [10.8, None], "volume": [1000, 1500],
                }]},
            }],
            "error": None,
        },
    }

    def _scraper(self, session):
        return _provider(YahooScrapeProvider, session, relays=self.RELAYS)

    def test_no_credential_needed(self):
        session = _session(self.CHART)
        series = self._scraper(session).fetch("aapl", "3-month", now=NOW)
        assert series.source == "yahoo"
        assert series.exchange == "NMS"
        assert series.last_price == 12.34
        # Null close drops the record
        assert len(series) == 1
        assert session.get.call_args.args[0].startswith(
            "https://query1.finance.yahoo.com/v8/finance/chart/AAPL?"
        )

    def test_falls_through_to_next_relay(self):
        session = MagicMock()
        session.get.side_effect = [requests.ConnectionError("blocked"), _response(self.CHART)]
        series = self._scraper(session).fetch("AAPL", "3-month", now=NOW)
        assert len(series) == 1
        relay_url = session.get.call_args_list[1].args[0]
        assert relay_url.startswith("https://relay.example/?u=https%3A%2F%2Fquery1")

    def test_rotation_starts_at_next_relay(self):
        session = _session(self.CHART, self.CHART)
        scraper = self._scraper(session)
        scraper.fetch("AAPL", "3-month", now=NOW)
        scraper.fetch("AAPL", "3-month", now=NOW)
        first, second = (c.args[0] for c in session.get.call_args_list)
        assert first.startswith("https://query1.finance.yahoo.com/")
        assert second.startswith("https://relay.example/")

    def test_chart_error_stops_rotation(self):
        session = _session({"chart": {"result": None, "error": {"description": "No data found"}}})
        with pytest.raises(NoData):
            self._scraper(session).fetch("ZZZZ", "3-month", now=NOW)
        assert session.get.call_count == 1

    def test_all_relays_timed_out(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")
        with pytest.raises(NetworkTimeout):
            self._scraper(session).fetch("AAPL", "3-month", now=NOW)
        assert session.get.call_count == 2

    def test_all_relays_failed(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ProviderError):
            self._scraper(session).fetch("AAPL", "3-month", now=NOW)

    def test_null_relay_reply_tries_next_relay(self):
        session = _session(None, self.CHART)
        series = self._scraper(session).fetch("AAPL", "3-month", now=NOW)
        assert len(series) == 1
        assert session.get.call_count == 2

    def test_relay_walk_shares_one_deadline(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("blocked")
        with patch("candlelens.data_sources.yahoo_scrape.time") as mock_time:
            # Deadline fixed at t=0, first relay at t=0, second relay at t=6
            mock_time.monotonic.side_effect = [0.0, 0.0, 6.0]
            with pytest.raises(NetworkTimeout, match="relay walk"):
                self._scraper(session).fetch("AAPL", "3-month", now=NOW)
        assert session.get.call_count == 1
        assert session.get.call_args.kwargs["timeout"] == 5.0

    def test_later_relays_get_the_remaining_time(self):
        session = MagicMock()
        session.get.side_effect = [requests.ConnectionError("blocked"), _response(self.CHART)]
        with patch("candlelens.data_sources.yahoo_scrape.time") as mock_time:
            mock_time.monotonic.side_effect = [0.0, 0.0, 3.0]
            self._scraper(session).fetch("AAPL", "3-month", now=NOW)
        assert [c.kwargs["timeout"] for c in session.get.call_args_list] == [5.0, 2.0]
