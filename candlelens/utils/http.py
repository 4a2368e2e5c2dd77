"""Shared HTTP session for provider adapters.

All REST adapters go through one pooled ``requests.Session`` so TCP
connections are reused across a fallback chain. Hosts registered with
:func:`throttle_host` additionally get a minimum interval between
requests; the unauthenticated chart scrape uses this to avoid being
blocked by the upstream or its relays.

NOTE: no urllib3-level retries are mounted. A failed provider is not
retried within one fetch; the orchestrator moves on to the next one.
"""

from __future__ import annotations

import threading
import time
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter

from candlelens.config import SETTINGS
from candlelens.utils.logger import setup_logger

logger = setup_logger("http")

_session = None
_session_lock = threading.Lock()

# host -> minimum seconds between requests
_throttled_hosts: dict[str, float] = {}
_last_request: dict[str, float] = {}
_rate_lock = threading.Lock()

USER_AGENT = "Mozilla/5.0 (compatible; CandleLens/1.0)"


class _ThrottledSession(requests.Session):
    """Session that enforces a minimum interval for registered hosts."""

    def send(self, request, **kwargs):
        host = urlsplit(getattr(request, "url", "") or "").hostname or ""
        interval = _throttled_hosts.get(host)
        if interval:
            with _rate_lock:
                elapsed = time.time() - _last_request.get(host, 0.0)
                if elapsed < interval:
                    time.sleep(interval - elapsed)
                _last_request[host] = time.time()
        return super().send(request, **kwargs)


def throttle_host(host: str, min_interval: float) -> None:
    """Register a minimum interval (seconds) between requests to ``host``."""
    with _rate_lock:
        _throttled_hosts[host] = float(min_interval)


def get_session() -> requests.Session:
    """Get or create the shared session with connection pooling."""
    global _session
    if _session is not None:
        return _session

    with _session_lock:
        if _session is not None:
            return _session

        session = _ThrottledSession()
        adapter = HTTPAdapter(pool_connections=10, pool_maxsize=10)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        session.headers["User-Agent"] = USER_AGENT

        _session = session
        logger.debug("Created shared HTTP session (pooled, no transport retries)")
        return _session


def default_timeout() -> float:
    """Per-attempt deadline applied to every provider request."""
    return float(SETTINGS.get("fetch", {}).get("timeout_seconds", 10))
