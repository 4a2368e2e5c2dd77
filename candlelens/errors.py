"""Typed failures raised while acquiring price data.

Every provider failure is a :class:`FetchError` subclass and is
recoverable: the orchestrator records it and moves on to the next
provider. :class:`AllSourcesFailed` is terminal for one fetch call.
"""

from __future__ import annotations


class FetchError(Exception):
    """A single provider could not produce a series."""

    reason = "fetch_error"

    def __init__(self, provider: str, message: str = ""):
        self.provider = provider
        self.message = message or self.reason.replace("_", " ")
        super().__init__(f"[{provider}] {self.message}")


class MissingCredential(FetchError):
    reason = "missing_credential"


class UnsupportedGranularity(FetchError):
    reason = "unsupported_granularity"


class NoData(FetchError):
    """Empty or malformed reply."""

    reason = "no_data"


class NetworkTimeout(FetchError):
    reason = "network_timeout"


class ProviderError(FetchError):
    """Transport failure, HTTP error status, or an error payload."""

    reason = "provider_error"


class AllSourcesFailed(Exception):
    """Every configured provider and the scrape fallback failed."""

    def __init__(self, symbol: str, range_tag: str, attempts: list[FetchError]):
        self.symbol = symbol
        self.range_tag = range_tag
        self.attempts = list(attempts)
        summary = ", ".join(f"{a.provider}={a.reason}" for a in self.attempts) or "no providers"
        super().__init__(f"All sources failed for {symbol} ({range_tag}): {summary}")
