"""CandleLens: multi-provider price history and rule-based technical analysis."""

__version__ = "0.1.0"
