"""Price-history acquisition: range planning, provider adapters, fallback."""

from .market_data import MarketDataClient, placeholder_series
from .orchestrator import FallbackOrchestrator, PROVIDER_CLASSES
from .resolution import RANGE_TAGS, apply_policy, plan_range
