"""Central configuration loader for CandleLens."""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Project root is the parent of the candlelens/ package directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(PROJECT_ROOT / ".env")


def load_settings() -> dict:
    """Load settings from configs/settings.yaml (empty dict if absent)."""
    settings_path = PROJECT_ROOT / "configs" / "settings.yaml"
    if not settings_path.exists():
        return {}
    with open(settings_path) as f:
        return yaml.safe_load(f) or {}


SETTINGS = load_settings()


# --- API Keys ---
class Keys:
    ANTHROPIC = os.getenv("ANTHROPIC_API_KEY", "")
    TWELVE_DATA = os.getenv("TWELVE_DATA_API_KEY", "")
    FINNHUB = os.getenv("FINNHUB_API_KEY", "")
    POLYGON = os.getenv("POLYGON_API_KEY", "")
    ALPHA_VANTAGE = os.getenv("ALPHA_VANTAGE_API_KEY", "")
    FMP = os.getenv("FMP_API_KEY", "")


def load_credentials() -> dict[str, str]:
    """Provider name -> API key, for every provider with a key configured."""
    keys = {
        "twelvedata": Keys.TWELVE_DATA,
        "finnhub": Keys.FINNHUB,
        "polygon": Keys.POLYGON,
        "alphavantage": Keys.ALPHA_VANTAGE,
        "fmp": Keys.FMP,
    }
    return {name: key for name, key in keys.items() if key}


# --- Paths ---
class Paths:
    ROOT = PROJECT_ROOT
    REPORTS_OUTPUT = PROJECT_ROOT / "reports" / "output"
    REPORTS_TEMPLATES = Path(__file__).resolve().parent / "reports" / "templates"
