"""Optional Claude-written narrative on top of the rule-based report.

The enricher sees the latest candles, the indicator readings and the
rule-based verdict, and may return a richer narrative, pattern label and
signal. Any failure returns None and the rule-based report stands.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Optional

from candlelens.analysis.indicators import IndicatorSet
from candlelens.config import SETTINGS, Keys
from candlelens.models import PriceSeries
from candlelens.utils.logger import setup_logger

if TYPE_CHECKING:
    from candlelens.analysis.technical import AnalysisReport

logger = setup_logger("narrative")

VALID_SIGNALS = {"BULLISH", "BEARISH", "NEUTRAL"}

NARRATIVE_SYSTEM_PROMPT = """\
You are a technical analyst reviewing a price chart. You will receive the
most recent candles, the latest indicator readings, and a rule-based
assessment produced by a deterministic engine.

Return a JSON object with EXACTLY this structure (no markdown, no
commentary, just valid JSON):

{
  "signal": "<BULLISH|BEARISH|NEUTRAL>",
  "pattern": "<short chart-pattern name>",
  "narrative": "<3-5 sentence explanation citing specific levels and readings>"
}

Only use the numbers you were given. If the data is ambiguous, say so and
return NEUTRAL.\
"""


class NarrativeEnricher:
    """Ask Claude for a narrative; never raises."""

    def __init__(self, model: str | None = None, max_tokens: int | None = None,
                 api_key: str | None = None, candles: int = 30):
        cfg = SETTINGS.get("narrative", {})
        self.model = model or cfg.get("model", "claude-sonnet-4-5-20250929")
        self.max_tokens = max_tokens or int(cfg.get("max_tokens", 1024))
        self.api_key = api_key if api_key is not None else Keys.ANTHROPIC
        self.candles = candles
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise RuntimeError(
                    "ANTHROPIC_API_KEY not set. Add it to your .env file."
                )
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def enrich(
        self,
        series: PriceSeries,
        indicators: IndicatorSet,
        report: "AnalysisReport",
    ) -> Optional[dict]:
        """Return ``{"signal", "pattern", "narrative"}`` or None."""
        prompt = self._build_prompt(series, indicators, report)
        logger.info("Requesting narrative for %s", series.symbol)
        raw_text = ""
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=NARRATIVE_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
            raw_text = response.content[0].text.strip()
            return self._parse(raw_text)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse narrative for %s: %s", series.symbol, e)
            logger.debug("Raw response: %s", raw_text)
            return None
        except Exception as e:
            logger.error("Narrative request failed for %s: %s", series.symbol, e)
            return None

    @staticmethod
    def _parse(raw_text: str) -> Optional[dict]:
        # Strip markdown code fences if present
        if raw_text.startswith("```"):
            raw_text = raw_text.split("\n", 1)[1] if "\n" in raw_text else ""
            if raw_text.endswith("```"):
                raw_text = raw_text[:-3]
            raw_text = raw_text.strip()

        data = json.loads(raw_text)
        if not isinstance(data, dict):
            return None
        narrative = str(data.get("narrative") or "").strip()
        if not narrative:
            return None
        result = {"narrative": narrative}
        pattern = str(data.get("pattern") or "").strip()
        if pattern:
            result["pattern"] = pattern
        signal = str(data.get("signal") or "").strip().upper()
        if signal in VALID_SIGNALS:
            result["signal"] = signal
        return result

    def _build_prompt(
        self, series: PriceSeries, indicators: IndicatorSet, report: "AnalysisReport",
    ) -> str:
        sections = [f"# {series.symbol} ({series.range_tag}, source: {series.source})\n"]

        sections.append("## Recent candles (time, open, high, low, close, volume)")
        frame = series.to_frame().tail(self.candles)
        for ts, row in frame.iterrows():
            sections.append(
                f"{ts:%Y-%m-%d %H:%M} {row['Open']:.2f} {row['High']:.2f} "
                f"{row['Low']:.2f} {row['Close']:.2f} {row['Volume']:.0f}"
            )
        sections.append("")

        sections.append("## Latest indicators")
        for name in ("sma20", "sma50", "rsi", "macd", "macd_signal", "macd_hist",
                     "bb_upper", "bb_lower", "atr"):
            value = indicators.latest(name)
            sections.append(f"- {name}: {value if value is not None else 'n/a'}")
        sections.append("")

        sections.append("## Rule-based assessment")
        sections.append(f"- signal: {report.signal}")
        sections.append(f"- pattern: {report.pattern}")
        sections.append(f"- confidence: {report.confidence}")
        for line in report.reasoning:
            sections.append(f"- {line}")
        return "\n".join(sections)
