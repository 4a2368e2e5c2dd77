#!/usr/bin/env python3
"""CandleLens: price history and rule-based technical analysis.

Usage:
    python main.py analyze AAPL                        # 3-month report
    python main.py analyze NVDA --range 1-year --ai    # with Claude narrative
    python main.py analyze MSFT --json                 # machine-readable
    python main.py scan AAPL MSFT NVDA --range 6-month # ranked table
    python main.py history TSLA --range 1-week         # raw candles
    python main.py relative AAPL --benchmark SPY       # return vs benchmark
"""

import argparse
import json
import sys

from candlelens.analysis.indicators import relative_strength
from candlelens.analysis.narrative import NarrativeEnricher
from candlelens.analysis.technical import TechnicalAnalyzer
from candlelens.config import SETTINGS
from candlelens.data_sources.market_data import MarketDataClient
from candlelens.data_sources.resolution import DEFAULT_RANGE, RANGE_TAGS
from candlelens.reports.renderer import ReportRenderer
from candlelens.utils.logger import set_level, setup_logger

logger = setup_logger("main", SETTINGS.get("app", {}).get("log_level", "INFO"))


def _enricher(args):
    if not args.ai:
        return None
    return NarrativeEnricher()


# ============================================================
# COMMANDS
# ============================================================

def cmd_analyze(args):
    """Analyze one symbol and print the report."""
    client = MarketDataClient()
    series = client.get_price_history(args.symbol, args.range)
    report = TechnicalAnalyzer().analyze(series, enricher=_enricher(args))

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
        return

    renderer = ReportRenderer()
    content = renderer.render(report)
    if args.save:
        path = renderer.save(content, f"{report.symbol}_{args.range}.md")
        print(f"\nReport saved: {path}")
    print(content)


def cmd_scan(args):
    """Analyze several symbols one at a time and rank them by confidence."""
    client = MarketDataClient()
    analyzer = TechnicalAnalyzer()
    enricher = _enricher(args)
    histories = client.get_multiple(args.symbols, args.range, delay=args.delay)
    reports = [analyzer.analyze(s, enricher=enricher) for s in histories.values()]

    if args.json:
        print(json.dumps([r.to_dict() for r in reports], indent=2, default=str))
        return

    renderer = ReportRenderer()
    content = renderer.render_scan(reports)
    if args.save:
        path = renderer.save(content, f"scan_{args.range}.md")
        print(f"\nReport saved: {path}")
    print(content)


def cmd_history(args):
    """Print the normalized candles for a symbol."""
    client = MarketDataClient()
    series = client.get_price_history(args.symbol, args.range)
    df = series.to_frame()

    if args.json:
        records = [
            {"timestamp": c.timestamp, "open": c.open, "high": c.high,
             "low": c.low, "close": c.close, "volume": c.volume}
            for c in series.candles
        ]
        print(json.dumps({
            "symbol": series.symbol,
            "range": series.range_tag,
            "source": series.source,
            "live": series.live,
            "candles": records,
        }, indent=2))
        return

    print(f"\n{'='*50}")
    print(f"  {series.symbol} ({series.range_tag}) via {series.source}")
    if series.exchange or series.currency:
        print(f"  {series.exchange or ''} {series.currency or ''}".rstrip())
    if not series.live:
        print("  NOT LIVE: synthetic placeholder data")
    print(f"{'='*50}")
    print(df.to_string())


def cmd_relative(args):
    """Compare a symbol's return with a benchmark's over the same window."""
    client = MarketDataClient()
    series = client.get_price_history(args.symbol, args.range)
    benchmark = client.get_price_history(args.benchmark, args.range)
    value = relative_strength(series, benchmark, args.period)
    if value is None:
        print(f"Not enough history for a {args.period}-candle comparison")
        sys.exit(1)
    print(f"{series.symbol} vs {benchmark.symbol} over {args.period} candles: {value:+.2f} pp")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="CandleLens: price history and technical analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", help="Commands")

    def add_range(p):
        p.add_argument("--range", default=DEFAULT_RANGE, choices=RANGE_TAGS,
                       help=f"Time range (default: {DEFAULT_RANGE})")

    # analyze
    p = sub.add_parser("analyze", help="Technical analysis report")
    p.add_argument("symbol")
    add_range(p)
    p.add_argument("--json", action="store_true", help="Print JSON instead of markdown")
    p.add_argument("--ai", action="store_true", help="Add a Claude-written narrative")
    p.add_argument("--save", action="store_true", help="Also write the report to disk")
    p.set_defaults(func=cmd_analyze)

    # scan
    p = sub.add_parser("scan", help="Analyze and rank several symbols")
    p.add_argument("symbols", nargs="+")
    add_range(p)
    p.add_argument("--delay", type=float, default=None,
                   help="Seconds between symbols (default: fetch.batch_delay_seconds)")
    p.add_argument("--json", action="store_true")
    p.add_argument("--ai", action="store_true")
    p.add_argument("--save", action="store_true")
    p.set_defaults(func=cmd_scan)

    # history
    p = sub.add_parser("history", help="Normalized OHLCV candles")
    p.add_argument("symbol")
    add_range(p)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_history)

    # relative
    p = sub.add_parser("relative", help="Relative strength vs a benchmark")
    p.add_argument("symbol")
    p.add_argument("--benchmark", default="SPY")
    p.add_argument("--period", type=int, default=20, help="Candles to compare (default: 20)")
    add_range(p)
    p.set_defaults(func=cmd_relative)

    args = parser.parse_args(argv)
    if args.verbose:
        set_level("DEBUG")
    if args.command is None:
        parser.print_help()
        sys.exit(0)
    args.func(args)


if __name__ == "__main__":
    main()
