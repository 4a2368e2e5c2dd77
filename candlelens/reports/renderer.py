"""Jinja2-based markdown report renderer."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

import numpy as np
from jinja2 import Environment, FileSystemLoader

from candlelens.analysis.technical import AnalysisReport
from candlelens.config import Paths
from candlelens.utils.logger import setup_logger

logger = setup_logger("renderer")


def fmt_price(val) -> str:
    if val is None:
        return "N/A"
    try:
        val = float(val)
    except (TypeError, ValueError):
        return str(val)
    if np.isnan(val):
        return "N/A"
    return f"{val:,.2f}"


def fmt_volume(val) -> str:
    if val is None:
        return "N/A"
    try:
        val = float(val)
    except (TypeError, ValueError):
        return str(val)
    if np.isnan(val):
        return "N/A"
    if abs(val) >= 1e9:
        return f"{val/1e9:.1f}B"
    elif abs(val) >= 1e6:
        return f"{val/1e6:.1f}M"
    elif abs(val) >= 1e3:
        return f"{val/1e3:.1f}K"
    else:
        return f"{val:.0f}"


def fmt_ratio(val, places: int = 2) -> str:
    if val is None:
        return "N/A"
    try:
        return f"{float(val):.{places}f}"
    except (TypeError, ValueError):
        return str(val)


def fmt_time(ts) -> str:
    if ts is None:
        return "N/A"
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


class ReportRenderer:
    """Render AnalysisReports into markdown using Jinja2 templates."""

    def __init__(self, template_dir: Path | None = None):
        tpl_dir = template_dir or Paths.REPORTS_TEMPLATES
        self.env = Environment(
            loader=FileSystemLoader(str(tpl_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["fmt_price"] = fmt_price
        self.env.filters["fmt_volume"] = fmt_volume
        self.env.filters["fmt_ratio"] = fmt_ratio
        self.env.filters["fmt_time"] = fmt_time

    def render(self, report: AnalysisReport, template_name: str = "analysis.md.j2") -> str:
        template = self.env.get_template(template_name)
        return template.render(report=report, now=datetime.now(timezone.utc))

    def render_scan(self, reports: Iterable[AnalysisReport], template_name: str = "scan.md.j2") -> str:
        template = self.env.get_template(template_name)
        ranked = sorted(reports, key=lambda r: r.confidence, reverse=True)
        return template.render(reports=ranked, now=datetime.now(timezone.utc))

    def save(self, content: str, name: str, output_dir: Path | None = None) -> Path:
        out_dir = output_dir or Paths.REPORTS_OUTPUT
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / name
        path.write_text(content)
        logger.info("Report saved to %s", path)
        return path
