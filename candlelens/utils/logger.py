"""Logging configuration for CandleLens.

Every module gets a child of the ``candlelens`` logger so the CLI can
silence or redirect the whole package in one place.
"""

from __future__ import annotations

import logging
import sys

_ROOT_NAME = "candlelens"
_FORMAT = "%(asctime)s | %(name)-28s | %(levelname)-7s | %(message)s"


def _default_level() -> str:
    from candlelens.config import SETTINGS

    return SETTINGS.get("app", {}).get("log_level", "INFO")


def setup_logger(name: str = _ROOT_NAME, level: str | None = None) -> logging.Logger:
    """Create and configure a package logger.

    ``name`` is qualified under ``candlelens.`` unless it already is.
    The stderr handler is attached once, to the package root logger.
    """
    if name != _ROOT_NAME and not name.startswith(_ROOT_NAME + "."):
        name = f"{_ROOT_NAME}.{name}"

    root = logging.getLogger(_ROOT_NAME)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
        root.setLevel(getattr(logging, _default_level().upper(), logging.INFO))

    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger


def set_level(level: str) -> None:
    """Change the level of the whole package (used by the CLI ``-v`` flag)."""
    logging.getLogger(_ROOT_NAME).setLevel(getattr(logging, level.upper(), logging.INFO))
