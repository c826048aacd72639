"""
Logging setup: console plus optional file, and the SUCCESS level used by the engine's event log.
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "SUCCESS": SUCCESS,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def to_logging_level(level: str) -> int:
    """Map an engine log level name (INFO | SUCCESS | WARNING | ERROR) to a logging level."""
    return _LEVELS.get(level.upper(), logging.INFO)


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the trading_core logger: console and optional file.
    Never log API keys or secrets.
    """
    root = logging.getLogger("trading_core")
    root.setLevel(to_logging_level(level))
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir and log_file:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_dir / log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        root.addHandler(fh)

    return root
