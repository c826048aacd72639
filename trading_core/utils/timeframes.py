"""Timeframe string conversions shared by live, backtest and optimizer paths."""

from __future__ import annotations
from typing import Optional


def timeframe_minutes(tf: str) -> int:
    """Convert Binance-style timeframe (e.g. '5m', '1h', '1d') to minutes."""
    tf = tf.strip().lower()
    try:
        if tf.endswith("m"):
            minutes = int(tf[:-1])
        elif tf.endswith("h"):
            minutes = int(tf[:-1]) * 60
        elif tf.endswith("d"):
            minutes = int(tf[:-1]) * 60 * 24
        else:
            raise ValueError
    except ValueError:
        raise ValueError(f"Unsupported timeframe: {tf}") from None
    if minutes <= 0:
        raise ValueError(f"Unsupported timeframe: {tf}")
    return minutes


def timeframe_seconds(tf: str) -> int:
    return timeframe_minutes(tf) * 60


def bars_per_day(tf: str) -> float:
    return 1440 / timeframe_minutes(tf)


def bars_for_days(tf: str, days: float, max_bars: Optional[int] = None) -> int:
    """Number of bars of timeframe tf covering the given days, optionally capped."""
    count = int(days * 1440 // timeframe_minutes(tf))
    if max_bars is not None:
        count = min(count, max_bars)
    return max(count, 0)
