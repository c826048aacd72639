"""
Indicator frame and snapshot provider.
All columns are causal (row i depends only on rows <= i), so one frame computed over a
full history yields the same snapshot at row i as a frame computed over history[:i+1].
"""

from __future__ import annotations
import logging
import math
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from trading_core.core.types import Bar, IndicatorParams, IndicatorSnapshot

logger = logging.getLogger("trading_core.indicators")

WARMUP_BARS = 200
VOLUME_AVG_LEN = 20
OHLCV_COLUMNS = ["time", "open", "high", "low", "close", "volume"]


def bars_to_frame(bars: Iterable[Bar]) -> pd.DataFrame:
    """Build an OHLCV DataFrame (columns: time, open, high, low, close, volume, close_time)."""
    rows = [
        {
            "time": b.time,
            "open": b.open,
            "high": b.high,
            "low": b.low,
            "close": b.close,
            "volume": b.volume,
            "close_time": b.close_time,
        }
        for b in bars
    ]
    return pd.DataFrame(rows, columns=OHLCV_COLUMNS + ["close_time"])


def frame_to_bars(df: pd.DataFrame) -> list[Bar]:
    has_close_time = "close_time" in df.columns
    return [
        Bar(
            time=row.time,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
            close_time=row.close_time if has_close_time else None,
        )
        for row in df.itertuples(index=False)
    ]


def ema(series: pd.Series, span: int) -> pd.Series:
    return series.ewm(span=span, adjust=False).mean()


def rsi(close: pd.Series, period: int) -> pd.Series:
    """Wilder RSI. Zero average loss gives 100; a flat series gives NaN."""
    delta = close.diff()
    up = delta.clip(lower=0)
    down = (-delta).clip(lower=0)
    avg_up = up.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    avg_down = down.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    with np.errstate(divide="ignore", invalid="ignore"):
        rs = avg_up / avg_down
    return 100 - (100 / (1 + rs))


def true_range(df: pd.DataFrame) -> pd.Series:
    high_low = df["high"] - df["low"]
    high_close = (df["high"] - df["close"].shift()).abs()
    low_close = (df["low"] - df["close"].shift()).abs()
    return pd.concat([high_low, high_close, low_close], axis=1).max(axis=1)


def compute_indicator_frame(df: pd.DataFrame, params: Optional[IndicatorParams] = None) -> pd.DataFrame:
    """Add indicator columns to an OHLCV DataFrame. No lookahead."""
    params = params or IndicatorParams()
    df = df.reset_index(drop=True).copy()
    close = df["close"].astype(float)

    df["rsi"] = rsi(close, params.rsi_period)

    macd_line = ema(close, params.macd_fast) - ema(close, params.macd_slow)
    df["macd"] = macd_line
    df["macd_signal"] = ema(macd_line, params.macd_signal)
    df["macd_hist"] = df["macd"] - df["macd_signal"]

    for span in (9, 21, 50, 200):
        df[f"ema{span}"] = ema(close, span)

    mid = close.rolling(params.bollinger_period).mean()
    std = close.rolling(params.bollinger_period).std(ddof=0)
    df["bb_middle"] = mid
    df["bb_upper"] = mid + params.bollinger_std * std
    df["bb_lower"] = mid - params.bollinger_std * std

    df["atr"] = true_range(df).rolling(params.atr_period).mean()

    volume = df["volume"].astype(float)
    df["vol_avg"] = volume.rolling(VOLUME_AVG_LEN).mean()
    with np.errstate(divide="ignore", invalid="ignore"):
        df["vol_ratio"] = volume / df["vol_avg"]
    return df


def _finite(value, default: float, name: str) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        v = float("nan")
    if math.isfinite(v):
        return v
    logger.debug("Non-finite %s, using %.6g", name, default)
    return default


def snapshot_at(frame: pd.DataFrame, i: int) -> IndicatorSnapshot:
    """IndicatorSnapshot for row i; non-finite values fall back to neutral defaults."""
    row = frame.iloc[i]
    close = float(row["close"])
    volume = _finite(row["volume"], 0.0, "volume")
    return IndicatorSnapshot(
        rsi=_finite(row["rsi"], 50.0, "rsi"),
        macd=_finite(row["macd"], 0.0, "macd"),
        macd_signal=_finite(row["macd_signal"], 0.0, "macd_signal"),
        macd_histogram=_finite(row["macd_hist"], 0.0, "macd_hist"),
        ema9=_finite(row["ema9"], close, "ema9"),
        ema21=_finite(row["ema21"], close, "ema21"),
        ema50=_finite(row["ema50"], close, "ema50"),
        ema200=_finite(row["ema200"], close, "ema200"),
        bb_upper=_finite(row["bb_upper"], close * 1.02, "bb_upper"),
        bb_middle=_finite(row["bb_middle"], close, "bb_middle"),
        bb_lower=_finite(row["bb_lower"], close * 0.98, "bb_lower"),
        atr=_finite(row["atr"], 0.0, "atr"),
        volume=volume,
        volume_average=_finite(row["vol_avg"], volume, "vol_avg"),
        volume_ratio=_finite(row["vol_ratio"], 1.0, "vol_ratio"),
    )


def latest_snapshot(df: pd.DataFrame, params: Optional[IndicatorParams] = None) -> IndicatorSnapshot:
    frame = compute_indicator_frame(df, params)
    return snapshot_at(frame, len(frame) - 1)
