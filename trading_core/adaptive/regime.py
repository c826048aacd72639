"""
Market regime classification from EMA(20)/EMA(50) separation and ATR expansion.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from trading_core.core.types import MarketRegime
from trading_core.strategies.indicators import ema

logger = logging.getLogger("trading_core.adaptive.regime")

TREND_SEPARATION = 0.02
VOLATILITY_RATIO = 1.5
ATR_PERIOD = 14

RECOMMENDATIONS = {
    (True, True): (MarketRegime.TRENDING, 85.0, "momentum", "Momentum strategy recommended: strong trend with expanding volatility."),
    (True, False): (MarketRegime.TRENDING, 75.0, "momentum", "Momentum strategy recommended: steady trend."),
    (False, True): (MarketRegime.VOLATILE, 80.0, "breakout", "Breakout strategy recommended: high volatility."),
    (False, False): (MarketRegime.RANGING, 60.0, None, "Sideways market: wait for a clearer signal."),
}


@dataclass(frozen=True)
class RegimeAnalysis:
    regime: MarketRegime
    confidence: float
    recommendation: str
    suggested_strategy: Optional[str]
    is_trending: bool
    is_volatile: bool
    ema_separation_pct: float
    atr_ratio: float


def classify_regime(df: pd.DataFrame) -> RegimeAnalysis:
    """
    Trending: |EMA20 - EMA50| > 2% of EMA20. Volatile: latest ATR (EMA of true range)
    above 1.5x its average over the series. Degenerate inputs classify as RANGING.
    """
    close = df["close"].astype(float).reset_index(drop=True)
    high = df["high"].astype(float).reset_index(drop=True)
    low = df["low"].astype(float).reset_index(drop=True)
    if len(close) < 2:
        trending = volatile = False
        separation = ratio = 0.0
    else:
        ema20 = float(ema(close, 20).iloc[-1])
        ema50 = float(ema(close, 50).iloc[-1])
        separation = abs(ema20 - ema50) / ema20 if ema20 else 0.0
        trending = separation > TREND_SEPARATION

        prev_close = close.shift()
        tr = pd.concat([high - low, (high - prev_close).abs(), (low - prev_close).abs()], axis=1).max(axis=1).iloc[1:]
        atr = ema(tr, ATR_PERIOD)
        avg_atr = float(atr.mean())
        ratio = float(atr.iloc[-1]) / avg_atr if avg_atr > 0 else 0.0
        if not math.isfinite(ratio):
            ratio = 0.0
        volatile = ratio > VOLATILITY_RATIO

    regime, confidence, strategy, text = RECOMMENDATIONS[(trending, volatile)]
    logger.debug("Regime %s (%.0f%%): separation %.4f, ATR ratio %.2f", regime.value, confidence, separation, ratio)
    return RegimeAnalysis(
        regime=regime,
        confidence=confidence,
        recommendation=text,
        suggested_strategy=strategy,
        is_trending=trending,
        is_volatile=volatile,
        ema_separation_pct=separation * 100,
        atr_ratio=ratio,
    )
