"""
Support/resistance breakout strategy.
Levels are the min low / max high of the bars preceding the evaluated bar.
"""

from __future__ import annotations
from typing import Tuple

import pandas as pd

from trading_core.core.types import Signal, SignalStrength, StrategyConfig
from trading_core.strategies.base import BaseStrategy, bar_time
from trading_core.strategies.indicators import snapshot_at

LOOKBACK = 50
VOLUME_CONFIRM = 1.3
BASE_CONFIDENCE = 85
RSI_BONUS = 10


def support_resistance(frame: pd.DataFrame, i: int, lookback: int = LOOKBACK) -> Tuple[float, float]:
    """(support, resistance) over the lookback bars before row i."""
    window = frame.iloc[max(0, i - lookback):i]
    if window.empty:
        close = float(frame["close"].iloc[i])
        return close, close
    return float(window["low"].min()), float(window["high"].max())


class BreakoutStrategy(BaseStrategy):
    name = "breakout"
    label = "Breakout Strategy (Support/Resistance)"

    def __init__(self, lookback: int = LOOKBACK):
        self.lookback = lookback

    def evaluate(self, frame: pd.DataFrame, i: int, config: StrategyConfig, symbol: str) -> Signal:
        ind = snapshot_at(frame, i)
        price = float(frame["close"].iloc[i])
        prev_close = float(frame["close"].iloc[i - 1]) if i > 0 else price
        support, resistance = support_resistance(frame, i, self.lookback)

        strength = SignalStrength.NEUTRAL
        confidence = 50
        reasons: list[str] = []

        resistance_break = price > resistance and prev_close <= resistance
        support_break = price < support and prev_close >= support
        confirmed = ind.volume_ratio > VOLUME_CONFIRM

        if resistance_break and confirmed:
            strength = SignalStrength.STRONG_BUY
            confidence = BASE_CONFIDENCE
            reasons.append(f"Resistance broken: {resistance:.2f}")
            reasons.append(f"Confirmed by volume ({ind.volume_ratio:.2f}x)")
            if ind.rsi < 70:
                confidence += RSI_BONUS
                reasons.append("RSI not yet overbought")
        elif support_break and confirmed:
            strength = SignalStrength.STRONG_SELL
            confidence = BASE_CONFIDENCE
            reasons.append(f"Support broken: {support:.2f}")
            reasons.append(f"Confirmed by volume ({ind.volume_ratio:.2f}x)")
            if ind.rsi > 30:
                confidence += RSI_BONUS
                reasons.append("RSI not yet oversold")
        else:
            reasons.append(f"Price ranging between {support:.2f} and {resistance:.2f}")
            reasons.append("Waiting for breakout")

        return Signal(
            symbol=symbol,
            strength=strength,
            confidence=float(min(confidence, 100)),
            price=price,
            indicators=ind,
            reasons=tuple(reasons),
            strategy=self.label,
            timestamp=bar_time(frame, i),
        )
