"""
Multi-indicator momentum strategy: RSI + MACD + Bollinger + EMA trend + volume.
Buy and sell sides each accumulate a score; the larger score sets direction and confidence.
"""

from __future__ import annotations

import pandas as pd

from trading_core.core.types import (
    ExitLevels,
    IndicatorSnapshot,
    PositionSide,
    RiskManagementConfig,
    Signal,
    SignalStrength,
    StrategyConfig,
)
from trading_core.strategies.base import BaseStrategy, bar_time
from trading_core.strategies.indicators import snapshot_at

STRONG_THRESHOLD = 70
SIGNAL_THRESHOLD = 40
BB_EDGE = 0.2
BB_STOP_BUFFER = 0.005

UPTREND = "UPTREND"
DOWNTREND = "DOWNTREND"
SIDEWAYS = "SIDEWAYS"


def detect_trend(ind: IndicatorSnapshot, price: float) -> str:
    """EMA 9/21/50 stacking with price on the right side of EMA 9."""
    if ind.ema9 > ind.ema21 > ind.ema50 and price > ind.ema9:
        return UPTREND
    if ind.ema9 < ind.ema21 < ind.ema50 and price < ind.ema9:
        return DOWNTREND
    return SIDEWAYS


def strength_for(score: float, strong: SignalStrength, normal: SignalStrength) -> SignalStrength:
    if score >= STRONG_THRESHOLD:
        return strong
    if score >= SIGNAL_THRESHOLD:
        return normal
    return SignalStrength.NEUTRAL


class MomentumStrategy(BaseStrategy):
    name = "momentum"
    label = "Momentum Strategy (RSI+MACD+EMA+BB)"

    def evaluate(self, frame: pd.DataFrame, i: int, config: StrategyConfig, symbol: str) -> Signal:
        ind = snapshot_at(frame, i)
        price = float(frame["close"].iloc[i])
        params = config.indicators
        trend = detect_trend(ind, price)
        reasons: list[str] = []

        band_width = ind.bb_upper - ind.bb_lower
        bb_position = (price - ind.bb_lower) / band_width if band_width > 0 else None

        buy_score = 0
        if ind.rsi < params.rsi_oversold:
            buy_score += 25
            reasons.append(f"RSI oversold ({ind.rsi:.2f})")
        elif ind.rsi < 45:
            buy_score += 10
            reasons.append(f"RSI low ({ind.rsi:.2f})")
        if ind.macd > ind.macd_signal and ind.macd_histogram > 0:
            buy_score += 20
            reasons.append("MACD bullish crossover (positive histogram)")
        if bb_position is not None and bb_position < BB_EDGE:
            buy_score += 15
            reasons.append("Price near lower Bollinger band")
        if ind.ema9 > ind.ema21 and trend == UPTREND:
            buy_score += 20
            reasons.append("EMA 9 above EMA 21 in uptrend")
        if ind.volume_ratio > 1.5:
            buy_score += 10
            reasons.append(f"Volume surge ({ind.volume_ratio:.2f}x)")

        sell_score = 0
        if ind.rsi > params.rsi_overbought:
            sell_score += 25
            reasons.append(f"RSI overbought ({ind.rsi:.2f})")
        elif ind.rsi > 65:
            sell_score += 10
            reasons.append(f"RSI high ({ind.rsi:.2f})")
        if ind.macd < ind.macd_signal and ind.macd_histogram < 0:
            sell_score += 20
            reasons.append("MACD bearish crossover (negative histogram)")
        if bb_position is not None and bb_position > 1 - BB_EDGE:
            sell_score += 15
            reasons.append("Price near upper Bollinger band")
        if ind.ema9 < ind.ema21 and trend == DOWNTREND:
            sell_score += 20
            reasons.append("EMA 9 below EMA 21 in downtrend")
        if ind.volume_ratio < 0.7 and ind.rsi > 60:
            sell_score += 10
            reasons.append("Falling volume with elevated RSI (divergence)")

        if buy_score > sell_score:
            confidence = buy_score
            strength = strength_for(buy_score, SignalStrength.STRONG_BUY, SignalStrength.BUY)
        elif sell_score > buy_score:
            confidence = sell_score
            strength = strength_for(sell_score, SignalStrength.STRONG_SELL, SignalStrength.SELL)
        else:
            confidence = 50
            strength = SignalStrength.NEUTRAL
            reasons.append("Indecisive market, waiting")

        reasons.append(f"Overall trend: {trend}")
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

    def compute_exit_levels(
        self,
        entry_price: float,
        side: PositionSide,
        indicators: IndicatorSnapshot,
        risk: RiskManagementConfig,
    ) -> ExitLevels:
        """ATR stop, then pulled in to just beyond the Bollinger band on the stop side."""
        levels = super().compute_exit_levels(entry_price, side, indicators, risk)
        stop = levels.stop_loss
        # Only tighten: a band on the wrong side of entry is ignored
        if side is PositionSide.LONG:
            candidate = indicators.bb_lower * (1 - BB_STOP_BUFFER)
            if indicators.bb_lower > stop and candidate < entry_price:
                stop = candidate
        else:
            candidate = indicators.bb_upper * (1 + BB_STOP_BUFFER)
            if indicators.bb_upper < stop and candidate > entry_price:
                stop = candidate
        return ExitLevels(stop_loss=stop, take_profit=levels.take_profit)
