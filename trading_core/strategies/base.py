"""Abstract strategy: signal generation and exit-level placement."""

from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import pandas as pd

from trading_core.core.errors import DataInsufficientError
from trading_core.core.types import (
    ExitLevels,
    IndicatorSnapshot,
    PositionSide,
    RiskManagementConfig,
    Signal,
    StrategyConfig,
)
from trading_core.strategies.indicators import WARMUP_BARS, compute_indicator_frame

ATR_STOP_MULT = 2.0


def bar_time(frame: pd.DataFrame, i: int) -> datetime:
    value = frame["time"].iloc[i]
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


class BaseStrategy(ABC):
    """
    Strategy evaluates a precomputed indicator frame at a row index.
    Live and backtest paths both go through evaluate(), so decisions are identical.
    """

    name: str = ""
    label: str = ""

    def generate_signal(
        self,
        df: pd.DataFrame,
        config: StrategyConfig,
        symbol: Optional[str] = None,
    ) -> Signal:
        """Signal for the last bar of an OHLCV DataFrame. Raises DataInsufficientError below warm-up."""
        symbol = symbol or (config.symbols[0] if config.symbols else "")
        if len(df) < WARMUP_BARS:
            raise DataInsufficientError(symbol, len(df), WARMUP_BARS)
        frame = compute_indicator_frame(df, config.indicators)
        return self.evaluate(frame, len(frame) - 1, config, symbol)

    @abstractmethod
    def evaluate(self, frame: pd.DataFrame, i: int, config: StrategyConfig, symbol: str) -> Signal:
        """Signal at row i of an indicator frame, using rows <= i only."""

    def compute_exit_levels(
        self,
        entry_price: float,
        side: PositionSide,
        indicators: IndicatorSnapshot,
        risk: RiskManagementConfig,
    ) -> ExitLevels:
        """Stop at ATR x 2 from entry, target at stop distance x min risk-reward."""
        dist = indicators.atr * ATR_STOP_MULT
        if side is PositionSide.LONG:
            return ExitLevels(entry_price - dist, entry_price + dist * risk.min_risk_reward)
        return ExitLevels(entry_price + dist, entry_price - dist * risk.min_risk_reward)
