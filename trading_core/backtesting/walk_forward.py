"""
Walk-forward optimization: optimize on a train window, backtest the winner on the following
test window, then slide forward by one test window. Train and test never overlap.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence

import pandas as pd

from trading_core.backtesting.engine import DEFAULT_INITIAL_BALANCE, BacktestEngine
from trading_core.backtesting.optimizer import grid_search
from trading_core.core.errors import DataInsufficientError
from trading_core.core.types import BacktestResult, StrategyConfig
from trading_core.strategies import get_strategy
from trading_core.strategies.indicators import WARMUP_BARS
from trading_core.utils.timeframes import bars_for_days, bars_per_day

logger = logging.getLogger("trading_core.backtest.walk_forward")


@dataclass
class WalkForwardWindow:
    """Single train/test window, as bar index ranges [start, end)."""
    train_start: int
    train_end: int
    test_start: int
    test_end: int


@dataclass
class WalkForwardStep:
    window: WalkForwardWindow
    config: StrategyConfig
    train_sharpe: float
    result: BacktestResult


@dataclass
class WalkForwardResult:
    steps: List[WalkForwardStep] = field(default_factory=list)
    avg_return: float = 0.0
    avg_sharpe: float = 0.0

    @property
    def results(self) -> List[BacktestResult]:
        return [s.result for s in self.steps]


def split_windows(
    n_bars: int,
    timeframe: str,
    optimization_window_days: float,
    test_window_days: float,
) -> List[WalkForwardWindow]:
    """
    Day-based windows over n_bars. Stops once current_day + optimization + test
    would run past the available days.
    """
    if optimization_window_days <= 0 or test_window_days <= 0:
        raise ValueError("Window lengths must be positive")
    total_days = n_bars / bars_per_day(timeframe)
    train_len = bars_for_days(timeframe, optimization_window_days)
    test_len = bars_for_days(timeframe, test_window_days)
    windows = []
    current_day = 0.0
    while current_day + optimization_window_days + test_window_days <= total_days:
        start = bars_for_days(timeframe, current_day)
        windows.append(WalkForwardWindow(
            train_start=start,
            train_end=start + train_len,
            test_start=start + train_len,
            test_end=min(start + train_len + test_len, n_bars),
        ))
        current_day += test_window_days
    return windows


def walk_forward(
    df: pd.DataFrame,
    strategy_name: str,
    timeframe: str,
    optimization_window_days: float = 60,
    test_window_days: float = 30,
    parameter_space: Optional[Mapping[str, Sequence[Any]]] = None,
    base_config: Optional[StrategyConfig] = None,
    initial_balance: float = DEFAULT_INITIAL_BALANCE,
) -> WalkForwardResult:
    """
    Each test backtest gets the last WARMUP_BARS train bars prepended for indicator
    warm-up; those bars never trade. Averages are over test windows.
    """
    df = df.reset_index(drop=True)
    windows = split_windows(len(df), timeframe, optimization_window_days, test_window_days)
    if not windows:
        logger.warning("Walk-forward: %d bars do not cover one %s+%s day window",
                       len(df), optimization_window_days, test_window_days)
        return WalkForwardResult()
    train_len = windows[0].train_end - windows[0].train_start
    if train_len < WARMUP_BARS:
        raise DataInsufficientError(strategy_name, train_len, WARMUP_BARS)

    engine = BacktestEngine(get_strategy(strategy_name))
    steps: List[WalkForwardStep] = []
    for n, w in enumerate(windows, start=1):
        train = df.iloc[w.train_start:w.train_end]
        opt = grid_search(
            train, strategy_name, parameter_space,
            base_config=base_config, initial_balance=initial_balance, engine=engine,
        )
        warm_start = w.test_start - WARMUP_BARS
        test = df.iloc[warm_start:w.test_end].reset_index(drop=True)
        result = engine.run(test, opt.best_config, initial_balance, trade_from=WARMUP_BARS)
        steps.append(WalkForwardStep(w, opt.best_config, opt.best_result.stats.sharpe_ratio, result))
        logger.info("Walk-forward window %d: return %.2f%%, Sharpe %.2f",
                    n, result.total_return_pct, result.stats.sharpe_ratio)

    avg_return = sum(s.result.total_return_pct for s in steps) / len(steps)
    avg_sharpe = sum(s.result.stats.sharpe_ratio for s in steps) / len(steps)
    logger.info("Walk-forward done: %d windows, avg return %.2f%%, avg Sharpe %.2f",
                len(steps), avg_return, avg_sharpe)
    return WalkForwardResult(steps=steps, avg_return=avg_return, avg_sharpe=avg_sharpe)
