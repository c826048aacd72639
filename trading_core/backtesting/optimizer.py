"""
Grid search over indicator parameters. Each combination is one backtest; the best Sharpe wins
and ties keep the first combination in enumeration order.
"""

from __future__ import annotations
import itertools
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from trading_core.backtesting.engine import DEFAULT_INITIAL_BALANCE, BacktestEngine
from trading_core.core.types import BacktestResult, StrategyConfig
from trading_core.strategies import get_strategy

logger = logging.getLogger("trading_core.backtest.optimizer")

DEFAULT_PARAMETER_SPACE: Dict[str, List[Any]] = {
    "rsi_period": [10, 14, 20],
    "rsi_overbought": [65, 70, 75],
    "rsi_oversold": [25, 30, 35],
    "macd_fast": [8, 12, 16],
    "macd_slow": [21, 26, 30],
}


@dataclass(frozen=True)
class ParameterRun:
    params: Dict[str, Any]
    config: StrategyConfig
    result: BacktestResult


@dataclass
class OptimizationResult:
    """Grid search output. all_results keeps enumeration order."""
    strategy: str
    best_config: StrategyConfig
    best_result: BacktestResult
    all_results: List[ParameterRun] = field(default_factory=list)
    truncated: bool = False

    @property
    def best_params(self) -> Dict[str, Any]:
        for run in self.all_results:
            if run.result is self.best_result:
                return run.params
        return {}


def iter_parameter_grid(space: Mapping[str, Sequence[Any]]):
    """Yield dicts over the Cartesian product of space, skipping macd_fast >= macd_slow."""
    keys = list(space.keys())
    for values in itertools.product(*(space[k] for k in keys)):
        params = dict(zip(keys, values))
        fast = params.get("macd_fast")
        slow = params.get("macd_slow")
        if fast is not None and slow is not None and fast >= slow:
            continue
        yield params


def config_with_params(base: StrategyConfig, params: Mapping[str, Any]) -> StrategyConfig:
    """Replace indicator fields named in params. Raises TypeError on unknown names."""
    return replace(base, indicators=replace(base.indicators, **params))


def grid_search(
    df: pd.DataFrame,
    strategy_name: str,
    parameter_space: Optional[Mapping[str, Sequence[Any]]] = None,
    base_config: Optional[StrategyConfig] = None,
    initial_balance: float = DEFAULT_INITIAL_BALANCE,
    max_combinations: Optional[int] = None,
    time_budget_s: Optional[float] = None,
    engine: Optional[BacktestEngine] = None,
) -> OptimizationResult:
    """
    Backtest every parameter combination and keep the one with the highest Sharpe ratio.
    max_combinations and time_budget_s bound the search; when either cuts it short the
    result is flagged truncated. Raises DataInsufficientError if df is shorter than warm-up.
    """
    space = parameter_space if parameter_space is not None else DEFAULT_PARAMETER_SPACE
    base = replace(base_config or StrategyConfig(), name=strategy_name)
    engine = engine or BacktestEngine(get_strategy(strategy_name))
    deadline = time.monotonic() + time_budget_s if time_budget_s is not None else None

    runs: List[ParameterRun] = []
    best: Optional[ParameterRun] = None
    truncated = False
    for params in iter_parameter_grid(space):
        if max_combinations is not None and len(runs) >= max_combinations:
            truncated = True
            break
        if deadline is not None and runs and time.monotonic() > deadline:
            truncated = True
            break
        config = config_with_params(base, params)
        result = engine.run(df, config, initial_balance)
        run = ParameterRun(params, config, result)
        runs.append(run)
        if best is None or result.stats.sharpe_ratio > best.result.stats.sharpe_ratio:
            best = run

    if best is None:
        raise ValueError("Parameter space produced no valid combinations")
    if truncated:
        logger.warning("Grid search for %s stopped after %d combinations", strategy_name, len(runs))
    logger.info(
        "Optimization done: %s, %d combinations, best Sharpe %.2f (%s)",
        strategy_name, len(runs), best.result.stats.sharpe_ratio, best.params,
    )
    return OptimizationResult(
        strategy=strategy_name,
        best_config=best.config,
        best_result=best.result,
        all_results=runs,
        truncated=truncated,
    )
