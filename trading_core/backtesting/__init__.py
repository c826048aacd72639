"""Backtesting: bar-by-bar simulation, parameter grid search and walk-forward evaluation."""

from trading_core.backtesting.engine import BacktestEngine
from trading_core.backtesting.optimizer import (
    DEFAULT_PARAMETER_SPACE,
    OptimizationResult,
    ParameterRun,
    grid_search,
)
from trading_core.backtesting.walk_forward import WalkForwardResult, split_windows, walk_forward

__all__ = [
    "BacktestEngine",
    "DEFAULT_PARAMETER_SPACE",
    "OptimizationResult",
    "ParameterRun",
    "grid_search",
    "WalkForwardResult",
    "split_windows",
    "walk_forward",
]
