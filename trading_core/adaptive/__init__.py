"""Adaptive layer: market regime classification and periodic strategy selection."""

from trading_core.adaptive.regime import RegimeAnalysis, classify_regime
from trading_core.adaptive.selector import (
    AdaptiveStrategySelector,
    ParameterOptimization,
    StrategyComparison,
    StrategySelection,
    strategy_score,
)

__all__ = [
    "RegimeAnalysis",
    "classify_regime",
    "AdaptiveStrategySelector",
    "ParameterOptimization",
    "StrategyComparison",
    "StrategySelection",
    "strategy_score",
]
