"""
Adaptive strategy selection: backtest every known strategy over a lookback window, rank by a
weighted score and cache the winner for the re-optimization interval.
Backtests are CPU bound and run in a worker thread so the event loop stays responsive.
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from trading_core.adaptive.regime import RegimeAnalysis, classify_regime
from trading_core.backtesting.engine import DEFAULT_INITIAL_BALANCE, BacktestEngine
from trading_core.backtesting.optimizer import grid_search
from trading_core.core.types import BacktestResult, MarketRegime, StrategyConfig
from trading_core.execution.base import ExchangeClient
from trading_core.strategies import STRATEGIES, get_strategy
from trading_core.utils.timeframes import bars_for_days

logger = logging.getLogger("trading_core.adaptive")

REOPTIMIZATION_INTERVAL = timedelta(hours=24)
LOOKBACK_DAYS = 90
REGIME_LOOKBACK_DAYS = 30
MAX_FETCH_BARS = 1000

SHARPE_WEIGHT = 0.4
RETURN_WEIGHT = 0.3
WIN_RATE_WEIGHT = 0.2
DRAWDOWN_WEIGHT = 0.1


def strategy_score(result: BacktestResult) -> float:
    stats = result.stats
    return (
        SHARPE_WEIGHT * stats.sharpe_ratio
        + RETURN_WEIGHT * result.total_return_pct
        + WIN_RATE_WEIGHT * stats.win_rate
        - DRAWDOWN_WEIGHT * stats.max_drawdown
    )


@dataclass(frozen=True)
class StrategyComparison:
    strategy: str
    result: BacktestResult
    score: float


@dataclass(frozen=True)
class StrategySelection:
    config: StrategyConfig
    reason: str
    backtest: BacktestResult
    from_cache: bool = False


@dataclass(frozen=True)
class ParameterOptimization:
    config: StrategyConfig
    improvement: float
    details: str
    result: BacktestResult
    default_result: BacktestResult


def build_reason(best: StrategyComparison, ranked: Sequence[StrategyComparison]) -> str:
    stats = best.result.stats
    lines = [
        f"{best.strategy.upper()} strategy performed best:",
        f"- Sharpe ratio: {stats.sharpe_ratio:.2f}",
        f"- Total return: {best.result.total_return_pct:.2f}%",
        f"- Win rate: {stats.win_rate:.1f}%",
        f"- Profit factor: {stats.profit_factor:.2f}",
        f"- Max drawdown: {stats.max_drawdown:.1f}%",
        f"- Total trades: {stats.total_trades}",
    ]
    others = [c for c in ranked if c.strategy != best.strategy]
    if others:
        lines.append("Compared with:")
        for rank, c in enumerate(ranked, start=1):
            if c.strategy == best.strategy:
                continue
            lines.append(
                f"  {rank}. {c.strategy}: {c.result.total_return_pct:.2f}% return, "
                f"Sharpe {c.result.stats.sharpe_ratio:.2f}, win rate {c.result.stats.win_rate:.1f}%"
            )
    return "\n".join(lines)


class AdaptiveStrategySelector:
    """Picks the best strategy for a symbol from recent history. Results are cached."""

    def __init__(
        self,
        exchange: ExchangeClient,
        base_config: Optional[StrategyConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        reoptimization_interval: timedelta = REOPTIMIZATION_INTERVAL,
        lookback_days: int = LOOKBACK_DAYS,
        max_bars: int = MAX_FETCH_BARS,
        parameter_space: Optional[Mapping[str, Sequence[Any]]] = None,
        initial_balance: float = DEFAULT_INITIAL_BALANCE,
    ):
        self.exchange = exchange
        self.base_config = base_config or StrategyConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.reoptimization_interval = reoptimization_interval
        self.lookback_days = lookback_days
        self.max_bars = max_bars
        self.parameter_space = parameter_space
        self.initial_balance = initial_balance
        self._last_optimization: Optional[datetime] = None
        self._current: Optional[StrategySelection] = None
        self._performance_history: Dict[str, List[float]] = {}

    @property
    def current(self) -> Optional[StrategySelection]:
        return self._current

    @property
    def last_optimization(self) -> Optional[datetime]:
        return self._last_optimization

    @property
    def performance_history(self) -> Dict[str, List[float]]:
        """Sharpe ratio of each winning selection, per strategy."""
        return {k: list(v) for k, v in self._performance_history.items()}

    def needs_reoptimization(self) -> bool:
        if self._last_optimization is None:
            return True
        return self._clock() - self._last_optimization >= self.reoptimization_interval

    def invalidate(self) -> None:
        """Force the next selection to re-run the comparison."""
        self._last_optimization = None

    def _config_for(self, name: str, symbol: str, timeframe: str) -> StrategyConfig:
        return replace(self.base_config, name=name, symbols=(symbol,), timeframe=timeframe)

    async def fetch_history(self, symbol: str, timeframe: str, days: float) -> pd.DataFrame:
        limit = bars_for_days(timeframe, days, max_bars=self.max_bars)
        return await self.exchange.get_historical_bars(symbol, timeframe, limit)

    async def compare_strategies(
        self,
        symbol: str,
        timeframe: str,
        lookback_days: Optional[int] = None,
    ) -> List[StrategyComparison]:
        """One backtest per known strategy, ranked by score (best first, stable on ties)."""
        days = lookback_days or self.lookback_days
        logger.info("Comparing strategies on %s %s over %d days", symbol, timeframe, days)
        df = await self.fetch_history(symbol, timeframe, days)
        comparisons = []
        for name in STRATEGIES:
            engine = BacktestEngine(get_strategy(name))
            config = self._config_for(name, symbol, timeframe)
            result = await asyncio.to_thread(engine.run, df, config, self.initial_balance, symbol)
            comparisons.append(StrategyComparison(name, result, strategy_score(result)))
            logger.info("%s: %.2f%% return, %.1f%% win rate", name, result.total_return_pct, result.stats.win_rate)
        return sorted(comparisons, key=lambda c: c.score, reverse=True)

    async def select_best_strategy(
        self,
        symbol: str,
        timeframe: str,
        force: bool = False,
    ) -> StrategySelection:
        if not force and self._current is not None and not self.needs_reoptimization():
            logger.info("Using cached strategy selection (%s)", self._current.config.name)
            return replace(
                self._current,
                reason=f"Cached: optimized within the last {self.reoptimization_interval}",
                from_cache=True,
            )

        ranked = await self.compare_strategies(symbol, timeframe)
        best = ranked[0]
        self._performance_history.setdefault(best.strategy, []).append(best.result.stats.sharpe_ratio)
        selection = StrategySelection(
            config=self._config_for(best.strategy, symbol, timeframe),
            reason=build_reason(best, ranked),
            backtest=best.result,
        )
        self._current = selection
        self._last_optimization = self._clock()
        logger.info(
            "Best strategy: %s (Sharpe %.2f, return %.2f%%, win rate %.1f%%)",
            best.strategy, best.result.stats.sharpe_ratio, best.result.total_return_pct, best.result.stats.win_rate,
        )
        return selection

    async def optimize_strategy_parameters(
        self,
        symbol: str,
        timeframe: str,
        strategy_name: str,
    ) -> ParameterOptimization:
        """Grid-search one strategy and compare it with default parameters."""
        df = await self.fetch_history(symbol, timeframe, self.lookback_days)
        base = self._config_for(strategy_name, symbol, timeframe)
        opt = await asyncio.to_thread(
            grid_search, df, strategy_name, self.parameter_space, base, self.initial_balance,
        )
        engine = BacktestEngine(get_strategy(strategy_name))
        default_result = await asyncio.to_thread(engine.run, df, base, self.initial_balance, symbol)

        before = default_result.stats.sharpe_ratio
        after = opt.best_result.stats.sharpe_ratio
        improvement = (after - before) / abs(before) * 100 if abs(before) > 1e-12 else 0.0
        ind = opt.best_config.indicators
        details = "\n".join([
            "Optimized parameters:",
            f"- RSI period: {ind.rsi_period}",
            f"- RSI overbought: {ind.rsi_overbought}",
            f"- RSI oversold: {ind.rsi_oversold}",
            f"- MACD fast: {ind.macd_fast}",
            f"- MACD slow: {ind.macd_slow}",
            f"Improvement: {improvement:.2f}%",
            f"Sharpe ratio: {before:.2f} -> {after:.2f}",
            f"Win rate: {default_result.stats.win_rate:.1f}% -> {opt.best_result.stats.win_rate:.1f}%",
        ])
        self._current = StrategySelection(opt.best_config, details, opt.best_result)
        self._last_optimization = self._clock()
        return ParameterOptimization(opt.best_config, improvement, details, opt.best_result, default_result)

    async def analyze_market_conditions(
        self,
        symbol: str,
        timeframe: str,
        days: float = REGIME_LOOKBACK_DAYS,
    ) -> RegimeAnalysis:
        df = await self.fetch_history(symbol, timeframe, days)
        analysis = classify_regime(df)
        logger.info("Market regime %s: %s (confidence %.0f%%)", symbol, analysis.regime.value, analysis.confidence)
        return analysis

    async def recommend_strategy(self, symbol: str, timeframe: str) -> StrategyConfig:
        """Regime picks the strategy when it is clear; otherwise the backtest ranking decides."""
        analysis = await self.analyze_market_conditions(symbol, timeframe)
        if analysis.regime in (MarketRegime.TRENDING, MarketRegime.VOLATILE) and analysis.suggested_strategy:
            optimized = await self.optimize_strategy_parameters(symbol, timeframe, analysis.suggested_strategy)
            return optimized.config
        selection = await self.select_best_strategy(symbol, timeframe)
        return selection.config
