"""Unit tests for adaptive.regime and adaptive.selector."""

from datetime import datetime, timedelta, timezone

import pytest
from helpers import FakeExchange, breakout_frame, flat_frame, make_frame, uptrend_frame

from trading_core.adaptive import AdaptiveStrategySelector, classify_regime
from trading_core.adaptive.selector import strategy_score
from trading_core.backtesting import BacktestEngine
from trading_core.core.types import MarketRegime, StrategyConfig
from trading_core.strategies import STRATEGIES

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


def test_rising_series_is_trending():
    analysis = classify_regime(uptrend_frame(250))
    assert analysis.regime is MarketRegime.TRENDING
    assert analysis.confidence in (75.0, 85.0)
    assert analysis.suggested_strategy == "momentum"
    assert analysis.ema_separation_pct > 2.0


def test_constant_series_is_ranging():
    analysis = classify_regime(flat_frame(300))
    assert analysis.regime is MarketRegime.RANGING
    assert analysis.confidence == 60.0
    assert analysis.suggested_strategy is None


def test_range_expansion_is_volatile():
    df = flat_frame(300)
    df.loc[df.index[-10:], "high"] = 105.0
    df.loc[df.index[-10:], "low"] = 95.0
    analysis = classify_regime(df)
    assert analysis.regime is MarketRegime.VOLATILE
    assert analysis.confidence == 80.0
    assert analysis.suggested_strategy == "breakout"
    assert analysis.atr_ratio > 1.5


def test_single_bar_is_ranging():
    assert classify_regime(make_frame([100.0])).regime is MarketRegime.RANGING


def test_strategy_score_weights():
    result = BacktestEngine().run(breakout_frame(), StrategyConfig(name="breakout"))
    s = result.stats
    expected = 0.4 * s.sharpe_ratio + 0.3 * result.total_return_pct + 0.2 * s.win_rate - 0.1 * s.max_drawdown
    assert strategy_score(result) == pytest.approx(expected)


@pytest.mark.asyncio
async def test_compare_strategies_ranks_by_score():
    selector = AdaptiveStrategySelector(FakeExchange({"BTCUSDT": breakout_frame()}))
    ranked = await selector.compare_strategies("BTCUSDT", "1h")
    assert {c.strategy for c in ranked} == set(STRATEGIES)
    assert [c.score for c in ranked] == sorted((c.score for c in ranked), reverse=True)


@pytest.mark.asyncio
async def test_selection_is_cached_until_interval_passes():
    exchange = FakeExchange({"BTCUSDT": breakout_frame()})
    clock = Clock()
    selector = AdaptiveStrategySelector(exchange, clock=clock, reoptimization_interval=timedelta(hours=24))
    assert selector.needs_reoptimization() is True

    first = await selector.select_best_strategy("BTCUSDT", "1h")
    assert first.from_cache is False
    assert first.config.symbols == ("BTCUSDT",)
    assert first.reason.startswith(f"{first.config.name.upper()} strategy performed best:")
    assert selector.last_optimization == T0

    clock.now = T0 + timedelta(hours=23)
    second = await selector.select_best_strategy("BTCUSDT", "1h")
    assert second.from_cache is True
    assert second.config == first.config
    assert exchange.fetch_calls == ["BTCUSDT"]

    clock.now = T0 + timedelta(hours=24)
    assert selector.needs_reoptimization() is True
    third = await selector.select_best_strategy("BTCUSDT", "1h")
    assert third.from_cache is False
    assert len(exchange.fetch_calls) == 2
    assert sum(len(v) for v in selector.performance_history.values()) == 2


@pytest.mark.asyncio
async def test_force_bypasses_cache():
    exchange = FakeExchange({"BTCUSDT": breakout_frame()})
    selector = AdaptiveStrategySelector(exchange, clock=Clock())
    await selector.select_best_strategy("BTCUSDT", "1h")
    again = await selector.select_best_strategy("BTCUSDT", "1h", force=True)
    assert again.from_cache is False
    assert len(exchange.fetch_calls) == 2


@pytest.mark.asyncio
async def test_invalidate():
    selector = AdaptiveStrategySelector(FakeExchange({"BTCUSDT": flat_frame(300)}), clock=Clock())
    await selector.select_best_strategy("BTCUSDT", "1h")
    assert selector.needs_reoptimization() is False
    selector.invalidate()
    assert selector.needs_reoptimization() is True


@pytest.mark.asyncio
async def test_optimize_parameters_without_edge_reports_zero_improvement():
    selector = AdaptiveStrategySelector(
        FakeExchange({"BTCUSDT": flat_frame(300)}), clock=Clock(),
        parameter_space={"rsi_period": [10, 14]},
    )
    opt = await selector.optimize_strategy_parameters("BTCUSDT", "1h", "breakout")
    assert opt.improvement == 0.0
    assert opt.config.name == "breakout"
    assert opt.config.indicators.rsi_period == 10
    assert "Optimized parameters:" in opt.details
    assert selector.current.config == opt.config


@pytest.mark.asyncio
async def test_recommend_strategy_falls_back_to_ranking_when_ranging():
    selector = AdaptiveStrategySelector(FakeExchange({"BTCUSDT": flat_frame(300)}), clock=Clock())
    config = await selector.recommend_strategy("BTCUSDT", "1h")
    # no trades anywhere: equal scores keep registry order
    assert config.name == "momentum"
    assert selector.current is not None


@pytest.mark.asyncio
async def test_recommend_strategy_follows_clear_regime():
    selector = AdaptiveStrategySelector(
        FakeExchange({"BTCUSDT": uptrend_frame(250)}), clock=Clock(),
        parameter_space={"rsi_period": [14]},
    )
    config = await selector.recommend_strategy("BTCUSDT", "1h")
    assert config.name == "momentum"
