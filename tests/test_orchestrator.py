"""Tests for the trading orchestrator: start/stop, cycles, cancellation and adaptive updates."""

import asyncio
from types import SimpleNamespace

import pytest
from helpers import FakeExchange, breakout_frame, flat_frame, uptrend_frame, wait_for

from trading_core.core.errors import ConfigurationError
from trading_core.core.types import IndicatorParams, SignalStrength, StrategyConfig
from trading_core.engine import TradingOrchestrator

FLAT = StrategyConfig(symbols=("BTCUSDT",))
BREAKOUT = StrategyConfig(name="breakout", symbols=("BTCUSDT",))


def levels(orch):
    return [e.level for e in orch.get_logs()]


def messages(orch):
    return [e.message for e in orch.get_logs()]


@pytest.mark.asyncio
async def test_start_fails_without_credentials():
    orch = TradingOrchestrator(FLAT, FakeExchange({"BTCUSDT": flat_frame()}, ready=False))
    with pytest.raises(ConfigurationError):
        await orch.start()
    assert orch.is_running is False


@pytest.mark.asyncio
async def test_start_rejects_invalid_config():
    orch = TradingOrchestrator(StrategyConfig(symbols=()), FakeExchange())
    with pytest.raises(ConfigurationError):
        await orch.start()
    assert orch.is_running is False


@pytest.mark.asyncio
async def test_stop_is_idempotent():
    orch = TradingOrchestrator(FLAT, FakeExchange({"BTCUSDT": flat_frame()}))
    orch.stop()
    assert orch.is_running is False
    assert levels(orch) == ["WARNING"]

    await orch.start()
    orch.stop()
    orch.stop()
    assert orch.is_running is False
    assert messages(orch)[-1] == "Trading engine is not running"


@pytest.mark.asyncio
async def test_start_runs_a_cycle_immediately():
    statuses = []
    orch = TradingOrchestrator(FLAT, FakeExchange({"BTCUSDT": flat_frame()}))
    orch.events.status_change.subscribe(statuses.append)
    await orch.start()
    try:
        assert orch.is_running is True
        assert orch.cycle_count == 1
        assert orch.latest_signal("BTCUSDT").strength is SignalStrength.NEUTRAL
        status = orch.get_status()
        assert status.is_running is True
        assert status.active_positions == 0
        assert status.last_signal_time is not None
        assert statuses[0].is_running is True
    finally:
        orch.stop()
    assert orch.get_status().is_running is False
    assert statuses[-1].is_running is False


@pytest.mark.asyncio
async def test_start_twice_warns():
    orch = TradingOrchestrator(FLAT, FakeExchange({"BTCUSDT": flat_frame()}))
    await orch.start()
    try:
        await orch.start()
        assert orch.cycle_count == 1
        assert "Trading engine is already running" in messages(orch)
    finally:
        orch.stop()


@pytest.mark.asyncio
async def test_failing_symbol_does_not_stop_the_cycle():
    exchange = FakeExchange({"ETHUSDT": flat_frame()})
    exchange.fail_symbols.add("BTCUSDT")
    orch = TradingOrchestrator(StrategyConfig(symbols=("BTCUSDT", "ETHUSDT")), exchange)
    await orch.start()
    try:
        assert exchange.fetch_calls == ["BTCUSDT", "ETHUSDT"]
        assert any(m.startswith("Failed to fetch bars for BTCUSDT") for m in messages(orch))
        assert orch.latest_signal("BTCUSDT") is None
        assert orch.latest_signal("ETHUSDT") is not None
        assert orch.get_status().errors
    finally:
        orch.stop()


@pytest.mark.asyncio
async def test_insufficient_history_is_a_warning():
    orch = TradingOrchestrator(FLAT, FakeExchange({"BTCUSDT": flat_frame(150)}))
    await orch.start()
    try:
        assert any(e.level == "WARNING" and "Insufficient data" in e.message for e in orch.get_logs())
        assert orch.latest_signal("BTCUSDT") is None
    finally:
        orch.stop()


@pytest.mark.asyncio
async def test_breakout_signal_opens_position():
    opened = []
    exchange = FakeExchange({"BTCUSDT": breakout_frame(rising_bars=0)})
    orch = TradingOrchestrator(BREAKOUT, exchange)
    orch.events.position_opened.subscribe(opened.append)
    await orch.start()
    try:
        (pos,) = orch.get_active_positions()
        assert pos.symbol == "BTCUSDT"
        assert opened == [pos]
        assert len(orch.get_trade_history()) == 1
        assert orch.get_status().active_positions == 1
    finally:
        orch.stop()


@pytest.mark.asyncio
async def test_stop_during_order_leaves_no_trace():
    exchange = FakeExchange({"BTCUSDT": breakout_frame(rising_bars=0)})
    exchange.order_gate = asyncio.Event()
    orch = TradingOrchestrator(BREAKOUT, exchange)

    start = asyncio.create_task(orch.start())
    await wait_for(lambda: exchange.order_waiting)
    orch.stop()
    exchange.order_gate.set()
    await start

    assert orch.is_running is False
    assert orch.get_active_positions() == []
    assert orch.get_trade_history() == []
    assert any("not recorded" in m for m in messages(orch))


@pytest.mark.asyncio
async def test_stop_during_balance_check_submits_nothing():
    exchange = FakeExchange({"BTCUSDT": breakout_frame(rising_bars=0)})
    exchange.balance_gate = asyncio.Event()
    orch = TradingOrchestrator(BREAKOUT, exchange)

    start = asyncio.create_task(orch.start())
    await wait_for(lambda: exchange.balance_waiting)
    orch.stop()
    exchange.balance_gate.set()
    await start

    assert exchange.orders == []
    assert orch.get_active_positions() == []


@pytest.mark.asyncio
async def test_overlapping_cycle_is_skipped():
    exchange = FakeExchange({"BTCUSDT": flat_frame()})
    exchange.fetch_gate = asyncio.Event()
    orch = TradingOrchestrator(FLAT, exchange)

    start = asyncio.create_task(orch.start())
    await wait_for(lambda: exchange.fetch_waiting)
    assert orch.cycle_in_progress is True
    assert await orch.run_cycle() is False
    assert "Previous analysis cycle still running; skipping this tick" in messages(orch)

    exchange.fetch_gate.set()
    await start
    try:
        assert orch.cycle_in_progress is False
        assert orch.cycle_count == 1
        assert await orch.run_cycle() is True
        assert orch.cycle_count == 2
    finally:
        orch.stop()


@pytest.mark.asyncio
async def test_restart_during_stale_cycle_runs_immediately():
    exchange = FakeExchange({"BTCUSDT": flat_frame()})
    exchange.fetch_gate = asyncio.Event()
    orch = TradingOrchestrator(FLAT, exchange)

    first = asyncio.create_task(orch.start())
    await wait_for(lambda: exchange.fetch_waiting)
    orch.stop()
    assert orch.cycle_in_progress is False

    second = asyncio.create_task(orch.start())
    await wait_for(lambda: len(exchange.fetch_calls) == 2)
    assert orch.cycle_in_progress is True

    exchange.fetch_gate.set()
    await first
    await second
    try:
        assert orch.is_running is True
        assert "Previous analysis cycle still running; skipping this tick" not in messages(orch)
        assert orch.cycle_count == 2
        assert orch.latest_signal("BTCUSDT") is not None
        assert orch.cycle_in_progress is False
    finally:
        orch.stop()

@pytest.mark.asyncio
async def test_run_cycle_when_stopped_is_noop():
    exchange = FakeExchange({"BTCUSDT": flat_frame()})
    orch = TradingOrchestrator(FLAT, exchange)
    assert await orch.run_cycle() is False
    assert exchange.fetch_calls == []


class StubSelector:
    def __init__(self, config):
        self.config = config
        self.calls = []

    def needs_reoptimization(self):
        return True

    async def select_best_strategy(self, symbol, timeframe, force=False):
        self.calls.append((symbol, timeframe, force))
        return SimpleNamespace(config=self.config, reason="breakout scored higher")


@pytest.mark.asyncio
async def test_adaptive_mode_switches_strategy_and_keeps_symbols():
    updates = []
    chosen = StrategyConfig(name="breakout", symbols=("XRPUSDT",), indicators=IndicatorParams(rsi_period=10))
    selector = StubSelector(chosen)
    config = StrategyConfig(symbols=("BTCUSDT", "ETHUSDT"))
    exchange = FakeExchange({"BTCUSDT": flat_frame(), "ETHUSDT": flat_frame()})
    orch = TradingOrchestrator(config, exchange, selector=selector, adaptive_mode=True)
    orch.events.strategy_updated.subscribe(updates.append)

    await orch.start()
    try:
        assert selector.calls == [("BTCUSDT", "1h", False)]
        assert orch.config.name == "breakout"
        assert orch.config.symbols == ("BTCUSDT", "ETHUSDT")
        assert orch.config.indicators.rsi_period == 10
        (update,) = updates
        assert update.config == orch.config
        assert update.reason == "breakout scored higher"
        assert orch.latest_signal("BTCUSDT").strategy.startswith("Breakout")
    finally:
        orch.stop()


@pytest.mark.asyncio
async def test_unchanged_selection_publishes_nothing():
    updates = []
    orch = TradingOrchestrator(
        FLAT, FakeExchange({"BTCUSDT": flat_frame()}),
        selector=StubSelector(StrategyConfig()), adaptive_mode=True,
    )
    orch.events.strategy_updated.subscribe(updates.append)
    await orch.start()
    orch.stop()
    assert updates == []
    assert "Strategy unchanged: momentum" in messages(orch)


@pytest.mark.asyncio
async def test_enabling_adaptive_mode_forces_reoptimization():
    selector = StubSelector(StrategyConfig())
    orch = TradingOrchestrator(FLAT, FakeExchange({"BTCUSDT": flat_frame()}), selector=selector)
    assert orch.is_adaptive_mode_enabled() is False
    orch.set_adaptive_mode(True)
    assert orch.is_adaptive_mode_enabled() is True
    await orch.start()
    orch.stop()
    assert selector.calls == [("BTCUSDT", "1h", True)]


def test_set_adaptive_mode_creates_selector():
    orch = TradingOrchestrator(FLAT, FakeExchange())
    orch.set_adaptive_mode(True)
    assert orch._selector is not None
    orch.set_adaptive_mode(False)
    assert orch.is_adaptive_mode_enabled() is False


def test_update_config():
    orch = TradingOrchestrator(FLAT, FakeExchange())
    updated = orch.update_config({"name": "Breakout", "symbols": "btcusdt,ethusdt", "risk": {"max_open_positions": 2}})
    assert updated.name == "breakout"
    assert updated.symbols == ("BTCUSDT", "ETHUSDT")
    assert updated.risk.max_open_positions == 2
    assert updated.risk.min_risk_reward == 3.0
    assert orch.config is updated

    with pytest.raises(ConfigurationError):
        orch.update_config({"name": "martingale"})
    with pytest.raises(ConfigurationError):
        orch.update_config({"leverage_x": 10})
    assert orch.config is updated


def test_log_buffer_is_bounded():
    orch = TradingOrchestrator(FLAT, FakeExchange())
    for n in range(600):
        orch._log("INFO", f"line {n}")
    logs = orch.get_logs()
    assert len(logs) == 500
    assert logs[-1].message == "line 599"
    assert [e.message for e in orch.get_logs(2)] == ["line 598", "line 599"]


@pytest.mark.asyncio
async def test_uptrend_cycle_publishes_signal():
    seen = []
    orch = TradingOrchestrator(FLAT, FakeExchange({"BTCUSDT": uptrend_frame(250)}))
    orch.events.signal.subscribe(seen.append)
    await orch.start()
    orch.stop()
    assert len(seen) == 1
    assert seen[0].strength.is_buy
