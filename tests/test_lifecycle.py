"""Unit tests for positions.lifecycle."""

from datetime import datetime, timezone

import pytest
from helpers import START, FakeExchange, make_signal

from trading_core.core.events import EventBus
from trading_core.core.types import OrderSide, Position, PositionSide, SignalStrength, StrategyConfig, Trade
from trading_core.positions import PositionBook, PositionLifecycleManager
from trading_core.positions.rules import SIGNAL_REVERSE, STOP_LOSS
from trading_core.strategies import MomentumStrategy

NOW = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
CONFIG = StrategyConfig()
SHORTS = StrategyConfig(allow_short=True)


def alive():
    return True


def make_manager(exchange=None, events=None):
    logs = []
    manager = PositionLifecycleManager(
        exchange or FakeExchange(),
        events=events,
        log=lambda level, message, data=None: logs.append((level, message)),
        clock=lambda: NOW,
    )
    return manager, logs


async def run(manager, signal, config=CONFIG, low=99.5, high=100.5, is_alive=alive):
    await manager.process(signal, low, high, config, MomentumStrategy(), is_alive)


@pytest.mark.asyncio
async def test_opens_long_with_risk_sizing():
    events = EventBus()
    opened = []
    events.position_opened.subscribe(opened.append)
    manager, logs = make_manager(events=events)

    await run(manager, make_signal(SignalStrength.STRONG_BUY, 85.0))

    pos = manager.book.get("BTCUSDT")
    assert pos is not None
    assert pos.side is PositionSide.LONG
    assert pos.stop_loss == pytest.approx(98.0)
    assert pos.take_profit == pytest.approx(106.0)
    assert pos.quantity == pytest.approx(5.0)
    assert opened == [pos]
    (entry,) = manager.book.trades
    assert entry.realized is False
    assert entry.side is OrderSide.BUY
    assert entry.commission == pytest.approx(100.0 * 5.0 * 0.001)
    assert ("SUCCESS", "Position opened: BTCUSDT LONG") in logs


@pytest.mark.asyncio
async def test_low_confidence_does_nothing():
    exchange = FakeExchange()
    manager, _ = make_manager(exchange)
    await run(manager, make_signal(SignalStrength.BUY, 60.0))
    assert manager.book.open_count == 0
    assert exchange.orders == []


@pytest.mark.asyncio
async def test_single_position_per_symbol():
    exchange = FakeExchange()
    manager, logs = make_manager(exchange)
    await run(manager, make_signal(SignalStrength.STRONG_BUY, 85.0))
    await run(manager, make_signal(SignalStrength.STRONG_BUY, 90.0))
    assert manager.book.open_count == 1
    assert len(exchange.orders) == 1
    assert any("already has a LONG position" in m for _, m in logs)


@pytest.mark.asyncio
async def test_order_failure_leaves_state_unchanged():
    exchange = FakeExchange()
    exchange.fail_orders = True
    manager, logs = make_manager(exchange)
    await run(manager, make_signal(SignalStrength.STRONG_BUY, 85.0))
    assert manager.book.open_count == 0
    assert manager.book.trades == []
    assert any(level == "ERROR" and "Open order failed" in m for level, m in logs)


@pytest.mark.asyncio
async def test_short_requires_allow_short():
    manager, logs = make_manager()
    await run(manager, make_signal(SignalStrength.STRONG_SELL, 85.0))
    assert manager.book.open_count == 0
    assert any("short entry skipped" in m for _, m in logs)

    manager, _ = make_manager()
    await run(manager, make_signal(SignalStrength.STRONG_SELL, 85.0), SHORTS)
    pos = manager.book.get("BTCUSDT")
    assert pos.side is PositionSide.SHORT
    assert pos.stop_loss == pytest.approx(102.0)
    assert pos.take_profit == pytest.approx(94.0)


@pytest.mark.asyncio
async def test_reversal_closes_then_opens_opposite():
    events = EventBus()
    closed = []
    events.position_closed.subscribe(closed.append)
    exchange = FakeExchange()
    manager, _ = make_manager(exchange, events)

    await run(manager, make_signal(SignalStrength.STRONG_BUY, 85.0), SHORTS)
    await run(manager, make_signal(SignalStrength.STRONG_SELL, 85.0, price=101.0), SHORTS, 100.5, 101.5)

    assert [o.side for o in exchange.orders] == [OrderSide.BUY, OrderSide.SELL, OrderSide.SELL]
    assert manager.book.get("BTCUSDT").side is PositionSide.SHORT
    (event,) = closed
    assert event.trade.reason == SIGNAL_REVERSE
    assert event.trade.pnl == pytest.approx(5.0)
    assert event.trade.pnl_pct == pytest.approx(1.0)
    assert manager.book.realized_pnl() == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_stop_loss_hit_closes_at_stop():
    manager, logs = make_manager()
    await run(manager, make_signal(SignalStrength.STRONG_BUY, 85.0))
    await run(manager, make_signal(SignalStrength.NEUTRAL, 50.0, price=99.0), low=97.5, high=99.5)

    assert manager.book.open_count == 0
    closing = manager.book.trades[-1]
    assert closing.reason == STOP_LOSS
    assert closing.price == pytest.approx(98.0)
    assert closing.pnl == pytest.approx(-10.0)
    assert ("WARNING", "Stop loss triggered: BTCUSDT") in logs


@pytest.mark.asyncio
async def test_daily_loss_cap_blocks_entries():
    manager, logs = make_manager()
    manager.book.record(Trade(
        id="old", order_id="o", symbol="ETHUSDT", side=OrderSide.SELL, price=1.0, quantity=1.0,
        commission=0.0, time=NOW, realized=True, pnl=-150.0,
    ))
    await run(manager, make_signal(SignalStrength.STRONG_BUY, 85.0))
    assert manager.book.open_count == 0
    assert any("daily loss cap" in m for _, m in logs)


@pytest.mark.asyncio
async def test_low_balance_blocks_entries():
    manager, logs = make_manager(FakeExchange(balance=5.0))
    await run(manager, make_signal(SignalStrength.STRONG_BUY, 85.0))
    assert manager.book.open_count == 0
    assert any("Insufficient USDT balance" in m for _, m in logs)


@pytest.mark.asyncio
async def test_dead_cycle_records_nothing():
    exchange = FakeExchange()
    manager, _ = make_manager(exchange)
    await run(manager, make_signal(SignalStrength.STRONG_BUY, 85.0), is_alive=lambda: False)
    assert manager.book.open_count == 0
    assert manager.book.trades == []
    assert exchange.orders == []


def test_book_rejects_second_position():
    book = PositionBook()
    p = Position(id="a", symbol="BTCUSDT", side=PositionSide.LONG, entry_price=1.0,
                 current_price=1.0, quantity=1.0, open_time=START)
    book.add(p)
    with pytest.raises(ValueError):
        book.add(p)
    assert book.remove("BTCUSDT") is p
    assert book.remove("BTCUSDT") is None
