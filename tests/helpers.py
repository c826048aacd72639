"""Synthetic bar series, signal builders and an in-memory exchange shared by the tests."""

from __future__ import annotations
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pandas as pd

from trading_core.core.errors import OrderExecutionError
from trading_core.core.types import IndicatorSnapshot, Signal, SignalStrength
from trading_core.execution.base import Balance, ExchangeClient, OrderRequest, OrderResult

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_frame(
    closes: Sequence[float],
    volumes: Optional[Sequence[float]] = None,
    wick: float = 0.0,
    start: datetime = START,
    minutes: int = 60,
) -> pd.DataFrame:
    """OHLCV frame: open = previous close, high/low = body extended by wick."""
    volumes = volumes if volumes is not None else [1000.0] * len(closes)
    rows = []
    prev = closes[0]
    for i, (c, v) in enumerate(zip(closes, volumes)):
        o = prev
        rows.append({
            "time": start + timedelta(minutes=minutes * i),
            "open": o,
            "high": max(o, c) + wick,
            "low": min(o, c) - wick,
            "close": c,
            "volume": v,
        })
        prev = c
    return pd.DataFrame(rows)


def flat_frame(n: int = 300, price: float = 100.0) -> pd.DataFrame:
    return make_frame([price] * n)


def uptrend_frame(n: int = 250) -> pd.DataFrame:
    """Closes rising 0.5% per bar; the last bar carries a volume spike."""
    closes = [100.0 * 1.005 ** i for i in range(n)]
    volumes = [1000.0] * (n - 1) + [5000.0]
    return make_frame(closes, volumes, wick=0.05)


def ranging_closes(n: int) -> List[float]:
    return [100.0 + (0.2 if i % 2 else -0.2) for i in range(n)]


def breakout_frame(flat_bars: int = 240, rising_bars: int = 30) -> pd.DataFrame:
    """Range around 100, a volume-confirmed break to 102 at index flat_bars, then +1% per bar."""
    closes = ranging_closes(flat_bars) + [102.0]
    closes += [102.0 * 1.01 ** (k + 1) for k in range(rising_bars)]
    volumes = [1000.0] * flat_bars + [3000.0] + [1000.0] * rising_bars
    return make_frame(closes, volumes, wick=0.3)


def breakdown_frame(flat_bars: int = 240) -> pd.DataFrame:
    closes = ranging_closes(flat_bars) + [98.0]
    volumes = [1000.0] * flat_bars + [3000.0]
    return make_frame(closes, volumes, wick=0.3)


def snapshot(price: float = 100.0, atr: float = 1.0, rsi: float = 50.0) -> IndicatorSnapshot:
    return IndicatorSnapshot(
        rsi=rsi, macd=0.0, macd_signal=0.0, macd_histogram=0.0,
        ema9=price, ema21=price, ema50=price, ema200=price,
        bb_upper=price * 1.1, bb_middle=price, bb_lower=price * 0.9,
        atr=atr, volume=1000.0, volume_average=1000.0, volume_ratio=1.0,
    )


def make_signal(
    strength: SignalStrength,
    confidence: float = 80.0,
    symbol: str = "BTCUSDT",
    price: float = 100.0,
    atr: float = 1.0,
) -> Signal:
    return Signal(
        symbol=symbol,
        strength=strength,
        confidence=confidence,
        price=price,
        indicators=snapshot(price, atr),
        reasons=("test",),
        strategy="test",
        timestamp=START,
    )


class FakeExchange(ExchangeClient):
    """
    In-memory exchange. Set a *_gate Event to hold the matching call until the test releases it;
    *_waiting flags tell the test the call is parked.
    """

    def __init__(
        self,
        frames: Optional[Dict[str, pd.DataFrame]] = None,
        balance: float = 10000.0,
        ready: bool = True,
    ):
        self.frames = frames or {}
        self.balance = balance
        self.ready = ready
        self.fail_symbols: set = set()
        self.fail_orders = False
        self.orders: List[OrderRequest] = []
        self.fetch_calls: List[str] = []
        self.fetch_gate: Optional[asyncio.Event] = None
        self.balance_gate: Optional[asyncio.Event] = None
        self.order_gate: Optional[asyncio.Event] = None
        self.fetch_waiting = False
        self.balance_waiting = False
        self.order_waiting = False

    def is_ready(self) -> bool:
        return self.ready

    async def get_historical_bars(self, symbol: str, interval: str, limit: int = 500) -> pd.DataFrame:
        self.fetch_calls.append(symbol)
        if self.fetch_gate is not None:
            self.fetch_waiting = True
            await self.fetch_gate.wait()
            self.fetch_waiting = False
        if symbol in self.fail_symbols:
            raise ConnectionError(f"network down for {symbol}")
        return self.frames[symbol].tail(limit).reset_index(drop=True)

    async def get_current_price(self, symbol: str) -> float:
        return float(self.frames[symbol]["close"].iloc[-1])

    async def get_account_balances(self) -> List[Balance]:
        if self.balance_gate is not None:
            self.balance_waiting = True
            await self.balance_gate.wait()
            self.balance_waiting = False
        return [Balance("USDT", self.balance), Balance("BNB", 1.0)]

    async def submit_order(self, request: OrderRequest) -> OrderResult:
        if self.order_gate is not None:
            self.order_waiting = True
            await self.order_gate.wait()
            self.order_waiting = False
        if self.fail_orders:
            raise OrderExecutionError("rejected by exchange", symbol=request.symbol, side=request.side.value)
        self.orders.append(request)
        return OrderResult(success=True, order_id=f"fake-{len(self.orders)}", quantity=request.quantity)

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        return None

    async def cancel_all_orders(self, symbol: str) -> None:
        return None

    async def subscribe_to_price(self, symbol, callback):
        return lambda: None

    async def subscribe_to_bars(self, symbol, interval, callback):
        return lambda: None


async def wait_for(predicate, timeout: float = 5.0) -> None:
    """Yield to the event loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)
