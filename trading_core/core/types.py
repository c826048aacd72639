"""
Core data types: bars, indicator snapshots, signals, positions, trades, stats and configs.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple


class SignalStrength(str, Enum):
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    NEUTRAL = "NEUTRAL"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"

    @property
    def is_buy(self) -> bool:
        return self in (SignalStrength.BUY, SignalStrength.STRONG_BUY)

    @property
    def is_sell(self) -> bool:
        return self in (SignalStrength.SELL, SignalStrength.STRONG_SELL)


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def entry_order_side(self) -> OrderSide:
        return OrderSide.BUY if self is PositionSide.LONG else OrderSide.SELL

    @property
    def exit_order_side(self) -> OrderSide:
        return OrderSide.SELL if self is PositionSide.LONG else OrderSide.BUY


class MarketRegime(str, Enum):
    TRENDING = "TRENDING"
    RANGING = "RANGING"
    VOLATILE = "VOLATILE"
    CALM = "CALM"


@dataclass(frozen=True)
class Bar:
    """OHLCV candle."""
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: Optional[datetime] = None


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values for the latest bar of a series."""
    rsi: float
    macd: float
    macd_signal: float
    macd_histogram: float
    ema9: float
    ema21: float
    ema50: float
    ema200: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    atr: float
    volume: float
    volume_average: float
    volume_ratio: float


@dataclass(frozen=True)
class Signal:
    """Strategy output for one symbol and one bar."""
    symbol: str
    strength: SignalStrength
    confidence: float
    price: float
    indicators: IndicatorSnapshot
    reasons: Tuple[str, ...]
    strategy: str
    timestamp: datetime


@dataclass(frozen=True)
class ExitLevels:
    stop_loss: float
    take_profit: float


@dataclass
class Position:
    """Open position state. Mutated only on price refresh."""
    id: str
    symbol: str
    side: PositionSide
    entry_price: float
    current_price: float
    quantity: float
    open_time: datetime
    leverage: int = 1
    unrealized_pnl: float = 0.0
    unrealized_pnl_pct: float = 0.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None

    def pnl_at(self, price: float) -> float:
        if self.side is PositionSide.LONG:
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity

    def mark(self, price: float) -> None:
        """Refresh current price and unrealized PnL."""
        self.current_price = price
        self.unrealized_pnl = self.pnl_at(price)
        notional = self.entry_price * self.quantity
        self.unrealized_pnl_pct = self.unrealized_pnl / notional * 100 if notional else 0.0


@dataclass(frozen=True)
class Trade:
    """Execution record. Entry fills have realized=False and no pnl."""
    id: str
    order_id: str
    symbol: str
    side: OrderSide
    price: float
    quantity: float
    commission: float
    time: datetime
    realized: bool
    pnl: Optional[float] = None
    pnl_pct: Optional[float] = None
    reason: str = ""  # "entry" | "stop_loss" | "take_profit" | "signal_reverse" | "end_of_data"


@dataclass(frozen=True)
class TradingStats:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    total_pnl_pct: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    current_drawdown: float = 0.0


@dataclass(frozen=True)
class EquityPoint:
    time: datetime
    balance: float


@dataclass(frozen=True)
class DrawdownPoint:
    time: datetime
    drawdown: float


@dataclass(frozen=True)
class IndicatorParams:
    rsi_period: int = 14
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bollinger_period: int = 20
    bollinger_std: float = 2.0
    atr_period: int = 14


@dataclass(frozen=True)
class RiskManagementConfig:
    max_position_size_pct: float = 5.0
    max_leverage: int = 3
    stop_loss_pct: float = 2.0
    take_profit_pct: float = 6.0
    max_daily_loss: float = 100.0
    max_open_positions: int = 5
    min_risk_reward: float = 3.0


@dataclass(frozen=True)
class StrategyConfig:
    """Strategy selection, indicator parameters and risk limits. Replace, never mutate."""
    name: str = "momentum"
    symbols: Tuple[str, ...] = ("BTCUSDT",)
    timeframe: str = "1h"
    indicators: IndicatorParams = field(default_factory=IndicatorParams)
    risk: RiskManagementConfig = field(default_factory=RiskManagementConfig)
    allow_short: bool = False
    risk_per_trade_pct: float = 2.0


@dataclass(frozen=True)
class BacktestResult:
    """Output of one backtest run."""
    strategy: str
    config: StrategyConfig
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    initial_balance: float
    final_balance: float
    total_return: float
    total_return_pct: float
    trades: Tuple[Trade, ...]
    stats: TradingStats
    equity_curve: Tuple[EquityPoint, ...]
    drawdown_curve: Tuple[DrawdownPoint, ...]


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str  # INFO | SUCCESS | WARNING | ERROR
    message: str
    data: Any = None


@dataclass(frozen=True)
class BotStatus:
    is_running: bool
    start_time: Optional[datetime]
    uptime_seconds: Optional[float]
    active_positions: int
    total_trades: int
    current_pnl: float
    errors: List[str] = field(default_factory=list)
    last_signal_time: Optional[datetime] = None
