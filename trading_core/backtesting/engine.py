"""
Backtest engine: replays closed bars through a strategy with the live transition rules.
One symbol, at most one open position. Fee and slippage simulation in basis points.
"""

from __future__ import annotations
import logging
from typing import List, Optional

import pandas as pd

from trading_core.analytics.metrics import compute_trading_stats, drawdown_series
from trading_core.core.errors import DataInsufficientError
from trading_core.core.types import (
    BacktestResult,
    DrawdownPoint,
    EquityPoint,
    Position,
    PositionSide,
    StrategyConfig,
    Trade,
)
from trading_core.positions import rules
from trading_core.risk.manager import RiskManager, realized_pnl_on
from trading_core.strategies import BaseStrategy, get_strategy
from trading_core.strategies.base import bar_time
from trading_core.strategies.indicators import WARMUP_BARS, compute_indicator_frame

logger = logging.getLogger("trading_core.backtest")

DEFAULT_INITIAL_BALANCE = 10000.0


class BacktestEngine:
    """
    Runs a strategy over an OHLCV DataFrame (columns: time, open, high, low, close, volume).
    Indicators are computed once over the whole frame; they are causal, so row i only
    depends on rows <= i. Entries fill at the signal bar's close; stop/take-profit are
    checked against later bars' low/high.
    """

    def __init__(
        self,
        strategy: Optional[BaseStrategy] = None,
        fee_bps: float = 10.0,
        slippage_bps: float = 0.0,
    ):
        self.strategy = strategy
        self.fee_bps = fee_bps
        self.slippage_bps = slippage_bps

    def _fee(self, price: float, quantity: float) -> float:
        return price * quantity * self.fee_bps / 10000.0

    def _fill(self, price: float, side: PositionSide, entering: bool) -> float:
        """Fill price moved against us by slippage_bps."""
        slip = self.slippage_bps / 10000.0
        buying = (side is PositionSide.LONG) == entering
        return price * (1 + slip) if buying else price * (1 - slip)

    def run(
        self,
        df: pd.DataFrame,
        config: StrategyConfig,
        initial_balance: float = DEFAULT_INITIAL_BALANCE,
        symbol: Optional[str] = None,
        trade_from: int = WARMUP_BARS,
    ) -> BacktestResult:
        """
        Simulate from bar max(trade_from, WARMUP_BARS) to the end. Bars before that only
        warm up the indicators. Any position still open at the end is closed at the last close.
        """
        symbol = symbol or (config.symbols[0] if config.symbols else "")
        if len(df) < WARMUP_BARS:
            raise DataInsufficientError(symbol, len(df), WARMUP_BARS)
        strategy = self.strategy or get_strategy(config.name)
        risk_manager = RiskManager(config.risk, config.risk_per_trade_pct)
        frame = compute_indicator_frame(df, config.indicators)
        start = max(trade_from, WARMUP_BARS)

        balance = initial_balance
        trades: List[Trade] = []
        equity: List[EquityPoint] = []
        position: Optional[Position] = None

        def close(price: float, reason: str, i: int) -> None:
            nonlocal balance, position
            pos = position
            exit_price = self._fill(price, pos.side, entering=False)
            pnl = pos.pnl_at(exit_price)
            fee = self._fee(exit_price, pos.quantity)
            balance += pnl - fee
            notional = pos.entry_price * pos.quantity
            trades.append(Trade(
                id=f"trade_{len(trades) + 1}",
                order_id=f"bt_{i}",
                symbol=symbol,
                side=pos.side.exit_order_side,
                price=exit_price,
                quantity=pos.quantity,
                commission=fee,
                time=bar_time(frame, i),
                realized=True,
                pnl=pnl,
                pnl_pct=pnl / notional * 100 if notional else 0.0,
                reason=reason,
            ))
            position = None

        for i in range(start, len(frame)):
            t = bar_time(frame, i)
            high = float(frame["high"].iloc[i])
            low = float(frame["low"].iloc[i])
            close_price = float(frame["close"].iloc[i])

            if position is not None:
                hit = rules.exit_hit(position.side, position.stop_loss, position.take_profit, low, high)
                if hit is not None:
                    close(hit[0], hit[1], i)
            else:
                signal = strategy.evaluate(frame, i, config, symbol)
                side = rules.entry_side(signal, config.allow_short)
                if side is not None:
                    entry = self._fill(close_price, side, entering=True)
                    levels = strategy.compute_exit_levels(entry, side, signal.indicators, config.risk)
                    result = risk_manager.validate_entry(
                        balance, entry, levels.stop_loss, levels.take_profit,
                        open_positions=0, today_pnl=realized_pnl_on(trades, t.date()),
                    )
                    if result.allowed:
                        fee = self._fee(entry, result.quantity)
                        balance -= fee
                        opened = Position(
                            id=f"pos_{i}",
                            symbol=symbol,
                            side=side,
                            entry_price=entry,
                            current_price=entry,
                            quantity=result.quantity,
                            open_time=t,
                            stop_loss=levels.stop_loss,
                            take_profit=levels.take_profit,
                        )
                        trades.append(Trade(
                            id=f"trade_{len(trades) + 1}",
                            order_id=f"bt_{i}",
                            symbol=symbol,
                            side=side.entry_order_side,
                            price=entry,
                            quantity=result.quantity,
                            commission=fee,
                            time=t,
                            realized=False,
                            reason="entry",
                        ))
                        position = opened
                    else:
                        logger.debug("Entry rejected at bar %d: %s", i, result.reason)

            mark = balance
            if position is not None:
                position.mark(close_price)
                mark += position.unrealized_pnl
            equity.append(EquityPoint(t, mark))

        if position is not None:
            last = len(frame) - 1
            close(float(frame["close"].iloc[last]), rules.END_OF_DATA, last)
            if equity:
                equity[-1] = EquityPoint(equity[-1].time, balance)

        balances = [p.balance for p in equity]
        drawdowns = drawdown_series(balances)
        stats = compute_trading_stats(trades, initial_balance, equity_curve=[initial_balance] + balances)
        total_return = balance - initial_balance
        result = BacktestResult(
            strategy=strategy.name,
            config=config,
            start_time=bar_time(frame, start) if start < len(frame) else bar_time(frame, len(frame) - 1),
            end_time=bar_time(frame, len(frame) - 1),
            initial_balance=initial_balance,
            final_balance=balance,
            total_return=total_return,
            total_return_pct=total_return / initial_balance * 100 if initial_balance else 0.0,
            trades=tuple(trades),
            stats=stats,
            equity_curve=tuple(equity),
            drawdown_curve=tuple(DrawdownPoint(p.time, d) for p, d in zip(equity, drawdowns)),
        )
        logger.debug(
            "Backtest %s %s: %d trades, return %.2f%%",
            strategy.name, symbol, stats.total_trades, result.total_return_pct,
        )
        return result
