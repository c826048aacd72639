"""
Live position lifecycle: applies the transition rules to a signal, submits orders through
the exchange and records positions and trades. One open position per symbol.

Every await is followed by an is_alive() check; when it fails, no state is mutated.
"""

from __future__ import annotations
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from trading_core.core.errors import OrderExecutionError
from trading_core.core.events import EventBus, PositionClosed
from trading_core.core.logger import to_logging_level
from trading_core.core.types import Position, PositionSide, Signal, StrategyConfig, Trade
from trading_core.execution.base import ExchangeClient, OrderRequest
from trading_core.positions import rules
from trading_core.risk.manager import RiskManager, check_correlation, realized_pnl_on
from trading_core.strategies.base import BaseStrategy

logger = logging.getLogger("trading_core.positions")

COMMISSION_RATE = 0.001
MIN_FREE_BALANCE = 10.0
QUOTE_ASSET = "USDT"

LogFn = Callable[..., None]
Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _default_log(level: str, message: str, data=None) -> None:
    logger.log(to_logging_level(level), message)


class PositionBook:
    """Open positions keyed by symbol plus the append-only trade log."""

    def __init__(self) -> None:
        self._positions: Dict[str, Position] = {}
        self._trades: List[Trade] = []

    def get(self, symbol: str) -> Optional[Position]:
        return self._positions.get(symbol)

    def add(self, position: Position) -> None:
        if position.symbol in self._positions:
            raise ValueError(f"{position.symbol} already has an open position")
        self._positions[position.symbol] = position

    def remove(self, symbol: str) -> Optional[Position]:
        return self._positions.pop(symbol, None)

    def record(self, trade: Trade) -> None:
        self._trades.append(trade)

    @property
    def positions(self) -> List[Position]:
        return list(self._positions.values())

    @property
    def trades(self) -> List[Trade]:
        return list(self._trades)

    @property
    def open_count(self) -> int:
        return len(self._positions)

    def realized_pnl(self) -> float:
        return sum(t.pnl or 0.0 for t in self._trades if t.realized)


class PositionLifecycleManager:
    """Owns the PositionBook; the only writer of positions and trades."""

    def __init__(
        self,
        exchange: ExchangeClient,
        events: Optional[EventBus] = None,
        log: Optional[LogFn] = None,
        clock: Optional[Clock] = None,
        quote_asset: str = QUOTE_ASSET,
    ):
        self.exchange = exchange
        self.events = events or EventBus()
        self.book = PositionBook()
        self._log = log or _default_log
        self._clock = clock or _utc_now
        self.quote_asset = quote_asset

    def today_pnl(self) -> float:
        return realized_pnl_on(self.book.trades, self._clock().date())

    async def process(
        self,
        signal: Signal,
        low: float,
        high: float,
        config: StrategyConfig,
        strategy: BaseStrategy,
        is_alive: Callable[[], bool],
    ) -> None:
        """Apply one cycle's signal for signal.symbol; low/high are the latest bar's range."""
        position = self.book.get(signal.symbol)
        if position is not None:
            position.mark(signal.price)
        decision = rules.decide(position, signal, low, high, config.allow_short)

        if decision.closes:
            if decision.close_reason == rules.STOP_LOSS:
                self._log("WARNING", f"Stop loss triggered: {signal.symbol}")
            elif decision.close_reason == rules.TAKE_PROFIT:
                self._log("SUCCESS", f"Take profit reached: {signal.symbol}")
            trade = await self.close_position(position, decision.close_price, decision.close_reason, is_alive)
            if trade is None:
                return
        elif position is not None:
            if rules.wanted_side(signal) is position.side:
                self._log("INFO", f"{signal.symbol} already has a {position.side.value} position")
            return

        if decision.short_skipped:
            self._log("INFO", f"{signal.symbol}: short entry skipped (shorting disabled)")
        if decision.open_side is not None:
            await self.open_position(signal, decision.open_side, config, strategy, is_alive)

    async def _free_balance(self) -> float:
        balances = await self.exchange.get_account_balances()
        for b in balances:
            if b.asset == self.quote_asset:
                return b.free
        return 0.0

    async def open_position(
        self,
        signal: Signal,
        side: PositionSide,
        config: StrategyConfig,
        strategy: BaseStrategy,
        is_alive: Callable[[], bool],
    ) -> Optional[Position]:
        symbol = signal.symbol
        risk_manager = RiskManager(config.risk, config.risk_per_trade_pct)
        today_pnl = self.today_pnl()
        limits = risk_manager.check_limits(self.book.open_count, today_pnl)
        if not limits.allowed:
            self._log("WARNING", f"Risk limits exceeded, not opening {symbol}: {limits.reason}")
            return None

        balance = await self._free_balance()
        if not is_alive():
            return None
        if balance < MIN_FREE_BALANCE:
            self._log("WARNING", f"Insufficient {self.quote_asset} balance ({balance:.2f})")
            return None

        levels = strategy.compute_exit_levels(signal.price, side, signal.indicators, config.risk)
        result = risk_manager.validate_entry(
            balance, signal.price, levels.stop_loss, levels.take_profit,
            self.book.open_count, today_pnl,
        )
        if not result.allowed:
            self._log("WARNING", f"Entry rejected for {symbol}: {result.reason}")
            return None

        self._log("INFO", f"Opening {side.value} {symbol}: qty={result.quantity:.6f} price={signal.price} "
                          f"SL={levels.stop_loss:.6g} TP={levels.take_profit:.6g}")
        request = OrderRequest(symbol=symbol, side=side.entry_order_side, quantity=result.quantity)
        try:
            ack = await self.exchange.submit_order(request)
        except OrderExecutionError as e:
            self._log("ERROR", f"Open order failed for {symbol}: {e}")
            return None
        if not is_alive():
            self._log("WARNING", f"Engine stopped while opening {symbol}; order {ack.order_id} not recorded")
            return None

        price = ack.avg_price or signal.price
        quantity = ack.quantity or result.quantity
        now = self._clock()
        position = Position(
            id=f"pos_{uuid.uuid4().hex[:12]}",
            symbol=symbol,
            side=side,
            entry_price=price,
            current_price=price,
            quantity=quantity,
            open_time=now,
            stop_loss=levels.stop_loss,
            take_profit=levels.take_profit,
        )
        self.book.add(position)
        self.book.record(Trade(
            id=f"trade_{uuid.uuid4().hex[:12]}",
            order_id=ack.order_id or position.id,
            symbol=symbol,
            side=side.entry_order_side,
            price=price,
            quantity=quantity,
            commission=price * quantity * COMMISSION_RATE,
            time=now,
            realized=False,
            reason="entry",
        ))
        self._log("SUCCESS", f"Position opened: {symbol} {side.value}")
        self.events.position_opened.publish(position)

        correlation = check_correlation(self.book.positions)
        if correlation.is_highly_correlated:
            self._log("WARNING", correlation.warning)
        return position

    async def close_position(
        self,
        position: Position,
        price: float,
        reason: str,
        is_alive: Callable[[], bool],
    ) -> Optional[Trade]:
        symbol = position.symbol
        self._log("INFO", f"Closing position: {symbol} {position.side.value} ({reason})")
        request = OrderRequest(symbol=symbol, side=position.side.exit_order_side, quantity=position.quantity)
        try:
            ack = await self.exchange.submit_order(request)
        except OrderExecutionError as e:
            self._log("ERROR", f"Close order failed for {symbol}: {e}")
            return None
        if not is_alive():
            self._log("WARNING", f"Engine stopped while closing {symbol}; order {ack.order_id} not recorded")
            return None

        exit_price = ack.avg_price or price
        pnl = position.pnl_at(exit_price)
        notional = position.entry_price * position.quantity
        pnl_pct = pnl / notional * 100 if notional else 0.0
        trade = Trade(
            id=f"trade_{uuid.uuid4().hex[:12]}",
            order_id=ack.order_id or position.id,
            symbol=symbol,
            side=position.side.exit_order_side,
            price=exit_price,
            quantity=position.quantity,
            commission=exit_price * position.quantity * COMMISSION_RATE,
            time=self._clock(),
            realized=True,
            pnl=pnl,
            pnl_pct=pnl_pct,
            reason=reason,
        )
        self.book.remove(symbol)
        self.book.record(trade)
        position.mark(exit_price)
        sign = "+" if pnl >= 0 else "-"
        self._log("SUCCESS", f"Position closed: {symbol} | PnL: {sign}${abs(pnl):.2f} ({pnl_pct:.2f}%)")
        self.events.position_closed.publish(PositionClosed(position=position, trade=trade))
        return trade
