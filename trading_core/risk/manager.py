"""
Risk engine: position sizing, risk-reward, correlation guard and the entry gate.
Position size = (balance * risk_pct / 100) / |entry - stop| (lose risk_pct of balance if stop hit).
None of these functions raise; degenerate inputs give 0 or a neutral default.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from trading_core.core.types import Position, PositionSide, RiskManagementConfig, Trade

logger = logging.getLogger("trading_core.risk")

MAX_SAME_SIDE_POSITIONS = 5
RR_TOLERANCE = 1e-9


@dataclass
class RiskResult:
    """Result of risk check: allowed or rejected + reason."""
    allowed: bool
    quantity: float = 0.0
    reason: str = ""


@dataclass(frozen=True)
class CorrelationCheck:
    is_highly_correlated: bool
    long_count: int
    short_count: int
    warning: str = ""


@dataclass(frozen=True)
class PositionRisk:
    risk_amount: float
    risk_pct: float
    potential_profit: float
    potential_profit_pct: float
    risk_reward: float


def _finite(*values: float) -> bool:
    return all(math.isfinite(v) for v in values)


def position_size(balance: float, risk_pct: float, entry: float, stop: float) -> float:
    """Quantity such that hitting the stop loses risk_pct of balance."""
    if not _finite(balance, risk_pct, entry, stop):
        return 0.0
    dist = abs(entry - stop)
    if dist <= 0 or balance <= 0 or risk_pct <= 0:
        return 0.0
    return (balance * risk_pct / 100.0) / dist


def risk_reward(entry: float, stop: float, target: float) -> float:
    """Reward / risk. 0 when the stop distance is zero."""
    if not _finite(entry, stop, target):
        return 0.0
    risk = abs(entry - stop)
    if risk <= 0:
        return 0.0
    return abs(target - entry) / risk


def check_correlation(positions: Iterable[Position], max_same_side: int = MAX_SAME_SIDE_POSITIONS) -> CorrelationCheck:
    """Flag when more than max_same_side open positions share a side."""
    positions = list(positions)
    longs = sum(1 for p in positions if p.side is PositionSide.LONG)
    shorts = len(positions) - longs
    if longs > max_same_side or shorts > max_same_side:
        return CorrelationCheck(
            True, longs, shorts,
            warning=f"Too many positions on one side: {longs} LONG, {shorts} SHORT",
        )
    return CorrelationCheck(False, longs, shorts)


def liquidation_price(entry: float, leverage: float, side: PositionSide, maintenance_margin: float = 0.004) -> float:
    """Approximate isolated-margin liquidation price."""
    if leverage <= 0:
        return 0.0
    if side is PositionSide.LONG:
        return entry * (1 - 1 / leverage + maintenance_margin)
    return entry * (1 + 1 / leverage - maintenance_margin)


def capped_leverage(requested: int, risk: RiskManagementConfig) -> int:
    if requested > risk.max_leverage:
        logger.warning("Leverage %dx exceeds max_leverage, using %dx", requested, risk.max_leverage)
        return risk.max_leverage
    return requested


def adjust_size_for_volatility(base_size: float, current_atr: float, average_atr: float) -> float:
    """Shrink size in high volatility, grow it slightly in low volatility."""
    if average_atr <= 0 or not _finite(current_atr, average_atr):
        return base_size
    ratio = current_atr / average_atr
    if ratio > 1.5:
        return base_size * 0.6
    if ratio > 1.2:
        return base_size * 0.8
    if ratio < 0.8:
        return base_size * 1.2
    return base_size


def position_risk(position: Position) -> PositionRisk:
    """Money at risk and potential profit for an open position's exit levels."""
    stop_dist = abs(position.entry_price - position.stop_loss) if position.stop_loss is not None else 0.0
    target_dist = abs(position.take_profit - position.entry_price) if position.take_profit is not None else 0.0
    risk_amount = stop_dist * position.quantity
    profit = target_dist * position.quantity
    entry = position.entry_price
    return PositionRisk(
        risk_amount=risk_amount,
        risk_pct=stop_dist / entry * 100 if entry else 0.0,
        potential_profit=profit,
        potential_profit_pct=target_dist / entry * 100 if entry else 0.0,
        risk_reward=profit / risk_amount if risk_amount > 0 else 0.0,
    )


def default_risk_management() -> RiskManagementConfig:
    return RiskManagementConfig()


def realized_pnl_on(trades: Iterable[Trade], day: date) -> float:
    """Sum of realized PnL for trades executed on the given calendar day."""
    return sum(t.pnl or 0.0 for t in trades if t.realized and t.time.date() == day)


class RiskManager:
    """
    Entry gate: max open positions, daily loss cap, min risk-reward, position size
    capped at max_position_size_pct of balance.
    """

    def __init__(self, risk: RiskManagementConfig, risk_per_trade_pct: float = 2.0):
        self.risk = risk
        self.risk_per_trade_pct = risk_per_trade_pct

    def check_limits(self, open_positions: int, today_pnl: float) -> RiskResult:
        """Return allowed=False if max positions or the daily loss cap is reached."""
        if open_positions >= self.risk.max_open_positions:
            return RiskResult(allowed=False, reason=f"max open positions reached ({self.risk.max_open_positions})")
        if today_pnl < -self.risk.max_daily_loss:
            return RiskResult(allowed=False, reason=f"daily loss cap reached ({today_pnl:.2f} < -{self.risk.max_daily_loss})")
        return RiskResult(allowed=True)

    def validate_entry(
        self,
        balance: float,
        entry_price: float,
        stop_price: float,
        target_price: float,
        open_positions: int = 0,
        today_pnl: float = 0.0,
    ) -> RiskResult:
        """Validate an entry and compute its quantity."""
        limits = self.check_limits(open_positions, today_pnl)
        if not limits.allowed:
            return limits

        if abs(entry_price - stop_price) <= 0:
            return RiskResult(allowed=False, reason="zero stop distance")

        rr = risk_reward(entry_price, stop_price, target_price)
        if rr + RR_TOLERANCE < self.risk.min_risk_reward:
            return RiskResult(allowed=False, reason=f"risk_reward {rr:.2f} < {self.risk.min_risk_reward}")

        qty = position_size(balance, self.risk_per_trade_pct, entry_price, stop_price)
        if qty <= 0:
            return RiskResult(allowed=False, reason="quantity is zero")

        max_notional = balance * (self.risk.max_position_size_pct / 100.0)
        if qty * entry_price > max_notional:
            qty = max_notional / entry_price
        if qty <= 0:
            return RiskResult(allowed=False, reason="position would exceed capital limit")
        return RiskResult(allowed=True, quantity=qty)
