"""
Position transition rules (Flat -> Open(LONG|SHORT) -> Flat), shared by the live
lifecycle manager and the backtest engine.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

from trading_core.core.types import Position, PositionSide, Signal

MIN_ENTRY_CONFIDENCE = 70.0

STOP_LOSS = "stop_loss"
TAKE_PROFIT = "take_profit"
SIGNAL_REVERSE = "signal_reverse"
END_OF_DATA = "end_of_data"


@dataclass(frozen=True)
class Decision:
    """What to do with one symbol this cycle. Close (if any) happens before open."""
    close_price: Optional[float] = None
    close_reason: str = ""
    open_side: Optional[PositionSide] = None
    short_skipped: bool = False

    @property
    def closes(self) -> bool:
        return self.close_price is not None


def wanted_side(signal: Signal) -> Optional[PositionSide]:
    """Side a confident directional signal asks for, ignoring deployment limits."""
    if signal.confidence < MIN_ENTRY_CONFIDENCE:
        return None
    if signal.strength.is_buy:
        return PositionSide.LONG
    if signal.strength.is_sell:
        return PositionSide.SHORT
    return None


def entry_side(signal: Signal, allow_short: bool) -> Optional[PositionSide]:
    """Rules 1-2: side to open from flat, or None."""
    side = wanted_side(signal)
    if side is PositionSide.SHORT and not allow_short:
        return None
    return side


def is_reversal(position: Position, signal: Signal) -> bool:
    """Rules 3-4: an opposite directional signal closes the position."""
    if position.side is PositionSide.LONG:
        return signal.strength.is_sell
    return signal.strength.is_buy


def exit_hit(
    side: PositionSide,
    stop_loss: Optional[float],
    take_profit: Optional[float],
    low: float,
    high: float,
) -> Optional[Tuple[float, str]]:
    """
    Rule 5: (exit price, reason) if the bar range touched a level.
    When both levels lie inside one bar, the stop is assumed to fill first.
    """
    if side is PositionSide.LONG:
        if stop_loss is not None and low <= stop_loss:
            return stop_loss, STOP_LOSS
        if take_profit is not None and high >= take_profit:
            return take_profit, TAKE_PROFIT
    else:
        if stop_loss is not None and high >= stop_loss:
            return stop_loss, STOP_LOSS
        if take_profit is not None and low <= take_profit:
            return take_profit, TAKE_PROFIT
    return None


def decide(
    position: Optional[Position],
    signal: Signal,
    low: float,
    high: float,
    allow_short: bool,
) -> Decision:
    """Apply rules 1-6 for one symbol and one bar."""
    if position is not None:
        hit = exit_hit(position.side, position.stop_loss, position.take_profit, low, high)
        if hit is not None:
            return Decision(close_price=hit[0], close_reason=hit[1])
        if not is_reversal(position, signal):
            return Decision()
        side = wanted_side(signal)
        return Decision(
            close_price=signal.price,
            close_reason=SIGNAL_REVERSE,
            open_side=entry_side(signal, allow_short),
            short_skipped=side is PositionSide.SHORT and not allow_short,
        )
    side = wanted_side(signal)
    return Decision(
        open_side=entry_side(signal, allow_short),
        short_skipped=side is PositionSide.SHORT and not allow_short,
    )
