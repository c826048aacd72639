"""Positions: transition rules and the live lifecycle manager."""

from trading_core.positions.rules import Decision, decide, entry_side, exit_hit, is_reversal
from trading_core.positions.lifecycle import PositionBook, PositionLifecycleManager

__all__ = [
    "Decision",
    "decide",
    "entry_side",
    "exit_hit",
    "is_reversal",
    "PositionBook",
    "PositionLifecycleManager",
]
