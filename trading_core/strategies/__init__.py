"""Strategies: base interface, momentum and breakout variants, and the name registry."""

from typing import Dict, Type

from trading_core.core.errors import ConfigurationError
from trading_core.strategies.base import BaseStrategy
from trading_core.strategies.breakout import BreakoutStrategy
from trading_core.strategies.momentum import MomentumStrategy

STRATEGIES: Dict[str, Type[BaseStrategy]] = {
    MomentumStrategy.name: MomentumStrategy,
    BreakoutStrategy.name: BreakoutStrategy,
}


def get_strategy(name: str) -> BaseStrategy:
    """Instantiate a known strategy by name (case-insensitive)."""
    try:
        return STRATEGIES[name.strip().lower()]()
    except KeyError:
        raise ConfigurationError(f"Unknown strategy '{name}'. Known: {', '.join(STRATEGIES)}") from None


__all__ = ["BaseStrategy", "MomentumStrategy", "BreakoutStrategy", "STRATEGIES", "get_strategy"]
