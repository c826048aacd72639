"""Analytics: trade statistics (Sharpe, drawdown, win rate, profit factor)."""

from trading_core.analytics.metrics import (
    compute_trading_stats,
    sharpe_ratio,
    max_drawdown,
    drawdown_series,
    win_rate,
    profit_factor,
)

__all__ = [
    "compute_trading_stats",
    "sharpe_ratio",
    "max_drawdown",
    "drawdown_series",
    "win_rate",
    "profit_factor",
]
