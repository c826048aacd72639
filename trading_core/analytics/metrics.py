"""
Performance metrics: Sharpe, max drawdown, win rate, profit factor and TradingStats.
Per-trade percentage returns are annualized over 252 periods.
"""

from __future__ import annotations
from typing import Iterable, List, Optional, Sequence

import numpy as np

from trading_core.core.types import Trade, TradingStats

PERIODS_PER_YEAR = 252.0
RISK_FREE_RATE = 0.02
DEFAULT_INITIAL_BALANCE = 10000.0


def sharpe_ratio(
    returns: Sequence[float],
    risk_free_rate: float = RISK_FREE_RATE,
    periods_per_year: float = PERIODS_PER_YEAR,
) -> float:
    """(annualized mean - risk free) / annualized std. 0 with < 2 returns or zero std."""
    if len(returns) < 2:
        return 0.0
    arr = np.asarray(returns, dtype=float)
    std = arr.std()
    if not np.isfinite(std) or std <= 1e-12:
        return 0.0
    annual_return = arr.mean() * periods_per_year
    annual_std = std * np.sqrt(periods_per_year)
    return float((annual_return - risk_free_rate) / annual_std)


def drawdown_series(equity: Sequence[float]) -> List[float]:
    """Drawdown in percent from the running peak, for each point of the curve."""
    if len(equity) == 0:
        return []
    arr = np.asarray(equity, dtype=float)
    peak = np.maximum.accumulate(arr)
    safe_peak = np.where(peak > 0, peak, 1.0)
    dd = np.where(peak > 0, (peak - arr) / safe_peak * 100.0, 0.0)
    return np.clip(dd, 0.0, 100.0).tolist()


def max_drawdown(equity: Sequence[float]) -> float:
    """Max drawdown in percent (15.0 = 15%), in [0, 100]."""
    dd = drawdown_series(equity)
    return max(dd) if dd else 0.0


def win_rate(pnls: Sequence[float]) -> float:
    """Percentage of trades with positive PnL."""
    if not pnls:
        return 0.0
    return sum(1 for p in pnls if p > 0) / len(pnls) * 100.0


def profit_factor(pnls: Iterable[float]) -> float:
    """Gross profit / gross loss. inf if no losses but some profit, 0 if neither."""
    pnls = list(pnls)
    wins = sum(p for p in pnls if p > 0)
    losses = sum(-p for p in pnls if p < 0)
    if losses <= 0:
        return float("inf") if wins > 0 else 0.0
    return wins / losses


def compute_trading_stats(
    trades: Iterable[Trade],
    initial_balance: float = DEFAULT_INITIAL_BALANCE,
    equity_curve: Optional[Sequence[float]] = None,
) -> TradingStats:
    """
    Stats over realized trades only (entry fills are ignored).
    equity_curve: optional mark-to-market curve for drawdown; if None, built from
    initial_balance plus cumulative realized PnL.
    """
    realized = [t for t in trades if t.realized and t.pnl is not None]
    if not realized:
        return TradingStats()
    pnls = [float(t.pnl) for t in realized]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]

    if equity_curve is None:
        equity = [initial_balance]
        for p in pnls:
            equity.append(equity[-1] + p)
        equity_curve = equity
    dd = drawdown_series(equity_curve)

    returns = [(t.pnl_pct or 0.0) / 100.0 for t in realized]
    return TradingStats(
        total_trades=len(realized),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=win_rate(pnls),
        total_pnl=sum(pnls),
        total_pnl_pct=sum(t.pnl_pct or 0.0 for t in realized),
        average_win=sum(wins) / len(wins) if wins else 0.0,
        average_loss=abs(sum(losses) / len(losses)) if losses else 0.0,
        profit_factor=profit_factor(pnls),
        sharpe_ratio=sharpe_ratio(returns),
        max_drawdown=max(dd) if dd else 0.0,
        current_drawdown=dd[-1] if dd else 0.0,
    )
