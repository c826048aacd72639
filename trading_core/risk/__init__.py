"""Risk management: position sizing, risk-reward, daily loss gate, correlation guard."""

from trading_core.risk.manager import (
    RiskManager,
    RiskResult,
    position_size,
    risk_reward,
    check_correlation,
    liquidation_price,
    capped_leverage,
    adjust_size_for_volatility,
    position_risk,
    default_risk_management,
)

__all__ = [
    "RiskManager",
    "RiskResult",
    "position_size",
    "risk_reward",
    "check_correlation",
    "liquidation_price",
    "capped_leverage",
    "adjust_size_for_volatility",
    "position_risk",
    "default_risk_management",
]
