"""Core: config, types, errors, events, logging."""

from trading_core.core.config import Config, load_config, merge_config, validate_strategy_config
from trading_core.core.errors import (
    ConfigurationError,
    DataInsufficientError,
    OrderExecutionError,
    TradingError,
)
from trading_core.core.events import Channel, EventBus, PositionClosed, StrategyUpdate
from trading_core.core.logger import setup_logging
from trading_core.core.types import (
    BacktestResult,
    Bar,
    BotStatus,
    IndicatorParams,
    IndicatorSnapshot,
    LogEntry,
    MarketRegime,
    Position,
    PositionSide,
    RiskManagementConfig,
    Signal,
    SignalStrength,
    StrategyConfig,
    Trade,
    TradingStats,
)

__all__ = [
    "Config",
    "load_config",
    "merge_config",
    "validate_strategy_config",
    "ConfigurationError",
    "DataInsufficientError",
    "OrderExecutionError",
    "TradingError",
    "Channel",
    "EventBus",
    "PositionClosed",
    "StrategyUpdate",
    "setup_logging",
    "BacktestResult",
    "Bar",
    "BotStatus",
    "IndicatorParams",
    "IndicatorSnapshot",
    "LogEntry",
    "MarketRegime",
    "Position",
    "PositionSide",
    "RiskManagementConfig",
    "Signal",
    "SignalStrength",
    "StrategyConfig",
    "Trade",
    "TradingStats",
]
