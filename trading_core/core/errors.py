"""Error taxonomy for the trading core."""

from __future__ import annotations
from typing import Optional


class TradingError(Exception):
    """Base class for trading core errors."""


class ConfigurationError(TradingError):
    """Missing or invalid exchange credentials or strategy config. Fatal to start()."""


class DataInsufficientError(TradingError):
    """Fewer bars than the indicator warm-up window."""

    def __init__(self, symbol: str, available: int, required: int):
        self.symbol = symbol
        self.available = available
        self.required = required
        super().__init__(f"{symbol}: {available} bars available, {required} required")


class OrderExecutionError(TradingError):
    """The exchange rejected an order submission or cancellation."""

    def __init__(self, message: str, symbol: str = "", side: Optional[str] = None):
        self.symbol = symbol
        self.side = side
        super().__init__(message)
