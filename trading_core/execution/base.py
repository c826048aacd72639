"""Abstract exchange interface: market data, balances, orders and streams. All calls are async."""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import pandas as pd

from trading_core.core.types import Bar, OrderSide

Unsubscribe = Callable[[], Any]


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: OrderSide
    quantity: float
    type: str = "MARKET"
    price: Optional[float] = None
    stop_price: Optional[float] = None
    time_in_force: Optional[str] = None
    reduce_only: bool = False


@dataclass
class OrderResult:
    """Result of placing an order."""
    success: bool
    order_id: Optional[str] = None
    avg_price: Optional[float] = None
    quantity: Optional[float] = None
    message: str = ""


@dataclass(frozen=True)
class Balance:
    asset: str
    free: float
    locked: float = 0.0

    @property
    def total(self) -> float:
        return self.free + self.locked


class ExchangeClient(ABC):
    """
    Exchange capability consumed by the core. Every call may fail, be slow or be rate limited.
    submit_order raises OrderExecutionError when the exchange rejects the order.
    """

    @abstractmethod
    def is_ready(self) -> bool:
        """True when credentials are present and the client can trade."""

    @abstractmethod
    async def get_historical_bars(self, symbol: str, interval: str, limit: int = 500) -> pd.DataFrame:
        """Return OHLCV DataFrame with columns: time, open, high, low, close, volume, close_time."""

    @abstractmethod
    async def get_current_price(self, symbol: str) -> float:
        pass

    @abstractmethod
    async def get_account_balances(self) -> List[Balance]:
        pass

    @abstractmethod
    async def submit_order(self, request: OrderRequest) -> OrderResult:
        pass

    @abstractmethod
    async def cancel_order(self, symbol: str, order_id: str) -> None:
        pass

    @abstractmethod
    async def cancel_all_orders(self, symbol: str) -> None:
        pass

    @abstractmethod
    async def subscribe_to_price(self, symbol: str, callback: Callable[[float], Any]) -> Unsubscribe:
        """Stream last-trade prices to callback; returns an unsubscribe handle."""

    @abstractmethod
    async def subscribe_to_bars(self, symbol: str, interval: str, callback: Callable[[Bar], Any]) -> Unsubscribe:
        """Stream closed bars to callback; returns an unsubscribe handle."""

    async def close(self) -> None:
        """Release connections. Default no-op."""
        return None
