"""Execution: exchange abstraction and Binance Futures implementation."""

from trading_core.execution.base import Balance, ExchangeClient, OrderRequest, OrderResult
from trading_core.execution.binance_futures import BinanceFuturesClient

__all__ = ["Balance", "ExchangeClient", "OrderRequest", "OrderResult", "BinanceFuturesClient"]
