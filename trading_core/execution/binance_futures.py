"""
Binance USDT-M Futures adapter (python-binance AsyncClient) with retry and rate-limit handling.
"""

from __future__ import annotations
import asyncio
import functools
import logging
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from binance import AsyncClient, BinanceSocketManager
from binance.exceptions import BinanceAPIException, BinanceOrderException

from trading_core.core.errors import OrderExecutionError
from trading_core.core.types import Bar
from trading_core.execution.base import Balance, ExchangeClient, OrderRequest, OrderResult, Unsubscribe
from trading_core.utils.exchange_filters import SymbolFilters, parse_symbol_filters, round_price, round_quantity

logger = logging.getLogger("trading_core.execution.binance")

KLINE_COLUMNS = [
    "open_time", "open", "high", "low", "close", "volume",
    "close_time", "quote_av", "num_trades", "tb_base_av", "tb_quote_av", "ignore",
]


def retry_on_rate_limit(max_retries: int = 3, base_delay: float = 1.0):
    """Decorator: retry a coroutine on 429 or 418 (rate limit) with exponential backoff."""
    def decorator(f):
        @functools.wraps(f)
        async def wrapped(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await f(*args, **kwargs)
                except BinanceAPIException as e:
                    if e.status_code in (429, 418) and attempt < max_retries - 1:
                        delay = base_delay * (2 ** attempt)
                        logger.warning("Rate limited, retry in %.1fs (attempt %d)", delay, attempt + 1)
                        await asyncio.sleep(delay)
                    else:
                        raise
        return wrapped
    return decorator


def klines_to_frame(raw: List[list]) -> pd.DataFrame:
    df = pd.DataFrame(raw, columns=KLINE_COLUMNS)
    df[["open", "high", "low", "close", "volume"]] = df[["open", "high", "low", "close", "volume"]].astype(float)
    df["time"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)
    df["close_time"] = pd.to_datetime(df["close_time"], unit="ms", utc=True)
    return df[["time", "open", "high", "low", "close", "volume", "close_time"]]


def _kline_to_bar(k: Dict[str, Any]) -> Bar:
    return Bar(
        time=pd.Timestamp(k["t"], unit="ms", tz="UTC").to_pydatetime(),
        open=float(k["o"]),
        high=float(k["h"]),
        low=float(k["l"]),
        close=float(k["c"]),
        volume=float(k["v"]),
        close_time=pd.Timestamp(k["T"], unit="ms", tz="UTC").to_pydatetime(),
    )


class BinanceFuturesClient(ExchangeClient):
    """Binance USDT-M Futures client (testnet and live). Build with `await BinanceFuturesClient.create(...)`."""

    def __init__(self, client: Optional[AsyncClient], has_credentials: bool, testnet: bool = True):
        self._client = client
        self._has_credentials = has_credentials
        self.testnet = testnet
        self._filters_cache: Dict[str, SymbolFilters] = {}
        self._streams: List[asyncio.Task] = []

    @classmethod
    async def create(cls, api_key: str, api_secret: str, testnet: bool = True) -> "BinanceFuturesClient":
        client = await AsyncClient.create(api_key or None, api_secret or None, testnet=testnet)
        logger.info("Binance Futures: using %s", "TESTNET" if testnet else "LIVE")
        return cls(client, bool(api_key and api_secret), testnet)

    def is_ready(self) -> bool:
        return self._client is not None and self._has_credentials

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    async def get_historical_bars(self, symbol: str, interval: str, limit: int = 500) -> pd.DataFrame:
        raw = await self._client.futures_klines(symbol=symbol, interval=interval, limit=limit)
        # the last kline is still forming; keep closed bars only
        return klines_to_frame(raw[:-1] if len(raw) > 1 else raw)

    @retry_on_rate_limit(max_retries=3)
    async def get_current_price(self, symbol: str) -> float:
        ticker = await self._client.futures_symbol_ticker(symbol=symbol)
        return float(ticker["price"])

    @retry_on_rate_limit(max_retries=3)
    async def get_account_balances(self) -> List[Balance]:
        rows = await self._client.futures_account_balance()
        balances = []
        for row in rows:
            total = float(row.get("balance", 0.0))
            free = float(row.get("availableBalance", total))
            balances.append(Balance(asset=row["asset"], free=free, locked=max(total - free, 0.0)))
        return balances

    @retry_on_rate_limit(max_retries=2)
    async def get_symbol_filters(self, symbol: str) -> SymbolFilters:
        if symbol not in self._filters_cache:
            info = await self._client.futures_exchange_info()
            symbol_info = next((s for s in info.get("symbols", []) if s.get("symbol") == symbol), None)
            self._filters_cache[symbol] = parse_symbol_filters(symbol_info)
        return self._filters_cache[symbol]

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        try:
            await self._client.futures_change_leverage(symbol=symbol, leverage=leverage)
            logger.info("Leverage set to %sx for %s", leverage, symbol)
        except BinanceAPIException as e:
            logger.warning("Could not set leverage: %s", e)

    async def submit_order(self, request: OrderRequest) -> OrderResult:
        filters = await self.get_symbol_filters(request.symbol)
        qty = round_quantity(request.quantity, filters.min_qty, filters.lot_step)
        if qty <= 0:
            raise OrderExecutionError(
                f"Quantity {request.quantity} below minimum {filters.min_qty}",
                symbol=request.symbol, side=request.side.value,
            )
        params: Dict[str, Any] = {
            "symbol": request.symbol,
            "side": request.side.value,
            "type": request.type,
            "quantity": str(qty),
        }
        if request.price is not None:
            params["price"] = str(round_price(request.price, filters.price_tick))
            params["timeInForce"] = request.time_in_force or "GTC"
        if request.stop_price is not None:
            params["stopPrice"] = str(round_price(request.stop_price, filters.price_tick))
        if request.reduce_only:
            params["reduceOnly"] = "true"
        try:
            res = await self._place(params)
        except (BinanceAPIException, BinanceOrderException) as e:
            logger.error("Binance order error: %s", e)
            raise OrderExecutionError(str(e), symbol=request.symbol, side=request.side.value) from e
        avg = float(res.get("avgPrice") or 0.0) or float(res.get("price") or 0.0) or None
        executed = float(res.get("executedQty") or 0.0) or qty
        return OrderResult(success=True, order_id=str(res.get("orderId")), avg_price=avg, quantity=executed)

    @retry_on_rate_limit(max_retries=2)
    async def _place(self, params: Dict[str, Any]) -> dict:
        return await self._client.futures_create_order(**params)

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        try:
            await self._client.futures_cancel_order(symbol=symbol, orderId=order_id)
        except BinanceAPIException as e:
            raise OrderExecutionError(str(e), symbol=symbol) from e

    async def cancel_all_orders(self, symbol: str) -> None:
        try:
            await self._client.futures_cancel_all_open_orders(symbol=symbol)
        except BinanceAPIException as e:
            raise OrderExecutionError(str(e), symbol=symbol) from e

    def _stream(self, socket, handle: Callable[[dict], None]) -> Unsubscribe:
        async def reader() -> None:
            async with socket as stream:
                while True:
                    msg = await stream.recv()
                    if msg:
                        handle(msg)

        task = asyncio.create_task(reader())
        self._streams.append(task)

        def unsubscribe() -> None:
            task.cancel()
            if task in self._streams:
                self._streams.remove(task)

        return unsubscribe

    async def subscribe_to_price(self, symbol: str, callback: Callable[[float], Any]) -> Unsubscribe:
        bm = BinanceSocketManager(self._client)

        def handle(msg: dict) -> None:
            data = msg.get("data", msg)
            if "c" in data:
                callback(float(data["c"]))

        return self._stream(bm.symbol_ticker_futures_socket(symbol), handle)

    async def subscribe_to_bars(self, symbol: str, interval: str, callback: Callable[[Bar], Any]) -> Unsubscribe:
        bm = BinanceSocketManager(self._client)

        def handle(msg: dict) -> None:
            k = msg.get("data", msg).get("k")
            if k and k.get("x"):
                callback(_kline_to_bar(k))

        return self._stream(bm.kline_futures_socket(symbol, interval), handle)

    async def close(self) -> None:
        for task in self._streams:
            task.cancel()
        self._streams.clear()
        if self._client is not None:
            await self._client.close_connection()
