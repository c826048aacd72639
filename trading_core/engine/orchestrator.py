"""
Trading orchestrator: owns the running state, drives one analysis cycle per timeframe
interval and routes signals into the position lifecycle.

At most one cycle is in flight. A tick that arrives while a cycle is still running is
skipped. stop() bumps a generation counter; a cycle from an older generation stops at
its next suspension point without touching positions or trades.
"""

from __future__ import annotations
import asyncio
import logging
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from trading_core.adaptive.selector import AdaptiveStrategySelector
from trading_core.core.config import merge_config, validate_strategy_config
from trading_core.core.errors import ConfigurationError, DataInsufficientError
from trading_core.core.events import EventBus, StrategyUpdate
from trading_core.core.logger import to_logging_level
from trading_core.core.types import BotStatus, LogEntry, Position, Signal, StrategyConfig, Trade
from trading_core.execution.base import ExchangeClient
from trading_core.positions.lifecycle import PositionLifecycleManager
from trading_core.strategies import BaseStrategy, get_strategy
from trading_core.utils.timeframes import timeframe_seconds

logger = logging.getLogger("trading_core.engine")

LIVE_BARS = 500
LOG_CAPACITY = 500
ERROR_CAPACITY = 50


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TradingOrchestrator:
    """
    Stopped -> Running -> Stopped. Symbols are processed in configured order each cycle;
    a failure on one symbol is logged and the cycle moves on to the next.
    """

    def __init__(
        self,
        config: StrategyConfig,
        exchange: ExchangeClient,
        selector: Optional[AdaptiveStrategySelector] = None,
        adaptive_mode: bool = False,
        events: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
        bars_per_fetch: int = LIVE_BARS,
    ):
        self.exchange = exchange
        self.events = events or EventBus()
        self._clock = clock or _utc_now
        self._config = config
        self._strategy: Optional[BaseStrategy] = None
        self._selector = selector
        self._adaptive_mode = adaptive_mode
        self._force_reoptimize = False
        self.bars_per_fetch = bars_per_fetch

        self._running = False
        self._generation = 0
        self._cycle_generation: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._start_time: Optional[datetime] = None
        self._cycle_count = 0

        self._logs: deque[LogEntry] = deque(maxlen=LOG_CAPACITY)
        self._errors: deque[str] = deque(maxlen=ERROR_CAPACITY)
        self._latest_signals: Dict[str, Signal] = {}
        self._last_signal_time: Optional[datetime] = None

        self.lifecycle = PositionLifecycleManager(exchange, self.events, log=self._log, clock=self._clock)

    # -- state -----------------------------------------------------------------

    @property
    def config(self) -> StrategyConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_generation == self._generation

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    def _log(self, level: str, message: str, data: Any = None) -> None:
        entry = LogEntry(timestamp=self._clock(), level=level, message=message, data=data)
        self._logs.append(entry)
        if level == "ERROR":
            self._errors.append(message)
        logger.log(to_logging_level(level), message)
        self.events.log.publish(entry)

    def get_status(self) -> BotStatus:
        uptime = None
        if self._running and self._start_time is not None:
            uptime = (self._clock() - self._start_time).total_seconds()
        return BotStatus(
            is_running=self._running,
            start_time=self._start_time,
            uptime_seconds=uptime,
            active_positions=self.lifecycle.book.open_count,
            total_trades=len(self.lifecycle.book.trades),
            current_pnl=self.lifecycle.book.realized_pnl(),
            errors=list(self._errors),
            last_signal_time=self._last_signal_time,
        )

    def _emit_status(self) -> None:
        self.events.status_change.publish(self.get_status())

    def get_logs(self, limit: Optional[int] = None) -> List[LogEntry]:
        logs = list(self._logs)
        return logs[-limit:] if limit else logs

    def get_active_positions(self) -> List[Position]:
        return self.lifecycle.book.positions

    def get_trade_history(self) -> List[Trade]:
        return self.lifecycle.book.trades

    def latest_signal(self, symbol: str) -> Optional[Signal]:
        return self._latest_signals.get(symbol)

    # -- lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """
        Raises ConfigurationError when the exchange is not ready or the config is invalid.
        Runs one cycle immediately, then one per timeframe interval.
        """
        if self._running:
            self._log("WARNING", "Trading engine is already running")
            return
        if not self.exchange.is_ready():
            raise ConfigurationError("Exchange client is not ready (missing or invalid API credentials)")
        validate_strategy_config(self._config)
        self._strategy = get_strategy(self._config.name)

        self._running = True
        self._generation += 1
        self._start_time = self._clock()
        generation = self._generation
        self._log("SUCCESS", f"Trading engine started: {self._config.name} on {', '.join(self._config.symbols)} "
                             f"({self._config.timeframe})")
        self._emit_status()

        await self.run_cycle()
        if self._running and self._generation == generation:
            self._task = asyncio.create_task(self._schedule(generation))

    def stop(self) -> None:
        """Cancel the schedule. Idempotent: stopping a stopped engine only logs a warning."""
        if not self._running:
            self._log("WARNING", "Trading engine is not running")
            return
        self._running = False
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._log("INFO", "Trading engine stopped")
        self._emit_status()

    async def _schedule(self, generation: int) -> None:
        while self._running and self._generation == generation:
            # Re-read each tick so a timeframe change via update_config takes effect
            await asyncio.sleep(timeframe_seconds(self._config.timeframe))
            if not (self._running and self._generation == generation):
                break
            try:
                await self.run_cycle()
            except Exception as e:
                logger.exception("Cycle error")
                self._log("ERROR", f"Cycle error: {e}")

    async def run_cycle(self) -> bool:
        """Analyze every configured symbol once. Returns False if the cycle was skipped."""
        if not self._running:
            return False
        if self._cycle_generation == self._generation:
            self._log("WARNING", "Previous analysis cycle still running; skipping this tick")
            return False
        generation = self._generation

        def is_alive() -> bool:
            return self._running and self._generation == generation

        self._cycle_generation = generation
        try:
            self._cycle_count += 1
            if self._adaptive_mode and self._selector is not None:
                await self._maybe_reoptimize(is_alive)
            for symbol in self._config.symbols:
                if not is_alive():
                    break
                await self._analyze_symbol(symbol, is_alive)
            if is_alive():
                self._emit_status()
        finally:
            # only the owning generation clears the guard
            if self._cycle_generation == generation:
                self._cycle_generation = None
        return True

    async def _analyze_symbol(self, symbol: str, is_alive: Callable[[], bool]) -> None:
        config = self._config
        strategy = self._strategy or get_strategy(config.name)
        try:
            df = await self.exchange.get_historical_bars(symbol, config.timeframe, self.bars_per_fetch)
        except Exception as e:
            self._log("ERROR", f"Failed to fetch bars for {symbol}: {e}")
            return
        if not is_alive():
            return

        try:
            signal = strategy.generate_signal(df, config, symbol)
        except DataInsufficientError as e:
            self._log("WARNING", f"Insufficient data, skipping {symbol}: {e}")
            return
        except Exception as e:
            logger.exception("Signal generation failed for %s", symbol)
            self._log("ERROR", f"Signal generation failed for {symbol}: {e}")
            return

        self._latest_signals[symbol] = signal
        self._last_signal_time = self._clock()
        self._log(
            "INFO",
            f"{symbol}: {signal.strength.value} (confidence {signal.confidence:.0f}%)",
            data=list(signal.reasons),
        )
        self.events.signal.publish(signal)

        low = float(df["low"].iloc[-1])
        high = float(df["high"].iloc[-1])
        try:
            await self.lifecycle.process(signal, low, high, config, strategy, is_alive)
        except Exception as e:
            logger.exception("Position handling failed for %s", symbol)
            self._log("ERROR", f"Position handling failed for {symbol}: {e}")

    # -- adaptive --------------------------------------------------------------

    async def _maybe_reoptimize(self, is_alive: Callable[[], bool]) -> None:
        if not (self._force_reoptimize or self._selector.needs_reoptimization()):
            return
        config = self._config
        symbol = config.symbols[0]
        self._log("INFO", f"Re-optimizing strategy on {symbol}")
        try:
            selection = await self._selector.select_best_strategy(symbol, config.timeframe, force=self._force_reoptimize)
        except Exception as e:
            logger.exception("Adaptive re-optimization failed")
            self._log("ERROR", f"Adaptive re-optimization failed: {e}")
            return
        if not is_alive():
            return
        self._force_reoptimize = False

        # Symbols and risk limits stay; strategy name and indicator parameters may change
        updated = replace(config, name=selection.config.name, indicators=selection.config.indicators)
        if updated == config:
            self._log("INFO", f"Strategy unchanged: {config.name}")
            return
        self._config = updated
        self._strategy = get_strategy(updated.name)
        self._log("SUCCESS", f"Strategy updated: {config.name} -> {updated.name}", data=selection.reason)
        self.events.strategy_updated.publish(StrategyUpdate(updated, selection.reason))

    def set_adaptive_mode(self, enabled: bool) -> None:
        """Enabling forces a re-optimization on the next cycle."""
        if enabled and self._selector is None:
            self._selector = AdaptiveStrategySelector(self.exchange, base_config=self._config, clock=self._clock)
        self._adaptive_mode = enabled
        self._force_reoptimize = enabled
        self._log("INFO", f"Adaptive mode {'enabled' if enabled else 'disabled'}")

    def is_adaptive_mode_enabled(self) -> bool:
        return self._adaptive_mode

    def update_config(self, partial: Mapping[str, Any]) -> StrategyConfig:
        """Merge partial into the current config. Raises ConfigurationError on invalid fields."""
        updated = merge_config(self._config, partial)
        self._config = updated
        self._strategy = get_strategy(updated.name)
        self._log("INFO", "Strategy config updated", data=dict(partial))
        return updated
