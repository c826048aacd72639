"""Telegram notifications. Never log token or chat_id."""

from __future__ import annotations
import asyncio
import logging
from typing import Callable, List, Optional

import requests

from trading_core.core.events import EventBus, PositionClosed, StrategyUpdate
from trading_core.core.types import BotStatus, Position

logger = logging.getLogger("trading_core.utils.telegram")


def send_telegram(text: str, bot_token: str = "", chat_id: str = "") -> bool:
    """Send message to Telegram. Returns True on success, False if not configured or on error."""
    if not bot_token or not chat_id:
        logger.debug("Telegram not configured, skipping message (len=%d)", len(text))
        return False
    try:
        url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        r = requests.post(url, json={"chat_id": chat_id, "text": text}, timeout=10)
        if r.status_code != 200:
            logger.warning("Telegram send failed: %s %s", r.status_code, r.text[:200])
            return False
        return True
    except requests.RequestException as e:
        logger.warning("Telegram error: %s", type(e).__name__)
        return False


def format_position_opened(position: Position) -> str:
    text = f"Opened {position.side.value} {position.symbol} @ {position.entry_price:.6g} | Qty: {position.quantity:.6g}"
    if position.stop_loss is not None and position.take_profit is not None:
        text += f"\nSL: {position.stop_loss:.6g} | TP: {position.take_profit:.6g}"
    return text


def format_position_closed(event: PositionClosed) -> str:
    trade = event.trade
    pnl = trade.pnl or 0.0
    return (
        f"Closed {event.position.side.value} {event.position.symbol} @ {trade.price:.6g} ({trade.reason})\n"
        f"PnL: {pnl:+.2f} USDT ({trade.pnl_pct or 0.0:+.2f}%)"
    )


class TelegramNotifier:
    """Subscribes to the event bus and forwards trading events to a Telegram chat."""

    def __init__(self, bot_token: str, chat_id: str, sender: Callable[[str, str, str], bool] = send_telegram):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self._sender = sender
        self._was_running: Optional[bool] = None
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def notify(self, text: str) -> None:
        if not self.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._sender(text, self.bot_token, self.chat_id)
            return
        # blocking HTTP call goes to the default executor
        loop.run_in_executor(None, self._sender, text, self.bot_token, self.chat_id)

    def attach(self, events: EventBus) -> None:
        self._unsubscribers += [
            events.position_opened.subscribe(self.on_position_opened),
            events.position_closed.subscribe(self.on_position_closed),
            events.status_change.subscribe(self.on_status),
            events.strategy_updated.subscribe(self.on_strategy_updated),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def on_position_opened(self, position: Position) -> None:
        self.notify(format_position_opened(position))

    def on_position_closed(self, event: PositionClosed) -> None:
        self.notify(format_position_closed(event))

    def on_status(self, status: BotStatus) -> None:
        if status.is_running != self._was_running:
            self.notify("Trading engine started" if status.is_running else
                        f"Trading engine stopped | trades: {status.total_trades} | PnL: {status.current_pnl:+.2f}")
        self._was_running = status.is_running

    def on_strategy_updated(self, update: StrategyUpdate) -> None:
        self.notify(f"Strategy switched to {update.config.name}\n{update.reason}")
