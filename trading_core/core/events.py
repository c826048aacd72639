"""
Typed publish/subscribe: one channel per event kind.
Delivery is synchronous and follows emission order.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Generic, List, TypeVar

from trading_core.core.types import BotStatus, LogEntry, Position, Signal, StrategyConfig, Trade

logger = logging.getLogger("trading_core.events")

T = TypeVar("T")


@dataclass(frozen=True)
class PositionClosed:
    position: Position
    trade: Trade


@dataclass(frozen=True)
class StrategyUpdate:
    config: StrategyConfig
    reason: str


class Channel(Generic[T]):
    """Many subscribers, one payload type."""

    def __init__(self, name: str):
        self.name = name
        self._subscribers: List[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register callback; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, payload: T) -> None:
        for callback in list(self._subscribers):
            try:
                callback(payload)
            except Exception:
                # subscriber errors are logged; delivery continues
                logger.exception("Subscriber of '%s' raised", self.name)

    def __len__(self) -> int:
        return len(self._subscribers)


class EventBus:
    """All channels published by the orchestrator."""

    def __init__(self) -> None:
        self.status_change: Channel[BotStatus] = Channel("statusChange")
        self.signal: Channel[Signal] = Channel("signal")
        self.log: Channel[LogEntry] = Channel("log")
        self.position_opened: Channel[Position] = Channel("positionOpened")
        self.position_closed: Channel[PositionClosed] = Channel("positionClosed")
        self.strategy_updated: Channel[StrategyUpdate] = Channel("strategyUpdated")
