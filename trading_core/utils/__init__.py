"""Utils: Telegram, timeframes, exchange filters."""

from trading_core.utils.telegram import TelegramNotifier, send_telegram
from trading_core.utils.timeframes import bars_for_days, timeframe_minutes, timeframe_seconds

__all__ = ["TelegramNotifier", "send_telegram", "bars_for_days", "timeframe_minutes", "timeframe_seconds"]
