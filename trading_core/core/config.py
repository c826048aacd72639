"""
Load configuration from config.yaml and .env. API keys only from env.
"""

from __future__ import annotations
import os
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from trading_core.core.errors import ConfigurationError
from trading_core.core.types import IndicatorParams, RiskManagementConfig, StrategyConfig


def _env_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path(__file__).resolve().parents[2]
    return root / ".env"


def load_dotenv_if_exists(project_root: Optional[Path] = None) -> None:
    """Load .env from project root if present."""
    path = _env_path(project_root)
    if path.exists():
        load_dotenv(path)


def _symbols(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    return tuple(s.strip().upper() for s in value or () if s and s.strip())


def load_config(config_path: Optional[Path] = None, project_root: Optional[Path] = None) -> "Config":
    """Load config.yaml and overlay with env."""
    load_dotenv_if_exists(project_root)
    root = project_root or Path(__file__).resolve().parents[2]
    path = config_path or root / "config.yaml"
    data: dict[str, Any] = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    def env(key: str, default: str = "") -> str:
        return os.getenv(key, default).strip()

    def env_bool(key: str, default: bool = False) -> bool:
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    def env_int(key: str, default: int = 0) -> int:
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_float(key: str, default: float = 0.0) -> float:
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    api = data.get("api", {})
    strategy = data.get("strategy", {})
    indicators = data.get("indicators", {})
    risk = data.get("risk", {})
    engine = data.get("engine", {})
    backtest = data.get("backtest", {})
    telegram = data.get("telegram", {})
    logging_cfg = data.get("logging", {})

    use_testnet = env_bool("USE_TESTNET", api.get("use_testnet", True))
    # Dedicated testnet/mainnet keys can live side by side in .env; USE_TESTNET picks one pair
    if use_testnet:
        binance_api_key = env("BINANCE_TESTNET_API_KEY") or env("BINANCE_API_KEY")
        binance_api_secret = env("BINANCE_TESTNET_API_SECRET") or env("BINANCE_API_SECRET")
    else:
        binance_api_key = env("BINANCE_MAINNET_API_KEY") or env("BINANCE_API_KEY")
        binance_api_secret = env("BINANCE_MAINNET_API_SECRET") or env("BINANCE_API_SECRET")

    return Config(
        binance_api_key=binance_api_key,
        binance_api_secret=binance_api_secret,
        use_testnet=use_testnet,
        leverage=env_int("LEVERAGE", api.get("leverage", 1)),
        # Strategy
        strategy_name=env("STRATEGY", strategy.get("name", "momentum")).lower(),
        symbols=_symbols(env("SYMBOLS") or strategy.get("symbols", ["BTCUSDT"])),
        timeframe=env("TIMEFRAME", strategy.get("timeframe", "1h")),
        allow_short=env_bool("ALLOW_SHORT", strategy.get("allow_short", False)),
        risk_per_trade_pct=env_float("RISK_PER_TRADE_PCT", strategy.get("risk_per_trade_pct", 2.0)),
        # Indicators
        rsi_period=int(indicators.get("rsi_period", 14)),
        rsi_overbought=float(indicators.get("rsi_overbought", 70)),
        rsi_oversold=float(indicators.get("rsi_oversold", 30)),
        macd_fast=int(indicators.get("macd_fast", 12)),
        macd_slow=int(indicators.get("macd_slow", 26)),
        macd_signal=int(indicators.get("macd_signal", 9)),
        bollinger_period=int(indicators.get("bollinger_period", 20)),
        bollinger_std=float(indicators.get("bollinger_std", 2.0)),
        atr_period=int(indicators.get("atr_period", 14)),
        # Risk
        max_position_size_pct=env_float("MAX_POSITION_SIZE_PCT", risk.get("max_position_size_pct", 5.0)),
        max_leverage=int(risk.get("max_leverage", 3)),
        stop_loss_pct=float(risk.get("stop_loss_pct", 2.0)),
        take_profit_pct=float(risk.get("take_profit_pct", 6.0)),
        max_daily_loss=env_float("MAX_DAILY_LOSS", risk.get("max_daily_loss", 100.0)),
        max_open_positions=env_int("MAX_OPEN_POSITIONS", risk.get("max_open_positions", 5)),
        min_risk_reward=env_float("MIN_RISK_REWARD", risk.get("min_risk_reward", 3.0)),
        # Engine
        adaptive_mode=env_bool("ADAPTIVE_MODE", engine.get("adaptive_mode", False)),
        reoptimization_hours=float(engine.get("reoptimization_hours", 24)),
        lookback_days=int(engine.get("lookback_days", 90)),
        # Backtest
        backtest_initial_capital=float(backtest.get("initial_capital", 10000.0)),
        backtest_days=int(backtest.get("days", 90)),
        fee_bps=env_float("FEE_BPS", backtest.get("fee_bps", 10.0)),
        slippage_bps=env_float("SLIPPAGE_BPS", backtest.get("slippage_bps", 0.0)),
        # Telegram
        telegram_bot_token=env("TELEGRAM_BOT_TOKEN", telegram.get("bot_token", "")),
        telegram_chat_id=env("TELEGRAM_CHAT_ID", telegram.get("chat_id", "")),
        # Logging
        log_level=logging_cfg.get("level", "INFO"),
        log_dir=Path(logging_cfg.get("log_dir", "logs")),
        log_file=logging_cfg.get("log_file", "trading_core.log"),
    )


class Config:
    """Unified configuration. Immutable after load."""

    __slots__ = (
        "binance_api_key", "binance_api_secret", "use_testnet", "leverage",
        "strategy_name", "symbols", "timeframe", "allow_short", "risk_per_trade_pct",
        "rsi_period", "rsi_overbought", "rsi_oversold", "macd_fast", "macd_slow", "macd_signal",
        "bollinger_period", "bollinger_std", "atr_period",
        "max_position_size_pct", "max_leverage", "stop_loss_pct", "take_profit_pct",
        "max_daily_loss", "max_open_positions", "min_risk_reward",
        "adaptive_mode", "reoptimization_hours", "lookback_days",
        "backtest_initial_capital", "backtest_days", "fee_bps", "slippage_bps",
        "telegram_bot_token", "telegram_chat_id",
        "log_level", "log_dir", "log_file",
    )

    def __init__(
        self,
        binance_api_key: str = "",
        binance_api_secret: str = "",
        use_testnet: bool = True,
        leverage: int = 1,
        strategy_name: str = "momentum",
        symbols: Tuple[str, ...] = ("BTCUSDT",),
        timeframe: str = "1h",
        allow_short: bool = False,
        risk_per_trade_pct: float = 2.0,
        rsi_period: int = 14,
        rsi_overbought: float = 70.0,
        rsi_oversold: float = 30.0,
        macd_fast: int = 12,
        macd_slow: int = 26,
        macd_signal: int = 9,
        bollinger_period: int = 20,
        bollinger_std: float = 2.0,
        atr_period: int = 14,
        max_position_size_pct: float = 5.0,
        max_leverage: int = 3,
        stop_loss_pct: float = 2.0,
        take_profit_pct: float = 6.0,
        max_daily_loss: float = 100.0,
        max_open_positions: int = 5,
        min_risk_reward: float = 3.0,
        adaptive_mode: bool = False,
        reoptimization_hours: float = 24.0,
        lookback_days: int = 90,
        backtest_initial_capital: float = 10000.0,
        backtest_days: int = 90,
        fee_bps: float = 10.0,
        slippage_bps: float = 0.0,
        telegram_bot_token: str = "",
        telegram_chat_id: str = "",
        log_level: str = "INFO",
        log_dir: Path = None,
        log_file: str = "trading_core.log",
    ):
        self.binance_api_key = binance_api_key
        self.binance_api_secret = binance_api_secret
        self.use_testnet = use_testnet
        self.leverage = leverage
        self.strategy_name = strategy_name
        self.symbols = tuple(symbols)
        self.timeframe = timeframe
        self.allow_short = allow_short
        self.risk_per_trade_pct = risk_per_trade_pct
        self.rsi_period = rsi_period
        self.rsi_overbought = rsi_overbought
        self.rsi_oversold = rsi_oversold
        self.macd_fast = macd_fast
        self.macd_slow = macd_slow
        self.macd_signal = macd_signal
        self.bollinger_period = bollinger_period
        self.bollinger_std = bollinger_std
        self.atr_period = atr_period
        self.max_position_size_pct = max_position_size_pct
        self.max_leverage = max_leverage
        self.stop_loss_pct = stop_loss_pct
        self.take_profit_pct = take_profit_pct
        self.max_daily_loss = max_daily_loss
        self.max_open_positions = max_open_positions
        self.min_risk_reward = min_risk_reward
        self.adaptive_mode = adaptive_mode
        self.reoptimization_hours = reoptimization_hours
        self.lookback_days = lookback_days
        self.backtest_initial_capital = backtest_initial_capital
        self.backtest_days = backtest_days
        self.fee_bps = fee_bps
        self.slippage_bps = slippage_bps
        self.telegram_bot_token = telegram_bot_token
        self.telegram_chat_id = telegram_chat_id
        self.log_level = log_level
        self.log_dir = Path(log_dir) if log_dir else Path("logs")
        self.log_file = log_file

    @property
    def has_credentials(self) -> bool:
        return bool(self.binance_api_key and self.binance_api_secret)

    def strategy_config(self) -> StrategyConfig:
        """Immutable strategy config consumed by the engine, backtester and optimizer."""
        return StrategyConfig(
            name=self.strategy_name,
            symbols=self.symbols,
            timeframe=self.timeframe,
            indicators=IndicatorParams(
                rsi_period=self.rsi_period,
                rsi_overbought=self.rsi_overbought,
                rsi_oversold=self.rsi_oversold,
                macd_fast=self.macd_fast,
                macd_slow=self.macd_slow,
                macd_signal=self.macd_signal,
                bollinger_period=self.bollinger_period,
                bollinger_std=self.bollinger_std,
                atr_period=self.atr_period,
            ),
            risk=RiskManagementConfig(
                max_position_size_pct=self.max_position_size_pct,
                max_leverage=self.max_leverage,
                stop_loss_pct=self.stop_loss_pct,
                take_profit_pct=self.take_profit_pct,
                max_daily_loss=self.max_daily_loss,
                max_open_positions=self.max_open_positions,
                min_risk_reward=self.min_risk_reward,
            ),
            allow_short=self.allow_short,
            risk_per_trade_pct=self.risk_per_trade_pct,
        )


def _merge_dataclass(current, partial: Mapping[str, Any], section: str):
    known = {f.name for f in fields(current)}
    unknown = set(partial) - known
    if unknown:
        raise ConfigurationError(f"Unknown {section} fields: {', '.join(sorted(unknown))}")
    return replace(current, **partial)


def validate_strategy_config(config: StrategyConfig) -> None:
    """Required fields only: known strategy, at least one symbol, parseable timeframe."""
    from trading_core.strategies import STRATEGIES
    from trading_core.utils.timeframes import timeframe_minutes

    if config.name not in STRATEGIES:
        raise ConfigurationError(f"Unknown strategy '{config.name}'. Known: {', '.join(STRATEGIES)}")
    if not config.symbols:
        raise ConfigurationError("At least one symbol is required")
    try:
        timeframe_minutes(config.timeframe)
    except ValueError as e:
        raise ConfigurationError(str(e)) from None


def merge_config(config: StrategyConfig, partial: Mapping[str, Any]) -> StrategyConfig:
    """
    Return a new StrategyConfig with partial merged in. Nested 'indicators' and 'risk'
    dicts are merged field by field. Raises ConfigurationError on invalid required fields.
    """
    partial = dict(partial)
    indicators = partial.pop("indicators", None)
    risk = partial.pop("risk", None)
    if "symbols" in partial:
        partial["symbols"] = _symbols(partial["symbols"])
    if "name" in partial:
        partial["name"] = str(partial["name"]).strip().lower()

    merged = _merge_dataclass(config, partial, "strategy")
    if indicators:
        merged = replace(merged, indicators=_merge_dataclass(merged.indicators, indicators, "indicators"))
    if risk:
        merged = replace(merged, risk=_merge_dataclass(merged.risk, risk, "risk"))
    validate_strategy_config(merged)
    return merged
