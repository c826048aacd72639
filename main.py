#!/usr/bin/env python3
"""
Trading core CLI: backtest | optimize | walk-forward | regime | live
Usage:
  python main.py backtest [--config config.yaml] [--csv bars.csv] [--strategy breakout]
  python main.py optimize [--config config.yaml] [--csv bars.csv]
  python main.py walk-forward [--train-days 60] [--test-days 30]
  python main.py regime [--symbol ETHUSDT]
  python main.py live [--config config.yaml] [--adaptive]
"""

from __future__ import annotations
import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Optional

import pandas as pd

# Project root
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trading_core.adaptive import AdaptiveStrategySelector, classify_regime
from trading_core.backtesting import BacktestEngine, grid_search, walk_forward
from trading_core.core.config import Config, load_config
from trading_core.core.errors import TradingError
from trading_core.core.logger import setup_logging
from trading_core.core.types import BacktestResult, StrategyConfig
from trading_core.engine import TradingOrchestrator
from trading_core.execution import BinanceFuturesClient
from trading_core.risk import capped_leverage
from trading_core.strategies import get_strategy
from trading_core.utils.telegram import TelegramNotifier
from trading_core.utils.timeframes import bars_for_days

logger = logging.getLogger("trading_core")

MAX_HISTORY_BARS = 1500


def print_result(result: BacktestResult) -> None:
    s = result.stats
    print("\n--- Backtest Results ---")
    print(f"Strategy: {result.strategy} | {result.start_time} -> {result.end_time}")
    print(f"Balance: {result.initial_balance:.2f} -> {result.final_balance:.2f}")
    print(f"Total trades: {s.total_trades} (wins: {s.winning_trades}, losses: {s.losing_trades})")
    print(f"Total return: {result.total_return_pct:.2f}%")
    print(f"Sharpe ratio: {s.sharpe_ratio:.2f}")
    print(f"Max drawdown: {s.max_drawdown:.2f}%")
    print(f"Win rate: {s.win_rate:.1f}%")
    print(f"Profit factor: {s.profit_factor:.2f}")


def read_bars_csv(path: Path) -> pd.DataFrame:
    """CSV with columns time, open, high, low, close, volume (time as ISO string or epoch ms)."""
    df = pd.read_csv(path)
    if pd.api.types.is_numeric_dtype(df["time"]):
        df["time"] = pd.to_datetime(df["time"], unit="ms", utc=True)
    else:
        df["time"] = pd.to_datetime(df["time"], utc=True)
    return df


async def load_history(config: Config, symbol: str, days: int, csv: Optional[Path]) -> pd.DataFrame:
    if csv is not None:
        return read_bars_csv(csv)
    # public klines need no API keys
    client = await BinanceFuturesClient.create(config.binance_api_key, config.binance_api_secret, config.use_testnet)
    try:
        limit = bars_for_days(config.timeframe, days, max_bars=MAX_HISTORY_BARS)
        return await client.get_historical_bars(symbol, config.timeframe, limit)
    finally:
        await client.close()


def strategy_config(config: Config, args: argparse.Namespace) -> StrategyConfig:
    sc = config.strategy_config()
    if getattr(args, "strategy", None):
        sc = replace(sc, name=args.strategy)
    if getattr(args, "symbol", None):
        sc = replace(sc, symbols=(args.symbol.upper(),))
    return sc


async def run_backtest(config: Config, args: argparse.Namespace) -> int:
    sc = strategy_config(config, args)
    df = await load_history(config, sc.symbols[0], args.days or config.backtest_days, args.csv)
    engine = BacktestEngine(get_strategy(sc.name), fee_bps=config.fee_bps, slippage_bps=config.slippage_bps)
    print_result(engine.run(df, sc, config.backtest_initial_capital))
    return 0


async def run_optimize(config: Config, args: argparse.Namespace) -> int:
    sc = strategy_config(config, args)
    df = await load_history(config, sc.symbols[0], args.days or config.lookback_days, args.csv)
    engine = BacktestEngine(get_strategy(sc.name), fee_bps=config.fee_bps, slippage_bps=config.slippage_bps)
    opt = grid_search(
        df, sc.name, base_config=sc, initial_balance=config.backtest_initial_capital,
        max_combinations=args.max_combinations, engine=engine,
    )
    print(f"\nTested {len(opt.all_results)} combinations{' (truncated)' if opt.truncated else ''}")
    print(f"Best parameters: {opt.best_params}")
    print_result(opt.best_result)
    return 0


async def run_walk_forward(config: Config, args: argparse.Namespace) -> int:
    sc = strategy_config(config, args)
    days = args.days or (args.train_days + args.test_days * 3)
    df = await load_history(config, sc.symbols[0], days, args.csv)
    wf = walk_forward(
        df, sc.name, config.timeframe, args.train_days, args.test_days,
        base_config=sc, initial_balance=config.backtest_initial_capital,
    )
    for n, step in enumerate(wf.steps, start=1):
        print(f"Window {n}: return {step.result.total_return_pct:.2f}%, Sharpe {step.result.stats.sharpe_ratio:.2f}")
    print(f"\n{len(wf.steps)} windows | avg return {wf.avg_return:.2f}% | avg Sharpe {wf.avg_sharpe:.2f}")
    return 0


async def run_regime(config: Config, args: argparse.Namespace) -> int:
    sc = strategy_config(config, args)
    df = await load_history(config, sc.symbols[0], args.days or 30, args.csv)
    analysis = classify_regime(df)
    print(f"{sc.symbols[0]} {config.timeframe}: {analysis.regime.value} (confidence {analysis.confidence:.0f}%)")
    print(analysis.recommendation)
    return 0


async def run_live(config: Config, args: argparse.Namespace) -> int:
    if not config.has_credentials:
        logger.error("Missing BINANCE_API_KEY or BINANCE_API_SECRET in .env")
        return 1
    sc = strategy_config(config, args)
    client = await BinanceFuturesClient.create(config.binance_api_key, config.binance_api_secret, config.use_testnet)
    try:
        for symbol in sc.symbols:
            await client.set_leverage(symbol, capped_leverage(config.leverage, sc.risk))
        selector = AdaptiveStrategySelector(
            client, base_config=sc, lookback_days=config.lookback_days,
            reoptimization_interval=timedelta(hours=config.reoptimization_hours),
        )
        orchestrator = TradingOrchestrator(
            sc, client, selector=selector, adaptive_mode=args.adaptive or config.adaptive_mode,
        )
        TelegramNotifier(config.telegram_bot_token, config.telegram_chat_id).attach(orchestrator.events)

        stopped = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stopped.set)
            except NotImplementedError:
                pass
        await orchestrator.start()
        try:
            await stopped.wait()
        finally:
            logger.info("Shutdown requested")
            orchestrator.stop()
    finally:
        await client.close()
    return 0


COMMANDS = {
    "backtest": run_backtest,
    "optimize": run_optimize,
    "walk-forward": run_walk_forward,
    "regime": run_regime,
    "live": run_live,
}


def main() -> int:
    parser = argparse.ArgumentParser(description="Trading core CLI")
    parser.add_argument("mode", choices=list(COMMANDS), help="Command to run")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--csv", type=Path, default=None, help="Read bars from CSV instead of Binance")
    parser.add_argument("--strategy", default=None, help="Override strategy name")
    parser.add_argument("--symbol", default=None, help="Override symbol (first configured otherwise)")
    parser.add_argument("--days", type=int, default=None, help="History length in days")
    parser.add_argument("--max-combinations", type=int, default=None, help="Cap grid search size")
    parser.add_argument("--train-days", type=int, default=60, help="Walk-forward optimization window")
    parser.add_argument("--test-days", type=int, default=30, help="Walk-forward test window")
    parser.add_argument("--adaptive", action="store_true", help="Live: enable adaptive strategy selection")
    args = parser.parse_args()

    config = load_config(args.config, ROOT)
    setup_logging(config.log_level, config.log_dir, config.log_file)
    try:
        return asyncio.run(COMMANDS[args.mode](config, args))
    except TradingError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
