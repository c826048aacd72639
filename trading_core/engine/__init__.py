"""Engine: the live trading orchestrator."""

from trading_core.engine.orchestrator import TradingOrchestrator

__all__ = ["TradingOrchestrator"]
