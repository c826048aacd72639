"""Unit tests for strategies.breakout."""

import pytest
from helpers import breakdown_frame, breakout_frame, make_frame, ranging_closes

from trading_core.core.types import SignalStrength, StrategyConfig
from trading_core.strategies import BreakoutStrategy, get_strategy
from trading_core.strategies.breakout import support_resistance
from trading_core.strategies.indicators import compute_indicator_frame

CONFIG = StrategyConfig(name="breakout")


def test_resistance_break_with_volume():
    df = breakout_frame(rising_bars=0)
    sig = BreakoutStrategy().generate_signal(df, CONFIG, "BTCUSDT")
    assert sig.strength is SignalStrength.STRONG_BUY
    assert sig.confidence >= 85
    assert sig.reasons[0].startswith("Resistance broken")


def test_support_break_with_volume():
    sig = BreakoutStrategy().generate_signal(breakdown_frame(), CONFIG, "BTCUSDT")
    assert sig.strength is SignalStrength.STRONG_SELL
    assert sig.confidence >= 85


def test_break_without_volume_is_neutral():
    closes = ranging_closes(240) + [102.0]
    sig = BreakoutStrategy().generate_signal(make_frame(closes, wick=0.3), CONFIG)
    assert sig.strength is SignalStrength.NEUTRAL
    assert sig.confidence == 50


def test_ranging_is_neutral():
    sig = BreakoutStrategy().generate_signal(make_frame(ranging_closes(250), wick=0.3), CONFIG)
    assert sig.strength is SignalStrength.NEUTRAL
    assert sig.confidence == 50
    assert sig.reasons[-1] == "Waiting for breakout"


def test_levels_exclude_current_bar():
    frame = compute_indicator_frame(breakout_frame(rising_bars=0))
    support, resistance = support_resistance(frame, len(frame) - 1)
    assert resistance == pytest.approx(100.5)
    assert support == pytest.approx(99.5)


def test_levels_first_row():
    frame = compute_indicator_frame(make_frame([100.0, 101.0]))
    assert support_resistance(frame, 0) == (100.0, 100.0)


def test_registry_lookup_is_case_insensitive():
    assert isinstance(get_strategy(" Breakout "), BreakoutStrategy)
