"""Tests for pinetrade.strategy.parser — rule extraction and defaulting."""

import pytest

from pinetrade.strategy.models import EntryType, MAType, StrategyConfig
from pinetrade.strategy.parser import (
    RULES,
    extract_cross_direction,
    extract_fast_period,
    extract_ma_type,
    extract_rsi,
    extract_stop_loss_pct,
    parse_strategy,
)


_EMA_CROSS_SCRIPT = """
//@version=5
strategy("EMA Cross", overlay=true)
fastLength = input.int(9, "Fast")
slowLength = input.int(21, "Slow")
stopLossPercent = input.float(1.5, "SL %")
takeProfitPercent = input.float(3.0, "TP %")
fastMA = ta.ema(close, fastLength)
slowMA = ta.ema(close, slowLength)
if ta.crossover(fastMA, slowMA)
    strategy.entry("Long", strategy.long)
"""

_RSI_SCRIPT = """
rsiLength = input.int(14)
overbought = input.int(80)
oversold = 20
r = ta.rsi(close, rsiLength)
if ta.crossover(r, oversold)
    strategy.entry("Long", strategy.long)
"""


class TestDefaults:
    @pytest.mark.parametrize("text", [None, "", "plot(close)", "// nothing here"])
    def test_unrecognised_text_yields_defaults(self, text):
        assert parse_strategy(text) == StrategyConfig()

    def test_documented_default_values(self):
        cfg = parse_strategy("")
        assert cfg.entry_type is EntryType.MA_CROSSOVER
        assert cfg.fast_period == 12
        assert cfg.slow_period == 26
        assert cfg.ma_type is MAType.EMA
        assert cfg.stop_loss_pct == 2.0
        assert cfg.take_profit_pct == 4.0
        assert cfg.rsi_period is None


class TestOverrides:
    def test_full_ema_cross_script(self):
        cfg = parse_strategy(_EMA_CROSS_SCRIPT)
        assert cfg.fast_period == 9
        assert cfg.slow_period == 21
        assert cfg.stop_loss_pct == 1.5
        assert cfg.take_profit_pct == 3.0
        assert cfg.ma_type is MAType.EMA
        assert cfg.entry_type is EntryType.MA_CROSSOVER

    def test_subset_only_overrides_found_fields(self):
        cfg = parse_strategy("slowPeriod = 50")
        assert cfg == StrategyConfig(slow_period=50)

    def test_bare_assignment_and_case_insensitive(self):
        cfg = parse_strategy("FASTMA = 5\nstop_loss_pct = 0.75\ntake_profit = 9")
        assert cfg.fast_period == 5
        assert cfg.stop_loss_pct == 0.75
        assert cfg.take_profit_pct == 9.0

    def test_sma_detected(self):
        cfg = parse_strategy("f = ta.sma(close, 10)")
        assert cfg.ma_type is MAType.SMA

    def test_crossunder_sets_entry_type(self):
        cfg = parse_strategy("if ta.crossunder(fast, slow)")
        assert cfg.entry_type is EntryType.MA_CROSSUNDER

    def test_crossunder_wins_over_crossover(self):
        cfg = parse_strategy("ta.crossover(a, b)\nta.crossunder(a, b)")
        assert cfg.entry_type is EntryType.MA_CROSSUNDER


class TestRSIExtraction:
    def test_rsi_script(self):
        cfg = parse_strategy(_RSI_SCRIPT)
        assert cfg.entry_type is EntryType.RSI
        assert cfg.rsi_period == 14
        assert cfg.rsi_overbought == 80
        assert cfg.rsi_oversold == 20

    def test_rsi_threshold_defaults(self):
        cfg = parse_strategy("rsiPeriod = 7")
        assert cfg.rsi_period == 7
        assert cfg.rsi_overbought == 70
        assert cfg.rsi_oversold == 30

    def test_rsi_forces_entry_type_over_crossunder(self):
        cfg = parse_strategy("rsiLength = 14\nta.crossunder(r, 70)")
        assert cfg.entry_type is EntryType.RSI


class TestRules:
    """Each rule is independently testable and reports (found, value)."""

    def test_rule_names_are_unique(self):
        names = [r.name for r in RULES]
        assert len(names) == len(set(names))

    def test_fast_period_found(self):
        m = extract_fast_period("fastLength = input.int(7)")
        assert m.found is True
        assert m.value == 7

    def test_fast_period_missing(self):
        assert extract_fast_period("slowLength = 7").found is False

    def test_zero_period_is_ignored(self):
        assert extract_fast_period("fastLength = 0").found is False
        assert parse_strategy("fastLength = 0").fast_period == 12

    def test_negative_percentage_is_ignored(self):
        assert extract_stop_loss_pct("stopLoss = -1").found is False
        assert parse_strategy("stopLoss = -1").stop_loss_pct == 2.0

    def test_ma_type_rule(self):
        assert extract_ma_type("sma(close, 5)").value is MAType.SMA
        assert extract_ma_type("ta.ema(close, 5)").found is False

    def test_cross_direction_rule(self):
        assert extract_cross_direction("nothing").found is False
        assert extract_cross_direction("crossover").value is EntryType.MA_CROSSOVER

    def test_rsi_rule(self):
        m = extract_rsi("rsiLength = input.int(10)\noversold = 25")
        assert m.found is True
        assert m.value == (10, 70.0, 25.0)
