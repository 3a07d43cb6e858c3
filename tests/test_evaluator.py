"""Deterministic tests for the signal evaluator.

All tests use fixed close/candle fixtures. Same input = same output, always.
"""

import pytest

from pinetrade.exchange.models import Candle
from pinetrade.strategy import evaluator
from pinetrade.strategy.evaluator import evaluate_closes, evaluate_signal
from pinetrade.strategy.models import EntryType, MAType, SignalType, StrategyConfig
from pinetrade.strategy.parser import parse_strategy


# ── Fixtures ─────────────────────────────────────────────────────────────


def _candles(closes: list[float]) -> list[Candle]:
    base = 1_736_496_000_000  # 2025-01-10T08:00:00Z
    return [
        Candle(
            open_time=base + i * 3_600_000,
            open=c, high=c, low=c, close=c, volume=1.0,
        )
        for i, c in enumerate(closes)
    ]


def _ema_cross_up() -> list[float]:
    """Flat at 100, a dip puts fast EMA below slow, the last bar jumps.

    idx38 (99):  fast 99.846 < slow 99.926
    idx39 (110): fast 101.408 > slow 100.672
    """
    return [100.0] * 38 + [99.0, 110.0]


def _ema_cross_down() -> list[float]:
    return [100.0] * 38 + [101.0, 90.0]


_DEFAULT = StrategyConfig()  # EMA 12/26, SL 2 %, TP 4 %


# ── Insufficient data ────────────────────────────────────────────────────


class TestInsufficientData:
    def test_short_history_is_none(self):
        sig = evaluate_closes(_DEFAULT, [100.0] * 27, 100.0)
        assert sig.type is SignalType.NONE
        assert sig.reason == "Insufficient data"
        assert sig.stop_loss == 0.0
        assert sig.take_profit == 0.0

    def test_empty_candles_never_raise(self):
        sig = evaluate_signal(_DEFAULT, [], 100.0)
        assert sig.type is SignalType.NONE

    def test_minimum_window_is_evaluable(self):
        sig = evaluate_closes(_DEFAULT, [100.0] * 28, 100.0)
        assert sig.reason == "No signal"


# ── MA crossover ─────────────────────────────────────────────────────────


class TestMACrossover:
    def test_scenario_buy_on_ema_crossover(self):
        """EMA 12/26 crossing up at the final two candles, price 100."""
        sig = evaluate_signal(_DEFAULT, _candles(_ema_cross_up()), 100.0)
        assert sig.type is SignalType.BUY
        assert sig.price == 100.0
        assert sig.stop_loss == pytest.approx(98.0)
        assert sig.take_profit == pytest.approx(104.0)
        assert "crossed above" in sig.reason

    def test_sell_on_ema_crossunder(self):
        sig = evaluate_closes(_DEFAULT, _ema_cross_down(), 100.0)
        assert sig.type is SignalType.SELL
        assert sig.stop_loss == pytest.approx(102.0)
        assert sig.take_profit == pytest.approx(96.0)

    def test_flat_series_is_none(self):
        sig = evaluate_closes(_DEFAULT, [100.0] * 40, 100.0)
        assert sig.type is SignalType.NONE

    def test_sma_crossover(self):
        cfg = StrategyConfig(fast_period=3, slow_period=5, ma_type=MAType.SMA)
        # prev: sma3 9.667 < sma5 9.8 ; last: sma3 13.0 > sma5 11.8
        sig = evaluate_closes(cfg, [10.0] * 8 + [9.0, 20.0], 20.0)
        assert sig.type is SignalType.BUY

    def test_deterministic(self):
        candles = _candles(_ema_cross_up())
        first = evaluate_signal(_DEFAULT, candles, 100.0)
        second = evaluate_signal(_DEFAULT, candles, 100.0)
        assert first == second


class TestMACrossunderEntry:
    def test_sides_are_swapped(self):
        cfg = StrategyConfig(entry_type=EntryType.MA_CROSSUNDER)
        assert evaluate_closes(cfg, _ema_cross_down(), 100.0).type is SignalType.BUY
        assert evaluate_closes(cfg, _ema_cross_up(), 100.0).type is SignalType.SELL

    def test_buy_uses_long_side_prices(self):
        cfg = StrategyConfig(entry_type=EntryType.MA_CROSSUNDER)
        sig = evaluate_closes(cfg, _ema_cross_down(), 50.0)
        assert sig.stop_loss == pytest.approx(49.0)
        assert sig.take_profit == pytest.approx(52.0)


# ── RSI ──────────────────────────────────────────────────────────────────


_RSI_CFG = parse_strategy("rsiLength = 2\noversold = 30\noverbought = 70")


class TestRSI:
    def test_scenario_rsi_history_crossing_oversold(self, monkeypatch):
        """RSI history [25, 28, 32] crosses up through 30 → BUY."""
        closes = [100.0] * 30

        def _fake_rsi(series, period):
            return [50.0] * (len(series) - 3) + [25.0, 28.0, 32.0]

        monkeypatch.setattr(evaluator, "rsi", _fake_rsi)
        sig = evaluate_closes(_RSI_CFG, closes, 100.0)
        assert sig.type is SignalType.BUY
        assert "oversold" in sig.reason

    def test_buy_from_prices(self):
        # RSI(2): idx27 = 0 (two losses), idx28 = 50 (one loss, one gain)
        closes = [10.0] * 24 + [10.0, 9.0, 8.0, 7.0, 8.0]
        sig = evaluate_closes(_RSI_CFG, closes, 8.0)
        assert sig.type is SignalType.BUY
        assert "oversold" in sig.reason

    def test_sell_from_prices(self):
        # RSI(2): idx27 = 100 (no losses), idx28 = 50
        closes = [10.0] * 24 + [10.0, 11.0, 12.0, 13.0, 12.0]
        sig = evaluate_closes(_RSI_CFG, closes, 12.0)
        assert sig.type is SignalType.SELL
        assert "overbought" in sig.reason

    def test_no_cross_is_none(self):
        sig = evaluate_closes(_RSI_CFG, [10.0] * 30, 10.0)
        assert sig.type is SignalType.NONE

    def test_missing_rsi_period_is_none(self):
        cfg = StrategyConfig(entry_type=EntryType.RSI)
        sig = evaluate_closes(cfg, _ema_cross_up(), 100.0)
        assert sig.type is SignalType.NONE


@pytest.mark.parametrize(
    "entry_type", [EntryType.PRICE_ABOVE, EntryType.PRICE_BELOW, EntryType.CUSTOM],
)
def test_underivable_entry_types_are_none(entry_type):
    cfg = StrategyConfig(entry_type=entry_type)
    assert evaluate_closes(cfg, _ema_cross_up(), 100.0).type is SignalType.NONE
