"""Signal evaluation — pure functions, no I/O.

Given a ``StrategyConfig`` and a candle history, decides whether a BUY or
SELL condition fired between the last two candles.  At most one signal is
produced per call; no crossing (or too little data) yields ``NONE``.
"""

from pinetrade.exchange.models import Candle
from pinetrade.strategy.indicators import moving_average, rsi
from pinetrade.strategy.models import EntryType, Signal, SignalType, StrategyConfig
from pinetrade.strategy.parser import DEFAULT_RSI_OVERBOUGHT, DEFAULT_RSI_OVERSOLD


def _crossed_over(a: list[float], b: list[float], prev: int, last: int) -> bool:
    """*a* moves from ≤ *b* to > *b* between *prev* and *last*."""
    return a[prev] <= b[prev] and a[last] > b[last]


def _crossed_under(a: list[float], b: list[float], prev: int, last: int) -> bool:
    """*a* moves from ≥ *b* to < *b* between *prev* and *last*."""
    return a[prev] >= b[prev] and a[last] < b[last]


def _buy(config: StrategyConfig, price: float, reason: str) -> Signal:
    return Signal(
        type=SignalType.BUY,
        price=price,
        stop_loss=price * (1 - config.stop_loss_pct / 100),
        take_profit=price * (1 + config.take_profit_pct / 100),
        reason=reason,
    )


def _sell(config: StrategyConfig, price: float, reason: str) -> Signal:
    return Signal(
        type=SignalType.SELL,
        price=price,
        stop_loss=price * (1 + config.stop_loss_pct / 100),
        take_profit=price * (1 - config.take_profit_pct / 100),
        reason=reason,
    )


def _no_signal(price: float, reason: str = "No signal") -> Signal:
    return Signal(type=SignalType.NONE, price=price, reason=reason)


def evaluate_closes(
    config: StrategyConfig,
    closes: list[float],
    current_price: float,
) -> Signal:
    """Evaluate *config* against a bare close series.

    Stop-loss and take-profit are placed ``stop_loss_pct`` /
    ``take_profit_pct`` away from *current_price* on the losing / winning
    side of the trade.
    """
    if len(closes) < config.min_candles:
        return _no_signal(current_price, "Insufficient data")

    last = len(closes) - 1
    prev = last - 1
    fast_n, slow_n = config.fast_period, config.slow_period

    if config.entry_type in (EntryType.MA_CROSSOVER, EntryType.MA_CROSSUNDER):
        fast = moving_average(closes, fast_n, config.ma_type)
        slow = moving_average(closes, slow_n, config.ma_type)
        over = _crossed_over(fast, slow, prev, last)
        under = _crossed_under(fast, slow, prev, last)
        over_reason = f"MA Crossover: Fast({fast_n}) crossed above Slow({slow_n})"
        under_reason = f"MA Crossunder: Fast({fast_n}) crossed below Slow({slow_n})"

        if config.entry_type is EntryType.MA_CROSSOVER:
            if over:
                return _buy(config, current_price, over_reason)
            if under:
                return _sell(config, current_price, under_reason)
        else:
            # Mean-reversion flavour: sides swapped
            if under:
                return _buy(config, current_price, under_reason)
            if over:
                return _sell(config, current_price, over_reason)
        return _no_signal(current_price)

    if config.entry_type is EntryType.RSI:
        if not config.rsi_period:
            return _no_signal(current_price)
        oversold = (
            config.rsi_oversold
            if config.rsi_oversold is not None
            else DEFAULT_RSI_OVERSOLD
        )
        overbought = (
            config.rsi_overbought
            if config.rsi_overbought is not None
            else DEFAULT_RSI_OVERBOUGHT
        )
        series = rsi(closes, config.rsi_period)
        if series[prev] <= oversold < series[last]:
            return _buy(
                config, current_price,
                f"RSI crossed above {oversold:g} (oversold)",
            )
        if series[prev] >= overbought > series[last]:
            return _sell(
                config, current_price,
                f"RSI crossed below {overbought:g} (overbought)",
            )
        return _no_signal(current_price)

    # PRICE_ABOVE / PRICE_BELOW / CUSTOM carry no derivable trigger
    return _no_signal(current_price)


def evaluate_signal(
    config: StrategyConfig,
    candles: list[Candle],
    current_price: float,
) -> Signal:
    """Evaluate the most recent pair of candles for an entry signal.

    Args:
        config: Parameters derived by :func:`parse_strategy`.
        candles: Candle history ordered oldest-first.
        current_price: Latest traded price; becomes the signal price.

    Returns:
        A ``Signal``.  Never raises on short input; returns ``NONE`` with
        reason ``"Insufficient data"`` instead.
    """
    return evaluate_closes(config, [c.close for c in candles], current_price)
