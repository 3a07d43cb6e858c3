"""Technical indicators — SMA, EMA, RSI. Pure functions, no I/O.

Every function returns a series the same length as its input, including
for empty or short input.  Warm-up positions hold a defined placeholder
(0.0 for SMA, the running mean for EMA, 50.0 for RSI) rather than NaN so
crossover comparisons downstream are always well defined.
"""

from pinetrade.strategy.models import MAType


def sma(closes: list[float], period: int) -> list[float]:
    """Calculate a Simple Moving Average series.

    ``sma[i]`` is the mean of ``closes[i - period + 1 : i + 1]``.
    Entries before index ``period - 1`` are ``0.0``.
    """
    result: list[float] = []
    for i in range(len(closes)):
        if i < period - 1:
            result.append(0.0)
        else:
            window = closes[i - period + 1 : i + 1]
            result.append(sum(window) / period)
    return result


def ema(closes: list[float], period: int) -> list[float]:
    """Calculate an Exponential Moving Average series.

    Uses the standard EMA recursion:
        ``EMA_today = (close - EMA_yesterday) × k + EMA_yesterday``
    where ``k = 2 / (period + 1)``.

    Bootstrap: index 0 is the first close, and every index below
    ``period`` holds the simple mean of the closes seen so far, so the
    value at ``period - 1`` is the SMA of the first *period* closes.
    """
    k = 2.0 / (period + 1)
    result: list[float] = []
    running_sum = 0.0

    for i, close in enumerate(closes):
        if i < period:
            running_sum += close
            result.append(running_sum / (i + 1))
        else:
            prev = result[i - 1]
            result.append((close - prev) * k + prev)

    return result


# ── RSI ──────────────────────────────────────────────────────────────────


def rsi(closes: list[float], period: int = 14) -> list[float]:
    """Calculate the Relative Strength Index over a trailing window.

    Algorithm:
        1. delta = close[i] - close[i-1]
        2. Separate gains (positive) and losses (|negative|).
        3. avg gain / avg loss = mean of the last *period* gains / losses.
        4. RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    Returns ``50.0`` for positions without *period* deltas behind them
    and ``100.0`` whenever the average loss is zero.
    """
    result: list[float] = []
    gains: list[float] = []
    losses: list[float] = []

    for i, close in enumerate(closes):
        if i == 0:
            result.append(50.0)
            continue

        change = close - closes[i - 1]
        gains.append(max(change, 0.0))
        losses.append(max(-change, 0.0))

        if i < period:
            result.append(50.0)
            continue

        avg_gain = sum(gains[-period:]) / period
        avg_loss = sum(losses[-period:]) / period
        if avg_loss == 0:
            result.append(100.0)
        else:
            rs = avg_gain / avg_loss
            result.append(100.0 - 100.0 / (1.0 + rs))

    return result


def moving_average(closes: list[float], period: int, ma_type: MAType) -> list[float]:
    """Dispatch to :func:`sma` or :func:`ema` by *ma_type*."""
    if ma_type is MAType.SMA:
        return sma(closes, period)
    return ema(closes, period)
