"""Timeframe helpers — exchange interval mapping and candle-window math."""

from datetime import datetime, timezone


# Timeframe label → Binance kline interval.
TIMEFRAME_INTERVALS: dict[str, str] = {
    "1m": "1m",
    "5m": "5m",
    "15m": "15m",
    "30m": "30m",
    "1h": "1h",
    "4h": "4h",
    "1d": "1d",
    "1w": "1w",
}

DEFAULT_INTERVAL = "1h"


def to_exchange_interval(timeframe: str) -> str:
    """Map a timeframe label to an exchange interval; unknown → ``1h``."""
    return TIMEFRAME_INTERVALS.get(timeframe, DEFAULT_INTERVAL)


def eligible_timeframes(
    allowed: list[str],
    selected: list[str] | set[str] | None,
) -> list[str]:
    """Timeframes a strategy allows *and* the user has selected.

    Keeps the strategy's ordering so passes are deterministic.
    """
    if not selected:
        return []
    chosen = set(selected)
    seen: set[str] = set()
    result: list[str] = []
    for tf in allowed:
        if tf in chosen and tf not in seen:
            seen.add(tf)
            result.append(tf)
    return result


def ms_to_datetime(ms: int) -> datetime:
    """Millisecond epoch → aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
