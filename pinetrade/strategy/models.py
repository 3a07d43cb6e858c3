"""Strategy data models — derived parameters and evaluation outputs."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional


class EntryType(str, Enum):
    """How a strategy decides to enter a position."""

    MA_CROSSOVER = "MA_CROSSOVER"
    MA_CROSSUNDER = "MA_CROSSUNDER"
    RSI = "RSI"
    PRICE_ABOVE = "PRICE_ABOVE"
    PRICE_BELOW = "PRICE_BELOW"
    CUSTOM = "CUSTOM"


class MAType(str, Enum):
    SMA = "SMA"
    EMA = "EMA"


class SignalType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    NONE = "NONE"


@dataclass(frozen=True)
class StrategyConfig:
    """Numeric parameters extracted from a strategy's script text.

    Recomputed from the raw text on every evaluation; never cached.
    """

    entry_type: EntryType = EntryType.MA_CROSSOVER
    fast_period: int = 12
    slow_period: int = 26
    ma_type: MAType = MAType.EMA
    stop_loss_pct: float = 2.0
    take_profit_pct: float = 4.0
    rsi_period: Optional[int] = None
    rsi_overbought: Optional[float] = None
    rsi_oversold: Optional[float] = None

    @property
    def min_candles(self) -> int:
        """Smallest candle history this config can be evaluated against."""
        return max(self.fast_period, self.slow_period) + 2

    def to_dict(self) -> dict:
        data = asdict(self)
        data["entry_type"] = self.entry_type.value
        data["ma_type"] = self.ma_type.value
        return data


@dataclass(frozen=True)
class Signal:
    """A momentary trade decision produced by one evaluation."""

    type: SignalType
    price: float
    stop_loss: float = 0.0
    take_profit: float = 0.0
    reason: str = ""

    @property
    def fired(self) -> bool:
        return self.type is not SignalType.NONE

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "price": self.price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "reason": self.reason,
        }
