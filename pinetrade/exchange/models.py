"""Exchange data models — typed representations of Binance REST objects."""

from dataclasses import asdict, dataclass
from typing import Optional


@dataclass(frozen=True)
class Candle:
    """A single candlestick bar (kline)."""

    open_time: int  # ms epoch
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True, repr=False)
class ExchangeCredentials:
    """Per-user API key pair."""

    api_key: str
    api_secret: str

    @property
    def key_prefix(self) -> str:
        """First 8 characters of the API key, safe to log."""
        return f"{self.api_key[:8]}..."

    def __repr__(self) -> str:
        return f"ExchangeCredentials(api_key={self.key_prefix!r})"


@dataclass(frozen=True)
class OrderRequest:
    """An entry order request payload."""

    symbol: str
    side: str  # "BUY" or "SELL"
    quantity: str  # decimal string, exchange precision
    order_type: str = "MARKET"  # "MARKET" or "LIMIT"
    price: Optional[str] = None  # required for LIMIT


@dataclass(frozen=True)
class OrderResponse:
    """Response from placing an order."""

    order_id: str
    symbol: str
    side: str
    status: str
    executed_qty: float
    avg_price: Optional[float] = None  # first fill price, when reported
