"""Gateway protocols.

The scheduler depends on these interfaces only, so it can be driven by
the Binance clients in production and by duck-typed fakes in tests.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pinetrade.exchange.models import (
    Candle,
    ExchangeCredentials,
    OrderRequest,
    OrderResponse,
)


@runtime_checkable
class MarketDataGateway(Protocol):
    """Read-only market data source."""

    async def fetch_candles(
        self, symbol: str, interval: str, limit: int = 100,
    ) -> list[Candle]:
        """Return the last *limit* candles, oldest first."""
        ...

    async def get_price(self, symbol: str) -> float:
        """Return the latest traded price."""
        ...


@runtime_checkable
class OrderGateway(Protocol):
    """Authenticated order submission."""

    async def place_order(
        self, credentials: ExchangeCredentials, order: OrderRequest,
    ) -> OrderResponse:
        """Submit an entry order; raise on rejection."""
        ...

    async def place_protective_orders(
        self,
        credentials: ExchangeCredentials,
        entry: OrderRequest,
        stop_loss: float,
        take_profit: float,
    ) -> list[OrderResponse]:
        """Submit stop / target orders for a filled entry; never raise."""
        ...
