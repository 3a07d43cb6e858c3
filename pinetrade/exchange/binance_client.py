"""Binance spot REST API async clients.

``BinanceMarketData`` covers the unauthenticated read path (klines and
ticker price).  ``BinanceOrderClient`` covers the signed write path
(entry orders plus dependent stop-loss / take-profit orders).
"""

import asyncio
import hashlib
import hmac
import logging
import math
import time
from typing import Optional
from urllib.parse import urlencode

import httpx

from pinetrade.config import Config
from pinetrade.exchange.models import (
    Candle,
    ExchangeCredentials,
    OrderRequest,
    OrderResponse,
)

logger = logging.getLogger("pinetrade.exchange")

# Retry settings (read path only; orders are never retried)
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

_DEFAULT_TIMEOUT = 15.0
_MIN_ATTEMPT_TIMEOUT = 0.5

# Dependent limit orders rest slightly beyond their trigger price
_STOP_LIMIT_OFFSET = 0.005

# Significant figures kept for sub-unit prices (Binance allows 8 decimals)
_PRICE_SIG_FIGS = 5
_MAX_PRICE_DECIMALS = 8


class ExchangeError(Exception):
    """The exchange rejected a signed request.

    Attributes:
        status_code: HTTP status of the response.
        code: Binance error code (e.g. ``-2015``), when present.
        msg: Binance error message.
    """

    def __init__(self, status_code: int, msg: str, code: Optional[int] = None) -> None:
        self.status_code = status_code
        self.code = code
        self.msg = msg
        super().__init__(msg)


def sign_query(params: dict[str, str], api_secret: str) -> str:
    """Return the canonical query string with its HMAC-SHA256 signature.

    The parameters are URL-encoded in insertion order, the digest is
    computed over that exact string with *api_secret* as key, and
    ``&signature=<hex>`` is appended.
    """
    query = urlencode(params)
    signature = hmac.new(
        api_secret.encode("utf-8"),
        query.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"{query}&signature={signature}"


def format_price(value: float) -> str:
    """Render an order price without collapsing sub-cent values.

    Prices of 1 and above keep two decimals; smaller prices keep
    ``_PRICE_SIG_FIGS`` significant figures, capped at eight decimals.
    """
    if value >= 1:
        return f"{value:.2f}"
    if value <= 0:
        return "0"
    decimals = _PRICE_SIG_FIGS - 1 - math.floor(math.log10(value))
    decimals = min(_MAX_PRICE_DECIMALS, max(2, decimals))
    return f"{value:.{decimals}f}"


def _backoff_total() -> float:
    """Seconds slept between attempts when every attempt fails."""
    return sum(_RETRY_BASE_DELAY * (2 ** a) for a in range(_MAX_RETRIES - 1))


def _opposite(side: str) -> str:
    return "SELL" if side == "BUY" else "BUY"


def _parse_order(data: dict) -> OrderResponse:
    fills = data.get("fills") or []
    avg_price: Optional[float] = None
    if fills and fills[0].get("price") is not None:
        avg_price = float(fills[0]["price"])
    elif data.get("price") and float(data["price"]) > 0:
        avg_price = float(data["price"])
    return OrderResponse(
        order_id=str(data.get("orderId", "")),
        symbol=data.get("symbol", ""),
        side=data.get("side", ""),
        status=data.get("status", ""),
        executed_qty=float(data.get("executedQty", "0") or 0),
        avg_price=avg_price,
    )


class BinanceMarketData:
    """Async client for Binance public market data."""

    def __init__(self, config: Config) -> None:
        self._base_url = config.binance_base_url
        deadline = config.gateway_timeout_seconds or _DEFAULT_TIMEOUT
        # All attempts plus their backoff must fit inside the caller's deadline
        self._timeout = max(
            _MIN_ATTEMPT_TIMEOUT,
            (deadline - _backoff_total()) / _MAX_RETRIES,
        )

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _get_with_retry(self, url: str, params: dict) -> httpx.Response:
        """GET with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504), rate-limits
        (429) and transport errors.  Non-retryable HTTP errors are raised
        immediately as ``httpx.HTTPStatusError``.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(
                        url,
                        params=params,
                        timeout=self._timeout,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Binance GET %s returned %d — retry %d/%d in %.1fs",
                        url, resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    if attempt < _MAX_RETRIES - 1:
                        await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Binance GET %s transport error (%s) — retry %d/%d in %.1fs",
                    url, exc, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                if attempt < _MAX_RETRIES - 1:
                    await asyncio.sleep(delay)

        # All retries exhausted
        raise last_exc  # type: ignore[misc]

    # ── Candles ──────────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 100,
    ) -> list[Candle]:
        """Fetch kline data from Binance.

        Args:
            symbol: e.g. ``"BTCUSDT"``
            interval: e.g. ``"1h"``, ``"4h"``, ``"1d"``
            limit: number of klines to request (max 1000)

        Returns:
            List of ``Candle`` objects ordered oldest-first.
        """
        url = f"{self._base_url}/api/v3/klines"
        params = {"symbol": symbol, "interval": interval, "limit": limit}

        resp = await self._get_with_retry(url, params)

        candles: list[Candle] = []
        for k in resp.json():
            candles.append(
                Candle(
                    open_time=int(k[0]),
                    open=float(k[1]),
                    high=float(k[2]),
                    low=float(k[3]),
                    close=float(k[4]),
                    volume=float(k[5]),
                    close_time=int(k[6]) if len(k) > 6 else None,
                )
            )
        return candles

    async def get_price(self, symbol: str) -> float:
        """Return the latest traded price for *symbol*."""
        url = f"{self._base_url}/api/v3/ticker/price"

        resp = await self._get_with_retry(url, {"symbol": symbol})

        return float(resp.json()["price"])


class BinanceOrderClient:
    """Async client for signed Binance order endpoints."""

    def __init__(self, config: Config) -> None:
        self._base_url = config.binance_base_url
        self._timeout = config.gateway_timeout_seconds or _DEFAULT_TIMEOUT
        self._recv_window = config.recv_window_ms

    async def _signed_post(
        self,
        path: str,
        credentials: ExchangeCredentials,
        params: dict[str, str],
    ) -> dict:
        """POST *params* signed with the caller's secret.

        Raises ``ExchangeError`` carrying the exchange's ``code`` / ``msg``
        when the response is not 2xx.  Transport errors propagate as
        ``httpx.TransportError``.
        """
        all_params = dict(params)
        if self._recv_window:
            all_params["recvWindow"] = str(self._recv_window)
        all_params["timestamp"] = str(int(time.time() * 1000))

        url = f"{self._base_url}{path}?{sign_query(all_params, credentials.api_secret)}"
        headers = {
            "X-MBX-APIKEY": credentials.api_key,
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient() as client:
            resp = await client.post(url, headers=headers, timeout=self._timeout)

        if resp.is_success:
            return resp.json()

        try:
            body = resp.json()
        except ValueError:
            body = {}
        code = body.get("code") if isinstance(body, dict) else None
        msg = (
            body.get("msg") if isinstance(body, dict) else None
        ) or f"Binance API error: {resp.status_code}"
        logger.error(
            "Binance POST %s rejected (%s %s) for key %s",
            path, code, msg, credentials.key_prefix,
        )
        raise ExchangeError(resp.status_code, msg, code)

    # ── Orders ───────────────────────────────────────────────────────────

    async def place_order(
        self,
        credentials: ExchangeCredentials,
        order: OrderRequest,
    ) -> OrderResponse:
        """Place a MARKET (or LIMIT) entry order.

        Returns:
            ``OrderResponse`` with the fill details.
        """
        params = {
            "symbol": order.symbol,
            "side": order.side,
            "type": order.order_type,
            "quantity": order.quantity,
        }
        if order.order_type == "LIMIT":
            if not order.price:
                raise ValueError("LIMIT orders require a price")
            params["price"] = order.price
            params["timeInForce"] = "GTC"

        data = await self._signed_post("/api/v3/order", credentials, params)
        response = _parse_order(data)
        logger.info(
            "Order %s placed: %s %s %s",
            response.order_id, order.side, order.quantity, order.symbol,
        )
        return response

    async def place_protective_orders(
        self,
        credentials: ExchangeCredentials,
        entry: OrderRequest,
        stop_loss: float,
        take_profit: float,
    ) -> list[OrderResponse]:
        """Place stop-loss and take-profit limit orders for a filled entry.

        Failures are logged and swallowed: the entry position exists
        regardless, so the caller must not roll it back.
        """
        exit_side = _opposite(entry.side)
        # Limit sits on the far side of the trigger in the exit direction
        direction = -1 if exit_side == "SELL" else 1
        legs = []
        if stop_loss:
            legs.append((
                "STOP_LOSS_LIMIT",
                stop_loss,
                stop_loss * (1 + direction * _STOP_LIMIT_OFFSET),
            ))
        if take_profit:
            legs.append((
                "TAKE_PROFIT_LIMIT",
                take_profit,
                take_profit * (1 - direction * _STOP_LIMIT_OFFSET),
            ))

        placed: list[OrderResponse] = []
        for order_type, trigger, limit in legs:
            params = {
                "symbol": entry.symbol,
                "side": exit_side,
                "type": order_type,
                "quantity": entry.quantity,
                "stopPrice": format_price(trigger),
                "price": format_price(limit),
                "timeInForce": "GTC",
            }
            try:
                data = await self._signed_post("/api/v3/order", credentials, params)
                placed.append(_parse_order(data))
            except (ExchangeError, httpx.HTTPError) as exc:
                logger.warning(
                    "%s order for %s failed: %s", order_type, entry.symbol, exc,
                )
        return placed
