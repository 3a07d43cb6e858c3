"""PineTrade — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "SCHEDULER_TOKEN",
]

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    scheduler_token: str
    binance_base_url: str
    db_path: str
    log_level: str
    api_port: int
    order_notional_usdt: float
    candle_limit: int
    gateway_timeout_seconds: float
    max_parallel_users: int
    pass_interval_seconds: int
    place_protective_orders: bool = False
    recv_window_ms: int = 0  # 0 = omit recvWindow from signed requests


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        scheduler_token=os.environ["SCHEDULER_TOKEN"],
        binance_base_url=os.environ.get(
            "BINANCE_BASE_URL", "https://api.binance.com"
        ).rstrip("/"),
        db_path=os.environ.get("DB_PATH", "data/pinetrade.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
        order_notional_usdt=float(os.environ.get("ORDER_NOTIONAL_USDT", "10.0")),
        candle_limit=int(os.environ.get("CANDLE_LIMIT", "100")),
        gateway_timeout_seconds=float(
            os.environ.get("GATEWAY_TIMEOUT_SECONDS", "15.0")
        ),
        max_parallel_users=int(os.environ.get("MAX_PARALLEL_USERS", "4")),
        pass_interval_seconds=int(os.environ.get("PASS_INTERVAL_SECONDS", "60")),
        place_protective_orders=(
            os.environ.get("PLACE_PROTECTIVE_ORDERS", "false").lower() in _TRUTHY
        ),
        recv_window_ms=int(os.environ.get("RECV_WINDOW_MS", "0")),
    )
