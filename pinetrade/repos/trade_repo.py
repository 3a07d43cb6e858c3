"""Trade repository — SQLite CRUD for the trades table."""

from datetime import datetime, timezone
from typing import Optional

from pinetrade.repos.db import get_connection


def to_db_time(dt: datetime) -> str:
    """Fixed-width UTC timestamp so string comparison orders correctly."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


class TradeRepo:
    """Data access layer for trade records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_trade(
        self,
        user_id: str,
        strategy_id: Optional[str],
        symbol: str,
        timeframe: str,
        signal_type: str,
        status: str,
        created_at: datetime,
        entry_price: Optional[float] = None,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        quantity: Optional[str] = None,
        order_id: Optional[str] = None,
        credit_locked: bool = False,
        credit_consumed: bool = False,
        error_message: Optional[str] = None,
        opened_at: Optional[datetime] = None,
    ) -> int:
        """Insert a trade row and return its ``id``."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO trades
                    (user_id, strategy_id, symbol, timeframe, signal_type,
                     status, entry_price, stop_loss, take_profit, quantity,
                     order_id, credit_locked, credit_consumed, error_message,
                     opened_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id, strategy_id, symbol, timeframe, signal_type,
                    status, entry_price, stop_loss, take_profit, quantity,
                    order_id, int(credit_locked), int(credit_consumed),
                    error_message,
                    to_db_time(opened_at) if opened_at else None,
                    to_db_time(created_at),
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def exists_since(
        self,
        user_id: str,
        symbol: str,
        timeframe: str,
        since: datetime,
    ) -> bool:
        """True if a trade for this user/symbol/timeframe was created at or
        after *since* (the current candle's open time)."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                """
                SELECT 1 FROM trades
                WHERE user_id = ? AND symbol = ? AND timeframe = ?
                  AND created_at >= ?
                LIMIT 1
                """,
                (user_id, symbol, timeframe, to_db_time(since)),
            ).fetchone()
            return row is not None
        finally:
            conn.close()

    # ── Candle claims ────────────────────────────────────────────────────

    def claim_candle(
        self,
        user_id: str,
        symbol: str,
        timeframe: str,
        candle_open: datetime,
    ) -> bool:
        """Take the single execution slot for this candle.

        Returns ``False`` when another pass already holds it.
        """
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO signal_claims
                    (user_id, symbol, timeframe, candle_open, claimed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    user_id, symbol, timeframe, to_db_time(candle_open),
                    to_db_time(datetime.now(timezone.utc)),
                ),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def release_candle(
        self,
        user_id: str,
        symbol: str,
        timeframe: str,
        candle_open: datetime,
    ) -> None:
        """Drop a claim that never led to an order attempt."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                DELETE FROM signal_claims
                WHERE user_id = ? AND symbol = ? AND timeframe = ?
                  AND candle_open = ?
                """,
                (user_id, symbol, timeframe, to_db_time(candle_open)),
            )
            conn.commit()
        finally:
            conn.close()

    def get_trades(
        self,
        user_id: Optional[str] = None,
        status_filter: Optional[str] = None,
        symbol: Optional[str] = None,
        limit: int = 20,
    ) -> dict:
        """Most recent trades first, optionally filtered.

        Returns:
            ``{"trades": [row dicts], "total": matching row count}``
        """
        filters = {"user_id": user_id, "status": status_filter, "symbol": symbol}
        active = {col: val for col, val in filters.items() if val}
        where = " AND ".join(f"{col} = ?" for col in active)
        where_sql = f"WHERE {where}" if where else ""
        values = tuple(active.values())

        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM trades {where_sql} ORDER BY id DESC LIMIT ?",
                (*values, limit),
            ).fetchall()
            (total,) = conn.execute(
                f"SELECT COUNT(*) FROM trades {where_sql}", values,
            ).fetchone()
        finally:
            conn.close()
        return {"trades": [dict(r) for r in rows], "total": total}
