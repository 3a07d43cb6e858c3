"""Strategy repository — read access to user strategy scripts."""

import json
from dataclasses import dataclass, field
from typing import Optional

from pinetrade.repos.db import get_connection


@dataclass(frozen=True)
class Strategy:
    """A user-owned strategy script (read-only to the engine)."""

    id: str
    user_id: str
    name: str
    symbol: str
    script_content: str
    is_active: bool = True
    allowed_timeframes: list[str] = field(default_factory=list)


def _row_to_strategy(row) -> Strategy:
    try:
        timeframes = json.loads(row["allowed_timeframes"] or "[]")
    except ValueError:
        timeframes = []
    return Strategy(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        symbol=row["symbol"],
        script_content=row["script_content"],
        is_active=bool(row["is_active"]),
        allowed_timeframes=[str(t) for t in timeframes] if isinstance(timeframes, list) else [],
    )


class StrategyRepo:
    """Data access layer for strategy rows.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def list_active(self, user_id: str) -> list[Strategy]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM strategies
                WHERE user_id = ? AND is_active = 1
                ORDER BY created_at, id
                """,
                (user_id,),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_strategy(r) for r in rows]

    def get_owned(self, strategy_id: str, user_id: str) -> Optional[Strategy]:
        """Return the strategy only if *user_id* owns it."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM strategies WHERE id = ? AND user_id = ?",
                (strategy_id, user_id),
            ).fetchone()
        finally:
            conn.close()
        return None if row is None else _row_to_strategy(row)

    def insert_strategy(self, strategy: Strategy) -> None:
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO strategies
                    (id, user_id, name, symbol, script_content, is_active,
                     allowed_timeframes)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    strategy.id, strategy.user_id, strategy.name,
                    strategy.symbol, strategy.script_content,
                    int(strategy.is_active),
                    json.dumps(strategy.allowed_timeframes),
                ),
            )
            conn.commit()
        finally:
            conn.close()
