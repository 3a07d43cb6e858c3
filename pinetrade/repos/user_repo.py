"""User repository — trading state and the credit counter.

Every credit mutation is a single conditional ``UPDATE``; balances are
never read into memory, adjusted, and written back.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pinetrade.exchange.models import ExchangeCredentials
from pinetrade.repos.db import get_connection

logger = logging.getLogger("pinetrade.repos")


@dataclass(frozen=True)
class UserTradingState:
    """A subscriber's automated-trading settings."""

    user_id: str
    credits: int
    bot_enabled: bool
    selected_timeframes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CreditReservation:
    """One credit taken from a user; ``before`` is the pre-reservation balance."""

    user_id: str
    before: int
    after: int


def _load_list(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class UserRepo:
    """Data access layer for profiles, credentials and credits.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Read ─────────────────────────────────────────────────────────────

    def list_eligible(self) -> list[UserTradingState]:
        """Users with the bot enabled and at least one credit."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT user_id, credits, bot_enabled, selected_timeframes
                FROM profiles
                WHERE bot_enabled = 1 AND credits > 0
                ORDER BY user_id
                """
            ).fetchall()
        finally:
            conn.close()
        return [
            UserTradingState(
                user_id=row["user_id"],
                credits=row["credits"],
                bot_enabled=bool(row["bot_enabled"]),
                selected_timeframes=_load_list(row["selected_timeframes"]),
            )
            for row in rows
        ]

    def get_credits(self, user_id: str) -> Optional[int]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT credits FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        return None if row is None else row["credits"]

    def get_credentials(
        self, user_id: str, exchange: str = "binance",
    ) -> Optional[ExchangeCredentials]:
        """Return the user's active API key pair, or ``None``."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                """
                SELECT api_key, api_secret FROM exchange_keys
                WHERE user_id = ? AND exchange = ? AND is_active = 1
                ORDER BY id DESC LIMIT 1
                """,
                (user_id, exchange),
            ).fetchone()
        finally:
            conn.close()
        if row is None or not row["api_key"] or not row["api_secret"]:
            return None
        return ExchangeCredentials(api_key=row["api_key"], api_secret=row["api_secret"])

    # ── Credits ──────────────────────────────────────────────────────────

    def reserve_credit(self, user_id: str) -> Optional[CreditReservation]:
        """Take one credit if the balance is positive.

        The decrement and the ``credits > 0`` guard run as one statement,
        so concurrent passes can never drive a balance negative.

        Returns:
            The reservation, or ``None`` when no credit was available.
        """
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE profiles
                SET credits = credits - 1, updated_at = ?
                WHERE user_id = ? AND credits > 0
                """,
                (_now(), user_id),
            )
            if cur.rowcount == 0:
                conn.rollback()
                return None
            # Still inside the write transaction: nobody else can have
            # touched the row since the decrement.
            after = conn.execute(
                "SELECT credits FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()["credits"]
            conn.commit()
        finally:
            conn.close()
        return CreditReservation(user_id=user_id, before=after + 1, after=after)

    def refund_credit(self, reservation: CreditReservation) -> None:
        """Give a reserved credit back.

        Restores the pre-reservation balance with a compare-and-set on the
        post-reservation value.  If another writer changed the balance in
        between, the CAS misses and a single atomic increment is applied
        instead, so exactly one credit is returned either way.
        """
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE profiles SET credits = ?, updated_at = ?
                WHERE user_id = ? AND credits = ?
                """,
                (reservation.before, _now(), reservation.user_id, reservation.after),
            )
            if cur.rowcount == 0:
                logger.warning(
                    "Credit balance for %s changed during execution; "
                    "refunding by increment",
                    reservation.user_id,
                )
                conn.execute(
                    """
                    UPDATE profiles SET credits = credits + 1, updated_at = ?
                    WHERE user_id = ?
                    """,
                    (_now(), reservation.user_id),
                )
            conn.commit()
        finally:
            conn.close()

    # ── Write (used by seeding scripts and tests) ────────────────────────

    def upsert_profile(
        self,
        user_id: str,
        credits: int,
        bot_enabled: bool,
        selected_timeframes: list[str],
    ) -> None:
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO profiles (user_id, credits, bot_enabled, selected_timeframes)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    credits = excluded.credits,
                    bot_enabled = excluded.bot_enabled,
                    selected_timeframes = excluded.selected_timeframes,
                    updated_at = ?
                """,
                (
                    user_id, credits, int(bot_enabled),
                    json.dumps(selected_timeframes), _now(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def add_credentials(
        self,
        user_id: str,
        api_key: str,
        api_secret: str,
        exchange: str = "binance",
    ) -> None:
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO exchange_keys (user_id, exchange, api_key, api_secret)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, exchange, api_key, api_secret),
            )
            conn.commit()
        finally:
            conn.close()
