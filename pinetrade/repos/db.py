"""SQLite bootstrap and connection factory.

Migrations live in ``db/migrations`` as ``NNN_description.sql`` and are
applied in numeric order.  The highest applied number is kept in
``PRAGMA user_version`` so restarts only run what is new.
"""

import logging
import pathlib
import sqlite3

logger = logging.getLogger("pinetrade.repos")

_MIGRATION_DIR = pathlib.Path(__file__).resolve().parent.parent.parent / "db" / "migrations"

# Seconds a writer waits on a locked database before giving up
_BUSY_TIMEOUT = 10.0


def _pending_migrations(applied: int) -> list[tuple[int, pathlib.Path]]:
    found = []
    for path in _MIGRATION_DIR.glob("*.sql"):
        number, _, _ = path.stem.partition("_")
        if number.isdigit() and int(number) > applied:
            found.append((int(number), path))
    return sorted(found)


def init_db(db_path: str) -> None:
    """Bring the schema at *db_path* up to date.

    Creates the parent directory for file-backed databases.

    Args:
        db_path: Path to the SQLite database file.
    """
    if db_path != ":memory:":
        pathlib.Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        applied = conn.execute("PRAGMA user_version").fetchone()[0]
        for number, path in _pending_migrations(applied):
            logger.info("Applying migration %s", path.name)
            conn.executescript(path.read_text(encoding="utf-8"))
            conn.execute(f"PRAGMA user_version = {number}")
            conn.commit()
    finally:
        conn.close()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a connection that returns ``sqlite3.Row`` rows.

    Callers close it when done.
    """
    conn = sqlite3.connect(db_path, timeout=_BUSY_TIMEOUT)
    conn.row_factory = sqlite3.Row
    return conn
