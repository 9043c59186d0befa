"""
Database connection management.

Provides SQLite connection for the usage ledger.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "ai_quota_router.db"
DEFAULT_TIMEOUT = 10.0


def get_connection(
    db_path: str = DEFAULT_DB_PATH,
    timeout: float = DEFAULT_TIMEOUT
) -> sqlite3.Connection:
    """Create and return a SQLite connection for ledger access.

    WAL journaling lets readers proceed while a writer holds the lock.
    Writers that cannot obtain the lock within ``timeout`` seconds fail
    with ``sqlite3.OperationalError`` ("database is locked").

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait for a competing writer's lock

    Returns:
        SQLite connection in WAL mode
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.execute("PRAGMA journal_mode=WAL")
    return conn
