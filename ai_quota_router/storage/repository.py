"""
Repository pattern for data access.

Durable per-day, per-backend usage counters. Every increment is a single
upsert that adds to the stored values inside the database, so concurrent
writers never lose each other's updates.
"""

import logging
import sqlite3
from datetime import date, datetime
from typing import Dict, List, Optional

from ai_quota_router.core.catalog import Backend
from .db import DEFAULT_DB_PATH, DEFAULT_TIMEOUT, get_connection
from .models import (
    MinuteUsage,
    Outcome,
    UsageRecord,
    get_minute_key,
    to_utc,
    utc_now,
)

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for usage ledger failures."""
    def __init__(self, message: str, backend: Optional[Backend] = None):
        super().__init__(message)
        self.backend = backend


class LedgerWriteFailure(LedgerError):
    """An increment could not be durably applied.

    The backend call being accounted for has already completed; only the
    accounting for that event is lost.
    """


class LedgerReadFailure(LedgerError):
    """Ledger rows could not be read."""


class LedgerTimeout(LedgerWriteFailure, LedgerReadFailure):
    """The store stayed locked past the caller's deadline."""


_UPSERT_DAILY = """
    INSERT INTO backend_usage_daily
    (date_key, backend_id, tokens_used, request_count,
     rate_limit_hits, error_count, last_updated)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (date_key, backend_id) DO UPDATE SET
        tokens_used = tokens_used + excluded.tokens_used,
        request_count = request_count + excluded.request_count,
        rate_limit_hits = rate_limit_hits + excluded.rate_limit_hits,
        error_count = error_count + excluded.error_count,
        last_updated = excluded.last_updated
"""

_UPSERT_MINUTE = """
    INSERT INTO backend_usage_minute
    (minute_key, backend_id, tokens_used, request_count)
    VALUES (?, ?, ?, ?)
    ON CONFLICT (minute_key, backend_id) DO UPDATE SET
        tokens_used = tokens_used + excluded.tokens_used,
        request_count = request_count + excluded.request_count
"""

_DAILY_COLUMNS = """
    date_key, backend_id, tokens_used, request_count,
    rate_limit_hits, error_count, last_updated
"""


def _is_lock_timeout(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return isinstance(error, sqlite3.OperationalError) and (
        "locked" in message or "busy" in message
    )


def _row_to_record(row) -> Optional[UsageRecord]:
    try:
        backend = Backend(row[1])
    except ValueError:
        logger.warning("Ignoring ledger row for unknown backend %r", row[1])
        return None
    return UsageRecord(
        date_key=date.fromisoformat(row[0]),
        backend=backend,
        tokens_used=row[2],
        request_count=row[3],
        rate_limit_hits=row[4],
        error_count=row[5],
        last_updated=datetime.fromisoformat(row[6]) if row[6] else None
    )


class UsageLedger:
    """Durable store of per-(day, backend) usage counters.

    Each call opens its own connection, so the ledger can be shared
    freely between threads. No counter values are cached in memory.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, timeout: float = DEFAULT_TIMEOUT):
        """Initialize the ledger.

        Args:
            db_path: Path to SQLite database file
            timeout: Default seconds to wait on a locked store
        """
        self.db_path = db_path
        self.timeout = timeout

    def _connect(self, timeout: Optional[float]) -> sqlite3.Connection:
        return get_connection(self.db_path, self.timeout if timeout is None else timeout)

    def record_usage(
        self,
        backend: Backend,
        tokens_delta: int,
        request_delta: int = 1,
        outcome: Outcome = Outcome.SUCCESS,
        at: Optional[datetime] = None,
        timeout: Optional[float] = None
    ) -> UsageRecord:
        """Add one completed call's consumption to the ledger.

        Creates the day's row on first use. The daily and per-minute
        increments commit together or not at all.

        Args:
            backend: Backend the call went to
            tokens_delta: Tokens consumed by the call
            request_delta: Requests to count (normally 1)
            outcome: How the call ended
            at: When the call completed (default: now). Naive is UTC.
            timeout: Seconds to wait on a locked store

        Returns:
            The day's record after this increment

        Raises:
            ValueError: If a delta is negative
            LedgerTimeout: If the store stayed locked past ``timeout``
            LedgerWriteFailure: If the increment could not be applied
        """
        if tokens_delta < 0:
            raise ValueError("tokens_delta cannot be negative")
        if request_delta < 0:
            raise ValueError("request_delta cannot be negative")

        moment = to_utc(at or utc_now())
        date_key = moment.date()
        rate_limit_delta = 1 if outcome is Outcome.RATE_LIMITED else 0
        error_delta = 1 if outcome is Outcome.ERROR else 0

        conn = None
        try:
            conn = self._connect(timeout)
            # Hold the write lock for the whole increment
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(_UPSERT_DAILY, (
                date_key.isoformat(),
                backend.value,
                tokens_delta,
                request_delta,
                rate_limit_delta,
                error_delta,
                utc_now().isoformat()
            ))
            conn.execute(_UPSERT_MINUTE, (
                get_minute_key(moment).isoformat(),
                backend.value,
                tokens_delta,
                request_delta
            ))
            row = conn.execute(
                f"SELECT {_DAILY_COLUMNS} FROM backend_usage_daily "
                "WHERE date_key = ? AND backend_id = ?",
                (date_key.isoformat(), backend.value)
            ).fetchone()
            conn.commit()
        except sqlite3.Error as e:
            if conn is not None:
                conn.rollback()
            logger.error(
                "Failed to record usage for %s on %s (%d tokens, %s): %s",
                backend.value, date_key, tokens_delta, outcome.value, e
            )
            error_class = LedgerTimeout if _is_lock_timeout(e) else LedgerWriteFailure
            raise error_class(
                f"Could not record usage for {backend.value}: {e}", backend
            ) from e
        finally:
            if conn is not None:
                conn.close()

        record = _row_to_record(row)
        logger.debug(
            "%s on %s: %d tokens, %d requests",
            backend.value, date_key, record.tokens_used, record.request_count
        )
        return record

    def read_record(
        self,
        date_key: date,
        backend: Backend,
        timeout: Optional[float] = None
    ) -> UsageRecord:
        """Point read of one (day, backend) record.

        Returns a zero-valued record when the pair never received traffic.
        """
        rows = self._fetch(
            f"SELECT {_DAILY_COLUMNS} FROM backend_usage_daily "
            "WHERE date_key = ? AND backend_id = ?",
            (date_key.isoformat(), backend.value),
            timeout
        )
        if not rows:
            return UsageRecord.empty(date_key, backend)
        return _row_to_record(rows[0])

    def read_day(
        self,
        date_key: date,
        timeout: Optional[float] = None
    ) -> Dict[Backend, UsageRecord]:
        """All records written for one day, keyed by backend."""
        rows = self._fetch(
            f"SELECT {_DAILY_COLUMNS} FROM backend_usage_daily WHERE date_key = ?",
            (date_key.isoformat(),),
            timeout
        )
        records = {}
        for row in rows:
            record = _row_to_record(row)
            if record is not None:
                records[record.backend] = record
        return records

    def read_range(
        self,
        from_date: date,
        to_date: date,
        timeout: Optional[float] = None
    ) -> List[UsageRecord]:
        """Records for every day in ``[from_date, to_date]``, oldest first."""
        rows = self._fetch(
            f"SELECT {_DAILY_COLUMNS} FROM backend_usage_daily "
            "WHERE date_key >= ? AND date_key <= ? "
            "ORDER BY date_key ASC, backend_id ASC",
            (from_date.isoformat(), to_date.isoformat()),
            timeout
        )
        return [record for record in map(_row_to_record, rows) if record is not None]

    def read_minute(
        self,
        minute_key: datetime,
        timeout: Optional[float] = None
    ) -> Dict[Backend, MinuteUsage]:
        """Per-backend usage within the minute starting at ``minute_key``."""
        minute_key = get_minute_key(minute_key)
        rows = self._fetch(
            "SELECT backend_id, tokens_used, request_count "
            "FROM backend_usage_minute WHERE minute_key = ?",
            (minute_key.isoformat(),),
            timeout
        )
        usage = {}
        for backend_id, tokens_used, request_count in rows:
            try:
                backend = Backend(backend_id)
            except ValueError:
                continue
            usage[backend] = MinuteUsage(
                minute_key=minute_key,
                backend=backend,
                tokens_used=tokens_used,
                request_count=request_count
            )
        return usage

    def _fetch(self, query: str, params: tuple, timeout: Optional[float]) -> list:
        conn = None
        try:
            conn = self._connect(timeout)
            return conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            logger.error("Failed to read usage ledger: %s", e)
            error_class = LedgerTimeout if _is_lock_timeout(e) else LedgerReadFailure
            raise error_class(f"Could not read usage ledger: {e}") from e
        finally:
            if conn is not None:
                conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger tables if they don't exist.

    Rows are only ever inserted or incremented. Retention of old days is
    left to the operator.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS backend_usage_daily (
                date_key TEXT NOT NULL,
                backend_id TEXT NOT NULL,
                tokens_used INTEGER NOT NULL DEFAULT 0,
                request_count INTEGER NOT NULL DEFAULT 0,
                rate_limit_hits INTEGER NOT NULL DEFAULT 0,
                error_count INTEGER NOT NULL DEFAULT 0,
                last_updated TEXT,
                PRIMARY KEY (date_key, backend_id)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS backend_usage_minute (
                minute_key TEXT NOT NULL,
                backend_id TEXT NOT NULL,
                tokens_used INTEGER NOT NULL DEFAULT 0,
                request_count INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (minute_key, backend_id)
            )
        """)
        conn.commit()
    finally:
        conn.close()
