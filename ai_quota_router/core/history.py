"""
Historical usage for trend reporting.

Read-only view over past ledger rows.
"""

from datetime import date, timedelta
from typing import Dict, Optional

from .catalog import Backend, QuotaCatalog
from ai_quota_router.storage.models import UsageRecord, get_date_key
from ai_quota_router.storage.repository import UsageLedger

History = Dict[date, Dict[Backend, UsageRecord]]


class HistoryReader:
    """Reads per-day, per-backend usage rows over a date range."""

    def __init__(self, catalog: QuotaCatalog, ledger: UsageLedger):
        self.catalog = catalog
        self.ledger = ledger

    def get_history(
        self,
        from_date: date,
        to_date: date,
        timeout: Optional[float] = None
    ) -> History:
        """Usage rows for all backends across an inclusive date range.

        Only days and backends that received traffic appear. Dates are
        ascending; within a date, backends follow catalog priority, and
        backends no longer in the catalog come last.

        Raises:
            ValueError: If ``from_date`` is after ``to_date``
            LedgerReadFailure: If the ledger could not be read
        """
        if from_date > to_date:
            raise ValueError("from_date must not be after to_date")

        rank = {backend: position for position, backend in enumerate(self.catalog.backends)}
        history: History = {}
        for record in sorted(
            self.ledger.read_range(from_date, to_date, timeout=timeout),
            key=lambda r: (r.date_key, rank.get(r.backend, len(rank)), r.backend.value)
        ):
            history.setdefault(record.date_key, {})[record.backend] = record
        return history

    def get_recent_history(
        self,
        days: int = 7,
        today: Optional[date] = None,
        timeout: Optional[float] = None
    ) -> History:
        """History for the last ``days`` days, today included."""
        if days < 1:
            raise ValueError("days must be >= 1")
        today = today or get_date_key()
        return self.get_history(today - timedelta(days=days - 1), today, timeout=timeout)
