"""
Tests for usage history.
"""
import os
import sqlite3
import tempfile
from datetime import date, datetime, timezone

import pytest

from ai_quota_router.core.catalog import Backend, BackendQuota, QuotaCatalog
from ai_quota_router.core.history import HistoryReader
from ai_quota_router.storage.repository import UsageLedger, initialize_schema


def at(day, hour=12):
    return datetime(2024, 1, day, hour, tzinfo=timezone.utc)


class TestHistoryReader:
    """Test history reads over a real ledger."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.ledger = UsageLedger(self.db_path)
        # GPT_OSS_120B sorts before LLAMA by id but is ranked after it
        catalog = QuotaCatalog.from_quotas([
            BackendQuota(Backend.LLAMA_3_3_70B, 300_000, 1_000, 1),
            BackendQuota(Backend.GPT_OSS_120B, 150_000, 500, 2),
        ])
        self.reader = HistoryReader(catalog, self.ledger)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_history_grouped_by_day(self):
        self.ledger.record_usage(Backend.LLAMA_3_3_70B, 100, at=at(1))
        self.ledger.record_usage(Backend.LLAMA_3_3_70B, 200, at=at(2))
        self.ledger.record_usage(Backend.GPT_OSS_120B, 300, at=at(2))

        history = self.reader.get_history(date(2024, 1, 1), date(2024, 1, 2))

        assert list(history.keys()) == [date(2024, 1, 1), date(2024, 1, 2)]
        assert list(history[date(2024, 1, 1)].keys()) == [Backend.LLAMA_3_3_70B]
        assert history[date(2024, 1, 2)][Backend.GPT_OSS_120B].tokens_used == 300

    def test_backends_follow_priority_within_day(self):
        self.ledger.record_usage(Backend.GPT_OSS_120B, 1, at=at(1))
        self.ledger.record_usage(Backend.LLAMA_3_3_70B, 1, at=at(1))

        history = self.reader.get_history(date(2024, 1, 1), date(2024, 1, 1))

        assert list(history[date(2024, 1, 1)].keys()) == [
            Backend.LLAMA_3_3_70B, Backend.GPT_OSS_120B
        ]

    def test_uncatalogued_backend_listed_last(self):
        """Test rows for backends dropped from the catalog still appear."""
        self.ledger.record_usage(Backend.KIMI_K2, 1, at=at(1))
        self.ledger.record_usage(Backend.GPT_OSS_120B, 1, at=at(1))

        history = self.reader.get_history(date(2024, 1, 1), date(2024, 1, 1))

        assert list(history[date(2024, 1, 1)].keys()) == [
            Backend.GPT_OSS_120B, Backend.KIMI_K2
        ]

    def test_range_is_inclusive(self):
        for day in (1, 2, 3, 4):
            self.ledger.record_usage(Backend.LLAMA_3_3_70B, day, at=at(day))

        history = self.reader.get_history(date(2024, 1, 2), date(2024, 1, 3))

        assert list(history.keys()) == [date(2024, 1, 2), date(2024, 1, 3)]

    def test_days_without_traffic_are_absent(self):
        assert self.reader.get_history(date(2024, 1, 1), date(2024, 1, 7)) == {}

    def test_reversed_range_rejected(self):
        with pytest.raises(ValueError):
            self.reader.get_history(date(2024, 1, 3), date(2024, 1, 1))

    def test_recent_history_window(self):
        """Test the last N days include today."""
        self.ledger.record_usage(Backend.LLAMA_3_3_70B, 1, at=at(1))
        self.ledger.record_usage(Backend.LLAMA_3_3_70B, 1, at=at(2))
        self.ledger.record_usage(Backend.LLAMA_3_3_70B, 1, at=at(8))

        history = self.reader.get_recent_history(days=7, today=date(2024, 1, 8))

        assert list(history.keys()) == [date(2024, 1, 2), date(2024, 1, 8)]

    def test_recent_history_rejects_zero_days(self):
        with pytest.raises(ValueError):
            self.reader.get_recent_history(days=0)

    def test_history_is_read_only(self):
        """Test reading history writes nothing."""
        self.ledger.record_usage(Backend.LLAMA_3_3_70B, 1, at=at(1))
        self.reader.get_history(date(2024, 1, 1), date(2024, 1, 7))

        conn = sqlite3.connect(self.db_path)
        count = conn.execute("SELECT COUNT(*) FROM backend_usage_daily").fetchone()[0]
        conn.close()
        assert count == 1
