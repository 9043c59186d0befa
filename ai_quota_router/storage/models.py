"""
Data models for storage layer.

Defines the per-day and per-minute usage counters kept by the ledger.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from ai_quota_router.core.catalog import Backend


class Outcome(Enum):
    """Caller-reported result of a completed backend call."""
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


@dataclass(frozen=True)
class UsageRecord:
    """Counters for one backend on one UTC day.

    Counters only grow within a day. A record for a day that has passed
    is never written again.
    """
    date_key: date
    backend: Backend
    tokens_used: int = 0
    request_count: int = 0
    rate_limit_hits: int = 0
    error_count: int = 0
    last_updated: Optional[datetime] = None

    @classmethod
    def empty(cls, date_key: date, backend: Backend) -> "UsageRecord":
        """Zero-valued record for a (day, backend) pair with no traffic."""
        return cls(date_key=date_key, backend=backend)


@dataclass(frozen=True)
class MinuteUsage:
    """Tokens and requests for one backend within one UTC minute."""
    minute_key: datetime
    backend: Backend
    tokens_used: int = 0
    request_count: int = 0


def to_utc(moment: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_date_key(moment: Optional[datetime] = None) -> date:
    """UTC calendar day that ``moment`` falls on (default: now)."""
    return to_utc(moment or utc_now()).date()


def get_minute_key(moment: Optional[datetime] = None) -> datetime:
    """Start of the UTC minute that ``moment`` falls in (default: now)."""
    return to_utc(moment or utc_now()).replace(second=0, microsecond=0)
