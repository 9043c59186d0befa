"""
Capacity snapshots.

Combines the quota catalog with the ledger's counters for one day into a
per-backend view of usage against quota. Snapshots are computed fresh on
every call and never cached.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional

from .catalog import Backend, BackendQuota, QuotaCatalog, SelectionPolicy
from ai_quota_router.storage.models import (
    MinuteUsage,
    UsageRecord,
    get_date_key,
    get_minute_key,
    to_utc,
    utc_now,
)
from ai_quota_router.storage.repository import UsageLedger


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time usage of one backend against its daily quota."""
    backend: Backend
    priority_rank: int
    tokens_used: int
    token_limit: Optional[int]
    usage_percent: float
    requests_used: int
    request_limit: int
    rate_limit_hits: int
    error_count: int
    is_rate_limited: bool
    is_error_saturated: bool
    minute_tokens: int = 0
    minute_requests: int = 0
    is_minute_throttled: bool = False

    @property
    def backend_id(self) -> str:
        return self.backend.value

    @property
    def is_unlimited(self) -> bool:
        return self.token_limit is None

    @property
    def is_excluded(self) -> bool:
        """True when the backend may not be selected at all today."""
        return self.is_rate_limited or self.is_error_saturated


def compute_usage_percent(
    quota: BackendQuota,
    tokens_used: int,
    requests_used: int
) -> float:
    """Usage as the larger of token and request consumption, in percent.

    Never negative. Not capped at 100: concurrent completed calls can
    carry a backend past its limit before the next selection sees it.
    """
    ratios = [requests_used / quota.daily_request_limit]
    if quota.daily_token_limit is not None:
        ratios.append(tokens_used / quota.daily_token_limit)
    return max(0.0, max(ratios) * 100)


def _minute_throttled(
    quota: BackendQuota,
    minute: Optional[MinuteUsage],
    policy: SelectionPolicy
) -> bool:
    if minute is None:
        return False
    fraction = policy.minute_threshold_percent / 100
    if quota.tokens_per_minute is not None:
        if minute.tokens_used >= quota.tokens_per_minute * fraction:
            return True
    if quota.requests_per_minute is not None:
        if minute.request_count >= quota.requests_per_minute * fraction:
            return True
    return False


def build_snapshot(
    rank: int,
    quota: BackendQuota,
    record: UsageRecord,
    policy: SelectionPolicy,
    minute: Optional[MinuteUsage] = None
) -> Snapshot:
    """Build a single backend's snapshot from its quota and counters."""
    return Snapshot(
        backend=quota.backend,
        priority_rank=rank,
        tokens_used=record.tokens_used,
        token_limit=quota.daily_token_limit,
        usage_percent=compute_usage_percent(
            quota, record.tokens_used, record.request_count
        ),
        requests_used=record.request_count,
        request_limit=quota.daily_request_limit,
        rate_limit_hits=record.rate_limit_hits,
        error_count=record.error_count,
        is_rate_limited=record.rate_limit_hits >= policy.rate_limit_threshold,
        is_error_saturated=record.error_count >= policy.error_threshold,
        minute_tokens=minute.tokens_used if minute else 0,
        minute_requests=minute.request_count if minute else 0,
        is_minute_throttled=_minute_throttled(quota, minute, policy)
    )


class SnapshotService:
    """Computes per-backend capacity snapshots for a day."""

    def __init__(
        self,
        catalog: QuotaCatalog,
        ledger: UsageLedger,
        policy: Optional[SelectionPolicy] = None
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.policy = policy or SelectionPolicy()

    def get_snapshot(
        self,
        date_key: Optional[date] = None,
        prefer_fast: bool = False,
        now: Optional[datetime] = None,
        timeout: Optional[float] = None
    ) -> List[Snapshot]:
        """Snapshot every catalog backend, ordered by priority rank.

        The per-minute window is only consulted when ``date_key`` is the
        day ``now`` falls on; a past day has no live minute.

        Args:
            date_key: UTC day to report (default: the day of ``now``)
            prefer_fast: Rank backends by the catalog's fast order
            now: Current time (default: the system clock)
            timeout: Seconds to wait on a locked store

        Returns:
            Snapshots ordered by rank, most preferred first

        Raises:
            LedgerReadFailure: If the ledger could not be read
        """
        now = to_utc(now or utc_now())
        date_key = date_key or get_date_key(now)

        records: Dict[Backend, UsageRecord] = self.ledger.read_day(date_key, timeout=timeout)
        minutes: Dict[Backend, MinuteUsage] = {}
        if date_key == now.date():
            minutes = self.ledger.read_minute(get_minute_key(now), timeout=timeout)

        return [
            build_snapshot(
                rank,
                quota,
                records.get(quota.backend) or UsageRecord.empty(date_key, quota.backend),
                self.policy,
                minutes.get(quota.backend)
            )
            for rank, quota in self.catalog.ranked(prefer_fast)
        ]
