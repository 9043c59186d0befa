"""
Quota router.

Single entry point for the generation path (select a backend, then record
the outcome) and for reporting (status, capacity, history).
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from .capacity import AggregateCapacity, CapacityAggregator
from .catalog import DEFAULT_CATALOG, Backend, QuotaCatalog, SelectionPolicy
from .history import History, HistoryReader
from .selection import NoBackendAvailable, SelectionEngine, SelectionResult
from .snapshot import Snapshot, SnapshotService
from ai_quota_router.config.loader import load_router_config
from ai_quota_router.storage.models import Outcome, UsageRecord
from ai_quota_router.storage.repository import UsageLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectedModelReport:
    """Selection result alongside the snapshot it was made from.

    ``backend`` is None when no backend could be selected; ``reasoning``
    then explains why.
    """
    backend: Optional[Backend]
    usage_percent: Optional[float]
    reasoning: str
    all_backends: List[Snapshot] = field(default_factory=list)


class QuotaRouter:
    """Routes requests across quota-limited backends.

    Holds no usage state of its own; every call reads the ledger afresh.
    """

    def __init__(
        self,
        catalog: QuotaCatalog,
        ledger: UsageLedger,
        policy: Optional[SelectionPolicy] = None
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.policy = policy or SelectionPolicy()
        self.snapshots = SnapshotService(catalog, ledger, self.policy)
        self.engine = SelectionEngine(self.snapshots, self.policy)
        self.capacity = CapacityAggregator(self.snapshots)
        self.history = HistoryReader(catalog, ledger)

    @classmethod
    def from_config(cls, path: str) -> "QuotaRouter":
        """Build a router from a YAML configuration file."""
        config = load_router_config(path)
        return cls(
            catalog=config.catalog,
            ledger=UsageLedger(config.db_path, timeout=config.timeout),
            policy=config.policy
        )

    @classmethod
    def default(cls, db_path: Optional[str] = None) -> "QuotaRouter":
        """Router over the built-in catalog."""
        ledger = UsageLedger(db_path) if db_path else UsageLedger()
        return cls(catalog=DEFAULT_CATALOG, ledger=ledger)

    def select_backend(
        self,
        prefer_fast: bool = False,
        now: Optional[datetime] = None,
        timeout: Optional[float] = None
    ) -> SelectionResult:
        """Choose the backend for the next request.

        Raises:
            NoBackendAvailable: If every backend is rate-limited or error-saturated
        """
        return self.engine.select_backend(prefer_fast=prefer_fast, now=now, timeout=timeout)

    def record_usage(
        self,
        backend: Backend,
        tokens_delta: int,
        request_delta: int = 1,
        outcome: Outcome = Outcome.SUCCESS,
        at: Optional[datetime] = None,
        timeout: Optional[float] = None
    ) -> UsageRecord:
        """Account for one completed attempt against a backend.

        Raises:
            LedgerWriteFailure: If the increment could not be applied
        """
        if backend not in self.catalog.quotas:
            logger.warning("Recording usage for %s, which is not in the catalog", backend.value)
        record = self.ledger.record_usage(
            backend,
            tokens_delta,
            request_delta=request_delta,
            outcome=outcome,
            at=at,
            timeout=timeout
        )
        quota = self.catalog.quotas.get(backend)
        if quota is not None and quota.daily_token_limit is not None:
            logger.info(
                "%s: %s/%s tokens (%.1f%%)",
                backend.value,
                f"{record.tokens_used:,}",
                f"{quota.daily_token_limit:,}",
                record.tokens_used / quota.daily_token_limit * 100
            )
        else:
            logger.info("%s: %s tokens (no daily limit)", backend.value, f"{record.tokens_used:,}")
        return record

    def get_usage_status(
        self,
        prefer_fast: bool = False,
        now: Optional[datetime] = None,
        timeout: Optional[float] = None
    ) -> List[Snapshot]:
        """Today's snapshot for every backend, ordered by priority."""
        return self.snapshots.get_snapshot(prefer_fast=prefer_fast, now=now, timeout=timeout)

    def get_total_capacity(
        self,
        now: Optional[datetime] = None,
        timeout: Optional[float] = None
    ) -> AggregateCapacity:
        """Fleet totals for today."""
        snapshot = self.snapshots.get_snapshot(now=now, timeout=timeout)
        return self.capacity.get_aggregate_capacity(snapshot)

    def get_selected_model(
        self,
        prefer_fast: bool = False,
        now: Optional[datetime] = None,
        timeout: Optional[float] = None
    ) -> SelectedModelReport:
        """Which backend would be chosen right now, plus the full status.

        Selection and status come from one snapshot read, so the report is
        internally consistent.
        """
        snapshot = self.snapshots.get_snapshot(prefer_fast=prefer_fast, now=now, timeout=timeout)
        try:
            result = self.engine.select_backend(snapshot=snapshot)
        except NoBackendAvailable as e:
            return SelectedModelReport(
                backend=None,
                usage_percent=None,
                reasoning=str(e),
                all_backends=snapshot
            )
        return SelectedModelReport(
            backend=result.backend,
            usage_percent=result.usage_percent,
            reasoning=result.reasoning,
            all_backends=snapshot
        )

    def get_history(
        self,
        from_date: date,
        to_date: date,
        timeout: Optional[float] = None
    ) -> History:
        """Per-date, per-backend usage rows for an inclusive date range."""
        return self.history.get_history(from_date, to_date, timeout=timeout)
