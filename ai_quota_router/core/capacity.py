"""
Fleet-level capacity totals.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .catalog import Backend
from .snapshot import Snapshot, SnapshotService


@dataclass(frozen=True)
class AggregateCapacity:
    """Totals across every backend in a snapshot.

    Token totals only cover backends with a daily token ceiling; backends
    without one are listed in ``unlimited_backends`` instead.
    """
    tokens_used: int
    token_limit: int
    requests_used: int
    request_limit: int
    backend_count: int
    excluded_count: int
    available_backends: List[Backend] = field(default_factory=list)
    unlimited_backends: List[Backend] = field(default_factory=list)

    @property
    def token_percent(self) -> float:
        if self.token_limit == 0:
            return 0.0
        return self.tokens_used / self.token_limit * 100

    @property
    def request_percent(self) -> float:
        if self.request_limit == 0:
            return 0.0
        return self.requests_used / self.request_limit * 100


def aggregate_capacity(snapshots: Sequence[Snapshot]) -> AggregateCapacity:
    """Sum a snapshot into fleet totals. Pure."""
    tokens_used = 0
    token_limit = 0
    available = []
    unlimited = []

    for snapshot in snapshots:
        if snapshot.is_unlimited:
            unlimited.append(snapshot.backend)
        else:
            tokens_used += snapshot.tokens_used
            token_limit += snapshot.token_limit
        if not snapshot.is_excluded:
            available.append(snapshot.backend)

    return AggregateCapacity(
        tokens_used=tokens_used,
        token_limit=token_limit,
        requests_used=sum(s.requests_used for s in snapshots),
        request_limit=sum(s.request_limit for s in snapshots),
        backend_count=len(snapshots),
        excluded_count=sum(1 for s in snapshots if s.is_excluded),
        available_backends=available,
        unlimited_backends=unlimited
    )


class CapacityAggregator:
    """Aggregates today's snapshot into fleet-level totals."""

    def __init__(self, snapshots: SnapshotService):
        self.snapshots = snapshots

    def get_aggregate_capacity(
        self,
        snapshot: Optional[Sequence[Snapshot]] = None,
        timeout: Optional[float] = None
    ) -> AggregateCapacity:
        if snapshot is None:
            snapshot = self.snapshots.get_snapshot(timeout=timeout)
        return aggregate_capacity(snapshot)
