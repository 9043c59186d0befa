"""
Backend selection.

Chooses one backend for the next request from a capacity snapshot.

Selection Order:
1. Exclude backends that were throttled or kept failing today
2. Primary pass - first backend by priority with headroom left
3. Fallback - least-used remaining backend, ties broken by priority
4. Nothing left - NoBackendAvailable
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from .catalog import Backend, SelectionPolicy
from .snapshot import Snapshot, SnapshotService

logger = logging.getLogger(__name__)


class NoBackendAvailable(Exception):
    """Raised when every backend is rate-limited or error-saturated."""
    def __init__(self, message: str, snapshots: Sequence[Snapshot] = ()):
        super().__init__(message)
        self.snapshots = list(snapshots)


@dataclass(frozen=True)
class SelectionResult:
    """The chosen backend and why it was chosen."""
    backend: Backend
    reasoning: str
    usage_percent: float
    priority_rank: int
    degraded: bool = False

    @property
    def backend_id(self) -> str:
        return self.backend.value


def _skip_reason(snapshot: Snapshot, policy: SelectionPolicy) -> Optional[str]:
    """Why a backend fails the primary pass, or None if it passes."""
    if snapshot.is_rate_limited:
        return "rate limited"
    if snapshot.is_error_saturated:
        return "error saturated"
    if snapshot.usage_percent >= policy.headroom_cutoff_percent:
        return f"usage {snapshot.usage_percent:.1f}%"
    if snapshot.is_minute_throttled:
        return "per-minute limit reached"
    return None


def choose_backend(
    snapshots: Sequence[Snapshot],
    policy: SelectionPolicy
) -> SelectionResult:
    """Apply the selection policy to snapshots ordered by priority rank.

    Priority always wins among backends that still have headroom. Only
    when none has headroom does usage decide, and then only among
    backends that are not rate-limited or error-saturated.

    Args:
        snapshots: Per-backend snapshots, most preferred first
        policy: Exclusion and headroom thresholds

    Returns:
        SelectionResult with human-readable reasoning

    Raises:
        NoBackendAvailable: If every backend is rate-limited or error-saturated
    """
    ordered = sorted(snapshots, key=lambda s: s.priority_rank)
    skipped: List[str] = []
    near_capacity = False

    for snapshot in ordered:
        reason = _skip_reason(snapshot, policy)
        if reason is None:
            reasoning = (
                f"{snapshot.backend_id} selected "
                f"(priority {snapshot.priority_rank}, usage {snapshot.usage_percent:.1f}%)"
            )
            if skipped:
                reasoning += f"; skipped {', '.join(skipped)}"
                if near_capacity:
                    reasoning += ": primary backends near capacity"
            return SelectionResult(
                backend=snapshot.backend,
                reasoning=reasoning,
                usage_percent=snapshot.usage_percent,
                priority_rank=snapshot.priority_rank
            )
        skipped.append(f"{snapshot.backend_id} ({reason})")
        if reason.startswith("usage"):
            near_capacity = True

    survivors = [s for s in ordered if not s.is_excluded]
    if not survivors:
        details = ", ".join(
            f"{s.backend_id}: {'rate limited' if s.is_rate_limited else 'error saturated'}"
            for s in ordered
        )
        raise NoBackendAvailable(
            f"No backend available: all {len(ordered)} backends are "
            f"rate-limited or error-saturated ({details})",
            ordered
        )

    fallback = min(survivors, key=lambda s: (s.usage_percent, s.priority_rank))
    return SelectionResult(
        backend=fallback.backend,
        reasoning=(
            f"{fallback.backend_id} selected as degraded fallback "
            f"(usage {fallback.usage_percent:.1f}%, all primary backends near capacity)"
        ),
        usage_percent=fallback.usage_percent,
        priority_rank=fallback.priority_rank,
        degraded=True
    )


class SelectionEngine:
    """Selects the backend for the next request from today's snapshot."""

    def __init__(self, snapshots: SnapshotService, policy: Optional[SelectionPolicy] = None):
        self.snapshots = snapshots
        self.policy = policy or snapshots.policy

    def select_backend(
        self,
        prefer_fast: bool = False,
        snapshot: Optional[Sequence[Snapshot]] = None,
        now: Optional[datetime] = None,
        timeout: Optional[float] = None
    ) -> SelectionResult:
        """Choose a backend for the next request.

        Args:
            prefer_fast: Rank backends by the catalog's fast order
            snapshot: Already-read snapshot for this call (default: read today's)
            now: Current time (default: the system clock)
            timeout: Seconds to wait on a locked store

        Raises:
            NoBackendAvailable: If every backend is rate-limited or error-saturated
            LedgerReadFailure: If the ledger could not be read
        """
        if snapshot is None:
            snapshot = self.snapshots.get_snapshot(
                prefer_fast=prefer_fast, now=now, timeout=timeout
            )

        try:
            result = choose_backend(snapshot, self.policy)
        except NoBackendAvailable as e:
            logger.warning("%s", e)
            raise

        if result.degraded:
            logger.warning("All backends near capacity: %s", result.reasoning)
        else:
            logger.info("%s", result.reasoning)
        return result
