"""
Tests for fleet capacity totals.
"""
import pytest

from ai_quota_router.core.capacity import aggregate_capacity
from ai_quota_router.core.catalog import Backend
from ai_quota_router.core.snapshot import Snapshot


def make_snapshot(backend, rank, tokens, token_limit, requests, request_limit,
                  rate_limited=False):
    return Snapshot(
        backend=backend,
        priority_rank=rank,
        tokens_used=tokens,
        token_limit=token_limit,
        usage_percent=0.0,
        requests_used=requests,
        request_limit=request_limit,
        rate_limit_hits=1 if rate_limited else 0,
        error_count=0,
        is_rate_limited=rate_limited,
        is_error_saturated=False
    )


class TestAggregateCapacity:
    """Test fleet totals."""

    def test_sums_limited_backends(self):
        totals = aggregate_capacity([
            make_snapshot(Backend.LLAMA_3_3_70B, 1, 50_000, 100_000, 10, 1_000),
            make_snapshot(Backend.GPT_OSS_120B, 2, 50_000, 200_000, 30, 1_000),
        ])

        assert totals.tokens_used == 100_000
        assert totals.token_limit == 300_000
        assert totals.requests_used == 40
        assert totals.request_limit == 2_000
        assert totals.token_percent == pytest.approx(100 / 3)
        assert totals.request_percent == pytest.approx(2.0)
        assert totals.backend_count == 2
        assert totals.excluded_count == 0

    def test_unlimited_backends_kept_out_of_token_totals(self):
        """Test a backend without a token ceiling only counts its requests."""
        totals = aggregate_capacity([
            make_snapshot(Backend.LLAMA_3_3_70B, 1, 50_000, 100_000, 10, 1_000),
            make_snapshot(Backend.COMPOUND, 2, 5_000_000, None, 20, 250),
        ])

        assert totals.tokens_used == 50_000
        assert totals.token_limit == 100_000
        assert totals.requests_used == 30
        assert totals.request_limit == 1_250
        assert totals.unlimited_backends == [Backend.COMPOUND]

    def test_excluded_backends_counted(self):
        totals = aggregate_capacity([
            make_snapshot(Backend.LLAMA_3_3_70B, 1, 0, 100_000, 1, 1_000, rate_limited=True),
            make_snapshot(Backend.GPT_OSS_120B, 2, 0, 200_000, 0, 1_000),
        ])

        assert totals.excluded_count == 1
        assert totals.available_backends == [Backend.GPT_OSS_120B]

    def test_empty_snapshot(self):
        totals = aggregate_capacity([])

        assert totals.token_percent == 0.0
        assert totals.request_percent == 0.0
        assert totals.backend_count == 0
