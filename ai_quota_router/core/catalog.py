"""
Backend quota catalog.

Static, process-wide table of every backend model with its daily limits
and priority rank. Built once and passed explicitly to the services that
need it.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Tuple


class Backend(Enum):
    """Known generation backends. The value is the provider model id."""
    LLAMA_3_3_70B = "llama-3.3-70b-versatile"
    LLAMA_3_1_8B = "llama-3.1-8b-instant"
    LLAMA_4_MAVERICK = "meta-llama/llama-4-maverick-17b-128e-instruct"
    LLAMA_4_SCOUT = "meta-llama/llama-4-scout-17b-16e-instruct"
    LLAMA_GUARD_4 = "meta-llama/llama-guard-4-12b"
    PROMPT_GUARD_22M = "meta-llama/llama-prompt-guard-2-22m"
    PROMPT_GUARD_86M = "meta-llama/llama-prompt-guard-2-86m"
    KIMI_K2 = "moonshotai/kimi-k2-instruct"
    KIMI_K2_0905 = "moonshotai/kimi-k2-instruct-0905"
    GPT_OSS_120B = "openai/gpt-oss-120b"
    GPT_OSS_20B = "openai/gpt-oss-20b"
    GPT_OSS_SAFEGUARD_20B = "openai/gpt-oss-safeguard-20b"
    QWEN3_32B = "qwen/qwen3-32b"
    ALLAM_2_7B = "allam-2-7b"
    COMPOUND = "groq/compound"
    COMPOUND_MINI = "groq/compound-mini"

    @classmethod
    def from_id(cls, backend_id: str) -> "Backend":
        """Look up a backend by provider model id.

        Raises:
            ValueError: If the id is not a known backend
        """
        try:
            return cls(backend_id)
        except ValueError:
            valid = [b.value for b in cls]
            raise ValueError(f"Unknown backend '{backend_id}'. Known backends: {valid}")


@dataclass(frozen=True)
class BackendQuota:
    """Daily quota and priority for a single backend.

    A ``daily_token_limit`` of ``None`` means the provider enforces no daily
    token ceiling; the request limit then drives the usage percentage.
    """
    backend: Backend
    daily_token_limit: Optional[int]
    daily_request_limit: int
    priority_rank: int
    tokens_per_minute: Optional[int] = None
    requests_per_minute: Optional[int] = None

    def __post_init__(self):
        """Validate limits are positive."""
        if self.daily_token_limit is not None and self.daily_token_limit <= 0:
            raise ValueError("daily_token_limit must be > 0")
        if self.daily_request_limit <= 0:
            raise ValueError("daily_request_limit must be > 0")
        if self.priority_rank < 1:
            raise ValueError("priority_rank must be >= 1")
        if self.tokens_per_minute is not None and self.tokens_per_minute <= 0:
            raise ValueError("tokens_per_minute must be > 0")
        if self.requests_per_minute is not None and self.requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be > 0")

    @property
    def is_unlimited(self) -> bool:
        return self.daily_token_limit is None


@dataclass(frozen=True)
class SelectionPolicy:
    """Thresholds that decide when a backend stops being eligible."""
    headroom_margin_percent: float = 5.0
    rate_limit_threshold: int = 1
    error_threshold: int = 3
    minute_threshold_percent: float = 80.0

    def __post_init__(self):
        """Validate thresholds."""
        if not 0 <= self.headroom_margin_percent < 100:
            raise ValueError("headroom_margin_percent must be in [0, 100)")
        if self.rate_limit_threshold < 1:
            raise ValueError("rate_limit_threshold must be >= 1")
        if self.error_threshold < 1:
            raise ValueError("error_threshold must be >= 1")
        if not 0 < self.minute_threshold_percent <= 100:
            raise ValueError("minute_threshold_percent must be in (0, 100]")

    @property
    def headroom_cutoff_percent(self) -> float:
        """Usage at or above this percentage fails the primary pass."""
        return 100.0 - self.headroom_margin_percent


@dataclass(frozen=True)
class QuotaCatalog:
    """Immutable registry of backend quotas.

    Ranks must be unique so that priority is a total order. ``fast_order``
    is an optional alternative ordering for latency-sensitive callers.
    """
    quotas: Mapping[Backend, BackendQuota]
    fast_order: Tuple[Backend, ...] = field(default_factory=tuple)

    def __post_init__(self):
        """Validate the catalog and freeze its mapping."""
        if not self.quotas:
            raise ValueError("catalog must contain at least one backend")

        for backend, quota in self.quotas.items():
            if quota.backend is not backend:
                raise ValueError(
                    f"quota for {backend.value} is keyed under the wrong backend"
                )

        ranks = [quota.priority_rank for quota in self.quotas.values()]
        if len(set(ranks)) != len(ranks):
            raise ValueError("priority ranks must be unique")

        for backend in self.fast_order:
            if backend not in self.quotas:
                raise ValueError(f"fast_order references unknown backend {backend.value}")
        if len(set(self.fast_order)) != len(self.fast_order):
            raise ValueError("fast_order must not repeat backends")

        object.__setattr__(self, "quotas", MappingProxyType(dict(self.quotas)))
        object.__setattr__(self, "fast_order", tuple(self.fast_order))

    @classmethod
    def from_quotas(
        cls,
        quotas: Iterable[BackendQuota],
        fast_order: Iterable[Backend] = ()
    ) -> "QuotaCatalog":
        return cls(
            quotas={quota.backend: quota for quota in quotas},
            fast_order=tuple(fast_order)
        )

    def get_quota(self, backend: Backend) -> BackendQuota:
        """Get the quota for a backend.

        Raises:
            KeyError: If the backend is not part of this catalog
        """
        if backend not in self.quotas:
            raise KeyError(f"Backend not in catalog: {backend.value}")
        return self.quotas[backend]

    @property
    def backends(self) -> List[Backend]:
        """Backends in priority order."""
        return [quota.backend for quota in self.ordered()]

    def ordered(self) -> List[BackendQuota]:
        """Quotas sorted by priority rank, most preferred first."""
        return sorted(self.quotas.values(), key=lambda q: q.priority_rank)

    def ranked(self, prefer_fast: bool = False) -> List[Tuple[int, BackendQuota]]:
        """(rank, quota) pairs for a selection profile.

        The default profile uses each backend's configured rank. The fast
        profile ranks backends by their 1-based position in ``fast_order``
        and leaves out backends that are not listed there. A catalog
        without a fast order falls back to the default profile.
        """
        if prefer_fast and self.fast_order:
            return [
                (position, self.quotas[backend])
                for position, backend in enumerate(self.fast_order, start=1)
            ]
        return [(quota.priority_rank, quota) for quota in self.ordered()]


# Provider limits per model, in the default quality-first priority order.
DEFAULT_CATALOG = QuotaCatalog.from_quotas(
    [
        BackendQuota(Backend.LLAMA_3_3_70B, 100_000, 1_000, 1,
                     tokens_per_minute=12_000, requests_per_minute=30),
        BackendQuota(Backend.GPT_OSS_120B, 200_000, 1_000, 2,
                     tokens_per_minute=8_000, requests_per_minute=30),
        BackendQuota(Backend.LLAMA_4_SCOUT, 500_000, 1_000, 3,
                     tokens_per_minute=30_000, requests_per_minute=30),
        BackendQuota(Backend.LLAMA_4_MAVERICK, 500_000, 1_000, 4,
                     tokens_per_minute=6_000, requests_per_minute=30),
        BackendQuota(Backend.KIMI_K2, 300_000, 1_000, 5,
                     tokens_per_minute=10_000, requests_per_minute=60),
        BackendQuota(Backend.LLAMA_3_1_8B, 500_000, 14_400, 6,
                     tokens_per_minute=6_000, requests_per_minute=30),
        # No daily token ceiling, kept last as capacity of last resort
        BackendQuota(Backend.COMPOUND, None, 250, 7,
                     tokens_per_minute=70_000, requests_per_minute=30),
        BackendQuota(Backend.COMPOUND_MINI, None, 250, 8,
                     tokens_per_minute=70_000, requests_per_minute=30),
        BackendQuota(Backend.GPT_OSS_20B, 200_000, 1_000, 9,
                     tokens_per_minute=8_000, requests_per_minute=30),
    ],
    fast_order=[
        Backend.LLAMA_3_1_8B,
        Backend.LLAMA_4_SCOUT,
        Backend.KIMI_K2,
        Backend.COMPOUND_MINI,
        Backend.COMPOUND,
        Backend.LLAMA_4_MAVERICK,
        Backend.GPT_OSS_20B,
        Backend.LLAMA_3_3_70B,
    ]
)
