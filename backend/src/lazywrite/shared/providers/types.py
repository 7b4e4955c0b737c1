"""Core types for the key-rotation and resilient-call framework."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Sequence


class ProviderKind(str, enum.Enum):
    """How a provider authenticates."""

    KEY_POOL = "key_pool"
    KEYLESS = "keyless"


class AttemptOutcome(str, enum.Enum):
    """Classification of a single outbound call."""

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    CONTENT_REJECTED = "content_rejected"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration for a single provider.

    Attributes:
        provider_id:    Unique identifier (e.g. "openrouter", "craiyon").
        kind:           KEY_POOL providers draw credentials from a KeyPool;
                        KEYLESS providers are called with an empty credential.
        api_keys:       Ordered credentials; order is the rotation order.
        timeout_s:      Per-attempt wall-clock timeout in seconds.
        max_retries:    Extra attempts allowed for transient failures.
        backoff_base_s: First backoff delay; doubles on every retry.
        metadata:       Arbitrary extra config (model name, endpoint URL, etc.).
    """

    provider_id: str
    kind: ProviderKind = ProviderKind.KEY_POOL
    api_keys: tuple[str, ...] = ()
    timeout_s: float = 60.0
    max_retries: int = 2
    backoff_base_s: float = 2.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_keyless(self) -> bool:
        return self.kind == ProviderKind.KEYLESS

    def backoff_delay(self, retry_index: int) -> float:
        """Delay before retry number ``retry_index`` (0-based): ``base * 2**retry_index``."""
        return self.backoff_base_s * (2 ** retry_index)


def mask_credential(credential: str) -> str:
    """Loggable form of a credential: only the last four characters survive."""
    if not credential:
        return "<none>"
    if len(credential) <= 4:
        return "****"
    return f"****{credential[-4:]}"


@dataclass(frozen=True)
class Attempt:
    """Record of one outbound call. Never persisted."""

    provider_id: str
    credential: str
    outcome: AttemptOutcome
    latency_ms: float = 0.0
    error: str | None = None
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class CallBudget:
    """Bounded attempt counters for one logical request.

    ``retries`` and ``rotations`` are tracked per provider and reset when the
    chain escalates; the ``total_*`` counters and ``calls`` span the whole
    request.  ``max_calls`` is the hard ceiling on network calls and
    ``max_escalations`` the number of fallbacks the chain may take.
    """

    max_calls: int
    max_escalations: int
    calls: int = 0
    retries: int = 0
    rotations: int = 0
    escalations: int = 0
    total_retries: int = 0
    total_rotations: int = 0

    @classmethod
    def for_providers(
        cls,
        providers: Sequence[ProviderConfig],
        pool_sizes: dict[str, int] | None = None,
    ) -> CallBudget:
        sizes = pool_sizes or {}
        max_calls = 0
        for cfg in providers:
            size = 1 if cfg.is_keyless else sizes.get(cfg.provider_id, len(cfg.api_keys))
            max_calls += max(size, 1) * (cfg.max_retries + 1)
        return cls(max_calls=max_calls, max_escalations=max(len(providers) - 1, 0))

    @property
    def calls_remaining(self) -> int:
        return max(self.max_calls - self.calls, 0)

    def spend_call(self) -> bool:
        """Reserve one network call. Returns False once the ceiling is hit."""
        if self.calls >= self.max_calls:
            return False
        self.calls += 1
        return True

    def record_retry(self) -> None:
        self.retries += 1
        self.total_retries += 1

    def record_rotation(self) -> None:
        self.rotations += 1
        self.total_rotations += 1

    @property
    def can_escalate(self) -> bool:
        return self.escalations < self.max_escalations

    def record_escalation(self) -> None:
        self.escalations += 1
        self.retries = 0
        self.rotations = 0


@dataclass
class ProviderHealth:
    """Read-only snapshot of a provider's recent behaviour."""

    provider_id: str
    kind: str = ProviderKind.KEY_POOL.value
    total_attempts: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)
    consecutive_failures: int = 0
    success_rate: float = 1.0
    latency_p50_ms: float = 0.0
    latency_p95_ms: float = 0.0
    last_error: str | None = None
    last_error_time: float | None = None
    pool_size: int = 0
    blocked_keys: int = 0
    cursor: int = 0
