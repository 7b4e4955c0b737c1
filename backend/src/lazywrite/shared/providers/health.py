"""Sliding-window health tracker for a single provider.

Fed with every ``Attempt`` the invoker makes; keeps rolling outcome counts
and latency percentiles over a configurable time window.
"""

from __future__ import annotations

import bisect
import threading
import time
from collections import Counter, deque

from lazywrite.shared.providers.types import Attempt, AttemptOutcome, ProviderHealth


class ProviderHealthTracker:
    """Thread-safe, sliding-window record of recent attempts."""

    def __init__(self, provider_id: str, *, window_seconds: float = 300.0) -> None:
        self._provider_id = provider_id
        self._window = window_seconds

        self._attempts: deque[Attempt] = deque()
        self._latencies: list[float] = []  # sorted for percentile calcs
        self._lock = threading.Lock()

        # Cumulative counters (never reset)
        self._outcomes: Counter[str] = Counter()
        self._consecutive_failures = 0
        self._last_error: str | None = None
        self._last_error_time: float | None = None

    def record(self, attempt: Attempt) -> None:
        with self._lock:
            self._attempts.append(attempt)
            if attempt.latency_ms > 0:
                bisect.insort(self._latencies, attempt.latency_ms)
            self._outcomes[attempt.outcome.value] += 1
            if attempt.outcome == AttemptOutcome.SUCCESS:
                self._consecutive_failures = 0
            else:
                self._consecutive_failures += 1
                self._last_error = attempt.error
                self._last_error_time = attempt.timestamp
            self._evict()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def health(self) -> ProviderHealth:
        """Produce a read-only snapshot (pool fields are filled by the caller)."""
        with self._lock:
            self._evict()
            window_total = len(self._attempts)
            window_ok = sum(1 for a in self._attempts if a.outcome == AttemptOutcome.SUCCESS)
            success_rate = window_ok / window_total if window_total else 1.0
            p50 = self._percentile(0.50)
            p95 = self._percentile(0.95)
            outcomes = dict(self._outcomes)

        return ProviderHealth(
            provider_id=self._provider_id,
            total_attempts=sum(outcomes.values()),
            outcomes=outcomes,
            consecutive_failures=self._consecutive_failures,
            success_rate=float(f"{success_rate:.4f}"),
            latency_p50_ms=p50,
            latency_p95_ms=p95,
            last_error=self._last_error,
            last_error_time=self._last_error_time,
        )

    # ── Internals ────────────────────────────────────────────
    def _evict(self) -> None:
        """Remove attempts outside the sliding window (caller holds lock)."""
        cutoff = time.monotonic() - self._window
        while self._attempts and self._attempts[0].timestamp < cutoff:
            old = self._attempts.popleft()
            if old.latency_ms in self._latencies:
                self._latencies.remove(old.latency_ms)

    def _percentile(self, p: float) -> float:
        """Caller holds lock."""
        if not self._latencies:
            return 0.0
        idx = min(int(len(self._latencies) * p), len(self._latencies) - 1)
        return float(f"{self._latencies[idx]:.2f}")
